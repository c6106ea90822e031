"""
Single-key transaction signer.

Signs every input of a ``PartialTransaction`` with one coincurve key:
- P2WPKH and P2SH-P2WPKH with the BIP143 segwit sighash
- P2PKH with the legacy sighash
- P2TR key path with the BIP341 sighash and a schnorr signature
"""

from __future__ import annotations

import hashlib
import secrets

from coincurve import PrivateKey
from coincurve._libsecp256k1 import ffi
from loguru import logger

from ordtx.constants import LOW_R_DER_SIZE, SIGHASH_ALL, SIGHASH_DEFAULT
from ordtx.errors import TransactionSigningError
from ordtx.models import AddressType, WitnessUtxo
from ordtx.scripts import (
    SECP256K1_N,
    hash160,
    p2pkh_script,
    push_data,
    script_pubkey_for,
    tagged_hash,
    taproot_tweak,
)
from ordtx.transaction import PartialInput, PartialTransaction, encode_varint, hash256


def _sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def _prevout(tx: PartialTransaction, input_index: int) -> tuple[PartialInput, WitnessUtxo]:
    if input_index >= len(tx.inputs):
        raise TransactionSigningError("Input index out of range")
    inp = tx.inputs[input_index]
    if inp.witness_utxo is None:
        raise TransactionSigningError(f"Input {input_index} has no prevout value and script")
    return inp, inp.witness_utxo


def compute_sighash_segwit(
    tx: PartialTransaction,
    input_index: int,
    script_code: bytes,
    value: int,
    sighash_type: int = SIGHASH_ALL,
) -> bytes:
    """BIP143 signature hash for witness v0 inputs."""
    if input_index >= len(tx.inputs):
        raise TransactionSigningError("Input index out of range")

    version = tx.version.to_bytes(4, "little")
    locktime = tx.locktime.to_bytes(4, "little")

    hash_prevouts = hash256(b"".join(inp.serialize()[:36] for inp in tx.inputs))
    hash_sequence = hash256(b"".join(inp.sequence.to_bytes(4, "little") for inp in tx.inputs))
    hash_outputs = hash256(b"".join(out.serialize() for out in tx.outputs))

    target = tx.inputs[input_index]
    preimage = (
        version
        + hash_prevouts
        + hash_sequence
        + target.serialize()[:36]
        + encode_varint(len(script_code))
        + script_code
        + value.to_bytes(8, "little")
        + target.sequence.to_bytes(4, "little")
        + hash_outputs
        + locktime
        + sighash_type.to_bytes(4, "little")
    )
    return hash256(preimage)


def compute_sighash_legacy(
    tx: PartialTransaction,
    input_index: int,
    script_code: bytes,
    sighash_type: int = SIGHASH_ALL,
) -> bytes:
    """Pre-segwit signature hash (SIGHASH_ALL only)."""
    if sighash_type != SIGHASH_ALL:
        raise TransactionSigningError(f"Sighash type {sighash_type} not supported for legacy")
    if input_index >= len(tx.inputs):
        raise TransactionSigningError("Input index out of range")

    preimage = tx.version.to_bytes(4, "little")
    preimage += encode_varint(len(tx.inputs))
    for index, inp in enumerate(tx.inputs):
        preimage += inp.serialize(script_sig=script_code if index == input_index else b"")
    preimage += encode_varint(len(tx.outputs))
    for out in tx.outputs:
        preimage += out.serialize()
    preimage += tx.locktime.to_bytes(4, "little")
    preimage += sighash_type.to_bytes(4, "little")
    return hash256(preimage)


def compute_sighash_taproot(
    tx: PartialTransaction, input_index: int, sighash_type: int = SIGHASH_DEFAULT
) -> bytes:
    """BIP341 key-path signature hash (SIGHASH_DEFAULT or SIGHASH_ALL, no annex)."""
    if sighash_type not in (SIGHASH_DEFAULT, SIGHASH_ALL):
        raise TransactionSigningError(f"Sighash type {sighash_type} not supported for taproot")

    prevouts = [_prevout(tx, index) for index in range(len(tx.inputs))]
    if input_index >= len(prevouts):
        raise TransactionSigningError("Input index out of range")

    sha_prevouts = _sha256(b"".join(inp.serialize()[:36] for inp, _ in prevouts))
    sha_amounts = _sha256(b"".join(utxo.value.to_bytes(8, "little") for _, utxo in prevouts))
    sha_scriptpubkeys = _sha256(
        b"".join(encode_varint(len(utxo.script)) + utxo.script for _, utxo in prevouts)
    )
    sha_sequences = _sha256(b"".join(inp.sequence.to_bytes(4, "little") for inp, _ in prevouts))
    sha_outputs = _sha256(b"".join(out.serialize() for out in tx.outputs))

    sigmsg = (
        b"\x00"  # epoch
        + bytes([sighash_type])
        + tx.version.to_bytes(4, "little")
        + tx.locktime.to_bytes(4, "little")
        + sha_prevouts
        + sha_amounts
        + sha_scriptpubkeys
        + sha_sequences
        + sha_outputs
        + b"\x00"  # spend type: key path, no annex
        + input_index.to_bytes(4, "little")
    )
    return tagged_hash("TapSighash", sigmsg)


def sign_low_r(private_key: PrivateKey, digest: bytes) -> bytes:
    """
    ECDSA-sign a precomputed digest with a fixed-size DER encoding.

    Extra nonce entropy is ground (as Bitcoin Core does for low R) until both
    R and S encode in exactly 32 bytes, so every signature is 70 bytes and
    a trial-signed transaction has the same size as the final one.
    """
    counter = 0
    while True:
        entropy = (
            ffi.NULL
            if counter == 0
            else ffi.new("unsigned char[32]", list(counter.to_bytes(32, "little")))
        )
        # hasher=None: the digest is already a sighash
        signature = private_key.sign(digest, hasher=None, custom_nonce=(ffi.NULL, entropy))
        if len(signature) == LOW_R_DER_SIZE:
            return signature
        counter += 1


def tweak_private_key(private_key: PrivateKey) -> PrivateKey:
    """Tweak a taproot internal key into the key that signs for the output key."""
    secret = int.from_bytes(private_key.secret, "big")
    pubkey = private_key.public_key.format(compressed=True)
    if pubkey[0] == 0x03:
        secret = SECP256K1_N - secret
    tweak = int.from_bytes(taproot_tweak(pubkey), "big")
    tweaked = (secret + tweak) % SECP256K1_N
    if tweaked == 0:
        raise TransactionSigningError("Invalid tweaked key")
    return PrivateKey(tweaked.to_bytes(32, "big"))


class KeySigner:
    """
    Async signer callback for a single-key wallet.

    Pass an instance as ``sign_transaction`` to the builder or send
    functions; it finalizes every input in place.
    """

    def __init__(self, private_key: PrivateKey, sighash_type: int | None = None):
        self.private_key = private_key
        self.pubkey = private_key.public_key.format(compressed=True)
        self.sighash_type = sighash_type

    async def __call__(self, tx: PartialTransaction) -> None:
        self.sign_transaction(tx)

    def sign_transaction(self, tx: PartialTransaction) -> None:
        for index in range(len(tx.inputs)):
            self.sign_input(tx, index)
        logger.debug(f"Signed {len(tx.inputs)} inputs")

    def sign_input(self, tx: PartialTransaction, input_index: int) -> None:
        inp, prevout = _prevout(tx, input_index)

        address_type = inp.address_type
        expected_script = script_pubkey_for(address_type, self.pubkey)
        if prevout.script != expected_script:
            raise TransactionSigningError(
                f"Input {input_index} ({inp.txid}:{inp.vout}) is not spendable by this key"
            )

        if address_type.is_taproot:
            sighash_type = self.sighash_type if self.sighash_type is not None else SIGHASH_DEFAULT
            sighash = compute_sighash_taproot(tx, input_index, sighash_type)
            signature = tweak_private_key(self.private_key).sign_schnorr(
                sighash, secrets.token_bytes(32)
            )
            if sighash_type != SIGHASH_DEFAULT:
                signature += bytes([sighash_type])
            inp.final_script_witness = [signature]
            return

        sighash_type = self.sighash_type if self.sighash_type is not None else SIGHASH_ALL
        script_code = p2pkh_script(hash160(self.pubkey))

        if address_type == AddressType.P2PKH:
            if not tx.unsafe_sign_nonsegwit:
                raise TransactionSigningError(
                    f"Input {input_index} is legacy and the transaction is not marked "
                    "for signing non-segwit inputs"
                )
            sighash = compute_sighash_legacy(tx, input_index, prevout.script, sighash_type)
            signature = sign_low_r(self.private_key, sighash) + bytes([sighash_type])
            inp.final_script_sig = push_data(signature) + push_data(self.pubkey)
            return

        sighash = compute_sighash_segwit(
            tx, input_index, script_code, prevout.value, sighash_type
        )
        signature = sign_low_r(self.private_key, sighash) + bytes([sighash_type])
        inp.final_script_witness = [signature, self.pubkey]

        if address_type == AddressType.P2SH_P2WPKH:
            if inp.redeem_script is None:
                raise TransactionSigningError(f"Input {input_index} is missing its redeem script")
            inp.final_script_sig = push_data(inp.redeem_script)
