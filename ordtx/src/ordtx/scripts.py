"""
Standard script templates and address handling.

Supports:
- P2PKH (legacy)
- P2SH-P2WPKH (wrapped segwit)
- P2WPKH (native segwit)
- P2TR (taproot, key path only)
"""

from __future__ import annotations

import hashlib

import base58
import bech32
from coincurve import PublicKey

from ordtx.config import BITCOIN_CONFIG, BlockchainConfig
from ordtx.errors import MissingNetworkParametersError
from ordtx.models import AddressType

# secp256k1 curve order
SECP256K1_N = int("FFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141", 16)

KNOWN_HRPS = ("bcrt", "bc", "tb")


def hash160(data: bytes) -> bytes:
    """RIPEMD160(SHA256(data))"""
    h = hashlib.new("ripemd160")
    h.update(hashlib.sha256(data).digest())
    return h.digest()


def tagged_hash(tag: str, data: bytes) -> bytes:
    """BIP340 tagged hash."""
    tag_hash = hashlib.sha256(tag.encode()).digest()
    return hashlib.sha256(tag_hash + tag_hash + data).digest()


def push_data(data: bytes) -> bytes:
    """Minimal push for data up to 75 bytes, PUSHDATA1 above that."""
    if len(data) < 0x4C:
        return bytes([len(data)]) + data
    if len(data) <= 0xFF:
        return bytes([0x4C, len(data)]) + data
    return bytes([0x4D]) + len(data).to_bytes(2, "little") + data


def p2pkh_script(pubkey_hash: bytes) -> bytes:
    # OP_DUP OP_HASH160 <20-byte-pubkeyhash> OP_EQUALVERIFY OP_CHECKSIG
    return bytes([0x76, 0xA9, 0x14]) + pubkey_hash + bytes([0x88, 0xAC])


def p2sh_script(script_hash: bytes) -> bytes:
    # OP_HASH160 <20-byte-scripthash> OP_EQUAL
    return bytes([0xA9, 0x14]) + script_hash + bytes([0x87])


def p2wpkh_script(pubkey: bytes) -> bytes:
    """P2WPKH scriptPubKey (OP_0 <20-byte-hash>)"""
    return bytes([0x00, 0x14]) + hash160(pubkey)


def p2sh_p2wpkh_redeem_script(pubkey: bytes) -> bytes:
    """The redeem script of a wrapped segwit output is the P2WPKH program."""
    return p2wpkh_script(pubkey)


def to_x_only(pubkey: bytes) -> bytes:
    return pubkey if len(pubkey) == 32 else pubkey[1:33]


def taproot_tweak(pubkey: bytes) -> bytes:
    """TapTweak scalar for a key-path-only output (no script tree)."""
    return tagged_hash("TapTweak", to_x_only(pubkey))


def taproot_output_key(pubkey: bytes) -> bytes:
    """
    Tweak an internal key into the 32-byte taproot output key (BIP341).

    The internal key is lifted to its even-y point before tweaking.
    """
    internal = PublicKey(b"\x02" + to_x_only(pubkey))
    tweaked = internal.add(taproot_tweak(pubkey))
    return tweaked.format(compressed=True)[1:]


def p2tr_script(pubkey: bytes) -> bytes:
    """P2TR scriptPubKey (OP_1 <32-byte-output-key>)"""
    return bytes([0x51, 0x20]) + taproot_output_key(pubkey)


def script_pubkey_for(address_type: AddressType, pubkey: bytes) -> bytes:
    """scriptPubKey paying to ``pubkey`` for the given address kind."""
    if address_type == AddressType.P2PKH:
        return p2pkh_script(hash160(pubkey))
    if address_type == AddressType.P2SH_P2WPKH:
        return p2sh_script(hash160(p2sh_p2wpkh_redeem_script(pubkey)))
    if address_type.is_taproot:
        return p2tr_script(pubkey)
    return p2wpkh_script(pubkey)


def _witness_op(version: int) -> int:
    return 0x00 if version == 0 else 0x50 + version


def _decode_segwit(address: str, config: BlockchainConfig) -> tuple[int, bytes] | None:
    lowered = address.lower()
    hrps = (config.network.bech32_hrp,) if config.network else KNOWN_HRPS
    for hrp in hrps:
        if lowered.startswith(hrp + "1"):
            witver, witprog = bech32.decode(hrp, address)
            if witver is None or witprog is None:
                raise ValueError(f"Invalid bech32 address: {address}")
            return witver, bytes(witprog)
    return None


def _base58_versions(config: BlockchainConfig) -> tuple[set[int], set[int]]:
    if config.network:
        return {config.network.pubkey_hash}, {config.network.script_hash}
    versions = config.address_versions
    return {versions.p2pkh, 0x6F}, {versions.p2sh, 0xC4}


def address_to_script_pubkey(address: str, config: BlockchainConfig | None = None) -> bytes:
    """
    Convert an address to its scriptPubKey.

    Bech32 witness versions and base58 prefixes are checked against the
    config's network parameters, or against the address versions when no
    network is configured.
    """
    config = config or BITCOIN_CONFIG

    segwit = _decode_segwit(address, config)
    if segwit is not None:
        witver, witprog = segwit
        if witver == config.address_versions.p2wpkh and len(witprog) in (20, 32):
            return bytes([_witness_op(witver), len(witprog)]) + witprog
        if witver == config.address_versions.p2tr and len(witprog) == 32:
            return bytes([_witness_op(witver), 0x20]) + witprog
        raise ValueError(f"Unsupported witness version: {witver}")

    decoded = base58.b58decode_check(address)
    version = decoded[0]
    payload = decoded[1:]
    pubkey_hash_versions, script_hash_versions = _base58_versions(config)

    if version in pubkey_hash_versions:
        return p2pkh_script(payload)
    if version in script_hash_versions:
        return p2sh_script(payload)

    raise ValueError(f"Unknown address version: {version}")


def get_address_type(address: str, config: BlockchainConfig | None = None) -> AddressType | None:
    """
    Classify an address by kind.

    Returns None for P2SH (the wrapped payload cannot be told from the
    address alone) and for anything unparseable.
    """
    config = config or BITCOIN_CONFIG
    try:
        segwit = _decode_segwit(address, config)
        if segwit is not None:
            witver, witprog = segwit
            if witver == config.address_versions.p2wpkh and len(witprog) == 20:
                return AddressType.P2WPKH
            if witver == config.address_versions.p2tr and len(witprog) == 32:
                return AddressType.P2TR
            return None

        version = base58.b58decode_check(address)[0]
    except ValueError:
        return None

    pubkey_hash_versions, _ = _base58_versions(config)
    if version in pubkey_hash_versions:
        return AddressType.P2PKH
    return None


def pubkey_to_address(pubkey: bytes, address_type: AddressType, config: BlockchainConfig) -> str:
    """Encode the address of ``pubkey`` for the configured network."""
    network = config.network
    if network is None:
        raise MissingNetworkParametersError("Network parameters are required to encode addresses")

    if address_type == AddressType.P2PKH:
        payload = bytes([network.pubkey_hash]) + hash160(pubkey)
        return base58.b58encode_check(payload).decode()
    if address_type == AddressType.P2SH_P2WPKH:
        payload = bytes([network.script_hash]) + hash160(p2sh_p2wpkh_redeem_script(pubkey))
        return base58.b58encode_check(payload).decode()

    versions = config.address_versions
    if address_type.is_taproot:
        result = bech32.encode(network.bech32_hrp, versions.p2tr, taproot_output_key(pubkey))
    else:
        result = bech32.encode(network.bech32_hrp, versions.p2wpkh, hash160(pubkey))
    if result is None:
        raise ValueError(f"Failed to encode address for pubkey {pubkey.hex()}")
    return result
