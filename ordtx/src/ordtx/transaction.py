"""
Partially signed transaction container and wire serialization.

A ``PartialTransaction`` holds everything a signer needs (prevout value and
script per input, redeem script for wrapped segwit) next to the finalized
script sigs and witnesses the signer attaches. Serialization follows the
BIP144 layout when any input carries witness data.
"""

from __future__ import annotations

import copy
import hashlib
import math
import struct
from dataclasses import dataclass, field

from ordtx.config import BlockchainConfig
from ordtx.constants import SEQUENCE_FINAL, TX_VERSION
from ordtx.errors import TransactionSigningError
from ordtx.models import AddressType, TxInput, WitnessUtxo
from ordtx.scripts import address_to_script_pubkey


def hash256(data: bytes) -> bytes:
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def encode_varint(value: int) -> bytes:
    """Encode integer as Bitcoin varint."""
    if value < 0xFD:
        return bytes([value])
    if value <= 0xFFFF:
        return b"\xfd" + value.to_bytes(2, "little")
    if value <= 0xFFFFFFFF:
        return b"\xfe" + value.to_bytes(4, "little")
    return b"\xff" + value.to_bytes(8, "little")


def read_varint(data: bytes, offset: int) -> tuple[int, int]:
    """Read varint and return (value, new_offset)."""
    first = data[offset]
    offset += 1

    if first < 0xFD:
        return first, offset
    if first == 0xFD:
        return int.from_bytes(data[offset : offset + 2], "little"), offset + 2
    if first == 0xFE:
        return int.from_bytes(data[offset : offset + 4], "little"), offset + 4
    return int.from_bytes(data[offset : offset + 8], "little"), offset + 8


def serialize_outpoint(txid: str, vout: int) -> bytes:
    """Serialize outpoint (txid:vout)."""
    # txid is in RPC format (big-endian), need to reverse for raw tx
    return bytes.fromhex(txid)[::-1] + struct.pack("<I", vout)


def serialize_witness_stack(items: list[bytes]) -> bytes:
    result = encode_varint(len(items))
    for item in items:
        result += encode_varint(len(item)) + item
    return result


@dataclass
class PartialInput:
    txid: str
    vout: int
    witness_utxo: WitnessUtxo | None = None
    address_type: AddressType = AddressType.P2WPKH
    redeem_script: bytes | None = None
    sequence: int = SEQUENCE_FINAL
    final_script_sig: bytes = b""
    final_script_witness: list[bytes] = field(default_factory=list)

    @classmethod
    def from_tx_input(cls, txin: TxInput, sequence: int = SEQUENCE_FINAL) -> PartialInput:
        return cls(
            txid=txin.txid,
            vout=txin.vout,
            witness_utxo=txin.witness_utxo,
            address_type=txin.utxo.address_type,
            redeem_script=txin.redeem_script,
            sequence=sequence,
        )

    @property
    def is_finalized(self) -> bool:
        return bool(self.final_script_sig or self.final_script_witness)

    def serialize(self, script_sig: bytes | None = None) -> bytes:
        """Serialize the input; ``script_sig`` replaces the final one (sighash preimages)."""
        script = self.final_script_sig if script_sig is None else script_sig
        return (
            serialize_outpoint(self.txid, self.vout)
            + encode_varint(len(script))
            + script
            + struct.pack("<I", self.sequence)
        )

    def serialize_witness(self) -> bytes:
        return serialize_witness_stack(self.final_script_witness)


@dataclass
class PartialOutput:
    value: int
    script: bytes
    address: str = ""

    def serialize(self) -> bytes:
        return struct.pack("<Q", self.value) + encode_varint(len(self.script)) + self.script


@dataclass
class PartialTransaction:
    version: int = TX_VERSION
    locktime: int = 0
    inputs: list[PartialInput] = field(default_factory=list)
    outputs: list[PartialOutput] = field(default_factory=list)
    # Legacy inputs are signed from the prevout script and value alone,
    # without the full previous transaction
    unsafe_sign_nonsegwit: bool = False

    def add_input(self, txin: PartialInput) -> None:
        self.inputs.append(txin)

    def add_output(
        self, address: str, value: int, config: BlockchainConfig | None = None
    ) -> PartialOutput:
        output = PartialOutput(
            value=value, script=address_to_script_pubkey(address, config), address=address
        )
        self.outputs.append(output)
        return output

    def clone(self) -> PartialTransaction:
        return copy.deepcopy(self)

    def has_witness(self) -> bool:
        return any(inp.final_script_witness for inp in self.inputs)

    def is_complete(self) -> bool:
        return all(inp.is_finalized for inp in self.inputs)

    def serialize(self, include_witness: bool = True) -> bytes:
        """Serialize transaction to bytes."""
        segwit = include_witness and self.has_witness()

        result = struct.pack("<I", self.version)
        if segwit:
            result += bytes([0x00, 0x01])  # SegWit marker and flag

        result += encode_varint(len(self.inputs))
        for inp in self.inputs:
            result += inp.serialize()

        result += encode_varint(len(self.outputs))
        for out in self.outputs:
            result += out.serialize()

        if segwit:
            for inp in self.inputs:
                result += inp.serialize_witness()

        result += struct.pack("<I", self.locktime)
        return result

    def to_hex(self, include_witness: bool = True) -> str:
        return self.serialize(include_witness).hex()

    @property
    def size(self) -> int:
        return len(self.serialize())

    @property
    def weight(self) -> int:
        base = len(self.serialize(include_witness=False))
        return base * 3 + self.size

    @property
    def vsize(self) -> int:
        return math.ceil(self.weight / 4)

    @property
    def txid(self) -> str:
        """Double SHA256 of the non-witness serialization."""
        return hash256(self.serialize(include_witness=False))[::-1].hex()

    def get_total_input(self) -> int:
        total = 0
        for inp in self.inputs:
            if inp.witness_utxo is None:
                raise TransactionSigningError(f"Missing prevout value for {inp.txid}:{inp.vout}")
            total += inp.witness_utxo.value
        return total

    def get_fee(self) -> int:
        return self.get_total_input() - sum(out.value for out in self.outputs)

    def get_fee_rate(self) -> float:
        """Fee paid per virtual byte."""
        return self.get_fee() / self.vsize

    def extract(self) -> bytes:
        """Serialize a fully signed transaction for broadcast."""
        for index, inp in enumerate(self.inputs):
            if not inp.is_finalized:
                raise TransactionSigningError(f"Input {index} is not signed")
        return self.serialize()


def parse_transaction(tx_bytes: bytes) -> PartialTransaction:
    """
    Parse a raw transaction.

    Prevout values and scripts are not part of the wire format, so the
    returned inputs carry no ``witness_utxo``.
    """
    try:
        offset = 0
        version = struct.unpack("<I", tx_bytes[offset : offset + 4])[0]
        offset += 4

        has_witness = False
        if tx_bytes[offset] == 0x00 and tx_bytes[offset + 1] == 0x01:
            has_witness = True
            offset += 2

        input_count, offset = read_varint(tx_bytes, offset)
        inputs: list[PartialInput] = []
        for _ in range(input_count):
            txid = tx_bytes[offset : offset + 32][::-1].hex()
            offset += 32
            vout = struct.unpack("<I", tx_bytes[offset : offset + 4])[0]
            offset += 4
            script_len, offset = read_varint(tx_bytes, offset)
            script_sig = tx_bytes[offset : offset + script_len]
            offset += script_len
            sequence = struct.unpack("<I", tx_bytes[offset : offset + 4])[0]
            offset += 4
            inputs.append(
                PartialInput(txid=txid, vout=vout, sequence=sequence, final_script_sig=script_sig)
            )

        output_count, offset = read_varint(tx_bytes, offset)
        outputs: list[PartialOutput] = []
        for _ in range(output_count):
            value = struct.unpack("<Q", tx_bytes[offset : offset + 8])[0]
            offset += 8
            script_len, offset = read_varint(tx_bytes, offset)
            script = tx_bytes[offset : offset + script_len]
            offset += script_len
            outputs.append(PartialOutput(value=value, script=script))

        if has_witness:
            for inp in inputs:
                item_count, offset = read_varint(tx_bytes, offset)
                for _ in range(item_count):
                    item_len, offset = read_varint(tx_bytes, offset)
                    inp.final_script_witness.append(tx_bytes[offset : offset + item_len])
                    offset += item_len

        locktime = struct.unpack("<I", tx_bytes[offset : offset + 4])[0]
        return PartialTransaction(
            version=version, locktime=locktime, inputs=inputs, outputs=outputs
        )

    except (IndexError, struct.error, ValueError) as e:
        raise TransactionSigningError(f"Failed to parse transaction: {e}") from e
