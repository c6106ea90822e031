"""
Wallet data models.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum

from pydantic import BaseModel, Field, model_validator


class AddressType(IntEnum):
    P2PKH = 0
    P2WPKH = 1
    P2TR = 2
    P2SH_P2WPKH = 3
    M44_P2WPKH = 4
    M44_P2TR = 5

    @property
    def is_legacy(self) -> bool:
        """Non-segwit inputs are signed with the legacy sighash."""
        return self is AddressType.P2PKH

    @property
    def is_taproot(self) -> bool:
        return self in (AddressType.P2TR, AddressType.M44_P2TR)

    @property
    def is_wrapped_segwit(self) -> bool:
        return self is AddressType.P2SH_P2WPKH


class InscriptionRef(BaseModel):
    """An inscription bound to a satoshi offset inside a UTXO."""

    id: str = Field(..., min_length=1)
    offset: int = Field(..., ge=0)


class UnspentOutput(BaseModel):
    """
    A wallet UTXO, possibly carrying inscriptions.

    Inscriptions are expected in ascending offset order without overlap.
    Only ``offset < satoshis`` is enforced here; ordering is left to the
    partitioner, which merges out-of-order placements into the previous unit.
    """

    txid: str = Field(..., min_length=1)
    vout: int = Field(..., ge=0)
    satoshis: int = Field(..., gt=0)
    inscriptions: list[InscriptionRef] = Field(default_factory=list)
    script_pubkey: str = ""  # hex
    address: str = ""
    address_type: AddressType = AddressType.P2WPKH
    raw_hex: str | None = None

    @model_validator(mode="after")
    def check_offsets(self) -> UnspentOutput:
        for ref in self.inscriptions:
            if ref.offset >= self.satoshis:
                raise ValueError(
                    f"Inscription {ref.id} offset {ref.offset} outside UTXO value {self.satoshis}"
                )
        return self

    @property
    def outpoint(self) -> str:
        return f"{self.txid}:{self.vout}"

    def has_inscriptions(self) -> bool:
        return len(self.inscriptions) > 0


@dataclass
class UnitInscription:
    """Placement of one inscription inside a satoshi unit."""

    id: str
    output_offset: int  # offset within the original UTXO
    unit_offset: int  # offset within this unit


@dataclass
class SatoshiUnit:
    """A contiguous range of a UTXO's value, free to spend or inscription-bearing."""

    satoshis: int
    inscriptions: list[UnitInscription] = field(default_factory=list)

    @property
    def is_free(self) -> bool:
        return not self.inscriptions


@dataclass(frozen=True)
class WitnessUtxo:
    value: int
    script: bytes


@dataclass(frozen=True)
class TxInput:
    """Signable input derived from a UTXO when it is added to a builder."""

    utxo: UnspentOutput
    witness_utxo: WitnessUtxo
    redeem_script: bytes | None = None

    @property
    def txid(self) -> str:
        return self.utxo.txid

    @property
    def vout(self) -> int:
        return self.utxo.vout

    @property
    def value(self) -> int:
        return self.witness_utxo.value


@dataclass
class TxOutput:
    """Transaction output."""

    address: str
    value: int
