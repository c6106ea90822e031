"""
Satoshi unit partitioning.

Carves a UTXO's value into contiguous units so that every inscription sits
in a unit of its own (or shares one with a neighbour it cannot be separated
from) and plain value around it can be spent without touching it.

The wallet balance code uses this to tell which part of an inscription UTXO
is safe to spend; the transaction builder never calls it.
"""

from __future__ import annotations

from collections.abc import Sequence

from loguru import logger

from ordtx.config import BITCOIN_CONFIG, BlockchainConfig
from ordtx.models import InscriptionRef, SatoshiUnit, UnitInscription, UnspentOutput


def _overhangs(unit: SatoshiUnit) -> bool:
    """True if a merged placement points past the end of ``unit``."""
    return any(ins.unit_offset >= unit.satoshis for ins in unit.inscriptions)


def split_into_units(
    satoshis: int,
    inscriptions: Sequence[InscriptionRef],
    dust_threshold: int,
    unit_size: int | None = None,
) -> list[SatoshiUnit]:
    """
    Partition ``satoshis`` around the given inscriptions.

    Inscriptions are processed in the given order, which is expected to be
    ascending by offset. An inscription whose offset falls inside an already
    carved unit, or that comes when less than one unit of value is left, is
    attached to the most recent unit instead of starting a new one.

    Args:
        satoshis: UTXO value
        inscriptions: Inscriptions with offsets in [0, satoshis)
        dust_threshold: Smallest free unit worth keeping on its own
        unit_size: Size of an inscription-bearing unit (defaults to dust_threshold)

    Returns:
        Units in order; their values always sum to ``satoshis``
    """
    unit_size = unit_size or dust_threshold
    units: list[SatoshiUnit] = []
    left = satoshis
    prev_offset = -1

    for ref in inscriptions:
        used = satoshis - left
        cur_offset = ref.offset - used
        out_of_order = ref.offset < prev_offset
        prev_offset = max(prev_offset, ref.offset)

        if cur_offset < 0 or left < unit_size:
            if units:
                if out_of_order:
                    logger.warning(
                        f"Inscription {ref.id} at offset {ref.offset} is out of order, "
                        "merging into previous unit"
                    )
                else:
                    logger.debug(f"Inscription {ref.id} at offset {ref.offset} joins previous unit")
                prev = units[-1]
                prev.inscriptions.append(
                    UnitInscription(ref.id, ref.offset, prev.satoshis + cur_offset)
                )
            else:
                # UTXO smaller than one unit: the whole value travels with the inscription
                units.append(SatoshiUnit(left, [UnitInscription(ref.id, ref.offset, cur_offset)]))
                left = 0
            continue

        if left > unit_size * 2 and cur_offset >= unit_size:
            # Enough plain value in front of the inscription to stand alone
            units.append(SatoshiUnit(cur_offset))
            size = min(unit_size, left - cur_offset)
            units.append(SatoshiUnit(size, [UnitInscription(ref.id, ref.offset, 0)]))
            consumed = cur_offset + size
        else:
            consumed = min(cur_offset + unit_size, left)
            units.append(SatoshiUnit(consumed, [UnitInscription(ref.id, ref.offset, cur_offset)]))

        left -= consumed

    if left > dust_threshold and not (units and _overhangs(units[-1])):
        units.append(SatoshiUnit(left))
    elif left > 0:
        if units:
            units[-1].satoshis += left
        else:
            units.append(SatoshiUnit(left))

    return units


def free_satoshis(units: Sequence[SatoshiUnit]) -> int:
    """Total value of units carrying no inscription."""
    return sum(unit.satoshis for unit in units if unit.is_free)


def last_unit_free_satoshis(units: Sequence[SatoshiUnit]) -> int:
    """Value of the tail unit if it is free, else 0. Only the tail is safe change."""
    if not units or not units[-1].is_free:
        return 0
    return units[-1].satoshis


class OrdUnspentOutput:
    """A UTXO together with its satoshi units."""

    def __init__(
        self,
        utxo: UnspentOutput,
        unit_size: int | None = None,
        config: BlockchainConfig | None = None,
    ):
        self.utxo = utxo
        self.config = config or BITCOIN_CONFIG
        self.units = split_into_units(
            utxo.satoshis, utxo.inscriptions, self.config.utxo_dust, unit_size
        )

    def free_satoshis(self) -> int:
        """Get non-inscription satoshis."""
        return free_satoshis(self.units)

    def last_unit_free_satoshis(self) -> int:
        """Get the spendable satoshis of the last unit."""
        return last_unit_free_satoshis(self.units)

    def has_inscriptions(self) -> bool:
        return self.utxo.has_inscriptions()

    def dump(self) -> None:
        for unit in self.units:
            logger.debug(f"satoshis: {unit.satoshis} inscriptions: {unit.inscriptions}")
