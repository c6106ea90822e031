"""
Amount conversion helpers.
"""

from __future__ import annotations

from decimal import Decimal

from ordtx.config import BITCOIN_CONFIG


def satoshis_to_amount(value: int, denomination_factor: int | None = None) -> str:
    """Format a satoshi value in whole coins, e.g. 150000 -> "0.0015"."""
    factor = denomination_factor or BITCOIN_CONFIG.denomination_factor
    amount = Decimal(value) / Decimal(factor)
    text = format(amount.normalize(), "f")
    return text


def amount_to_satoshis(amount: str | int | Decimal, denomination_factor: int | None = None) -> int:
    """Convert a whole-coin amount to satoshis, truncating sub-satoshi digits."""
    factor = denomination_factor or BITCOIN_CONFIG.denomination_factor
    return int(Decimal(str(amount)) * Decimal(factor))
