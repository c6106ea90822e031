"""
Ledger and wallet constants.

Dust and fee defaults mirror the values the ordinals wallets were tuned for:
- UTXO_DUST: smallest output the wallet will create or treat as spendable
- DEFAULT_FEE_RATE: satoshis per byte when the caller passes none
"""

from __future__ import annotations

# Minimum value of a standalone output, also the default unit size when
# carving inscriptions out of a UTXO
UTXO_DUST = 1000  # satoshis

DEFAULT_FEE_RATE = 5  # sat/byte

# Satoshis per whole coin
DENOMINATION_FACTOR = 100_000_000

DEFAULT_TICK = "BTC"

# Every assembled transaction uses version 1
TX_VERSION = 1

SEQUENCE_FINAL = 0xFFFFFFFF
# BIP125 opt-in replace-by-fee
SEQUENCE_RBF = 0xFFFFFFFD

SIGHASH_DEFAULT = 0x00
SIGHASH_ALL = 0x01

# Witness bytes are billed at a quarter of a base byte
WITNESS_DISCOUNT = 0.75

# Value of the placeholder change output used while measuring fees
PLACEHOLDER_CHANGE_VALUE = 1

# DER size of an ECDSA signature whose R and S both encode in exactly 32 bytes
LOW_R_DER_SIZE = 70
