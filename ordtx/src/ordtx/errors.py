"""
Exceptions raised while building ordinal-aware transactions.

Every error aborts the current build attempt; no partially built
transaction is ever returned to the caller.
"""

from __future__ import annotations


class OrdTransactionError(Exception):
    """Base class for all transaction building failures."""

    pass


class InsufficientFundsError(OrdTransactionError):
    """Selected inputs cannot cover the requested output amount."""

    def __init__(self, required: int, available: int):
        self.required = required
        self.available = available
        super().__init__(f"Balance not enough: need {required}, have {available}")


class InsufficientFundsForFeeError(OrdTransactionError):
    """Inputs cover the outputs but not the outputs plus the network fee."""

    def __init__(self, message: str, fee: int, available: int | None = None):
        self.fee = fee
        self.available = available
        super().__init__(message)


class MultipleInscriptionsError(OrdTransactionError):
    """An inscription UTXO holds several inscriptions and must be split first."""

    def __init__(self, txid: str, vout: int, count: int):
        self.txid = txid
        self.vout = vout
        self.count = count
        super().__init__(
            f"Multiple inscriptions ({count}) in {txid}:{vout}! Please split them first."
        )


class InscriptionNotFoundError(OrdTransactionError):
    """No inscription UTXO was found among the supplied UTXOs."""

    pass


class MissingNetworkParametersError(OrdTransactionError):
    """Network parameters needed for address handling were not supplied."""

    pass


class ChangeOutputNotSetError(OrdTransactionError):
    """The builder has no designated change output."""

    pass


class TransactionSigningError(OrdTransactionError):
    """Signing, serialization or extraction of a transaction failed."""

    pass
