"""
ordtx - Ordinal-aware UTXO spending

Carves inscription UTXOs into satoshi units and builds spend transactions
that keep inscriptions on their own outputs.
"""

__version__ = "0.1.0"

from ordtx.builder import GeneratedTransaction, OrdTransaction
from ordtx.config import (
    BITCOIN_CONFIG,
    BITCOIN_MAINNET,
    BITCOIN_REGTEST,
    BITCOIN_TESTNET,
    AddressVersions,
    BlockchainConfig,
    NetworkParams,
    get_network,
    resolve_config,
)
from ordtx.errors import (
    ChangeOutputNotSetError,
    InscriptionNotFoundError,
    InsufficientFundsError,
    InsufficientFundsForFeeError,
    MissingNetworkParametersError,
    MultipleInscriptionsError,
    OrdTransactionError,
    TransactionSigningError,
)
from ordtx.models import AddressType, InscriptionRef, SatoshiUnit, UnitInscription, UnspentOutput
from ordtx.partition import OrdUnspentOutput, split_into_units
from ordtx.send import (
    create_multi_send_coin,
    create_multi_send_ord,
    create_send_coin,
    create_send_ord,
)
from ordtx.signing import KeySigner
from ordtx.transaction import PartialTransaction
from ordtx.utils import amount_to_satoshis, satoshis_to_amount

__all__ = [
    "__version__",
    # Config
    "AddressVersions",
    "BITCOIN_CONFIG",
    "BITCOIN_MAINNET",
    "BITCOIN_REGTEST",
    "BITCOIN_TESTNET",
    "BlockchainConfig",
    "NetworkParams",
    "get_network",
    "resolve_config",
    # Errors
    "ChangeOutputNotSetError",
    "InscriptionNotFoundError",
    "InsufficientFundsError",
    "InsufficientFundsForFeeError",
    "MissingNetworkParametersError",
    "MultipleInscriptionsError",
    "OrdTransactionError",
    "TransactionSigningError",
    # Models
    "AddressType",
    "InscriptionRef",
    "SatoshiUnit",
    "UnitInscription",
    "UnspentOutput",
    # Partitioning
    "OrdUnspentOutput",
    "split_into_units",
    # Building
    "GeneratedTransaction",
    "KeySigner",
    "OrdTransaction",
    "PartialTransaction",
    "create_multi_send_coin",
    "create_multi_send_ord",
    "create_send_coin",
    "create_send_ord",
    # Utils
    "amount_to_satoshis",
    "satoshis_to_amount",
]
