"""Asset-transfer submission pipeline for UTXO ledgers."""

from .config import ConfigurationError, LedgerConfig, load_ledger_config
from .errors import (
    EmptyWalletError,
    ErrorKind,
    InsufficientFundsError,
    InvalidFieldError,
    InvalidKeyError,
    LedgerRejectionError,
    LedgerTransportError,
    MissingFieldError,
    TransferError,
    TransientError,
)
from .funds import FundsCheck, estimate_fee, select_utxos, validate_funds
from .keys import SigningIdentity, normalize_signing_key, seed_from_key, seed_to_bech32
from .models import AssetReference, TransferRequest, TransferResult, UTXO, parse_transfer_request
from .retry import RetryExecutor, RetryPolicy, retry_call
from .transfer import TransferOrchestrator, TransferState

__all__ = [
    "AssetReference",
    "ConfigurationError",
    "EmptyWalletError",
    "ErrorKind",
    "FundsCheck",
    "InsufficientFundsError",
    "InvalidFieldError",
    "InvalidKeyError",
    "LedgerConfig",
    "LedgerRejectionError",
    "LedgerTransportError",
    "MissingFieldError",
    "RetryExecutor",
    "RetryPolicy",
    "SigningIdentity",
    "TransferError",
    "TransferOrchestrator",
    "TransferRequest",
    "TransferResult",
    "TransferState",
    "TransientError",
    "UTXO",
    "estimate_fee",
    "load_ledger_config",
    "normalize_signing_key",
    "parse_transfer_request",
    "retry_call",
    "seed_from_key",
    "seed_to_bech32",
    "select_utxos",
    "validate_funds",
]
