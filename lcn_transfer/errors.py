"""Error taxonomy for the transfer pipeline.

Every failure that crosses the process boundary is one of the
:class:`ErrorKind` variants below. Local validation errors are raised before
any network call; transport errors are marked transient so the retry executor
can tell them apart from deterministic ledger rejections.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Closed set of result error kinds reported to callers."""

    MISSING_FIELD = "MissingField"
    INVALID_FIELD = "InvalidField"
    INVALID_KEY = "InvalidKey"
    EMPTY_WALLET = "EmptyWallet"
    INSUFFICIENT_FUNDS = "InsufficientFunds"
    NETWORK_FAILURE = "NetworkFailure"
    LEDGER_REJECTION = "LedgerRejection"
    UNEXPECTED = "Unexpected"


class TransferError(RuntimeError):
    """Base class for failures with a well-known :class:`ErrorKind`."""

    kind: ErrorKind = ErrorKind.UNEXPECTED

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class TransientError(TransferError):
    """Marker base for failures that may succeed when retried."""


class MissingFieldError(TransferError):
    kind = ErrorKind.MISSING_FIELD

    def __init__(self, field: str) -> None:
        super().__init__(f"Missing required field: {field}")
        self.field = field


class InvalidFieldError(TransferError):
    kind = ErrorKind.INVALID_FIELD

    def __init__(self, field: str, reason: str) -> None:
        super().__init__(f"Invalid {field}: {reason}")
        self.field = field
        self.reason = reason


class InvalidKeyError(TransferError):
    """Raised when signing key material matches no recognized encoding."""

    kind = ErrorKind.INVALID_KEY


class EmptyWalletError(TransferError):
    """Raised when the wallet returned no UTXOs at all.

    This is kept apart from :class:`InsufficientFundsError` because an empty
    set frequently means earlier spends are still pending rather than the
    wallet being unfunded.
    """

    kind = ErrorKind.EMPTY_WALLET

    def __init__(self, address: str | None = None) -> None:
        super().__init__(
            "No UTXOs available in wallet. The wallet may be unfunded or previous "
            "transactions are still pending."
        )
        self.address = address


class InsufficientFundsError(TransferError):
    kind = ErrorKind.INSUFFICIENT_FUNDS

    def __init__(self, required: int, available: int, unit: str = "lovelace", detail: str | None = None) -> None:
        message = f"Insufficient funds. Required: {required}, Available: {available}"
        if unit != "lovelace":
            message += f" (unit {unit})"
        if detail:
            message += f"; {detail}"
        super().__init__(message)
        self.required = required
        self.available = available
        self.unit = unit


class LedgerTransportError(TransientError):
    """Raised when the ledger gateway is unreachable or answers garbage."""

    kind = ErrorKind.NETWORK_FAILURE

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class LedgerRejectionError(TransferError):
    """Raised when the ledger gateway deterministically refuses a request."""

    kind = ErrorKind.LEDGER_REJECTION

    def __init__(self, message: str, status_code: int | None = None, body: object = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body
