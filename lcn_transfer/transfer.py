"""End-to-end transfer orchestration.

A transfer walks a fixed sequence of states::

    INIT -> CONNECTED -> KEY_READY -> FUNDS_CHECKED -> BUILT -> SIGNED -> SUBMITTED

and any state may fall into ``FAILED``. Every step touching the ledger
gateway runs under its own retry policy; local validation happens before
the gateway is contacted at all. Whatever goes wrong, the caller receives a
single :class:`TransferResult`.

Submission is not idempotent: running the same request twice produces two
transactions. Callers that need exactly-once semantics must deduplicate on
their side.
"""

from __future__ import annotations

import logging
import traceback
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Sequence, Union

from .config import LedgerConfig
from .credentials import CredentialProvider
from .errors import ErrorKind, LedgerRejectionError, TransferError
from .funds import estimate_fee, select_utxos, validate_funds
from .keys import SigningIdentity, normalize_signing_key
from .ledger import LedgerClient, connect_ledger, format_ledger_hint
from .models import (
    NATIVE_UNIT,
    UTXO,
    TransferRequest,
    TransferResult,
    TxOutput,
    parse_transfer_request,
    validate_address,
)
from .retry import RetryExecutor, RetryPolicy

logger = logging.getLogger(__name__)

Connector = Callable[[LedgerConfig], LedgerClient]


class TransferState(Enum):
    INIT = "init"
    CONNECTED = "connected"
    KEY_READY = "key_ready"
    FUNDS_CHECKED = "funds_checked"
    BUILT = "built"
    SIGNED = "signed"
    SUBMITTED = "submitted"
    FAILED = "failed"


@dataclass
class TransferRun:
    """Trace of a single transfer invocation."""

    states: List[TransferState] = field(default_factory=lambda: [TransferState.INIT])
    result: TransferResult | None = None

    @property
    def state(self) -> TransferState:
        return self.states[-1]

    def advance(self, state: TransferState) -> None:
        logger.debug("Transfer state %s -> %s", self.state.value, state.value)
        self.states.append(state)


class TransferOrchestrator:
    """Compose key handling, funds checks and ledger calls into one transfer.

    The orchestrator keeps no per-transfer state: each call connects a fresh
    ledger client, fetches fresh UTXOs and closes the client when done.
    """

    def __init__(
        self,
        config: LedgerConfig,
        *,
        connect: Connector = connect_ledger,
        credentials: CredentialProvider | None = None,
        executor: RetryExecutor | None = None,
    ) -> None:
        self.config = config
        self._connect = connect
        self.credentials = credentials
        self.executor = executor or RetryExecutor()

    def transfer(self, request: Union[TransferRequest, Mapping[str, Any]]) -> TransferResult:
        """Run a transfer and return its result; never raises."""

        run = self.run(request)
        if run.result is None:
            raise RuntimeError("Transfer run finished without a result")
        return run.result

    def run(self, request: Union[TransferRequest, Mapping[str, Any]]) -> TransferRun:
        run = TransferRun()
        client: LedgerClient | None = None
        identity: SigningIdentity | None = None
        try:
            if not isinstance(request, TransferRequest):
                request = parse_transfer_request(request, self.credentials)
            validate_address(request.to_address, self.config.network)

            client = self._call(
                lambda: self._connect(self.config), self.config.retry.connect, "connect to ledger gateway"
            )
            run.advance(TransferState.CONNECTED)

            canonical_key = normalize_signing_key(request.private_key)
            identity = SigningIdentity.from_key(canonical_key, self.config.network)
            run.advance(TransferState.KEY_READY)
            logger.info(
                "Transfer of %d %s from %s to %s",
                request.amount,
                request.asset.unit,
                identity.address,
                request.to_address,
            )

            sender = identity.address
            utxos = self._call(lambda: client.get_utxos(sender), self.config.retry.utxos, "fetch UTXOs")
            fee_reserve = self._fee_reserve(client, utxos)
            native_reserve = self._native_reserve(request)
            validate_funds(
                utxos,
                request.amount,
                request.asset,
                fee_reserve=fee_reserve,
                native_reserve=native_reserve,
            )
            outputs = self._outputs(request, native_reserve)
            inputs = select_utxos(utxos, outputs, fee_reserve=fee_reserve, max_inputs=self.config.max_inputs)
            run.advance(TransferState.FUNDS_CHECKED)

            unsigned = self._call(
                lambda: client.build_transaction(inputs, outputs, sender),
                self.config.retry.build,
                "build transaction",
            )
            run.advance(TransferState.BUILT)

            signed = identity.sign_transaction(unsigned)
            run.advance(TransferState.SIGNED)

            tx_hash = self._call(
                lambda: client.submit(signed), self.config.retry.submit, "submit transaction"
            )
            run.advance(TransferState.SUBMITTED)
            run.result = TransferResult.ok(tx_hash)
        except TransferError as exc:
            if isinstance(exc, LedgerRejectionError):
                hint = format_ledger_hint(exc)
                if hint:
                    logger.warning("Hint: %s", hint)
            logger.error("Transfer failed in state %s: %s: %s", run.state.value, exc.kind.value, exc.message)
            run.advance(TransferState.FAILED)
            run.result = TransferResult.error(exc.kind, exc.message, traceback.format_exc())
        except Exception as exc:
            logger.exception("Unexpected failure in state %s", run.state.value)
            run.advance(TransferState.FAILED)
            run.result = TransferResult.error(
                ErrorKind.UNEXPECTED, str(exc) or exc.__class__.__name__, traceback.format_exc()
            )
        finally:
            if identity is not None:
                identity.forget()
            if client is not None:
                try:
                    client.close()
                except Exception:
                    logger.warning("Failed to close ledger client", exc_info=True)
        return run

    def _call(self, operation: Callable[[], Any], policy: RetryPolicy, description: str) -> Any:
        return self.executor.execute(operation, policy, description=description)

    def _fee_reserve(self, client: LedgerClient, utxos: Sequence[UTXO]) -> int:
        if self.config.fee_reserve is not None:
            return self.config.fee_reserve
        params = self._call(
            client.get_protocol_parameters, self.config.retry.parameters, "fetch protocol parameters"
        )
        estimated = estimate_fee(min(len(utxos), self.config.max_inputs) or 1, 2, params)
        reserve = max(estimated, self.config.min_fee_reserve)
        logger.info("Estimated fee reserve %d lovelace", reserve)
        return reserve

    def _native_reserve(self, request: TransferRequest) -> int:
        if request.asset.is_native:
            return 0
        if request.native_reserve is not None:
            return request.native_reserve
        return self.config.min_utxo_reserve

    @staticmethod
    def _outputs(request: TransferRequest, native_reserve: int) -> List[TxOutput]:
        if request.asset.is_native:
            return [TxOutput(address=request.to_address, lovelace=request.amount)]
        return [
            TxOutput(
                address=request.to_address,
                lovelace=native_reserve,
                assets={request.asset.unit: request.amount},
            )
        ]


def query_balance(
    config: LedgerConfig,
    address: str,
    *,
    connect: Connector = connect_ledger,
    executor: RetryExecutor | None = None,
) -> Dict[str, Any]:
    """Sum the current UTXO set of *address* per unit."""

    validate_address(address, config.network)
    executor = executor or RetryExecutor()
    client = executor.execute(
        lambda: connect(config), config.retry.connect, description="connect to ledger gateway"
    )
    try:
        utxos = executor.execute(
            lambda: client.get_utxos(address), config.retry.utxos, description="fetch UTXOs"
        )
    finally:
        client.close()

    assets: Dict[str, int] = {}
    for utxo in utxos:
        for unit, quantity in utxo.assets.items():
            assets[unit] = assets.get(unit, 0) + quantity
    return {
        "address": address,
        NATIVE_UNIT: sum(utxo.lovelace for utxo in utxos),
        "assets": assets,
        "utxos": len(utxos),
    }
