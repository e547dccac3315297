"""Client for a Blockfrost-compatible ledger API.

Reads go straight to the Blockfrost routes (``/health``,
``/addresses/{address}/utxos``, ``/epochs/latest/parameters``) over a
``requests`` session. Transactions are balanced locally by pycardano's
``TransactionBuilder`` on top of a chain context, and the signed transaction
is posted to ``/tx/submit`` as raw CBOR. No ledger rules are implemented
here; the client classifies failures so callers know what may be retried:

* connection failures, timeouts, HTTP 408/425/429/5xx and malformed bodies
  raise :class:`LedgerTransportError` (transient);
* any other HTTP error raises :class:`LedgerRejectionError` carrying the
  gateway's message verbatim.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, TypeVar

import requests
from blockfrost import ApiError
from pycardano import Address, BlockFrostChainContext, ChainContext, TransactionBuilder
from pycardano.exception import PyCardanoException, UTxOSelectionException
from requests import RequestException, Response

from .config import LedgerConfig
from .errors import InsufficientFundsError, LedgerRejectionError, LedgerTransportError
from .models import UTXO, SignedTransaction, TxOutput, UnsignedTransaction, ledger_network

logger = logging.getLogger(__name__)

T = TypeVar("T")

UTXO_PAGE_SIZE = 100
TRANSIENT_STATUS_CODES = frozenset({408, 425, 429, 500, 502, 503, 504})
CBOR_CONTENT_TYPE = "application/cbor"

ChainContextFactory = Callable[[LedgerConfig], ChainContext]


class LedgerClient(Protocol):
    """Operations the transfer pipeline needs from a ledger backend."""

    def health(self) -> None: ...

    def get_utxos(self, address: str) -> List[UTXO]: ...

    def get_protocol_parameters(self) -> Dict[str, Any]: ...

    def build_transaction(
        self, inputs: Iterable[UTXO], outputs: Iterable[TxOutput], change_address: str
    ) -> UnsignedTransaction: ...

    def submit(self, signed: SignedTransaction) -> str: ...

    def close(self) -> None: ...


def format_ledger_hint(error: LedgerRejectionError | str | None) -> str | None:
    """Return a remediation hint for well-known ledger rejection messages."""

    if error is None:
        return None
    message = error.message if isinstance(error, LedgerRejectionError) else str(error)

    if "BadInputsUTxO" in message:
        return (
            "One or more inputs were already spent. Wait for pending transactions to confirm; "
            "UTXOs are re-fetched on every transfer."
        )
    if "OutsideValidityIntervalUTxO" in message:
        return "The transaction validity window expired before submission; submit a new transfer."
    if "FeeTooSmallUTxO" in message:
        return "The fee was below the ledger minimum; the protocol parameters may have just changed."
    if "ValueNotConservedUTxO" in message:
        return "Inputs and outputs do not balance; check that the inputs were fetched fresh."
    if "OutputTooSmallUTxO" in message or "BabbageOutputTooSmallUTxO" in message:
        return "An output carries less than the minimum UTXO value; increase reserveLovelace."
    if "project_id" in message.lower() or "forbidden" in message.lower():
        return "The gateway rejected the credentials; check LCN_LEDGER_PROJECT_ID."
    return None


def blockfrost_chain_context(config: LedgerConfig) -> ChainContext:
    """Chain context supplying protocol parameters to the transaction builder."""

    return BlockFrostChainContext(
        project_id=config.project_id or "",
        network=ledger_network(config.network),
        base_url=config.api_root,
    )


class BlockfrostLedgerClient:
    """Typed client for a Blockfrost-compatible ledger API.

    Each instance owns its own ``requests.Session`` and, once a transaction
    is built, its own chain context. The transfer pipeline creates one
    client per invocation and closes it afterwards so no connection pool or
    cached protocol state outlives a transfer.
    """

    def __init__(
        self,
        config: LedgerConfig,
        session: requests.Session | None = None,
        chain_context_factory: ChainContextFactory = blockfrost_chain_context,
    ) -> None:
        self.config = config
        self._session = session or requests.Session()
        self._base_url = config.base_url
        self._chain_context_factory = chain_context_factory
        self._chain_context: ChainContext | None = None
        if config.project_id:
            self._session.headers["project_id"] = config.project_id

    def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json_body: Any = None,
        data: bytes | None = None,
        headers: Optional[Dict[str, str]] = None,
        allow_not_found: bool = False,
    ) -> Any:
        """Perform an API request and return the decoded JSON body."""

        url = f"{self._base_url}{path}"
        logger.debug("Ledger %s %s params=%s", method, path, params)
        try:
            response = self._session.request(
                method,
                url,
                params=params,
                json=json_body,
                data=data,
                headers=headers,
                timeout=self.config.timeout,
            )
        except RequestException as exc:
            logger.error(
                "Ledger connection failed: %s",
                exc,
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )
            raise LedgerTransportError(
                f"Ledger API connection failed ({exc.__class__.__name__}). Ensure {self._base_url} "
                "is reachable and LCN_LEDGER_ENDPOINT points to it."
            ) from exc

        if allow_not_found and response.status_code == 404:
            return None
        self._raise_for_status(response)
        try:
            return response.json()
        except ValueError as exc:
            logger.debug("Ledger JSON parse error: %s", response.text, exc_info=True)
            raise LedgerTransportError("Ledger API returned malformed JSON") from exc

    def _raise_for_status(self, response: Response) -> None:
        if response.ok:
            return
        try:
            err_body: Any = response.json()
        except ValueError:
            err_body = response.text

        message = err_body
        if isinstance(err_body, dict):
            message = err_body.get("message") or err_body.get("error") or err_body
        logger.error("Ledger HTTP error %s from %s", response.status_code, response.url)
        logger.debug("Ledger error body: %s", err_body)

        if response.status_code in TRANSIENT_STATUS_CODES:
            raise LedgerTransportError(
                f"Ledger API returned HTTP {response.status_code}: {message}",
                status_code=response.status_code,
            )
        raise LedgerRejectionError(
            str(message), status_code=response.status_code, body=err_body
        )

    def _chain_call(self, operation: Callable[[], T], description: str) -> T:
        """Run a chain context call, classifying failures like HTTP ones."""

        try:
            return operation()
        except ApiError as exc:
            status_code = getattr(exc, "status_code", None)
            message = getattr(exc, "message", None) or str(exc)
            logger.error("Ledger API error %s while trying to %s", status_code, description)
            if status_code in TRANSIENT_STATUS_CODES:
                raise LedgerTransportError(
                    f"Ledger API returned HTTP {status_code}: {message}", status_code=status_code
                ) from exc
            raise LedgerRejectionError(str(message), status_code=status_code) from exc
        except RequestException as exc:
            raise LedgerTransportError(
                f"Ledger API connection failed while trying to {description} ({exc.__class__.__name__})"
            ) from exc

    @property
    def chain_context(self) -> ChainContext:
        if self._chain_context is None:
            self._chain_context = self._chain_call(
                lambda: self._chain_context_factory(self.config), "open chain context"
            )
        return self._chain_context

    # API routes -----------------------------------------------------------

    def health(self) -> None:
        payload = self.request("GET", "/health")
        if isinstance(payload, dict) and payload.get("is_healthy") is False:
            raise LedgerTransportError("Ledger API reports it is not healthy")

    def get_utxos(self, address: str) -> List[UTXO]:
        """Fetch every UTXO held by *address*; an unknown address has none."""

        utxos: List[UTXO] = []
        page = 1
        while True:
            payload = self.request(
                "GET",
                f"/addresses/{address}/utxos",
                params={"page": page, "count": UTXO_PAGE_SIZE},
                allow_not_found=True,
            )
            if payload is None:
                logger.debug("Address %s has no transactions (unfunded)", address)
                break
            if not isinstance(payload, list):
                raise LedgerTransportError("Ledger API returned a malformed UTXO list")
            try:
                utxos.extend(UTXO.from_gateway(entry) for entry in payload)
            except (AttributeError, KeyError, TypeError, ValueError) as exc:
                raise LedgerTransportError(f"Ledger API returned a malformed UTXO: {exc!r}") from exc
            if len(payload) < UTXO_PAGE_SIZE:
                break
            page += 1
        logger.info("Fetched %d UTXOs for %s", len(utxos), address)
        return utxos

    def get_protocol_parameters(self) -> Dict[str, Any]:
        payload = self.request("GET", "/epochs/latest/parameters")
        if not isinstance(payload, dict):
            raise LedgerTransportError("Ledger API returned malformed protocol parameters")
        return payload

    def build_transaction(
        self, inputs: Iterable[UTXO], outputs: Iterable[TxOutput], change_address: str
    ) -> UnsignedTransaction:
        """Balance *outputs* against exactly *inputs*, returning change to *change_address*."""

        input_list = list(inputs)
        output_list = list(outputs)
        logger.info("Building transaction with %d inputs and %d outputs", len(input_list), len(output_list))

        builder = TransactionBuilder(self.chain_context)
        for utxo in input_list:
            builder.add_input(utxo.to_pycardano(change_address))
        for output in output_list:
            builder.add_output(output.to_pycardano())
        try:
            body = self._chain_call(
                lambda: builder.build(change_address=Address.from_primitive(change_address)),
                "build transaction",
            )
        except UTxOSelectionException as exc:
            raise InsufficientFundsError(
                sum(output.lovelace for output in output_list),
                sum(utxo.lovelace for utxo in input_list),
                detail=f"transaction could not be balanced: {exc}",
            ) from exc
        except PyCardanoException as exc:
            raise LedgerRejectionError(f"Transaction could not be built: {exc}") from exc

        unsigned = UnsignedTransaction(body)
        logger.info("Built transaction %s with fee %d", unsigned.tx_hash, unsigned.fee)
        return unsigned

    def submit(self, signed: SignedTransaction) -> str:
        payload = self.request(
            "POST",
            "/tx/submit",
            data=signed.to_cbor(),
            headers={"Content-Type": CBOR_CONTENT_TYPE},
        )
        if not isinstance(payload, str) or not payload:
            raise LedgerTransportError("Ledger API returned no transaction hash")
        if payload != signed.tx_hash:
            logger.warning(
                "Ledger API reported tx hash %s but the signed body hashes to %s", payload, signed.tx_hash
            )
        logger.info("Submitted transaction %s", payload)
        return payload

    def close(self) -> None:
        self._session.close()
        self._chain_context = None


def connect_ledger(config: LedgerConfig) -> BlockfrostLedgerClient:
    """Open a fresh ledger client and confirm the API answers."""

    client = BlockfrostLedgerClient(config)
    try:
        client.health()
    except Exception:
        client.close()
        raise
    return client
