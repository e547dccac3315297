"""Domain models for asset transfers.

These structures describe requests arriving over the process boundary, the
wallet's spendable inputs as reported by the ledger gateway, the transaction
at each stage of construction, and the single result handed back to the
caller. Ledger-level types (addresses, values, transaction bodies) are
pycardano objects; the dataclasses here only carry what the pipeline needs.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional

from pycardano import (
    Address,
    Asset,
    AssetName,
    MultiAsset,
    Network,
    ScriptHash,
    Transaction,
    TransactionBody,
    TransactionInput,
    TransactionOutput,
    UTxO,
    Value,
)
from pycardano.exception import PyCardanoException

from .errors import ErrorKind, InvalidFieldError, MissingFieldError

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .credentials import CredentialProvider

NATIVE_UNIT = "lovelace"
POLICY_ID_HEX_LENGTH = 56
MAX_ASSET_NAME_HEX_LENGTH = 64
COMPACT_JSON_SEPARATORS = (",", ":")

MAINNET_NETWORKS = frozenset({"mainnet"})
TESTNET_NETWORKS = frozenset({"testnet", "preprod", "preview"})

_HEX_RE = re.compile(r"^[0-9a-fA-F]*$")
_DIGITS_RE = re.compile(r"[0-9]+")


def is_hex(value: str) -> bool:
    return bool(_HEX_RE.match(value))


def is_mainnet(network: str) -> bool:
    return network.lower() in MAINNET_NETWORKS


def ledger_network(network: str) -> Network:
    """Map a configured network name onto the address network tag."""

    return Network.MAINNET if is_mainnet(network) else Network.TESTNET


def validate_address(address: str, network: str) -> str:
    """Return *address* when it decodes to a payment address on *network*.

    The bech32 checksum and header are checked by pycardano; an address of
    the other network tag is refused so testnet funds never target mainnet
    and vice versa.
    """

    if not isinstance(address, str) or not address.strip():
        raise InvalidFieldError("toAddress", "address must be a non-empty string")
    address = address.strip()
    try:
        parsed = Address.from_primitive(address)
    except (PyCardanoException, TypeError, ValueError, IndexError) as exc:
        raise InvalidFieldError("toAddress", f"not a valid address: {address!r}") from exc
    if parsed.network != ledger_network(network):
        raise InvalidFieldError(
            "toAddress", f"address is for {parsed.network.name.lower()}, not network {network}"
        )
    return address


def to_value(lovelace: int, assets: Mapping[str, int]) -> Value:
    """Build a ledger value from lovelace and ``policy_id + asset_name`` units."""

    grouped: Dict[ScriptHash, Dict[AssetName, int]] = {}
    for unit, quantity in sorted(assets.items()):
        policy_id = ScriptHash(bytes.fromhex(unit[:POLICY_ID_HEX_LENGTH]))
        asset_name = AssetName(bytes.fromhex(unit[POLICY_ID_HEX_LENGTH:]))
        grouped.setdefault(policy_id, {})[asset_name] = int(quantity)
    multi_asset = MultiAsset({policy_id: Asset(names) for policy_id, names in grouped.items()})
    return Value(coin=int(lovelace), multi_asset=multi_asset)


@dataclass(frozen=True)
class AssetReference:
    """Either the native unit or a ``(policy_id, asset_name)`` pair."""

    policy_id: str | None = None
    asset_name: str = ""

    @classmethod
    def native(cls) -> "AssetReference":
        return cls()

    @classmethod
    def parse(cls, asset_id: str | None) -> "AssetReference":
        """Parse an ``assetId`` as sent by callers.

        ``None``, an empty string and ``"lovelace"`` name the native unit.
        Otherwise the value is a 56 character policy id immediately followed by
        the hex asset name, optionally separated by a dot.
        """

        if asset_id is None:
            return cls.native()
        if not isinstance(asset_id, str):
            raise InvalidFieldError("assetId", "asset id must be a string")
        raw = asset_id.strip()
        if not raw or raw == NATIVE_UNIT:
            return cls.native()
        raw = raw.replace(".", "", 1) if raw.find(".") == POLICY_ID_HEX_LENGTH else raw
        if not is_hex(raw) or len(raw) < POLICY_ID_HEX_LENGTH:
            raise InvalidFieldError("assetId", "expected a hex policy id followed by a hex asset name")
        asset_name = raw[POLICY_ID_HEX_LENGTH:]
        if len(asset_name) > MAX_ASSET_NAME_HEX_LENGTH or len(asset_name) % 2:
            raise InvalidFieldError("assetId", "asset name must be at most 32 bytes of hex")
        return cls(policy_id=raw[:POLICY_ID_HEX_LENGTH].lower(), asset_name=asset_name.lower())

    @property
    def is_native(self) -> bool:
        return self.policy_id is None

    @property
    def unit(self) -> str:
        if self.policy_id is None:
            return NATIVE_UNIT
        return f"{self.policy_id}{self.asset_name}"


@dataclass(frozen=True)
class UTXO:
    tx_hash: str
    output_index: int
    lovelace: int
    address: str | None = None
    assets: Mapping[str, int] = field(default_factory=dict)

    @classmethod
    def from_gateway(cls, payload: Mapping[str, Any]) -> "UTXO":
        """Build a UTXO from a ``/addresses/{address}/utxos`` entry."""

        lovelace = 0
        assets: Dict[str, int] = {}
        for entry in payload.get("amount", []):
            unit = entry["unit"]
            quantity = int(entry["quantity"])
            if unit == NATIVE_UNIT:
                lovelace += quantity
            else:
                assets[unit] = assets.get(unit, 0) + quantity
        return cls(
            tx_hash=payload["tx_hash"],
            output_index=int(payload.get("output_index", payload.get("tx_index", 0))),
            lovelace=lovelace,
            address=payload.get("address"),
            assets=assets,
        )

    def quantity(self, unit: str) -> int:
        if unit == NATIVE_UNIT:
            return self.lovelace
        return int(self.assets.get(unit, 0))

    def to_pycardano(self, owner: str) -> UTxO:
        """Return the spendable input; *owner* stands in for a missing address."""

        tx_in = TransactionInput.from_primitive([self.tx_hash, self.output_index])
        tx_out = TransactionOutput(
            Address.from_primitive(self.address or owner), to_value(self.lovelace, self.assets)
        )
        return UTxO(tx_in, tx_out)


def total_quantity(utxos: List[UTXO], unit: str) -> int:
    """Sum *unit* across *utxos*."""

    return sum(utxo.quantity(unit) for utxo in utxos)


@dataclass
class TxOutput:
    address: str
    lovelace: int
    assets: Dict[str, int] = field(default_factory=dict)

    def to_pycardano(self) -> TransactionOutput:
        return TransactionOutput(Address.from_primitive(self.address), to_value(self.lovelace, self.assets))


@dataclass(frozen=True)
class UnsignedTransaction:
    """Balanced transaction body awaiting a witness."""

    body: TransactionBody

    @property
    def fee(self) -> int:
        return self.body.fee

    @property
    def tx_hash(self) -> str:
        return self.body.id.payload.hex()


@dataclass(frozen=True)
class SignedTransaction:
    transaction: Transaction

    @property
    def tx_hash(self) -> str:
        return self.transaction.id.payload.hex()

    @property
    def witnesses(self) -> list:
        return list(self.transaction.transaction_witness_set.vkey_witnesses or [])

    def to_cbor(self) -> bytes:
        """Serialized transaction as submitted to the ledger."""

        return self.transaction.to_cbor()


@dataclass(frozen=True)
class TransferRequest:
    private_key: str = field(repr=False)
    to_address: str
    amount: int
    asset: AssetReference = field(default_factory=AssetReference.native)
    native_reserve: int | None = None


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _parse_quantity(value: Any, name: str, *, allow_zero: bool = False) -> int:
    if isinstance(value, bool):
        raise InvalidFieldError(name, "expected an integer amount")
    if isinstance(value, int):
        parsed = value
    elif isinstance(value, str) and _DIGITS_RE.fullmatch(value.strip()):
        parsed = int(value.strip())
    else:
        raise InvalidFieldError(name, f"expected an integer amount, got {value!r}")
    if parsed < 0 or (parsed == 0 and not allow_zero):
        raise InvalidFieldError(name, "amount must be positive")
    return parsed


def parse_transfer_request(
    payload: Mapping[str, Any],
    credentials: Optional["CredentialProvider"] = None,
) -> TransferRequest:
    """Validate the wire object read from stdin and build a :class:`TransferRequest`.

    ``lovelace`` is accepted in place of ``amount`` for native transfers, the
    shape older callers send. When ``privateKey`` is absent the optional
    credential provider is asked for the key instead.
    """

    if not isinstance(payload, Mapping):
        raise InvalidFieldError("request", "expected a JSON object")

    private_key = payload.get("privateKey")
    if _is_blank(private_key) and credentials is not None:
        private_key = credentials.signing_key()
    if _is_blank(private_key):
        raise MissingFieldError("privateKey")
    if not isinstance(private_key, str):
        raise InvalidFieldError("privateKey", "expected a string")

    to_address = payload.get("toAddress")
    if _is_blank(to_address):
        raise MissingFieldError("toAddress")
    if not isinstance(to_address, str):
        raise InvalidFieldError("toAddress", "expected a string")

    raw_amount = payload.get("amount")
    if _is_blank(raw_amount):
        raw_amount = payload.get("lovelace")
    if _is_blank(raw_amount):
        raise MissingFieldError("amount")

    asset = AssetReference.parse(payload.get("assetId"))
    reserve = payload.get("reserveLovelace")
    native_reserve = None if _is_blank(reserve) else _parse_quantity(reserve, "reserveLovelace", allow_zero=True)

    return TransferRequest(
        private_key=private_key,
        to_address=to_address.strip(),
        amount=_parse_quantity(raw_amount, "amount"),
        asset=asset,
        native_reserve=native_reserve,
    )


@dataclass(frozen=True)
class TransferResult:
    """Tagged outcome of a transfer: ``ok`` with a tx hash or ``error``."""

    status: str
    tx_hash: str | None = None
    kind: ErrorKind | None = None
    message: str | None = None
    stack: str | None = None

    @classmethod
    def ok(cls, tx_hash: str) -> "TransferResult":
        return cls(status="ok", tx_hash=tx_hash)

    @classmethod
    def error(cls, kind: ErrorKind, message: str, stack: str | None = None) -> "TransferResult":
        return cls(status="error", kind=kind, message=message, stack=stack or "No stack trace")

    @property
    def is_ok(self) -> bool:
        return self.status == "ok"

    @property
    def exit_code(self) -> int:
        return 0 if self.is_ok else 1

    def to_dict(self) -> Dict[str, Any]:
        if self.is_ok:
            return {"status": "ok", "txHash": self.tx_hash}
        kind = self.kind or ErrorKind.UNEXPECTED
        return {
            "status": "error",
            "kind": kind.value,
            "message": self.message,
            "stack": self.stack,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=COMPACT_JSON_SEPARATORS)
