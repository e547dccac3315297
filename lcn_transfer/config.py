"""Shared configuration loader for lcn-transfer."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping
from urllib.parse import urlparse

import yaml

from .models import MAINNET_NETWORKS, TESTNET_NETWORKS
from .retry import RetryPolicy


class ConfigurationError(RuntimeError):
    """Raised when configuration is invalid."""


DEFAULT_CONFIG_PATH = Path.home() / ".lcn-transfer.yaml"

API_VERSION = "v0"
BLOCKFROST_URLS = {
    "mainnet": "https://cardano-mainnet.blockfrost.io/api",
    "preprod": "https://cardano-preprod.blockfrost.io/api",
    "preview": "https://cardano-preview.blockfrost.io/api",
    "testnet": "https://cardano-preprod.blockfrost.io/api",
}
DEFAULT_NETWORK = "preprod"
DEFAULT_TIMEOUT = 30.0
DEFAULT_FEE_RESERVE = 500_000
DEFAULT_MIN_FEE_RESERVE = 200_000
DEFAULT_MIN_UTXO_RESERVE = 2_000_000
DEFAULT_MAX_INPUTS = 50
AUTO_FEE_RESERVE = "auto"


@dataclass
class RetryPolicies:
    """Retry budget per ledger call site."""

    connect: RetryPolicy = field(default_factory=lambda: RetryPolicy(3, 2.0))
    utxos: RetryPolicy = field(default_factory=lambda: RetryPolicy(3, 1.0))
    build: RetryPolicy = field(default_factory=lambda: RetryPolicy(2, 2.0))
    submit: RetryPolicy = field(default_factory=lambda: RetryPolicy(3, 2.0))
    parameters: RetryPolicy = field(default_factory=lambda: RetryPolicy(3, 1.0))


@dataclass
class LedgerConfig:
    """Ledger gateway connection details and transfer policy knobs.

    ``endpoint`` is a Blockfrost-compatible API root such as
    ``https://cardano-preprod.blockfrost.io/api``; when unset the public
    Blockfrost root for ``network`` is used. ``fee_reserve`` of ``None`` means the reserve is estimated from the
    gateway's protocol parameters for each transfer.
    """

    endpoint: str | None = None
    project_id: str | None = None
    network: str = DEFAULT_NETWORK
    timeout: float = DEFAULT_TIMEOUT
    fee_reserve: int | None = DEFAULT_FEE_RESERVE
    min_fee_reserve: int = DEFAULT_MIN_FEE_RESERVE
    min_utxo_reserve: int = DEFAULT_MIN_UTXO_RESERVE
    max_inputs: int = DEFAULT_MAX_INPUTS
    retry: RetryPolicies = field(default_factory=RetryPolicies)

    @property
    def api_root(self) -> str:
        """API root without the version segment, as pycardano expects it."""

        root = (self.endpoint or BLOCKFROST_URLS[self.network]).rstrip("/")
        suffix = f"/{API_VERSION}"
        return root[: -len(suffix)] if root.endswith(suffix) else root

    @property
    def base_url(self) -> str:
        return f"{self.api_root}/{API_VERSION}"


def _load_config_file(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigurationError(f"Config file not found: {path}")
        return {}

    try:
        loaded = yaml.safe_load(path.read_text()) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - delegated to PyYAML
        raise ConfigurationError(f"Invalid YAML in config file {path}: {exc}") from exc

    if not isinstance(loaded, dict):
        raise ConfigurationError(f"Expected {path} to contain a YAML object with a 'ledger' section")
    return loaded


def _section(file_config: Mapping[str, Any], name: str, path: Path) -> dict[str, Any]:
    section = file_config.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigurationError(f"Expected '{name}' to be a mapping in {path}")
    return section


def _coerce_int(raw: Any, *, source: str) -> int | None:
    if raw is None or raw == "":
        return None
    if isinstance(raw, bool):
        raise ConfigurationError(f"Invalid integer in {source}: {raw}")
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid integer in {source}: {raw}") from exc
    if value < 0:
        raise ConfigurationError(f"Negative value in {source}: {raw}")
    return value


def _coerce_float(raw: Any, *, source: str) -> float | None:
    if raw is None or raw == "":
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid number in {source}: {raw}") from exc
    if value < 0:
        raise ConfigurationError(f"Negative value in {source}: {raw}")
    return value


def _coerce_fee_reserve(raw: Any, *, source: str) -> int | str | None:
    if isinstance(raw, str) and raw.strip().lower() == AUTO_FEE_RESERVE:
        return AUTO_FEE_RESERVE
    return _coerce_int(raw, source=source)


def _first_value(*values: Any, default: Any = None) -> Any:
    for value in values:
        if value is not None:
            return value
    return default


def _validate_endpoint(raw: str | None) -> str | None:
    if raw is None:
        return None
    parsed = urlparse(raw)
    if parsed.scheme not in {"http", "https"} or not parsed.hostname:
        raise ConfigurationError(f"Invalid ledger endpoint URL: {raw}")
    return raw


def _load_retry_policies(section: Mapping[str, Any], path: Path) -> RetryPolicies:
    policies = RetryPolicies()
    for name, entry in section.items():
        if not hasattr(policies, name):
            raise ConfigurationError(f"Unknown retry call site '{name}' in {path}")
        if not isinstance(entry, dict):
            raise ConfigurationError(f"Expected retry.{name} to be a mapping in {path}")
        current: RetryPolicy = getattr(policies, name)
        attempts = _coerce_int(entry.get("attempts"), source=f"{path} retry.{name}.attempts")
        base_delay = _coerce_float(entry.get("base_delay"), source=f"{path} retry.{name}.base_delay")
        try:
            setattr(
                policies,
                name,
                RetryPolicy(
                    max_attempts=_first_value(attempts, current.max_attempts),
                    base_delay=_first_value(base_delay, current.base_delay),
                ),
            )
        except ValueError as exc:
            raise ConfigurationError(f"Invalid retry.{name} in {path}: {exc}") from exc
    return policies


def load_ledger_config(
    *,
    config_path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> LedgerConfig:
    """Load ledger configuration from environment variables and optional YAML.

    Precedence is ``overrides`` > environment > config file > defaults.
    """

    env_map = os.environ if env is None else env
    path = Path(config_path).expanduser() if config_path is not None else DEFAULT_CONFIG_PATH
    file_config = _load_config_file(path, required=config_path is not None)
    ledger_section = _section(file_config, "ledger", path)
    transfer_section = _section(file_config, "transfer", path)
    retry_section = _section(file_config, "retry", path)

    override_map = dict(overrides or {})

    env_endpoint = env_map.get("LCN_LEDGER_ENDPOINT") or env_map.get("BLOCKFROST_API_URL")
    env_project_id = env_map.get("LCN_LEDGER_PROJECT_ID") or env_map.get("BLOCKFROST_PROJECT_ID")
    env_network = env_map.get("LCN_NETWORK") or env_map.get("CARDANO_NETWORK")

    endpoint = _validate_endpoint(
        _first_value(
            override_map.get("endpoint"), env_endpoint, ledger_section.get("endpoint")
        )
    )
    project_id = _first_value(
        override_map.get("project_id"), env_project_id, ledger_section.get("project_id")
    )
    network = str(
        _first_value(override_map.get("network"), env_network, ledger_section.get("network"), DEFAULT_NETWORK)
    ).lower()
    if network not in MAINNET_NETWORKS | TESTNET_NETWORKS:
        raise ConfigurationError(f"Unknown network: {network}")

    timeout = _first_value(
        _coerce_float(override_map.get("timeout"), source="overrides"),
        _coerce_float(ledger_section.get("timeout"), source=f"{path} ledger.timeout"),
        DEFAULT_TIMEOUT,
    )

    fee_reserve = _first_value(
        _coerce_fee_reserve(override_map.get("fee_reserve"), source="overrides"),
        _coerce_fee_reserve(env_map.get("LCN_FEE_RESERVE"), source="environment"),
        _coerce_fee_reserve(transfer_section.get("fee_reserve"), source=f"{path} transfer.fee_reserve"),
        DEFAULT_FEE_RESERVE,
    )
    min_fee_reserve = _first_value(
        _coerce_int(override_map.get("min_fee_reserve"), source="overrides"),
        _coerce_int(transfer_section.get("min_fee_reserve"), source=f"{path} transfer.min_fee_reserve"),
        DEFAULT_MIN_FEE_RESERVE,
    )
    min_utxo_reserve = _first_value(
        _coerce_int(override_map.get("min_utxo_reserve"), source="overrides"),
        _coerce_int(env_map.get("LCN_MIN_UTXO_RESERVE"), source="environment"),
        _coerce_int(transfer_section.get("min_utxo_reserve"), source=f"{path} transfer.min_utxo_reserve"),
        DEFAULT_MIN_UTXO_RESERVE,
    )
    max_inputs = _first_value(
        _coerce_int(override_map.get("max_inputs"), source="overrides"),
        _coerce_int(transfer_section.get("max_inputs"), source=f"{path} transfer.max_inputs"),
        DEFAULT_MAX_INPUTS,
    )
    if max_inputs < 1:
        raise ConfigurationError("max_inputs must be at least 1")

    return LedgerConfig(
        endpoint=endpoint,
        project_id=project_id,
        network=network,
        timeout=timeout,
        fee_reserve=None if fee_reserve == AUTO_FEE_RESERVE else fee_reserve,
        min_fee_reserve=min_fee_reserve,
        min_utxo_reserve=min_utxo_reserve,
        max_inputs=max_inputs,
        retry=_load_retry_policies(retry_section, path),
    )
