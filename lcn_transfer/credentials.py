"""Credential providers supplying signing keys to the transfer pipeline.

The source of the key is an explicit object handed to the orchestrator, so
a ``wallet.json`` file and an in-memory key are interchangeable and tests can
inject a key without touching the filesystem.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from .config import ConfigurationError


class CredentialProvider(Protocol):
    def signing_key(self) -> str | None:
        """Return raw signing key material, or ``None`` when unavailable."""


@dataclass
class StaticCredentialProvider:
    """Provider wrapping a key already held in memory."""

    key: str | None = field(default=None, repr=False)

    def signing_key(self) -> str | None:
        return self.key


@dataclass
class WalletFileCredentialProvider:
    """Provider reading ``{"privateKey": ..., "address": ...}`` from a JSON file.

    The file is read on every call and never written.
    """

    path: Path

    def signing_key(self) -> str | None:
        path = Path(self.path).expanduser()
        if not path.exists():
            raise ConfigurationError(f"Wallet file not found: {path}")
        try:
            data = json.loads(path.read_text())
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"Invalid JSON in wallet file {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigurationError(f"Expected {path} to contain a JSON object")
        key = data.get("privateKey")
        if key is not None and not isinstance(key, str):
            raise ConfigurationError(f"'privateKey' in {path} must be a string")
        return key
