"""Command-line entry point for lcn-transfer.

``lcn-transfer transfer`` is the process boundary used by the backend: it
reads one JSON object from stdin and writes exactly one JSON line, to stdout
on success and to stderr on failure, exiting non-zero on failure. Logging
never goes to stdout; by default it is discarded so stderr carries only the
result line, and ``--log-file`` keeps a record.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import traceback
from pathlib import Path
from typing import Any, Mapping, Sequence

from .config import ConfigurationError, LedgerConfig, load_ledger_config
from .credentials import CredentialProvider, WalletFileCredentialProvider
from .errors import ErrorKind, InvalidFieldError, MissingFieldError, TransferError
from .keys import SigningIdentity, normalize_signing_key
from .models import COMPACT_JSON_SEPARATORS, TransferResult
from .transfer import TransferOrchestrator, query_balance

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lcn-transfer", description="Submit asset transfers to the ledger gateway"
    )
    parser.add_argument("--config", default=None, help="Path to a YAML config file")
    parser.add_argument(
        "--wallet-file",
        default=None,
        help="JSON wallet file supplying privateKey when the request omits it",
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LCN_LOG_LEVEL", "INFO"),
        help="Logging level (DEBUG, INFO, WARNING, ...)",
    )
    parser.add_argument(
        "--log-file",
        default=os.environ.get("LCN_LOG_FILE"),
        help="Append logs to this file",
    )
    parser.add_argument(
        "--log-stderr",
        action="store_true",
        help="Also log to stderr (debugging only; breaks the one-line stderr contract)",
    )
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser(
        "transfer",
        help="read {privateKey, toAddress, amount, assetId?} from stdin and submit a transfer",
    )
    subparsers.add_parser(
        "address", help="read {privateKey} from stdin and print the wallet address"
    )
    balance_parser = subparsers.add_parser(
        "balance", help="sum the current UTXOs held by an address"
    )
    balance_parser.add_argument("--address", required=True, help="Address to inspect")
    return parser


def _configure_logging(args: argparse.Namespace) -> None:
    level = getattr(logging, str(args.log_level).upper(), None)
    if not isinstance(level, int):
        level = logging.INFO
    handlers: list[logging.Handler] = []
    if args.log_file:
        handlers.append(logging.FileHandler(Path(args.log_file).expanduser()))
    if args.log_stderr:
        handlers.append(logging.StreamHandler(sys.stderr))
    if not handlers:
        handlers.append(logging.NullHandler())
    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers)


def _emit(payload: Mapping[str, Any], *, ok: bool) -> int:
    line = json.dumps(payload, separators=COMPACT_JSON_SEPARATORS)
    if ok:
        print(line, file=sys.stdout, flush=True)
        return 0
    print(line, file=sys.stderr, flush=True)
    return 1


def _emit_result(result: TransferResult) -> int:
    return _emit(result.to_dict(), ok=result.is_ok)


def _error_result(exc: BaseException) -> TransferResult:
    kind = exc.kind if isinstance(exc, TransferError) else ErrorKind.UNEXPECTED
    message = exc.message if isinstance(exc, TransferError) else (str(exc) or exc.__class__.__name__)
    return TransferResult.error(kind, message, traceback.format_exc())


def _read_stdin_object() -> dict[str, Any]:
    raw = sys.stdin.read()
    if not raw.strip():
        raise InvalidFieldError("request", "no JSON object on stdin")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise InvalidFieldError("request", f"invalid JSON on stdin: {exc}") from exc
    if not isinstance(payload, dict):
        raise InvalidFieldError("request", "expected a JSON object on stdin")
    return payload


def _credentials_from_args(args: argparse.Namespace) -> CredentialProvider | None:
    if args.wallet_file:
        return WalletFileCredentialProvider(Path(args.wallet_file))
    return None


def _load_config(args: argparse.Namespace) -> LedgerConfig:
    return load_ledger_config(config_path=args.config)


def cmd_transfer(args: argparse.Namespace) -> int:
    try:
        payload = _read_stdin_object()
        config = _load_config(args)
    except (TransferError, ConfigurationError) as exc:
        logger.error("Transfer request rejected: %s", exc)
        return _emit_result(_error_result(exc))

    orchestrator = TransferOrchestrator(config, credentials=_credentials_from_args(args))
    return _emit_result(orchestrator.transfer(payload))


def cmd_address(args: argparse.Namespace) -> int:
    try:
        payload = _read_stdin_object()
        config = _load_config(args)
        raw_key = payload.get("privateKey")
        credentials = _credentials_from_args(args)
        if not raw_key and credentials is not None:
            raw_key = credentials.signing_key()
        if not raw_key:
            raise MissingFieldError("privateKey")
        identity = SigningIdentity.from_key(normalize_signing_key(raw_key), config.network)
        address = identity.address
        identity.forget()
    except (TransferError, ConfigurationError) as exc:
        return _emit_result(_error_result(exc))
    return _emit({"status": "ok", "address": address, "network": config.network}, ok=True)


def cmd_balance(args: argparse.Namespace) -> int:
    try:
        config = _load_config(args)
        balance = query_balance(config, args.address)
    except (TransferError, ConfigurationError) as exc:
        return _emit_result(_error_result(exc))
    return _emit({"status": "ok", **balance}, ok=True)


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args)
    command = args.command or "transfer"
    try:
        if command == "transfer":
            return cmd_transfer(args)
        if command == "address":
            return cmd_address(args)
        if command == "balance":
            return cmd_balance(args)
        raise ValueError(f"Unknown command: {command}")  # pragma: no cover - argparse enforces choices
    except Exception as exc:
        logger.exception("Unhandled error in %s", command)
        return _emit_result(_error_result(exc))


def run() -> None:
    sys.exit(main(sys.argv[1:]))


if __name__ == "__main__":
    run()
