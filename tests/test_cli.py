from __future__ import annotations

import io
import json

import pytest
from pycardano import TransactionBody

from lcn_transfer import cli
from lcn_transfer.config import ConfigurationError, LedgerConfig
from lcn_transfer.errors import LedgerTransportError
from lcn_transfer.keys import SigningIdentity
from lcn_transfer.models import UTXO, UnsignedTransaction
from lcn_transfer.retry import RetryExecutor
from lcn_transfer.transfer import TransferOrchestrator

SEED_HEX = "58206f3b6f9e8e23f9c6c4c9d5f8a1b2c3d4e5f6a7b8c9d0e1f2a3b4c5d6e7f8"
RECIPIENT = SigningIdentity.from_key("11" * 32, "preprod").address


class StubLedger:
    def __init__(self, lovelace: int, submit_error: Exception | None = None) -> None:
        self.lovelace = lovelace
        self.submit_error = submit_error
        self.submit_calls = 0

    def health(self) -> None:
        return None

    def get_utxos(self, address: str):
        return [UTXO(tx_hash="aa" * 32, output_index=0, lovelace=self.lovelace, address=address)]

    def get_protocol_parameters(self):
        return {}

    def build_transaction(self, inputs, outputs, change_address):
        return UnsignedTransaction(TransactionBody(fee=170_000))

    def submit(self, signed):
        self.submit_calls += 1
        if self.submit_error is not None:
            raise self.submit_error
        return signed.tx_hash

    def close(self) -> None:
        return None


_real_load_config = cli._load_config


@pytest.fixture(autouse=True)
def isolate_cli(monkeypatch):
    monkeypatch.delenv("LCN_LOG_FILE", raising=False)
    monkeypatch.setattr(cli, "_load_config", lambda _args: LedgerConfig())
    yield


def _use_ledger(monkeypatch, lovelace: int, **ledger_kwargs) -> StubLedger:
    ledger = StubLedger(lovelace, **ledger_kwargs)

    def factory(config, credentials=None):
        return TransferOrchestrator(
            config,
            connect=lambda _config: ledger,
            credentials=credentials,
            executor=RetryExecutor(sleep=lambda _seconds: None),
        )

    monkeypatch.setattr(cli, "TransferOrchestrator", factory)
    return ledger


def _stdin(monkeypatch, text: str) -> None:
    monkeypatch.setattr("sys.stdin", io.StringIO(text))


def _request(**overrides) -> str:
    payload = {"privateKey": SEED_HEX, "toAddress": RECIPIENT, "amount": 1_500_000}
    payload.update(overrides)
    return json.dumps(payload)


def test_transfer_success_writes_one_stdout_line(monkeypatch, capsys):
    _use_ledger(monkeypatch, 10_000_000)
    _stdin(monkeypatch, _request())

    exit_code = cli.main(["transfer"])

    captured = capsys.readouterr()
    assert exit_code == 0
    assert captured.err == ""
    lines = captured.out.splitlines()
    assert len(lines) == 1
    result = json.loads(lines[0])
    assert result["status"] == "ok"
    assert len(result["txHash"]) == 64


def test_transfer_is_the_default_command(monkeypatch, capsys):
    _use_ledger(monkeypatch, 10_000_000)
    _stdin(monkeypatch, _request())

    assert cli.main([]) == 0
    assert json.loads(capsys.readouterr().out)["status"] == "ok"


def test_transfer_failure_writes_one_stderr_line(monkeypatch, capsys):
    _use_ledger(monkeypatch, 5_000_000)
    _stdin(monkeypatch, _request(amount=4_600_000))

    exit_code = cli.main(["transfer"])

    captured = capsys.readouterr()
    assert exit_code == 1
    assert captured.out == ""
    lines = captured.err.splitlines()
    assert len(lines) == 1
    result = json.loads(lines[0])
    assert result["status"] == "error"
    assert result["kind"] == "InsufficientFunds"
    assert result["message"] == "Insufficient funds. Required: 5100000, Available: 5000000"
    assert "InsufficientFundsError" in result["stack"]


@pytest.mark.parametrize("raw", ["", "not json", "[1, 2]"])
def test_unreadable_stdin_is_an_invalid_field(monkeypatch, capsys, raw):
    _use_ledger(monkeypatch, 10_000_000)
    _stdin(monkeypatch, raw)

    assert cli.main(["transfer"]) == 1
    result = json.loads(capsys.readouterr().err)
    assert result["kind"] == "InvalidField"


def test_configuration_error_is_reported(monkeypatch, capsys):
    def broken(_args):
        raise ConfigurationError("Unknown network: moonnet")

    monkeypatch.setattr(cli, "_load_config", broken)
    _stdin(monkeypatch, _request())

    assert cli.main(["transfer"]) == 1
    result = json.loads(capsys.readouterr().err)
    assert result["kind"] == "Unexpected"
    assert result["message"] == "Unknown network: moonnet"


def test_address_command_prints_wallet_address(monkeypatch, capsys):
    _stdin(monkeypatch, json.dumps({"privateKey": SEED_HEX}))

    assert cli.main(["address"]) == 0
    result = json.loads(capsys.readouterr().out)
    assert result == {
        "status": "ok",
        "address": SigningIdentity.from_key(SEED_HEX, "preprod").address,
        "network": "preprod",
    }


def test_address_command_rejects_bad_key(monkeypatch, capsys):
    _stdin(monkeypatch, json.dumps({"privateKey": "abc"}))

    assert cli.main(["address"]) == 1
    assert json.loads(capsys.readouterr().err)["kind"] == "InvalidKey"


def test_address_command_reads_wallet_file(monkeypatch, capsys, tmp_path):
    wallet = tmp_path / "wallet.json"
    wallet.write_text(json.dumps({"privateKey": SEED_HEX}))
    _stdin(monkeypatch, "{}")

    assert cli.main(["--wallet-file", str(wallet), "address"]) == 0
    assert json.loads(capsys.readouterr().out)["address"].startswith("addr_test1")


def test_balance_command(monkeypatch, capsys):
    calls = []

    def fake_balance(config, address):
        calls.append(address)
        return {"address": address, "lovelace": 7, "assets": {}, "utxos": 1}

    monkeypatch.setattr(cli, "query_balance", fake_balance)

    assert cli.main(["balance", "--address", RECIPIENT]) == 0
    assert json.loads(capsys.readouterr().out) == {
        "status": "ok",
        "address": RECIPIENT,
        "lovelace": 7,
        "assets": {},
        "utxos": 1,
    }
    assert calls == [RECIPIENT]


def test_transfer_accepts_amount_as_decimal_string(monkeypatch, capsys):
    _use_ledger(monkeypatch, 10_000_000)
    _stdin(monkeypatch, _request(amount="2000000"))

    exit_code = cli.main(["transfer"])

    captured = capsys.readouterr()
    assert exit_code == 0
    assert captured.err == ""
    (line,) = captured.out.splitlines()
    assert json.loads(line)["status"] == "ok"


def test_transfer_with_failing_submit_reports_once(monkeypatch, capsys):
    ledger = _use_ledger(monkeypatch, 10_000_000, submit_error=LedgerTransportError("connection reset"))
    _stdin(monkeypatch, _request())

    exit_code = cli.main(["transfer"])

    captured = capsys.readouterr()
    assert exit_code == 1
    assert captured.out == ""
    (line,) = captured.err.splitlines()
    result = json.loads(line)
    assert result["status"] == "error"
    assert result["kind"] == "NetworkFailure"
    assert result["message"] == "connection reset"
    assert ledger.submit_calls == 3


def test_config_option_selects_yaml_file(monkeypatch, capsys, tmp_path):
    for name in ("LCN_NETWORK", "CARDANO_NETWORK"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(cli, "_load_config", _real_load_config)
    config_file = tmp_path / "lcn.yaml"
    config_file.write_text("ledger:\n  network: mainnet\n")
    _stdin(monkeypatch, json.dumps({"privateKey": SEED_HEX}))

    assert cli.main(["--config", str(config_file), "address"]) == 0
    result = json.loads(capsys.readouterr().out)
    assert result["network"] == "mainnet"
    assert result["address"] == SigningIdentity.from_key(SEED_HEX, "mainnet").address
    assert result["address"].startswith("addr1")


def test_missing_config_file_is_reported(monkeypatch, capsys, tmp_path):
    monkeypatch.setattr(cli, "_load_config", _real_load_config)
    _stdin(monkeypatch, _request())

    assert cli.main(["--config", str(tmp_path / "absent.yaml"), "transfer"]) == 1
    result = json.loads(capsys.readouterr().err)
    assert result["kind"] == "Unexpected"
    assert "Config file not found" in result["message"]
