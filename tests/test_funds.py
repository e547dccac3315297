from __future__ import annotations

import pytest

from lcn_transfer.errors import EmptyWalletError, InsufficientFundsError
from lcn_transfer.funds import estimate_fee, select_utxos, validate_funds
from lcn_transfer.models import UTXO, AssetReference, TxOutput

POLICY_ID = "ab" * 28
TOKEN = AssetReference(policy_id=POLICY_ID, asset_name="4c434e")


def _utxo(index: int, lovelace: int, **assets: int) -> UTXO:
    return UTXO(
        tx_hash=f"{index:064x}",
        output_index=index,
        lovelace=lovelace,
        assets={TOKEN.unit: qty for qty in assets.values()},
    )


def test_native_shortfall_reports_required_and_available() -> None:
    utxos = [_utxo(0, 3_000_000), _utxo(1, 2_000_000)]

    with pytest.raises(InsufficientFundsError) as excinfo:
        validate_funds(utxos, 4_600_000, AssetReference.native(), fee_reserve=500_000)

    assert excinfo.value.required == 5_100_000
    assert excinfo.value.available == 5_000_000
    assert "Required: 5100000, Available: 5000000" in str(excinfo.value)


def test_native_transfer_within_budget_passes() -> None:
    check = validate_funds([_utxo(0, 5_000_000)], 4_500_000, AssetReference.native(), fee_reserve=500_000)

    assert check.required_lovelace == 5_000_000
    assert check.available_lovelace == 5_000_000


@pytest.mark.parametrize("amount", [0, 1, 2_000_000])
def test_empty_wallet_is_its_own_error(amount: int) -> None:
    with pytest.raises(EmptyWalletError):
        validate_funds([], amount, AssetReference.native(), fee_reserve=500_000)


def test_token_transfer_checks_both_denominations() -> None:
    utxos = [_utxo(0, 3_000_000, token=1_000)]

    check = validate_funds(utxos, 1_000, TOKEN, fee_reserve=500_000, native_reserve=2_000_000)

    assert check.required_lovelace == 2_500_000
    assert check.required_asset == 1_000
    assert check.available_asset == 1_000
    assert check.unit == TOKEN.unit


def test_token_shortfall_fails_even_with_enough_lovelace() -> None:
    utxos = [_utxo(0, 50_000_000, token=999)]

    with pytest.raises(InsufficientFundsError) as excinfo:
        validate_funds(utxos, 1_000, TOKEN, fee_reserve=500_000, native_reserve=2_000_000)

    assert excinfo.value.unit == TOKEN.unit
    assert excinfo.value.required == 1_000
    assert excinfo.value.available == 999


def test_reserve_shortfall_fails_even_with_enough_tokens() -> None:
    utxos = [_utxo(0, 2_000_000, token=10_000)]

    with pytest.raises(InsufficientFundsError) as excinfo:
        validate_funds(utxos, 1_000, TOKEN, fee_reserve=500_000, native_reserve=2_000_000)

    assert excinfo.value.unit == "lovelace"
    assert excinfo.value.required == 2_500_000


def test_select_utxos_prefers_largest_inputs() -> None:
    utxos = [_utxo(0, 1_000_000), _utxo(1, 9_000_000), _utxo(2, 3_000_000)]
    outputs = [TxOutput(address="addr_test1qq", lovelace=8_000_000)]

    selected = select_utxos(utxos, outputs, fee_reserve=500_000)

    assert [u.output_index for u in selected] == [1]


def test_select_utxos_picks_token_inputs_first() -> None:
    utxos = [_utxo(0, 20_000_000), _utxo(1, 1_500_000, token=500), _utxo(2, 1_500_000, token=700)]
    outputs = [TxOutput(address="addr_test1qq", lovelace=2_000_000, assets={TOKEN.unit: 1_000})]

    selected = select_utxos(utxos, outputs, fee_reserve=500_000)

    assert [u.output_index for u in selected] == [1, 2]


def test_select_utxos_caps_input_count() -> None:
    utxos = [_utxo(i, 1_000_000) for i in range(10)]
    outputs = [TxOutput(address="addr_test1qq", lovelace=6_000_000)]

    with pytest.raises(InsufficientFundsError) as excinfo:
        select_utxos(utxos, outputs, fee_reserve=500_000, max_inputs=5)

    assert "more than 5 inputs" in str(excinfo.value)


def test_select_utxos_reports_token_shortfall() -> None:
    utxos = [_utxo(0, 20_000_000, token=10)]
    outputs = [TxOutput(address="addr_test1qq", lovelace=2_000_000, assets={TOKEN.unit: 11})]

    with pytest.raises(InsufficientFundsError) as excinfo:
        select_utxos(utxos, outputs, fee_reserve=500_000)

    assert excinfo.value.unit == TOKEN.unit


def test_estimate_fee_uses_protocol_parameters() -> None:
    # size = 10 + 150 + 2 * 200 = 560 bytes
    assert estimate_fee(1, 2, {"min_fee_a": 44, "min_fee_b": 155381}, buffer=1.0) == 155381 + 44 * 560
    assert estimate_fee(1, 2, {"min_fee_a": "44", "min_fee_b": "155381"}, buffer=1.0) == 180021


def test_estimate_fee_falls_back_to_defaults() -> None:
    assert estimate_fee(1, 2, {"min_fee_a": None}, buffer=1.0) == estimate_fee(1, 2, None, buffer=1.0)
    assert estimate_fee(1, 2) > estimate_fee(1, 2, buffer=1.0)
