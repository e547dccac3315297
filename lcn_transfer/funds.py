"""Funds checks, input selection and fee reserve estimation."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Sequence, Tuple

from .errors import EmptyWalletError, InsufficientFundsError
from .models import NATIVE_UNIT, UTXO, AssetReference, TxOutput, total_quantity

logger = logging.getLogger(__name__)

# Linear fee model defaults (lovelace): fee = min_fee_b + min_fee_a * size.
DEFAULT_MIN_FEE_A = 44
DEFAULT_MIN_FEE_B = 155_381
DEFAULT_FEE_BUFFER = 1.2


@dataclass
class FundsCheck:
    """Required versus available amounts computed for one transfer."""

    required_lovelace: int
    available_lovelace: int
    unit: str = NATIVE_UNIT
    required_asset: int = 0
    available_asset: int = 0


def validate_funds(
    utxos: Sequence[UTXO],
    amount: int,
    asset: AssetReference,
    *,
    fee_reserve: int,
    native_reserve: int = 0,
) -> FundsCheck:
    """Check that *utxos* cover the transfer before anything is built.

    Native transfers need ``amount + fee_reserve`` lovelace. Token transfers
    need ``native_reserve + fee_reserve`` lovelace and ``amount`` of the token;
    the two denominations are checked independently and either shortfall
    fails the transfer. An empty UTXO set is reported as
    :class:`EmptyWalletError` whatever the amount.
    """

    if not utxos:
        raise EmptyWalletError()

    utxo_list = list(utxos)
    available_lovelace = total_quantity(utxo_list, NATIVE_UNIT)

    if asset.is_native:
        check = FundsCheck(
            required_lovelace=amount + fee_reserve,
            available_lovelace=available_lovelace,
        )
    else:
        check = FundsCheck(
            required_lovelace=native_reserve + fee_reserve,
            available_lovelace=available_lovelace,
            unit=asset.unit,
            required_asset=amount,
            available_asset=total_quantity(utxo_list, asset.unit),
        )

    if check.available_lovelace < check.required_lovelace:
        logger.warning(
            "Insufficient lovelace: required=%d available=%d",
            check.required_lovelace,
            check.available_lovelace,
        )
        raise InsufficientFundsError(check.required_lovelace, check.available_lovelace)
    if check.available_asset < check.required_asset:
        logger.warning(
            "Insufficient %s: required=%d available=%d",
            check.unit,
            check.required_asset,
            check.available_asset,
        )
        raise InsufficientFundsError(check.required_asset, check.available_asset, unit=check.unit)
    return check


def _required_totals(outputs: Sequence[TxOutput], fee_reserve: int) -> Tuple[int, Dict[str, int]]:
    lovelace = fee_reserve
    assets: Dict[str, int] = {}
    for output in outputs:
        lovelace += output.lovelace
        for unit, quantity in output.assets.items():
            assets[unit] = assets.get(unit, 0) + quantity
    return lovelace, assets


def select_utxos(
    utxos: Sequence[UTXO],
    outputs: Sequence[TxOutput],
    *,
    fee_reserve: int,
    max_inputs: int = 50,
) -> List[UTXO]:
    """Greedily pick the largest UTXOs until the outputs and fee are covered."""

    required_lovelace, required_assets = _required_totals(outputs, fee_reserve)

    def covered(selected: List[UTXO]) -> bool:
        if total_quantity(selected, NATIVE_UNIT) < required_lovelace:
            return False
        return all(total_quantity(selected, unit) >= qty for unit, qty in required_assets.items())

    # Inputs carrying a requested token first, then by lovelace, largest first.
    ranked = sorted(
        utxos,
        key=lambda u: (
            -sum(1 for unit in required_assets if u.quantity(unit) > 0),
            -u.lovelace,
        ),
    )
    selected: List[UTXO] = []
    for utxo in ranked:
        selected.append(utxo)
        if covered(selected):
            logger.debug(
                "Selected %d UTXOs totaling %d lovelace", len(selected), total_quantity(selected, NATIVE_UNIT)
            )
            return selected
        if len(selected) >= max_inputs:
            raise InsufficientFundsError(
                required_lovelace,
                total_quantity(selected, NATIVE_UNIT),
                detail=f"transaction too large: more than {max_inputs} inputs needed",
            )

    shortfall_unit = next(
        (unit for unit, qty in required_assets.items() if total_quantity(selected, unit) < qty),
        NATIVE_UNIT,
    )
    if shortfall_unit == NATIVE_UNIT:
        raise InsufficientFundsError(required_lovelace, total_quantity(selected, NATIVE_UNIT))
    raise InsufficientFundsError(
        required_assets[shortfall_unit], total_quantity(selected, shortfall_unit), unit=shortfall_unit
    )


def _param(params: Mapping[str, Any], name: str, default: int) -> int:
    value = params.get(name)
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.debug("Unable to parse protocol parameter %s=%r", name, value)
        return default


def estimate_fee(
    num_inputs: int,
    num_outputs: int,
    params: Mapping[str, Any] | None = None,
    *,
    buffer: float = DEFAULT_FEE_BUFFER,
) -> int:
    """Estimate a fee in lovelace from the linear fee protocol parameters."""

    params = params or {}
    size = 10 + num_inputs * 150 + num_outputs * 200
    min_fee_a = _param(params, "min_fee_a", DEFAULT_MIN_FEE_A)
    min_fee_b = _param(params, "min_fee_b", DEFAULT_MIN_FEE_B)
    return int(math.ceil((min_fee_b + min_fee_a * size) * buffer))
