"""
FILE: rebalancer/core/common/rounding.py

Currency-aware rounding and exact-sum apportionment.
"""

from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal
from typing import Dict, Hashable, Mapping, Optional, TypeVar

from rebalancer.core.common.guards import AllocationInputError, AllocationInvariantError

K = TypeVar("K", bound=Hashable)

_CURRENCY_MINOR_UNITS = {
    "BHD": 3,
    "JPY": 0,
    "KRW": 0,
    "KWD": 3,
    "OMR": 3,
    "VND": 0,
}

ZERO = Decimal("0")


def minor_unit(currency: str) -> Decimal:
    digits = _CURRENCY_MINOR_UNITS.get((currency or "").upper(), 2)
    return Decimal("1") if digits == 0 else Decimal(f"1e-{digits}")


def quantize_amount_for_currency(amount: Decimal, currency: str) -> Decimal:
    return amount.quantize(minor_unit(currency), rounding=ROUND_HALF_UP)


def quantize_down(amount: Decimal, quantum: Decimal) -> Decimal:
    return amount.quantize(quantum, rounding=ROUND_DOWN)


def _flips_sign(raw: Decimal, candidate: Decimal) -> bool:
    if raw > 0:
        return candidate < 0
    if raw < 0:
        return candidate > 0
    return candidate != 0


def apportion(raw: Mapping[K, Decimal], total: Decimal, *, quantum: Decimal) -> Dict[K, Decimal]:
    """
    Round every value to ``quantum`` so that the rounded values sum to ``total``.

    Values are truncated toward zero, then the missing units are handed out one
    per key by largest remainder (ascending key on ties). Steps that would push
    a value across zero are only taken once no other key can absorb the unit.
    """
    target = total.quantize(quantum, rounding=ROUND_HALF_UP)
    if not raw:
        if target != ZERO:
            raise AllocationInputError(f"cannot apportion {target} across no entries")
        return {}

    values = {key: value.quantize(quantum, rounding=ROUND_DOWN) for key, value in raw.items()}
    remainders = {key: raw[key] - values[key] for key in raw}
    units = int(((target - sum(values.values(), ZERO)) / quantum).to_integral_value())
    if units == 0:
        return values

    sign = 1 if units > 0 else -1
    step = quantum * sign
    order = sorted(values, key=lambda key: (-remainders[key] * sign, key))
    remaining = abs(units)
    allow_flip = False
    while remaining:
        progressed = False
        for key in order:
            if remaining == 0:
                break
            candidate = values[key] + step
            if not allow_flip and _flips_sign(raw[key], candidate):
                continue
            values[key] = candidate
            remaining -= 1
            progressed = True
        if not progressed:
            if allow_flip:
                raise AllocationInvariantError("apportionment made no progress")
            allow_flip = True
    return values


def round_to_total(raw: Mapping[K, Decimal], total: Decimal, currency: str) -> Dict[K, Decimal]:
    return apportion(raw, total, quantum=minor_unit(currency))


def redistribute(
    deltas: Mapping[K, Decimal],
    residual: Decimal,
    *,
    quantum: Decimal,
    overflow_key: Optional[K] = None,
) -> Dict[K, Decimal]:
    """
    Spread ``residual`` over ``deltas`` and round the result to ``quantum``.

    Entries whose sign opposes the residual are pulled toward zero first, in
    proportion to their size. Whatever is left goes to entries sharing the
    residual's sign, again proportionally. When nothing can take it, the
    remainder lands on ``overflow_key`` (or the smallest key).
    """
    if not deltas:
        if residual != ZERO:
            raise AllocationInputError(f"cannot redistribute {residual} across no entries")
        return {}

    target_total = sum(deltas.values(), ZERO) + residual
    if residual == ZERO:
        return apportion(deltas, target_total, quantum=quantum)

    sign = 1 if residual > 0 else -1
    working = dict(deltas)
    remaining = abs(residual)

    opposite = {key: abs(value) for key, value in deltas.items() if value * sign < 0}
    capacity = sum(opposite.values(), ZERO)
    if capacity > 0:
        take = min(remaining, capacity)
        for key, size in opposite.items():
            if take == capacity:
                working[key] = ZERO
            else:
                working[key] += sign * take * size / capacity
        remaining -= take

    if remaining > 0:
        same = {key: abs(value) for key, value in deltas.items() if value * sign > 0}
        weight = sum(same.values(), ZERO)
        if weight > 0:
            for key, size in same.items():
                working[key] += sign * remaining * size / weight
        else:
            key = overflow_key if overflow_key in working else sorted(working)[0]
            working[key] += sign * remaining

    return apportion(working, target_total, quantum=quantum)
