"""
FILE: rebalancer/core/plans/allocator.py

Splits a layer's resolved delta across its recurring saving plans.
"""

from dataclasses import dataclass
from decimal import Decimal
from itertools import combinations
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from rebalancer.core.common.guards import (
    AllocationInputError,
    assert_exact_sum,
    assert_non_negative,
    require_finite,
)
from rebalancer.core.common.minimums import lift_or_drop_below_minimum
from rebalancer.core.common.rounding import apportion, minor_unit, quantize_amount_for_currency
from rebalancer.core.models import PlanAllocation, RecurringPlan

ZERO = Decimal("0")
MAX_ENUMERATED_PLANS = 16


@dataclass(frozen=True)
class _PassOutcome:
    deltas: Dict[str, Decimal]
    discarded: Tuple[str, ...] = ()


def _trim(
    amounts: Mapping[str, Decimal],
    keys: Iterable[str],
    reduction: Decimal,
    *,
    minimum_plan_size: Decimal,
    minimum_rebalance_amount: Decimal,
    strict: bool,
) -> Optional[Dict[str, Decimal]]:
    takes: Dict[str, Decimal] = {}
    remaining = reduction
    for key in sorted(keys, key=lambda k: (-amounts[k], k)):
        if remaining == ZERO:
            break
        capacity = max(amounts[key] - minimum_plan_size, ZERO)
        if strict and capacity < minimum_rebalance_amount:
            continue
        take = min(capacity, remaining)
        if take == ZERO or (strict and take < minimum_rebalance_amount):
            continue
        takes[key] = take
        remaining -= take
    return takes if remaining == ZERO else None


def _grow(
    amounts: Mapping[str, Decimal],
    keys: Sequence[str],
    increase: Decimal,
    *,
    weights: Optional[Mapping[str, Decimal]],
    minimum_rebalance_amount: Decimal,
    quantum: Decimal,
    strict: bool,
) -> Optional[Dict[str, Decimal]]:
    participants = [key for key in keys if amounts[key] > ZERO] or list(keys)
    if not participants:
        return None

    def weight_of(key: str) -> Decimal:
        if weights is not None:
            return max(weights.get(key, ZERO), ZERO)
        return amounts[key]

    while participants:
        participant_weights = {key: weight_of(key) for key in participants}
        weight_sum = sum(participant_weights.values(), ZERO)
        if weight_sum == ZERO:
            participant_weights = {key: Decimal("1") for key in participants}
            weight_sum = Decimal(len(participants))
        shares = apportion(
            {key: increase * w / weight_sum for key, w in participant_weights.items()},
            increase,
            quantum=quantum,
        )
        if not strict:
            return shares
        if not any(ZERO < share < minimum_rebalance_amount for share in shares.values()):
            return shares
        if len(participants) == 1:
            return None
        smallest = min(participant_weights.values())
        participants.remove(max(k for k, w in participant_weights.items() if w == smallest))
    return None


def _shrink_pass(
    amounts: Mapping[str, Decimal],
    reduction: Decimal,
    *,
    weights: Optional[Mapping[str, Decimal]],
    minimum_plan_size: Decimal,
    minimum_rebalance_amount: Decimal,
    quantum: Decimal,
    strict: bool,
) -> Optional[_PassOutcome]:
    keys = sorted(key for key, amount in amounts.items() if amount > ZERO)
    trim_args = {
        "minimum_plan_size": minimum_plan_size,
        "minimum_rebalance_amount": minimum_rebalance_amount,
        "strict": strict,
    }
    takes = _trim(amounts, keys, reduction, **trim_args)
    if takes is not None:
        return _PassOutcome(deltas={key: -take for key, take in takes.items()})

    def evaluate(subset: Tuple[str, ...]):
        freed = sum((amounts[key] for key in subset), ZERO)
        survivors = [key for key in keys if key not in subset]
        deltas = {key: -amounts[key] for key in subset}
        overshoot = ZERO
        if freed < reduction:
            survivor_takes = _trim(amounts, survivors, reduction - freed, **trim_args)
            if survivor_takes is None:
                return None
            deltas.update({key: -take for key, take in survivor_takes.items()})
        elif freed > reduction:
            overshoot = freed - reduction
            additions = _grow(
                amounts,
                survivors,
                overshoot,
                weights=weights,
                minimum_rebalance_amount=minimum_rebalance_amount,
                quantum=quantum,
                strict=strict,
            )
            if additions is None:
                return None
            deltas.update(additions)
        rank = (len(subset), freed, overshoot, tuple(sorted(subset)))
        return rank, _PassOutcome(deltas=deltas, discarded=tuple(sorted(subset)))

    if len(keys) <= MAX_ENUMERATED_PLANS:
        for size in range(1, len(keys) + 1):
            options = [
                outcome for outcome in map(evaluate, combinations(keys, size)) if outcome
            ]
            if options:
                return min(options, key=lambda option: option[0])[1]
        return None

    ordered = sorted(keys, key=lambda key: (amounts[key], key))
    for size in range(1, len(ordered) + 1):
        outcome = evaluate(tuple(ordered[:size]))
        if outcome:
            return outcome[1]
    return None


def _run_pass(
    amounts: Mapping[str, Decimal],
    required: Decimal,
    *,
    weights: Optional[Mapping[str, Decimal]],
    minimum_plan_size: Decimal,
    minimum_rebalance_amount: Decimal,
    quantum: Decimal,
    strict: bool,
) -> Optional[_PassOutcome]:
    if required < ZERO:
        return _shrink_pass(
            amounts,
            -required,
            weights=weights,
            minimum_plan_size=minimum_plan_size,
            minimum_rebalance_amount=minimum_rebalance_amount,
            quantum=quantum,
            strict=strict,
        )
    additions = _grow(
        amounts,
        sorted(amounts),
        required,
        weights=weights,
        minimum_rebalance_amount=minimum_rebalance_amount,
        quantum=quantum,
        strict=strict,
    )
    if additions is None:
        return None
    return _PassOutcome(deltas=additions)


def _enforce_plan_minimums(
    proposed: Dict[str, Decimal], *, minimum_plan_size: Decimal, notes: List[str]
) -> None:
    lifted, dropped = lift_or_drop_below_minimum(proposed, minimum=minimum_plan_size)
    for key in sorted(lifted):
        notes.append(f"Plan {key} raised to minimum plan size {minimum_plan_size}.")
    for key, receiver in sorted(dropped.items()):
        notes.append(f"Plan {key} below minimum plan size; amount moved to {receiver}.")


def _build_allocation(
    amounts: Mapping[str, Decimal],
    proposed: Dict[str, Decimal],
    *,
    relaxed: bool,
    notes: List[str],
) -> PlanAllocation:
    deltas = {key: proposed[key] - amounts[key] for key in sorted(amounts)}
    assert_non_negative(proposed, context="plan amounts")
    discarded = sorted(
        key for key in amounts if amounts[key] > ZERO and proposed[key] == ZERO
    )
    return PlanAllocation(
        deltas=deltas,
        proposed_amounts={key: proposed[key] for key in sorted(proposed)},
        discarded_plans=discarded,
        minimum_rebalance_relaxed=relaxed,
        notes=notes,
    )


def allocate_plan_deltas(
    *,
    plans: Sequence[RecurringPlan],
    layer_target_amount: Decimal,
    minimum_rebalance_amount: Decimal,
    minimum_plan_size: Decimal,
    weights: Optional[Mapping[str, Decimal]] = None,
    currency: str = "EUR",
) -> PlanAllocation:
    """
    Move a layer's plans from their current sum to ``layer_target_amount``.

    Shrinking trims the largest plans first (plan key breaks ties) and never
    leaves a plan between zero and ``minimum_plan_size``; when trimming alone
    cannot cover the reduction, the smallest workable set of plans is
    discarded. Growing follows current amounts, or ``weights`` when given.
    A strict pass keeps every per-plan change at or above
    ``minimum_rebalance_amount``; the relaxed pass drops that floor and is
    used when the strict pass is infeasible or discards more plans.
    """
    target = require_finite(layer_target_amount, field="layer_target_amount")
    if target < ZERO:
        raise AllocationInputError(f"layer target amount must not be negative, got {target}")

    amounts: Dict[str, Decimal] = {}
    for plan in plans:
        amounts[plan.plan_key] = amounts.get(plan.plan_key, ZERO) + plan.amount

    notes: List[str] = []
    if not amounts:
        if target > ZERO:
            notes.append(f"No saving plans in layer; target amount {target} not allocated.")
        return PlanAllocation(notes=notes)

    quantum = minor_unit(currency)
    target = quantize_amount_for_currency(target, currency)
    required = target - sum(amounts.values(), ZERO)
    if required == ZERO:
        proposed = dict(amounts)
        _enforce_plan_minimums(proposed, minimum_plan_size=minimum_plan_size, notes=notes)
        return _build_allocation(amounts, proposed, relaxed=False, notes=notes)

    if target < minimum_plan_size:
        funded = [key for key, amount in amounts.items() if amount > ZERO] or list(amounts)
        top = min(funded, key=lambda key: (-amounts[key], key))
        proposed = {key: ZERO for key in amounts}
        proposed[top] = target
        if target > ZERO:
            notes.append(
                f"Layer target {target} below minimum plan size; kept on plan {top} only."
            )
        return _build_allocation(amounts, proposed, relaxed=True, notes=notes)

    pass_args = {
        "weights": weights,
        "minimum_plan_size": minimum_plan_size,
        "minimum_rebalance_amount": minimum_rebalance_amount,
        "quantum": quantum,
    }
    strict = _run_pass(amounts, required, strict=True, **pass_args)
    relaxed = _run_pass(amounts, required, strict=False, **pass_args)
    use_relaxed = strict is None or (
        relaxed is not None and len(relaxed.discarded) < len(strict.discarded)
    )
    outcome = relaxed if use_relaxed else strict
    if outcome is None:
        raise AllocationInputError(f"unable to allocate layer target {target} across plans")
    if use_relaxed:
        notes.append("Minimum rebalancing amount relaxed for individual plans.")

    proposed = {key: amounts[key] + outcome.deltas.get(key, ZERO) for key in amounts}
    _enforce_plan_minimums(proposed, minimum_plan_size=minimum_plan_size, notes=notes)
    assert_exact_sum(proposed.values(), target, context="layer plan allocation")
    return _build_allocation(amounts, proposed, relaxed=use_relaxed, notes=notes)
