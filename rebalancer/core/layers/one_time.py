"""
FILE: rebalancer/core/layers/one_time.py
"""

from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Optional

from rebalancer.core.common.guards import AllocationInputError, assert_exact_sum, require_finite
from rebalancer.core.common.rounding import apportion, minor_unit, quantize_amount_for_currency
from rebalancer.core.layers.deltas import normalize_target_weights
from rebalancer.core.models import ONE_TIME_PRIORITY_LAYERS, OneTimeAllocation, RecurringPlan

ZERO = Decimal("0")


def _layer_shares(
    *,
    target_weights: Mapping[int, Decimal],
    holdings_by_layer: Optional[Mapping[int, Decimal]],
    amount: Decimal,
) -> Dict[int, Decimal]:
    weights = normalize_target_weights(target_weights)
    priority = {layer: weights.get(layer, ZERO) for layer in ONE_TIME_PRIORITY_LAYERS}

    holdings_total = sum((holdings_by_layer or {}).values(), ZERO)
    if holdings_by_layer and holdings_total > ZERO:
        new_total = holdings_total + amount
        gaps = {
            layer: max(weight * new_total - holdings_by_layer.get(layer, ZERO), ZERO)
            for layer, weight in priority.items()
        }
        if sum(gaps.values(), ZERO) > ZERO:
            return gaps

    return priority


def _roll_up_small_buckets(
    buckets: Dict[int, Decimal],
    *,
    minimum_rebalancing_amount: Decimal,
    minimum_instrument_amount: Decimal,
    notes: List[str],
) -> Dict[int, Decimal]:
    layers = sorted(buckets)
    funded = [layer for layer in layers if buckets[layer] >= minimum_rebalancing_amount]
    if funded:
        anchor = funded[0]
        for layer in layers:
            amount = buckets[layer]
            if layer != anchor and ZERO < amount < minimum_rebalancing_amount:
                buckets[anchor] += amount
                buckets[layer] = ZERO
                notes.append(
                    f"Layer {layer} one-time amount {amount} below minimum rebalancing "
                    f"amount; moved to layer {anchor}."
                )

    for layer in sorted((layer for layer in layers if layer > layers[0]), reverse=True):
        amount = buckets[layer]
        if ZERO < amount < minimum_instrument_amount:
            lower = layer - 1
            buckets[lower] = buckets.get(lower, ZERO) + amount
            buckets[layer] = ZERO
            notes.append(
                f"Layer {layer} one-time amount {amount} below minimum instrument "
                f"amount; moved to layer {lower}."
            )
    return buckets


def split_bucket_across_plans(
    *,
    bucket: Decimal,
    plans: Iterable[RecurringPlan],
    minimum_instrument_amount: Decimal,
    quantum: Decimal,
) -> Dict[str, Decimal]:
    by_isin: Dict[str, Decimal] = {}
    for plan in plans:
        by_isin[plan.isin] = by_isin.get(plan.isin, ZERO) + plan.amount
    funded = {isin: amount for isin, amount in by_isin.items() if amount > ZERO}
    if bucket <= ZERO or not funded:
        return {}

    plan_total = sum(funded.values(), ZERO)
    allocations = apportion(
        {isin: bucket * amount / plan_total for isin, amount in funded.items()},
        bucket,
        quantum=quantum,
    )
    largest = min(funded, key=lambda isin: (-funded[isin], isin))
    for isin in sorted(allocations):
        amount = allocations[isin]
        if isin != largest and ZERO < amount < minimum_instrument_amount:
            allocations[largest] += amount
            allocations[isin] = ZERO
    return {isin: amount for isin, amount in sorted(allocations.items()) if amount > ZERO}


def allocate_one_time(
    *,
    amount: Decimal,
    target_weights: Mapping[int, Decimal],
    minimum_rebalancing_amount: Decimal,
    minimum_instrument_amount: Decimal,
    holdings_by_layer: Optional[Mapping[int, Decimal]] = None,
    plans: Optional[Iterable[RecurringPlan]] = None,
    instrument_allocation_enabled: bool = False,
    currency: str = "EUR",
) -> OneTimeAllocation:
    """
    Split a lump sum across the priority layers (1..4).

    With current holdings the amount follows the underweight gaps, otherwise the
    normalised target weights of the priority layers.
    """
    amount = require_finite(amount, field="one_time_amount")
    if amount < ZERO:
        raise AllocationInputError(f"one-time amount must not be negative, got {amount}")
    if amount == ZERO or amount < minimum_rebalancing_amount:
        return OneTimeAllocation(
            notes=["One-time amount below minimum rebalancing amount; nothing allocated."]
        )

    quantum = minor_unit(currency)
    notes: List[str] = []
    shares = _layer_shares(
        target_weights=target_weights, holdings_by_layer=holdings_by_layer, amount=amount
    )
    share_total = sum(shares.values(), ZERO)
    if share_total == ZERO:
        shares = {ONE_TIME_PRIORITY_LAYERS[0]: Decimal("1")}
        share_total = Decimal("1")
        notes.append("No target weight on priority layers; one-time amount assigned to layer 1.")

    rounded_amount = quantize_amount_for_currency(amount, currency)
    buckets = apportion(
        {layer: amount * share / share_total for layer, share in shares.items()},
        rounded_amount,
        quantum=quantum,
    )
    buckets = _roll_up_small_buckets(
        buckets,
        minimum_rebalancing_amount=minimum_rebalancing_amount,
        minimum_instrument_amount=minimum_instrument_amount,
        notes=notes,
    )
    assert_exact_sum(buckets.values(), rounded_amount, context="one-time layer buckets")

    instrument_buckets = None
    if instrument_allocation_enabled:
        plan_list = list(plans or [])
        instrument_buckets = {}
        for layer in sorted(buckets):
            split = split_bucket_across_plans(
                bucket=buckets[layer],
                plans=[plan for plan in plan_list if plan.layer == layer],
                minimum_instrument_amount=minimum_instrument_amount,
                quantum=quantum,
            )
            if buckets[layer] > ZERO and not split:
                notes.append(f"Layer {layer} has no funded saving plan for instrument split.")
            for isin, value in split.items():
                instrument_buckets[isin] = instrument_buckets.get(isin, ZERO) + value

    return OneTimeAllocation(
        layer_buckets={layer: value for layer, value in sorted(buckets.items())},
        instrument_buckets=instrument_buckets,
        notes=notes,
    )
