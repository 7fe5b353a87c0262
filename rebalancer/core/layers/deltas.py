"""
FILE: rebalancer/core/layers/deltas.py
"""

from decimal import Decimal
from typing import Dict, List, Mapping, Optional

from rebalancer.core.common.diagnostics import make_layer_delta_diagnostics, record_suppression
from rebalancer.core.common.guards import (
    AllocationInputError,
    assert_exact_sum,
    require_finite,
    require_finite_mapping,
)
from rebalancer.core.common.rounding import apportion, minor_unit, redistribute
from rebalancer.core.models import LayerDeltaResult, LayerProposal

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def normalize_target_weights(weights: Mapping[int, Decimal]) -> Dict[int, Decimal]:
    clamped = {layer: max(weight, ZERO) for layer, weight in weights.items()}
    weight_sum = sum(clamped.values(), ZERO)
    if weight_sum == ZERO:
        return {layer: ZERO for layer in clamped}
    if weight_sum == Decimal("1"):
        return clamped
    return {layer: weight / weight_sum for layer, weight in clamped.items()}


def is_within_tolerance(
    *,
    current_amounts: Mapping[int, Decimal],
    target_weights: Mapping[int, Decimal],
    total: Decimal,
    acceptable_variance_pct: Decimal,
) -> bool:
    """
    True when every layer's deviation from its weighted target is inside the band.

    ``acceptable_variance_pct`` is expressed in percentage points (3.0 means 3%).
    """
    if total <= ZERO:
        return True
    band = acceptable_variance_pct / HUNDRED * total
    layers = set(current_amounts) | set(target_weights)
    deviations = [
        abs(current_amounts.get(layer, ZERO) - target_weights.get(layer, ZERO) * total)
        for layer in layers
    ]
    return max(deviations, default=ZERO) <= band


def _overflow_layer(targets: Mapping[int, Decimal]) -> int:
    return min(targets, key=lambda layer: (-targets[layer], layer))


def calculate_layer_deltas(
    *,
    current_amounts: Mapping[int, Decimal],
    target_weights: Mapping[int, Decimal],
    total: Decimal,
    minimum_rebalance_amount: Decimal,
    acceptable_variance_pct: Decimal = Decimal("3.0"),
    net_delta: Optional[Decimal] = None,
    currency: str = "EUR",
) -> LayerDeltaResult:
    """
    Turn current layer amounts and target weights into per-layer deltas.

    Deltas smaller than ``minimum_rebalance_amount`` are suppressed and the
    freed amount is pushed back onto the remaining layers. Suppression and
    redistribution repeat at most once per layer. The returned deltas always
    sum to the requested net change, which is ``total + net_delta`` minus the
    current sum.
    """
    current = require_finite_mapping(current_amounts, field="current_amounts")
    total = require_finite(total, field="total")
    injected = require_finite(net_delta if net_delta is not None else ZERO, field="net_delta")
    if total < ZERO:
        raise AllocationInputError(f"total must not be negative, got {total}")
    negative_layers = sorted(layer for layer, amount in current.items() if amount < ZERO)
    if negative_layers:
        raise AllocationInputError(
            f"current amounts must not be negative: layers {negative_layers}"
        )

    effective_total = total + injected
    if effective_total < ZERO:
        raise AllocationInputError(
            f"total after net delta must not be negative, got {effective_total}"
        )

    quantum = minor_unit(currency)
    threshold = max(minimum_rebalance_amount, ZERO)
    layers = sorted(set(current) | set(target_weights))
    weights = normalize_target_weights({layer: target_weights.get(layer, ZERO) for layer in layers})
    current = {layer: current.get(layer, ZERO) for layer in layers}

    if effective_total == ZERO:
        diagnostics = make_layer_delta_diagnostics(within_tolerance=True)
        diagnostics.notes.append("Total is zero; no layer deltas computed.")
        zeros = {layer: ZERO for layer in layers}
        return LayerDeltaResult(
            current_amounts=current,
            target_amounts=dict(zeros),
            raw_deltas=dict(zeros),
            deltas=dict(zeros),
            net_change=ZERO,
            diagnostics=diagnostics,
        )

    weight_sum = sum(weights.values(), ZERO)
    targets = apportion(
        {layer: weights[layer] * effective_total for layer in layers},
        effective_total if weight_sum > ZERO else ZERO,
        quantum=quantum,
    )
    raw_deltas = {layer: targets[layer] - current[layer] for layer in layers}
    net_change = sum(raw_deltas.values(), ZERO)

    diagnostics = make_layer_delta_diagnostics(
        within_tolerance=is_within_tolerance(
            current_amounts=current,
            target_weights=weights,
            total=effective_total,
            acceptable_variance_pct=acceptable_variance_pct,
        )
    )

    adjusted = dict(raw_deltas)
    suppressed = set()
    for layer in layers:
        delta = adjusted[layer]
        if delta != ZERO and abs(delta) < threshold:
            record_suppression(diagnostics, layer=layer, amount=delta)
            adjusted[layer] = ZERO
            suppressed.add(layer)

    overflow = _overflow_layer(targets)
    forced_layer = None
    for _ in range(len(layers)):
        residual = net_change - sum(adjusted.values(), ZERO)
        if residual == ZERO:
            break
        pool = {
            layer: adjusted[layer]
            for layer in layers
            if layer not in suppressed and adjusted[layer] != ZERO
        }
        if not pool:
            forced_layer = overflow
            pool = {overflow: adjusted[overflow]}
            diagnostics.notes.append(
                f"No layer could absorb residual {residual}; assigned to layer {overflow}."
            )
        else:
            diagnostics.notes.append(
                f"Redistributed residual {residual} across layers {sorted(pool)}."
            )
        adjusted.update(redistribute(pool, residual, quantum=quantum, overflow_key=overflow))

        newly_small = [
            layer
            for layer in sorted(pool)
            if layer != forced_layer and ZERO < abs(adjusted[layer]) < threshold
        ]
        if not newly_small:
            continue
        for layer in newly_small:
            record_suppression(diagnostics, layer=layer, amount=adjusted[layer])
            adjusted[layer] = ZERO
            suppressed.add(layer)

    residual = net_change - sum(adjusted.values(), ZERO)
    if residual != ZERO:
        pool = {layer: adjusted[layer] for layer in layers if layer not in suppressed}
        if not pool:
            pool = {overflow: adjusted[overflow]}
        adjusted.update(redistribute(pool, residual, quantum=quantum, overflow_key=overflow))
        diagnostics.notes.append(
            f"Pass limit reached; residual {residual} settled without further suppression."
        )

    assert_exact_sum(adjusted.values(), net_change, context="layer deltas")
    return LayerDeltaResult(
        current_amounts=current,
        target_amounts=targets,
        raw_deltas=raw_deltas,
        deltas=adjusted,
        net_change=net_change,
        diagnostics=diagnostics,
    )


def build_layer_proposals(result: LayerDeltaResult) -> List[LayerProposal]:
    proposals: List[LayerProposal] = []
    for layer in sorted(result.deltas):
        delta = result.deltas[layer]
        current = result.current_amounts.get(layer, ZERO)
        notes: List[str] = []
        raw = result.raw_deltas.get(layer, ZERO)
        if raw != ZERO and delta == ZERO:
            notes.append("Delta below minimum rebalancing amount; suppressed.")
        elif raw != delta:
            notes.append(f"Delta adjusted from {raw} to {delta} by redistribution.")
        proposals.append(
            LayerProposal(
                layer=layer,
                current_amount=current,
                target_amount=current + delta,
                delta=delta,
                notes=notes,
            )
        )
    return proposals
