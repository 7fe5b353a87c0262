"""
FILE: rebalancer/core/instruments/rebalance.py

Per-instrument proposals for each layer budget, gated on knowledge-base completeness.
"""

import logging
from decimal import Decimal
from typing import Dict, List, Mapping, Optional, Sequence, Set, Tuple

from rebalancer.core.common.diagnostics import make_layer_warning
from rebalancer.core.common.guards import assert_exact_sum, assert_non_negative, require_finite
from rebalancer.core.common.minimums import lift_or_drop_below_minimum
from rebalancer.core.common.rounding import (
    apportion,
    minor_unit,
    quantize_amount_for_currency,
    redistribute,
)
from rebalancer.core.instruments.weighting import compute_layer_weights
from rebalancer.core.knowledge_base import KnowledgeBase, evaluate_gating
from rebalancer.core.models import (
    ExtractionRecord,
    InstrumentInput,
    InstrumentProposal,
    InstrumentProposalResult,
    InstrumentWarning,
    LayerWeightingSummary,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def _group_by_layer(
    instruments: Sequence[InstrumentInput],
) -> Tuple[Dict[int, Dict[str, Decimal]], Dict[str, Optional[str]]]:
    layers: Dict[int, Dict[str, Decimal]] = {}
    names: Dict[str, Optional[str]] = {}
    for instrument in instruments:
        amount = require_finite(instrument.amount, field=f"amount[{instrument.isin}]")
        bucket = layers.setdefault(instrument.layer, {})
        bucket[instrument.isin] = bucket.get(instrument.isin, ZERO) + amount
        if names.get(instrument.isin) is None:
            names[instrument.isin] = instrument.name
    return layers, names


def _by_weight(weights: Mapping[str, Decimal]):
    return lambda isin: (-weights.get(isin, ZERO), isin)


def _enforce_minimum(
    proposed: Dict[str, Decimal],
    *,
    budget: Decimal,
    weights: Mapping[str, Decimal],
    minimum_plan_size: Decimal,
    quantum: Decimal,
) -> Set[str]:
    isins = sorted(proposed)
    below = sorted(
        (isin for isin in isins if ZERO < proposed[isin] < minimum_plan_size),
        key=lambda isin: (-proposed[isin], isin),
    )
    if not below:
        return set()

    slack = sum(
        (
            proposed[isin] - minimum_plan_size
            for isin in isins
            if isin not in below and proposed[isin] > minimum_plan_size
        ),
        ZERO,
    )
    lifted: List[str] = []
    dropped: Set[str] = set()
    for isin in below:
        need = minimum_plan_size - proposed[isin]
        if need <= slack:
            lifted.append(isin)
            slack -= need
        else:
            dropped.add(isin)

    kept = [
        isin
        for isin in isins
        if isin not in dropped and (proposed[isin] > ZERO or isin in lifted)
    ]
    if not kept:
        top = min(isins, key=_by_weight(weights))
        for isin in isins:
            proposed[isin] = ZERO
        proposed[top] = budget
        return dropped - {top}

    base = {isin: minimum_plan_size for isin in lifted}
    receivers = [isin for isin in kept if isin not in base] or lifted
    remainder = budget - sum(base.values(), ZERO)
    receiver_weight = sum((weights[isin] for isin in receivers), ZERO)
    shares = apportion(
        {isin: remainder * weights[isin] / receiver_weight for isin in receivers},
        remainder,
        quantum=quantum,
    )
    for isin in isins:
        proposed[isin] = base.get(isin, ZERO) + shares.get(isin, ZERO) if isin in kept else ZERO

    _, moved = lift_or_drop_below_minimum(
        proposed, minimum=minimum_plan_size, priority=weights
    )
    return dropped | set(moved)


def _snap_back(
    proposed: Dict[str, Decimal],
    *,
    budget: Decimal,
    current: Mapping[str, Decimal],
    weights: Mapping[str, Decimal],
    dropped: Set[str],
    minimum_plan_size: Decimal,
    minimum_rebalance_amount: Decimal,
    quantum: Decimal,
) -> Tuple[Set[str], Set[str]]:
    """
    Hold small changes at the current amount and re-settle the freed residual.

    Returns the snapped ISINs and the full dropped set, which grows when
    re-settling pushes an instrument below ``minimum_plan_size``.
    """
    isins = sorted(proposed)
    before_snap = dict(proposed)
    dropped = set(dropped)
    pinned: Set[str] = set()
    snapped: Set[str] = set()

    def snappable(isin: str) -> bool:
        if isin in dropped or isin in pinned or isin in snapped:
            return False
        held = current.get(isin, ZERO)
        change = abs(proposed[isin] - held)
        return ZERO < change < minimum_rebalance_amount and not ZERO < held < minimum_plan_size

    for isin in isins:
        if snappable(isin):
            proposed[isin] = current.get(isin, ZERO)
            snapped.add(isin)

    for _ in range(2 * len(isins) + 1):
        residual = budget - sum(proposed.values(), ZERO)
        if residual == ZERO:
            break
        pool = {
            isin: proposed[isin]
            for isin in isins
            if isin not in snapped and isin not in dropped and proposed[isin] > ZERO
        }
        if not pool or sum(pool.values(), ZERO) + residual < ZERO:
            if not snapped:
                break
            top = min(snapped, key=_by_weight(weights))
            snapped.discard(top)
            pinned.add(top)
            proposed[top] = before_snap[top]
            continue
        pool.update(redistribute(pool, residual, quantum=quantum))
        _, moved = lift_or_drop_below_minimum(pool, minimum=minimum_plan_size, priority=weights)
        dropped.update(moved)
        proposed.update(pool)
        for isin in sorted(pool):
            if snappable(isin):
                proposed[isin] = current.get(isin, ZERO)
                snapped.add(isin)

    residual = budget - sum(proposed.values(), ZERO)
    if residual != ZERO:
        eligible = [isin for isin in isins if isin not in dropped] or isins
        top = min(eligible, key=_by_weight(weights))
        proposed[top] += residual
        snapped.discard(top)

    # Last resort: a lone pool member can still sit below the minimum.
    _, moved = lift_or_drop_below_minimum(proposed, minimum=minimum_plan_size, priority=weights)
    dropped.update(moved)
    snapped = {isin for isin in snapped if proposed[isin] == current.get(isin, ZERO)}
    return snapped, dropped


def _allocate_layer(
    *,
    budget: Decimal,
    current: Mapping[str, Decimal],
    weights: Mapping[str, Decimal],
    minimum_plan_size: Decimal,
    minimum_rebalance_amount: Decimal,
    quantum: Decimal,
) -> Tuple[Dict[str, Decimal], Set[str], Set[str]]:
    proposed = apportion(
        {isin: budget * weight for isin, weight in weights.items()}, budget, quantum=quantum
    )
    dropped = _enforce_minimum(
        proposed,
        budget=budget,
        weights=weights,
        minimum_plan_size=minimum_plan_size,
        quantum=quantum,
    )
    snapped, dropped = _snap_back(
        proposed,
        budget=budget,
        current=current,
        weights=weights,
        dropped=dropped,
        minimum_plan_size=minimum_plan_size,
        minimum_rebalance_amount=minimum_rebalance_amount,
        quantum=quantum,
    )
    return proposed, dropped, snapped


def build_instrument_proposals(
    *,
    instruments: Sequence[InstrumentInput],
    layer_budgets: Mapping[int, Decimal],
    minimum_plan_size: Decimal,
    minimum_rebalance_amount: Decimal,
    within_tolerance: bool,
    knowledge_base: KnowledgeBase,
    currency: str = "EUR",
) -> InstrumentProposalResult:
    """
    Propose a new amount for every instrument so each layer sums to its budget.

    Nothing is proposed when any in-scope instrument lacks complete
    knowledge-base data. Layers absent from ``layer_budgets`` keep their
    current sum as budget.
    """
    by_layer, names = _group_by_layer(instruments)
    gating, records = evaluate_gating(
        knowledge_base=knowledge_base,
        isins=[isin for layer in by_layer.values() for isin in layer],
    )
    if not gating.complete:
        logger.info(
            "Instrument proposals withheld; knowledge base incomplete. missing=%s",
            ",".join(gating.missing_isins),
        )
        return InstrumentProposalResult(gating=gating, proposals=[])

    proposals: List[InstrumentProposal] = []
    warnings: List[InstrumentWarning] = []
    summaries: List[LayerWeightingSummary] = []

    def add(isin: str, layer: int, current: Decimal, proposed: Decimal, codes: List[str]) -> None:
        record: Optional[ExtractionRecord] = records.get(isin)
        proposals.append(
            InstrumentProposal(
                isin=isin,
                name=names.get(isin) or (record.name if record else None),
                current_amount=current,
                proposed_amount=proposed,
                delta=proposed - current,
                layer=layer,
                reason_codes=codes,
            )
        )

    if within_tolerance:
        for layer in sorted(by_layer):
            for isin, amount in sorted(by_layer[layer].items()):
                add(isin, layer, amount, amount, ["NO_CHANGE_WITHIN_TOLERANCE"])
        return InstrumentProposalResult(gating=gating, proposals=proposals)

    quantum = minor_unit(currency)
    for layer in sorted(set(by_layer) | set(layer_budgets)):
        current = by_layer.get(layer, {})
        raw_budget = layer_budgets.get(layer, sum(current.values(), ZERO))
        budget = quantize_amount_for_currency(
            require_finite(raw_budget, field=f"layer_budgets[{layer}]"), currency
        )
        if budget <= ZERO:
            for isin, amount in sorted(current.items()):
                add(isin, layer, amount, ZERO, ["LAYER_BUDGET_ZERO"])
            continue
        if not current:
            warnings.append(
                make_layer_warning(
                    code="LAYER_NO_INSTRUMENTS",
                    layer=layer,
                    message=f"Layer {layer} has budget {budget} but no instruments.",
                )
            )
            continue

        summary = compute_layer_weights(layer=layer, isins=list(current), records=records)
        summaries.append(summary)
        proposed, dropped, snapped = _allocate_layer(
            budget=budget,
            current=current,
            weights=summary.weights,
            minimum_plan_size=minimum_plan_size,
            minimum_rebalance_amount=minimum_rebalance_amount,
            quantum=quantum,
        )
        assert_non_negative(proposed, context=f"layer {layer} instrument amounts")
        assert_exact_sum(proposed.values(), budget, context=f"layer {layer} instrument amounts")

        weighting_code = "KB_WEIGHTED" if summary.weighted else "EQUAL_WEIGHT"
        for isin in sorted(proposed):
            codes = []
            if isin in dropped:
                codes.append("MIN_AMOUNT_DROPPED")
            if isin in snapped:
                codes.append("MIN_REBALANCE_AMOUNT")
            codes.append(weighting_code)
            add(isin, layer, current[isin], proposed[isin], codes)

    return InstrumentProposalResult(
        gating=gating, proposals=proposals, warnings=warnings, weighting_summaries=summaries
    )
