"""
FILE: rebalancer/core/engine.py

End-to-end advisory run: layer deltas, plan allocation, instrument
proposals, and suggestions.
"""

import logging
from decimal import Decimal
from typing import Dict, List, Optional

from rebalancer.core.common.guards import AllocationInputError, require_finite
from rebalancer.core.instruments import build_instrument_proposals, suggest
from rebalancer.core.knowledge_base import KnowledgeBase
from rebalancer.core.layers import (
    allocate_one_time,
    apply_layer_minimums,
    build_layer_proposals,
    calculate_layer_deltas,
)
from rebalancer.core.models import (
    LAYERS,
    AssessmentRequest,
    AssessmentResult,
    InstrumentInput,
    LayerDeltaResult,
    LayerMinimumAdjustment,
    LayerProposal,
    RecurringPlan,
    SavingPlanSuggestion,
)
from rebalancer.core.plans import allocate_plan_deltas, build_saving_plan_suggestions

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def current_layer_amounts(plans: List[RecurringPlan]) -> Dict[int, Decimal]:
    amounts = {layer: ZERO for layer in LAYERS}
    for plan in plans:
        amounts[plan.layer] += plan.amount
    return amounts


def _layer_proposals(
    layer_result: LayerDeltaResult,
    adjustment: Optional[LayerMinimumAdjustment],
) -> List[LayerProposal]:
    proposals = build_layer_proposals(layer_result)
    if adjustment is None:
        for proposal in proposals:
            proposal.target_amount = proposal.current_amount
            proposal.delta = ZERO
            proposal.notes = ["Layer within acceptable variance; no change proposed."]
        return proposals

    for proposal in proposals:
        target = adjustment.adjusted_amounts.get(proposal.layer, proposal.target_amount)
        if target == proposal.target_amount:
            continue
        if proposal.layer in adjustment.zeroed_layers:
            proposal.notes.append(
                f"Target below minimum saving plan size; moved to layer {proposal.layer - 1}."
            )
        elif proposal.layer == 1 and adjustment.raised_layer_one:
            proposal.notes.append("Target raised to minimum saving plan size.")
        else:
            proposal.notes.append("Target includes amount moved from a higher layer.")
        proposal.target_amount = target
        proposal.delta = target - proposal.current_amount
    return proposals


def _plan_suggestions(
    request: AssessmentRequest, target_amounts: Dict[int, Decimal], notes: List[str]
) -> List[SavingPlanSuggestion]:
    config = request.config
    suggestions: List[SavingPlanSuggestion] = []
    for layer in LAYERS:
        layer_plans = [plan for plan in request.plans if plan.layer == layer]
        if not layer_plans:
            continue
        allocation = allocate_plan_deltas(
            plans=layer_plans,
            layer_target_amount=target_amounts.get(layer, ZERO),
            minimum_rebalance_amount=config.minimum_rebalancing_amount,
            minimum_plan_size=config.minimum_saving_plan_size,
            currency=config.currency,
        )
        notes.extend(f"Layer {layer}: {note}" for note in allocation.notes)
        suggestions.extend(
            build_saving_plan_suggestions(
                plans=layer_plans,
                allocation=allocation,
                minimum_rebalance_amount=config.minimum_rebalancing_amount,
            )
        )
    return sorted(suggestions, key=lambda s: (s.type, s.isin, s.account_id or ""))


def run_assessment(
    request: AssessmentRequest, *, knowledge_base: KnowledgeBase
) -> AssessmentResult:
    """
    Run one advisory assessment.

    Allocation is skipped when every layer is within tolerance, unless a
    non-zero saving-plan delta was requested. The knowledge base is read once
    for instrument proposals and once for the suggestion catalog.
    """
    config = request.config
    plans = list(request.plans)
    current = current_layer_amounts(plans)
    current_total = sum(current.values(), ZERO)
    saving_plan_delta = require_finite(
        request.saving_plan_delta or ZERO, field="saving_plan_delta"
    )
    if current_total + saving_plan_delta < ZERO:
        raise AllocationInputError("saving plan delta exceeds the current monthly total")

    logger.info(
        "Running assessment. plans=%s total=%s delta=%s policy=%s",
        len(plans),
        current_total,
        saving_plan_delta,
        request.gap_detection_policy.value,
    )

    layer_result = calculate_layer_deltas(
        current_amounts=current,
        target_weights=config.target_weights,
        total=current_total,
        minimum_rebalance_amount=config.minimum_rebalancing_amount,
        acceptable_variance_pct=config.acceptable_variance_pct,
        net_delta=saving_plan_delta,
        currency=config.currency,
    )
    diagnostics = layer_result.diagnostics.model_copy(deep=True)
    allocate = not diagnostics.within_tolerance or saving_plan_delta != ZERO

    adjustment: Optional[LayerMinimumAdjustment] = None
    target_amounts = dict(current)
    saving_plan_suggestions: List[SavingPlanSuggestion] = []
    if allocate:
        adjustment = apply_layer_minimums(
            target_amounts={
                layer: current.get(layer, ZERO) + delta
                for layer, delta in layer_result.deltas.items()
            },
            minimum_saving_plan_size=config.minimum_saving_plan_size,
        )
        target_amounts = dict(adjustment.adjusted_amounts)
        for layer in adjustment.zeroed_layers:
            diagnostics.notes.append(
                f"Layer {layer} target below minimum saving plan size; moved to layer {layer - 1}."
            )
        if adjustment.raised_layer_one:
            diagnostics.notes.append("Layer 1 target raised to minimum saving plan size.")
        saving_plan_suggestions = _plan_suggestions(request, target_amounts, diagnostics.notes)
    else:
        logger.info("Layers within acceptable variance; no saving plan changes proposed.")

    one_time_allocation = None
    if request.one_time_amount is not None:
        one_time_allocation = allocate_one_time(
            amount=request.one_time_amount,
            target_weights=config.target_weights,
            minimum_rebalancing_amount=config.minimum_rebalancing_amount,
            minimum_instrument_amount=config.minimum_instrument_amount,
            holdings_by_layer=request.holdings_by_layer or None,
            plans=plans,
            instrument_allocation_enabled=request.instrument_allocation_enabled,
            currency=config.currency,
        )

    instrument_proposals = None
    if request.instrument_proposals_enabled and plans:
        instrument_proposals = build_instrument_proposals(
            instruments=[
                InstrumentInput(
                    isin=plan.isin,
                    name=plan.name,
                    amount=plan.amount,
                    layer=plan.layer,
                    last_changed=plan.last_changed,
                )
                for plan in plans
            ],
            layer_budgets={
                layer: target_amounts.get(layer, ZERO)
                for layer in LAYERS
                if current.get(layer, ZERO) > ZERO or target_amounts.get(layer, ZERO) > ZERO
            },
            minimum_plan_size=config.minimum_saving_plan_size,
            minimum_rebalance_amount=config.minimum_rebalancing_amount,
            within_tolerance=not allocate,
            knowledge_base=knowledge_base,
            currency=config.currency,
        )

    instrument_suggestions = None
    if request.suggestions_enabled and knowledge_base.enabled:
        budget_gaps = {
            layer: target_amounts.get(layer, ZERO) - current.get(layer, ZERO)
            for layer in LAYERS
            if target_amounts.get(layer, ZERO) > current.get(layer, ZERO)
        }
        one_time_budgets: Dict[int, Decimal] = {}
        if one_time_allocation is not None:
            one_time_budgets = {
                layer: amount
                for layer, amount in one_time_allocation.layer_buckets.items()
                if amount > ZERO
            }
        instrument_suggestions = suggest(
            plans=plans,
            existing_isins=request.existing_isins,
            budget_gaps_by_layer=budget_gaps,
            catalog=knowledge_base.catalog(),
            minimum_plan_size=config.minimum_saving_plan_size,
            minimum_rebalance_amount=config.minimum_rebalancing_amount,
            minimum_instrument_amount=config.minimum_instrument_amount,
            max_plans_per_layer=config.max_plans_per_layer,
            excluded_isins=request.excluded_isins,
            gap_detection_policy=request.gap_detection_policy,
            one_time_budgets_by_layer=one_time_budgets,
            currency=config.currency,
        )

    logger.info(
        "Assessment complete. allocate=%s plan_suggestions=%s suppressed=%s",
        allocate,
        len(saving_plan_suggestions),
        diagnostics.suppressed_deltas_count,
    )
    return AssessmentResult(
        current_monthly_total=current_total,
        current_layer_amounts=current,
        target_layer_amounts=target_amounts,
        layer_proposals=_layer_proposals(layer_result, adjustment),
        saving_plan_suggestions=saving_plan_suggestions,
        one_time_allocation=one_time_allocation,
        instrument_proposals=instrument_proposals,
        instrument_suggestions=instrument_suggestions,
        diagnostics=diagnostics,
    )
