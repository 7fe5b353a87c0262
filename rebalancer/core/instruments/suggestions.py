"""
FILE: rebalancer/core/instruments/suggestions.py

Gap-driven suggestions of new or increased instruments per layer.
"""

from decimal import ROUND_DOWN, Decimal
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from rebalancer.core.common.rounding import minor_unit
from rebalancer.core.instruments.profiles import (
    Gap,
    combined_coverage,
    coverage,
    is_etf,
    is_single_stock,
    sort_gaps,
)
from rebalancer.core.instruments.signals import cost_factor, redundancy, valuation_score
from rebalancer.core.knowledge_base import is_record_complete
from rebalancer.core.models import (
    LAYERS,
    ExtractionRecord,
    GapDetectionPolicy,
    RecurringPlan,
    SuggestionItem,
    SuggestionResult,
    normalize_isin,
)

ZERO = Decimal("0")
ONE = Decimal("1")
MAX_SUGGESTIONS_PER_LAYER = 3
NEUTRAL_SIGNAL = Decimal("0.5")
NOVELTY_BONUS = Decimal("0.2")
FUND_BONUS = Decimal("0.3")
SINGLE_STOCK_PENALTY = Decimal("0.4")
GAP_BONUS_STEP = Decimal("0.1")
GAP_BONUS_CAP = Decimal("0.4")
LOW_COST_THRESHOLD_PCT = Decimal("0.25")
DIVERSIFYING_REDUNDANCY = Decimal("0.4")
MAX_RATIONALE_REASONS = 2


def _gap_rationale(gap: Optional[Gap]) -> str:
    if gap is None:
        return "Adds exposure to build a baseline allocation in this layer."
    category, value = gap
    if category == "sub_class":
        return f"Fills missing sub-class: {value}."
    if category == "theme":
        return f"Adds missing theme exposure: {value}."
    if category == "localisation":
        return f"Adds regional exposure to {value}."
    return f"Adds {value} share class not present in this layer."


def _selection_reasons(
    record: ExtractionRecord, *, layer: int, redundancy_score: Optional[Decimal]
) -> List[str]:
    reasons: List[str] = []
    charges = record.ongoing_charges_pct
    if charges is not None and charges <= LOW_COST_THRESHOLD_PCT:
        reasons.append(f"low ongoing charges ({charges}%)")
    if record.benchmark_index:
        reasons.append(f"tracks {record.benchmark_index}")
    if redundancy_score is not None and redundancy_score < DIVERSIFYING_REDUNDANCY:
        reasons.append("diversifies existing holdings")
    if layer == 1 and is_etf(record):
        reasons.append("suited to core allocation style")
    return reasons[:MAX_RATIONALE_REASONS]


def build_rationale(
    record: ExtractionRecord,
    *,
    layer: int,
    gap: Optional[Gap],
    redundancy_score: Optional[Decimal] = None,
) -> str:
    rationale = _gap_rationale(gap)
    reasons = _selection_reasons(record, layer=layer, redundancy_score=redundancy_score)
    if reasons:
        rationale += " Selected because " + "; ".join(reasons) + "."
    return rationale


def score_candidate(
    record: ExtractionRecord,
    *,
    layer: int,
    existing: Sequence[ExtractionRecord],
    gaps_covered: int,
    held: bool,
) -> Tuple[Decimal, Optional[Decimal]]:
    """
    Rank a candidate for a layer. Returns the score and the redundancy against
    the layer's existing coverage (None when the layer has no coverage yet).
    """
    cost = cost_factor(record)
    overlap = redundancy(record, existing, layer=layer) if existing else None
    uniqueness = ONE - overlap if overlap is not None else NEUTRAL_SIGNAL
    valuation = valuation_score(record)

    score = (
        Decimal("0.35") * (cost if cost is not None else NEUTRAL_SIGNAL)
        + Decimal("0.35") * uniqueness
        + Decimal("0.15") * (valuation if valuation is not None else NEUTRAL_SIGNAL)
    )
    if is_etf(record):
        score += FUND_BONUS
    score += min(GAP_BONUS_CAP, GAP_BONUS_STEP * gaps_covered)
    if layer <= 3 and is_single_stock(record):
        score -= SINGLE_STOCK_PENALTY
    if not held:
        score += NOVELTY_BONUS
    return score, overlap


def split_amount(
    budget: Decimal, isins: Sequence[str], *, minimum_amount: Decimal, quantum: Decimal
) -> Dict[str, Decimal]:
    """Each pick gets the minimum plus an equal share; leftover units go in ISIN order."""
    ordered = sorted(isins)
    if not ordered:
        return {}
    count = Decimal(len(ordered))
    remainder = budget - minimum_amount * count
    share = (remainder / count).quantize(quantum, rounding=ROUND_DOWN)
    amounts = {isin: minimum_amount + share for isin in ordered}
    leftover_units = int(((remainder - share * count) / quantum).to_integral_value(ROUND_DOWN))
    for index in range(leftover_units):
        amounts[ordered[index % len(ordered)]] += quantum
    return amounts


def _layer_candidates(
    catalog: Iterable[ExtractionRecord], *, layer: int, excluded: Set[str]
) -> List[ExtractionRecord]:
    return sorted(
        (
            record
            for record in catalog
            if record.layer == layer and record.isin not in excluded and is_record_complete(record)
        ),
        key=lambda record: record.isin,
    )


def _suggest_for_layer(
    *,
    layer: int,
    budget: Decimal,
    limit: int,
    minimum_amount: Decimal,
    quantum: Decimal,
    candidates: Sequence[ExtractionRecord],
    coverage_records: Sequence[ExtractionRecord],
    held_records: Sequence[ExtractionRecord],
    held_isins: Set[str],
    has_plans: bool,
) -> List[SuggestionItem]:
    existing_coverage = combined_coverage(coverage_records)
    candidate_coverage = combined_coverage(candidates)
    gaps = sort_gaps(candidate_coverage - existing_coverage)
    new_candidates = [record for record in candidates if record.isin not in held_isins]

    picks: List[Tuple[ExtractionRecord, Optional[Gap], str, Optional[Decimal]]] = []
    picked: Set[str] = set()
    covered: Set[Gap] = set()

    def best(pool: Iterable[ExtractionRecord], *, held: bool):
        ranked = []
        for record in pool:
            gaps_covered = len(coverage(record) & set(gaps))
            score, overlap = score_candidate(
                record,
                layer=layer,
                existing=coverage_records,
                gaps_covered=gaps_covered,
                held=held,
            )
            ranked.append((-score, record.isin, record, overlap))
        if not ranked:
            return None
        _, _, record, overlap = min(ranked, key=lambda item: (item[0], item[1]))
        return record, overlap

    for gap in gaps:
        if len(picks) >= limit:
            break
        if gap in covered:
            continue
        choice = best(
            (r for r in new_candidates if r.isin not in picked and gap in coverage(r)), held=False
        )
        action = "new"
        if choice is None:
            choice = best(
                (r for r in held_records if r.isin not in picked and gap in coverage(r)),
                held=True,
            )
            action = "increase"
        if choice is None:
            continue
        record, overlap = choice
        picks.append((record, gap, action, overlap))
        picked.add(record.isin)
        covered |= coverage(record)

    if not gaps and not has_plans:
        choice = best(new_candidates, held=False)
        if choice is not None:
            record, overlap = choice
            picks.append((record, None, "new", overlap))

    picks = picks[:limit]
    amounts = split_amount(
        budget,
        [record.isin for record, _, _, _ in picks],
        minimum_amount=minimum_amount,
        quantum=quantum,
    )
    items = [
        SuggestionItem(
            isin=record.isin,
            name=record.name,
            layer=layer,
            amount=amounts[record.isin],
            action=action,
            rationale=build_rationale(record, layer=layer, gap=gap, redundancy_score=overlap),
        )
        for record, gap, action, overlap in picks
    ]
    return sorted(items, key=lambda item: item.isin)


def _suggestions_for_budgets(
    *,
    budgets: Mapping[int, Decimal],
    minimum_amount: Decimal,
    free_slots: Mapping[int, int],
    catalog: Sequence[ExtractionRecord],
    records_by_isin: Mapping[str, ExtractionRecord],
    plans: Sequence[RecurringPlan],
    existing_isins: Set[str],
    excluded: Set[str],
    policy: GapDetectionPolicy,
    quantum: Decimal,
) -> List[SuggestionItem]:
    items: List[SuggestionItem] = []
    for layer in sorted(budgets):
        budget = budgets[layer]
        if budget <= ZERO:
            continue
        by_budget = MAX_SUGGESTIONS_PER_LAYER
        if minimum_amount > ZERO:
            by_budget = int(budget // minimum_amount)
        limit = min(MAX_SUGGESTIONS_PER_LAYER, free_slots.get(layer, 0), by_budget)
        if limit <= 0:
            continue

        plan_isins = {plan.isin for plan in plans if plan.layer == layer}
        held_isins = {plan.isin for plan in plans} | existing_isins
        coverage_isins = set(plan_isins)
        if policy == GapDetectionPolicy.PORTFOLIO_GAPS:
            coverage_isins |= {
                isin
                for isin in existing_isins
                if isin in records_by_isin and records_by_isin[isin].layer == layer
            }
        coverage_records = [
            records_by_isin[isin] for isin in sorted(coverage_isins) if isin in records_by_isin
        ]
        held_records = [
            records_by_isin[isin]
            for isin in sorted(held_isins - excluded)
            if isin in records_by_isin and records_by_isin[isin].layer == layer
        ]
        items.extend(
            _suggest_for_layer(
                layer=layer,
                budget=budget,
                limit=limit,
                minimum_amount=minimum_amount,
                quantum=quantum,
                candidates=_layer_candidates(catalog, layer=layer, excluded=excluded),
                coverage_records=coverage_records,
                held_records=held_records,
                held_isins=held_isins,
                has_plans=bool(plan_isins),
            )
        )
    return items


def suggest(
    *,
    plans: Sequence[RecurringPlan],
    existing_isins: Iterable[str],
    budget_gaps_by_layer: Mapping[int, Decimal],
    catalog: Sequence[ExtractionRecord],
    minimum_plan_size: Decimal,
    minimum_rebalance_amount: Decimal,
    minimum_instrument_amount: Decimal,
    max_plans_per_layer: Mapping[int, int],
    excluded_isins: Iterable[str] = (),
    gap_detection_policy: GapDetectionPolicy = GapDetectionPolicy.SAVING_PLAN_GAPS,
    one_time_budgets_by_layer: Optional[Mapping[int, Decimal]] = None,
    currency: str = "EUR",
) -> SuggestionResult:
    """
    Suggest instruments that close coverage gaps in layers with spare budget.

    ``budget_gaps_by_layer`` drives saving-plan suggestions and
    ``one_time_budgets_by_layer`` drives one-time suggestions. A layer only
    receives saving-plan suggestions while it has fewer plans than
    ``max_plans_per_layer``.
    """
    quantum = minor_unit(currency)
    excluded = {isin for isin in (normalize_isin(raw) for raw in excluded_isins) if isin}
    existing = {isin for isin in (normalize_isin(raw) for raw in existing_isins) if isin}
    records_by_isin = {record.isin: record for record in catalog if is_record_complete(record)}

    plan_counts: Dict[int, int] = {}
    for layer in LAYERS:
        plan_counts[layer] = len({plan.isin for plan in plans if plan.layer == layer})
    free_slots = {
        layer: max(max_plans_per_layer.get(layer, 0) - plan_counts.get(layer, 0), 0)
        for layer in LAYERS
    }
    shared = {
        "catalog": catalog,
        "records_by_isin": records_by_isin,
        "plans": plans,
        "existing_isins": existing,
        "excluded": excluded,
        "policy": gap_detection_policy,
        "quantum": quantum,
    }
    saving_plan_items = _suggestions_for_budgets(
        budgets=budget_gaps_by_layer,
        minimum_amount=max(minimum_plan_size, minimum_rebalance_amount),
        free_slots=free_slots,
        **shared,
    )
    one_time_items = _suggestions_for_budgets(
        budgets=one_time_budgets_by_layer or {},
        minimum_amount=minimum_instrument_amount,
        free_slots={layer: MAX_SUGGESTIONS_PER_LAYER for layer in LAYERS},
        **shared,
    )
    return SuggestionResult(
        saving_plan_suggestions=saving_plan_items, one_time_suggestions=one_time_items
    )
