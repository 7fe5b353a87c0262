"""
FILE: rebalancer/core/plans/suggestions.py
"""

from decimal import Decimal
from typing import Dict, List, Sequence

from rebalancer.core.models import PlanAllocation, RecurringPlan, SavingPlanSuggestion

ZERO = Decimal("0")

_RATIONALES = {
    "create": "Create to align with target layer allocation.",
    "increase": "Increase to align with target layer allocation.",
    "decrease": "Decrease to align with target layer allocation.",
    "discard": "Discard to avoid sub-minimum saving plan size.",
}


def _suggestion_type(old_amount: Decimal, new_amount: Decimal) -> str:
    if new_amount == ZERO:
        return "discard"
    if old_amount == ZERO:
        return "create"
    return "increase" if new_amount > old_amount else "decrease"


def build_saving_plan_suggestions(
    *,
    plans: Sequence[RecurringPlan],
    allocation: PlanAllocation,
    minimum_rebalance_amount: Decimal,
) -> List[SavingPlanSuggestion]:
    by_key: Dict[str, RecurringPlan] = {}
    for plan in plans:
        by_key.setdefault(plan.plan_key, plan)

    suggestions: List[SavingPlanSuggestion] = []
    for key, delta in allocation.deltas.items():
        if delta == ZERO or key not in by_key:
            continue
        plan = by_key[key]
        new_amount = allocation.proposed_amounts.get(key, ZERO)
        old_amount = new_amount - delta
        suggestion_type = _suggestion_type(old_amount, new_amount)
        if suggestion_type in {"increase", "decrease"} and abs(delta) < minimum_rebalance_amount:
            continue
        suggestions.append(
            SavingPlanSuggestion(
                type=suggestion_type,
                isin=plan.isin,
                account_id=plan.account_id,
                old_amount=old_amount,
                new_amount=new_amount,
                delta=delta,
                rationale=_RATIONALES[suggestion_type],
            )
        )
    return sorted(suggestions, key=lambda s: (s.type, s.isin, s.account_id or ""))
