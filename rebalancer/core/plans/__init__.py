"""Saving-plan allocation package."""

from rebalancer.core.plans.allocator import allocate_plan_deltas
from rebalancer.core.plans.suggestions import build_saving_plan_suggestions

__all__ = [
    "allocate_plan_deltas",
    "build_saving_plan_suggestions",
]
