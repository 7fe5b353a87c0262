"""Layer delta and lump-sum allocation package."""

from rebalancer.core.layers.deltas import (
    build_layer_proposals,
    calculate_layer_deltas,
    is_within_tolerance,
    normalize_target_weights,
)
from rebalancer.core.layers.minimums import apply_layer_minimums
from rebalancer.core.layers.one_time import allocate_one_time, split_bucket_across_plans

__all__ = [
    "allocate_one_time",
    "apply_layer_minimums",
    "build_layer_proposals",
    "calculate_layer_deltas",
    "is_within_tolerance",
    "normalize_target_weights",
    "split_bucket_across_plans",
]
