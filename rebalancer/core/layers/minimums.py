"""
FILE: rebalancer/core/layers/minimums.py
"""

from decimal import Decimal
from typing import Mapping

from rebalancer.core.models import LayerMinimumAdjustment

ZERO = Decimal("0")


def apply_layer_minimums(
    *, target_amounts: Mapping[int, Decimal], minimum_saving_plan_size: Decimal
) -> LayerMinimumAdjustment:
    """
    Roll layer targets that are too small for a saving plan into the next lower layer.

    Layers are walked from 5 down to 2. A positive amount below the minimum is
    zeroed and added to layer - 1. If layer 1 ends up as the only funded layer and
    is still below the minimum, it is raised to the minimum.
    """
    adjusted = {layer: amount for layer, amount in target_amounts.items()}
    adjusted.setdefault(1, ZERO)
    zeroed = []
    for layer in sorted((layer for layer in adjusted if layer > 1), reverse=True):
        amount = adjusted[layer]
        if ZERO < amount < minimum_saving_plan_size:
            lower = layer - 1
            adjusted[lower] = adjusted.get(lower, ZERO) + amount
            adjusted[layer] = ZERO
            zeroed.append(layer)

    raised = False
    others_funded = any(amount > ZERO for layer, amount in adjusted.items() if layer != 1)
    if not others_funded and ZERO < adjusted[1] < minimum_saving_plan_size:
        adjusted[1] = minimum_saving_plan_size
        raised = True

    return LayerMinimumAdjustment(
        adjusted_amounts=dict(sorted(adjusted.items())),
        zeroed_layers=zeroed,
        rebalanced=bool(zeroed) or raised,
        raised_layer_one=raised,
    )
