from decimal import Decimal

from rebalancer.core.layers import apply_layer_minimums
from tests.factories import dec_map


def test_small_layers_roll_down_from_layer_five():
    result = apply_layer_minimums(
        target_amounts=dec_map({1: "80", 2: "10", 3: "5", 4: "0", 5: "12"}),
        minimum_saving_plan_size=Decimal("15"),
    )

    assert result.adjusted_amounts == dec_map({1: "90", 2: "0", 3: "17", 4: "0", 5: "0"})
    assert result.zeroed_layers == [5, 4, 2]
    assert result.rebalanced is True
    assert result.raised_layer_one is False


def test_lone_layer_one_is_raised_to_minimum():
    result = apply_layer_minimums(
        target_amounts=dec_map({1: "5", 2: "4"}),
        minimum_saving_plan_size=Decimal("15"),
    )

    assert result.adjusted_amounts == dec_map({1: "15", 2: "0"})
    assert result.zeroed_layers == [2]
    assert result.raised_layer_one is True


def test_targets_above_minimum_are_untouched():
    targets = dec_map({1: "70", 2: "20", 3: "15"})

    result = apply_layer_minimums(target_amounts=targets, minimum_saving_plan_size=Decimal("15"))

    assert result.adjusted_amounts == targets
    assert result.rebalanced is False
