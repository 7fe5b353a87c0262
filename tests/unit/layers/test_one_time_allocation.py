from decimal import Decimal

import pytest

from rebalancer.core.common.guards import AllocationInputError
from rebalancer.core.layers import allocate_one_time, split_bucket_across_plans
from rebalancer.core.models import DEFAULT_TARGET_WEIGHTS
from tests.factories import dec_map, plan


def _allocate(amount, **kwargs):
    return allocate_one_time(
        amount=Decimal(amount),
        target_weights=kwargs.pop("target_weights", DEFAULT_TARGET_WEIGHTS),
        minimum_rebalancing_amount=Decimal("10"),
        minimum_instrument_amount=Decimal("25"),
        **kwargs,
    )


def test_lump_sum_follows_priority_layer_weights():
    result = _allocate("1000")

    assert result.layer_buckets == dec_map({1: "700", 2: "200", 3: "100", 4: "0"})
    assert result.instrument_buckets is None
    assert any("moved to layer 3" in note for note in result.notes)


def test_lump_sum_below_minimum_rebalancing_amount_is_not_allocated():
    result = _allocate("5")

    assert result.layer_buckets == {}
    assert result.notes == ["One-time amount below minimum rebalancing amount; nothing allocated."]


def test_lump_sum_follows_underweight_gaps_and_cascades_small_buckets_down():
    result = _allocate(
        "100", holdings_by_layer=dec_map({1: "600", 2: "300", 3: "100", 4: "0"})
    )

    assert result.layer_buckets == dec_map({1: "100", 2: "0", 3: "0", 4: "0"})
    assert sum(result.layer_buckets.values(), Decimal("0")) == Decimal("100")


def test_lump_sum_split_across_plans_when_instrument_allocation_enabled():
    plans = [
        plan("AAA", "100", layer=1),
        plan("BBB", "50", layer=1),
        plan("CCC", "10", layer=1),
    ]

    result = _allocate("1000", plans=plans, instrument_allocation_enabled=True)

    assert result.instrument_buckets == dec_map(
        {"AAA": "437.50", "BBB": "218.75", "CCC": "43.75"}
    )
    assert any("Layer 2 has no funded saving plan" in note for note in result.notes)


def test_sub_minimum_instrument_share_rolls_into_largest_plan():
    split = split_bucket_across_plans(
        bucket=Decimal("100"),
        plans=[plan("AAA", "90"), plan("BBB", "10")],
        minimum_instrument_amount=Decimal("25"),
        quantum=Decimal("0.01"),
    )

    assert split == dec_map({"AAA": "100"})


def test_negative_lump_sum_fails_hard():
    with pytest.raises(AllocationInputError):
        _allocate("-1")
