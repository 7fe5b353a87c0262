from decimal import Decimal

import pytest
from pydantic import ValidationError

from rebalancer.core.models import (
    DEFAULT_TARGET_WEIGHTS,
    GapDetectionPolicy,
    LayerTargetConfig,
    RecurringPlan,
    normalize_isin,
)


def test_layer_target_config_defaults():
    config = LayerTargetConfig()

    assert config.target_weights == DEFAULT_TARGET_WEIGHTS
    assert config.acceptable_variance_pct == Decimal("3.0")
    assert config.minimum_saving_plan_size == Decimal("15")
    assert config.minimum_rebalancing_amount == Decimal("10")
    assert config.minimum_instrument_amount == Decimal("25")
    assert config.max_plans_per_layer == {1: 17, 2: 17, 3: 17, 4: 17, 5: 17}
    assert config.currency == "EUR"


def test_layer_target_config_clamps_out_of_range_values():
    config = LayerTargetConfig(
        target_weights={1: "-0.5", 2: "1", 9: "0.3"},
        acceptable_variance_pct="-1",
        minimum_saving_plan_size="-5",
        max_plans_per_layer={1: -2, 7: 3},
        currency=" usd ",
    )

    assert config.target_weights == {1: Decimal("0"), 2: Decimal("1")}
    assert config.acceptable_variance_pct == Decimal("3.0")
    assert config.minimum_saving_plan_size == Decimal("0")
    assert config.max_plans_per_layer == {1: 0, 2: 17, 3: 17, 4: 17, 5: 17}
    assert config.currency == "USD"


def test_blank_currency_falls_back_to_eur():
    assert LayerTargetConfig(currency="  ").currency == "EUR"


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("PORTFOLIO_GAPS", GapDetectionPolicy.PORTFOLIO_GAPS),
        ("portfolio-gaps", GapDetectionPolicy.PORTFOLIO_GAPS),
        ("all holdings", GapDetectionPolicy.PORTFOLIO_GAPS),
        ("holdings", GapDetectionPolicy.PORTFOLIO_GAPS),
        ("saving_plan_gaps", GapDetectionPolicy.SAVING_PLAN_GAPS),
        ("unknown", GapDetectionPolicy.SAVING_PLAN_GAPS),
        (None, GapDetectionPolicy.SAVING_PLAN_GAPS),
    ],
)
def test_gap_detection_policy_parse(raw, expected):
    assert GapDetectionPolicy.parse(raw) is expected


def test_recurring_plan_normalises_isin_and_builds_key():
    plan = RecurringPlan(isin=" ie00b4l5y983 ", account_id="depot_1", amount="150", layer=1)

    assert plan.isin == "IE00B4L5Y983"
    assert plan.plan_key == "IE00B4L5Y983@depot_1"
    assert RecurringPlan(isin="IE1", amount="1", layer=2).plan_key == "IE1"


def test_recurring_plan_rejects_invalid_input():
    with pytest.raises(ValidationError):
        RecurringPlan(isin="  ", amount="10", layer=1)
    with pytest.raises(ValidationError):
        RecurringPlan(isin="IE1", amount="-1", layer=1)
    with pytest.raises(ValidationError):
        RecurringPlan(isin="IE1", amount="10", layer=6)


def test_normalize_isin():
    assert normalize_isin(" de0001 ") == "DE0001"
    assert normalize_isin("   ") is None
    assert normalize_isin(None) is None
