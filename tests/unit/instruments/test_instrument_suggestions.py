from decimal import Decimal

import pytest

from rebalancer.core.instruments import suggest
from rebalancer.core.instruments.suggestions import score_candidate, split_amount
from rebalancer.core.models import GapDetectionPolicy
from tests.assertions import suggestion_actions
from tests.factories import plan, record


@pytest.fixture
def catalog():
    return [
        record("IE_WORLD", sub_class="Global equity", name="World Equity UCITS ETF Acc"),
        record(
            "IE_EM",
            sub_class="Emerging markets equity",
            name="EM Equity ETF Acc",
            ter="0.18",
            benchmark="MSCI EM",
        ),
        record("IE_SMALL", sub_class="Small cap equity", name="World Small Cap ETF Dist"),
        record("IE_DRAFT", sub_class="Frontier equity", status="DRAFT"),
    ]


def _suggest(catalog, budgets, *, existing=(), **overrides):
    arguments = {
        "plans": [plan("IE_WORLD", "100", layer=1)],
        "existing_isins": existing,
        "budget_gaps_by_layer": {layer: Decimal(value) for layer, value in budgets.items()},
        "catalog": catalog,
        "minimum_plan_size": Decimal("15"),
        "minimum_rebalance_amount": Decimal("10"),
        "minimum_instrument_amount": Decimal("25"),
        "max_plans_per_layer": {layer: 17 for layer in range(1, 6)},
    }
    arguments.update(overrides)
    return suggest(**arguments)


def _items(suggestions):
    return [(item.action, item.isin, item.amount) for item in suggestions]


def test_new_instruments_fill_missing_sub_classes(catalog):
    result = _suggest(catalog, {1: "100"})

    assert _items(result.saving_plan_suggestions) == [
        ("new", "IE_EM", Decimal("50")),
        ("new", "IE_SMALL", Decimal("50")),
    ]
    em, small = result.saving_plan_suggestions
    assert em.rationale == (
        "Fills missing sub-class: emerging markets equity. "
        "Selected because low ongoing charges (0.18%); tracks MSCI EM."
    )
    assert small.rationale == (
        "Fills missing sub-class: small cap equity. "
        "Selected because diversifies existing holdings; suited to core allocation style."
    )
    assert result.one_time_suggestions == []


def test_excluded_isins_are_never_suggested(catalog):
    result = _suggest(catalog, {1: "100"}, excluded_isins=[" ie_em "])

    assert _items(result.saving_plan_suggestions) == [("new", "IE_SMALL", Decimal("100"))]


def test_held_instrument_is_increased_under_saving_plan_gaps(catalog):
    result = _suggest(catalog, {1: "100"}, existing=["IE_EM"])

    assert _items(result.saving_plan_suggestions) == [
        ("increase", "IE_EM", Decimal("50")),
        ("new", "IE_SMALL", Decimal("50")),
    ]


def test_portfolio_gaps_count_holdings_as_coverage(catalog):
    result = _suggest(
        catalog,
        {1: "100"},
        existing=["IE_EM"],
        gap_detection_policy=GapDetectionPolicy.PORTFOLIO_GAPS,
    )

    assert _items(result.saving_plan_suggestions) == [("new", "IE_SMALL", Decimal("100"))]


def test_full_layer_gets_no_saving_plan_suggestions(catalog):
    result = _suggest(catalog, {1: "100"}, max_plans_per_layer={1: 1})

    assert result.saving_plan_suggestions == []


def test_budget_limits_number_of_suggestions(catalog):
    result = _suggest(catalog, {1: "20"})

    assert _items(result.saving_plan_suggestions) == [("new", "IE_EM", Decimal("20"))]


def test_one_time_suggestions_use_instrument_minimum(catalog):
    result = _suggest(catalog, {}, one_time_budgets_by_layer={1: Decimal("60")})

    assert result.saving_plan_suggestions == []
    assert _items(result.one_time_suggestions) == [
        ("new", "IE_EM", Decimal("30")),
        ("new", "IE_SMALL", Decimal("30")),
    ]


def test_empty_layer_gets_baseline_pick():
    catalog = [record("IE_PLAIN", layer=3)]

    result = _suggest(catalog, {3: "50"})

    assert suggestion_actions(result.saving_plan_suggestions) == [("new", "IE_PLAIN")]
    assert result.saving_plan_suggestions[0].rationale == (
        "Adds exposure to build a baseline allocation in this layer."
    )


def test_single_stocks_rank_below_funds_in_lower_layers():
    fund, _ = score_candidate(record("IE_FUND"), layer=2, existing=[], gaps_covered=0, held=False)
    stock, overlap = score_candidate(
        record("US_STOCK", instrument_type="Share"),
        layer=2,
        existing=[],
        gaps_covered=0,
        held=False,
    )

    assert fund == Decimal("0.925")
    assert stock == Decimal("0.225")
    assert overlap is None


def test_split_amount_hands_leftover_to_first_isin():
    amounts = split_amount(
        Decimal("100"), ["BBB", "AAA", "CCC"], minimum_amount=Decimal("15"), quantum=Decimal("0.01")
    )

    assert amounts == {"AAA": Decimal("33.34"), "BBB": Decimal("33.33"), "CCC": Decimal("33.33")}
