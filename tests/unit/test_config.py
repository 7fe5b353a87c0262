from decimal import Decimal

from rebalancer.core.config import (
    RebalancerSettings,
    build_assessment_request,
    env_csv_set,
    env_decimal,
    env_flag,
    load_layer_targets,
    load_settings,
    parse_layer_target_config,
)
from rebalancer.core.models import GapDetectionPolicy, LayerTargetConfig
from tests.factories import plan


def test_parse_layer_target_config_reads_json():
    config = parse_layer_target_config(
        '{"target_weights": {"1": "0.5", "2": "0.5"}, "minimum_saving_plan_size": 20,'
        ' "currency": null}'
    )

    assert config.target_weights == {1: Decimal("0.5"), 2: Decimal("0.5")}
    assert config.minimum_saving_plan_size == Decimal("20")
    assert config.currency == "EUR"


def test_parse_layer_target_config_falls_back_on_bad_input():
    default = LayerTargetConfig()

    assert parse_layer_target_config(None) == default
    assert parse_layer_target_config("   ") == default
    assert parse_layer_target_config("{not json") == default
    assert parse_layer_target_config("[1, 2]") == default
    assert parse_layer_target_config('{"minimum_saving_plan_size": "abc"}') == default


def test_env_helpers(monkeypatch):
    monkeypatch.setenv("FLAG", "Yes")
    monkeypatch.setenv("AMOUNT", "NaN")
    monkeypatch.setenv("ITEMS", " a, ,b ")

    assert env_flag("FLAG", False) is True
    assert env_flag("MISSING_FLAG", True) is True
    assert env_decimal("AMOUNT", Decimal("1")) == Decimal("1")
    assert env_decimal("MISSING_AMOUNT", Decimal("2")) == Decimal("2")
    assert env_csv_set("ITEMS", set()) == {"a", "b"}


def test_load_settings_from_environment(monkeypatch):
    monkeypatch.setenv("REBALANCER_LAYER_TARGETS_JSON", '{"minimum_rebalancing_amount": "5"}')
    monkeypatch.setenv("REBALANCER_KB_ENABLED", "false")
    monkeypatch.setenv("REBALANCER_GAP_DETECTION_POLICY", "holdings")
    monkeypatch.setenv("REBALANCER_EXCLUDED_ISINS", " ie1 , ,IE2")

    settings = load_settings()

    assert settings.layer_targets.minimum_rebalancing_amount == Decimal("5")
    assert settings.knowledge_base_enabled is False
    assert settings.gap_detection_policy is GapDetectionPolicy.PORTFOLIO_GAPS
    assert settings.excluded_isins == {"IE1", "IE2"}


def test_minimum_amounts_override_json_config(monkeypatch):
    monkeypatch.setenv(
        "REBALANCER_LAYER_TARGETS_JSON",
        '{"minimum_saving_plan_size": "20", "minimum_rebalancing_amount": "5"}',
    )
    monkeypatch.setenv("REBALANCER_MINIMUM_SAVING_PLAN_SIZE", "25.5")
    monkeypatch.setenv("REBALANCER_MINIMUM_REBALANCING_AMOUNT", "-1")

    config = load_layer_targets()

    assert config.minimum_saving_plan_size == Decimal("25.5")
    assert config.minimum_rebalancing_amount == Decimal("5")
    assert load_settings().layer_targets == config


def test_load_settings_defaults():
    settings = load_settings()

    assert settings == RebalancerSettings()


def test_build_assessment_request_merges_settings_and_fields():
    settings = RebalancerSettings(
        layer_targets=LayerTargetConfig(minimum_saving_plan_size=Decimal("20")),
        gap_detection_policy=GapDetectionPolicy.PORTFOLIO_GAPS,
        excluded_isins={"IE2"},
    )

    request = build_assessment_request(
        settings=settings,
        plans=[plan("IE1", "100")],
        excluded_isins=["IE3"],
        saving_plan_delta=Decimal("50"),
    )

    assert request.config.minimum_saving_plan_size == Decimal("20")
    assert request.gap_detection_policy is GapDetectionPolicy.PORTFOLIO_GAPS
    assert request.excluded_isins == ["IE2", "IE3"]
    assert request.saving_plan_delta == Decimal("50")
    assert [p.isin for p in request.plans] == ["IE1"]


def test_explicit_fields_override_settings():
    request = build_assessment_request(
        settings=RebalancerSettings(),
        gap_detection_policy=GapDetectionPolicy.PORTFOLIO_GAPS,
    )

    assert request.gap_detection_policy is GapDetectionPolicy.PORTFOLIO_GAPS
    assert request.excluded_isins == []
