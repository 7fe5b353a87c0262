"""
FILE: rebalancer/core/config.py

Environment-driven defaults for advisory runs.
"""

import json
import os
from decimal import Decimal, InvalidOperation
from typing import Any, Optional, Set

from pydantic import BaseModel, Field, ValidationError

from rebalancer.core.models import (
    AssessmentRequest,
    GapDetectionPolicy,
    LayerTargetConfig,
    normalize_isin,
)

LAYER_TARGETS_ENV = "REBALANCER_LAYER_TARGETS_JSON"
KB_ENABLED_ENV = "REBALANCER_KB_ENABLED"
GAP_DETECTION_POLICY_ENV = "REBALANCER_GAP_DETECTION_POLICY"
EXCLUDED_ISINS_ENV = "REBALANCER_EXCLUDED_ISINS"
MINIMUM_PLAN_SIZE_ENV = "REBALANCER_MINIMUM_SAVING_PLAN_SIZE"
MINIMUM_REBALANCING_ENV = "REBALANCER_MINIMUM_REBALANCING_AMOUNT"


def env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def env_decimal(name: str, default: Decimal) -> Decimal:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        parsed = Decimal(value.strip())
    except InvalidOperation:
        return default
    return parsed if parsed.is_finite() and parsed >= 0 else default


def env_csv_set(name: str, default: set[str]) -> set[str]:
    value = os.getenv(name)
    if value is None:
        return set(default)
    parsed = {item.strip() for item in value.split(",") if item.strip()}
    return parsed or set(default)


def parse_layer_target_config(config_json: Optional[str]) -> LayerTargetConfig:
    normalized_json = (config_json or "").strip()
    if not normalized_json:
        return LayerTargetConfig()
    try:
        raw: Any = json.loads(normalized_json)
    except json.JSONDecodeError:
        return LayerTargetConfig()
    if not isinstance(raw, dict):
        return LayerTargetConfig()

    payload = {key: value for key, value in raw.items() if value is not None}
    try:
        return LayerTargetConfig.model_validate(payload)
    except ValidationError:
        return LayerTargetConfig()


class RebalancerSettings(BaseModel):
    layer_targets: LayerTargetConfig = Field(default_factory=LayerTargetConfig)
    knowledge_base_enabled: bool = Field(
        default=True, description="Whether instrument-level output may use the knowledge base."
    )
    gap_detection_policy: GapDetectionPolicy = GapDetectionPolicy.SAVING_PLAN_GAPS
    excluded_isins: Set[str] = Field(default_factory=set)


def load_layer_targets() -> LayerTargetConfig:
    """JSON layer config with the two minimum amounts overridable one by one."""
    config = parse_layer_target_config(os.getenv(LAYER_TARGETS_ENV))
    return config.model_copy(
        update={
            "minimum_saving_plan_size": env_decimal(
                MINIMUM_PLAN_SIZE_ENV, config.minimum_saving_plan_size
            ),
            "minimum_rebalancing_amount": env_decimal(
                MINIMUM_REBALANCING_ENV, config.minimum_rebalancing_amount
            ),
        }
    )


def load_settings() -> RebalancerSettings:
    excluded = {
        isin
        for isin in (normalize_isin(raw) for raw in env_csv_set(EXCLUDED_ISINS_ENV, set()))
        if isin
    }
    return RebalancerSettings(
        layer_targets=load_layer_targets(),
        knowledge_base_enabled=env_flag(KB_ENABLED_ENV, True),
        gap_detection_policy=GapDetectionPolicy.parse(os.getenv(GAP_DETECTION_POLICY_ENV)),
        excluded_isins=excluded,
    )


def build_assessment_request(
    *, settings: Optional[RebalancerSettings] = None, **fields: Any
) -> AssessmentRequest:
    """Fill request defaults from ``settings`` (or the environment); explicit fields win."""
    resolved = settings or load_settings()
    payload = {
        "config": resolved.layer_targets,
        "gap_detection_policy": resolved.gap_detection_policy,
    }
    payload.update(fields)
    payload["excluded_isins"] = sorted(
        set(resolved.excluded_isins) | set(fields.get("excluded_isins") or [])
    )
    return AssessmentRequest.model_validate(payload)
