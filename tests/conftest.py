"""
FILE: tests/conftest.py
Shared fixtures for allocation engine tests.
"""

from decimal import Decimal
from pathlib import Path

import pytest

from rebalancer.core.models import LayerTargetConfig
from tests.factories import CountingKnowledgeBase, record

_ENV_VARS = (
    "REBALANCER_LAYER_TARGETS_JSON",
    "REBALANCER_KB_ENABLED",
    "REBALANCER_GAP_DETECTION_POLICY",
    "REBALANCER_EXCLUDED_ISINS",
    "REBALANCER_MINIMUM_SAVING_PLAN_SIZE",
    "REBALANCER_MINIMUM_REBALANCING_AMOUNT",
    "SERVICE_NAME",
    "ENVIRONMENT",
    "LOG_LEVEL",
)


def _has_marker(item: pytest.Item, name: str) -> bool:
    return item.get_closest_marker(name) is not None


def pytest_collection_modifyitems(items: list[pytest.Item]) -> None:
    for item in items:
        if (
            _has_marker(item, "unit")
            or _has_marker(item, "integration")
            or _has_marker(item, "e2e")
        ):
            continue

        path = Path(str(item.fspath)).as_posix().lower()
        if "/tests/integration/" in path or "_integration.py" in path:
            item.add_marker(pytest.mark.integration)
            continue
        if "/tests/engine/" in path or "/tests/golden/" in path:
            item.add_marker(pytest.mark.e2e)
            continue
        item.add_marker(pytest.mark.unit)


@pytest.fixture(autouse=True)
def clean_rebalancer_env(monkeypatch: pytest.MonkeyPatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def default_config():
    return LayerTargetConfig()


@pytest.fixture
def scenario_config():
    return LayerTargetConfig(
        minimum_saving_plan_size=Decimal("15"),
        minimum_rebalancing_amount=Decimal("10"),
        minimum_instrument_amount=Decimal("25"),
    )


@pytest.fixture
def knowledge_base():
    return CountingKnowledgeBase(
        [
            record("IE_WORLD", layer=1, sub_class="Global equity", name="World Equity ETF Acc"),
            record("IE_BOND", layer=2, sub_class="Government bonds", name="Euro Govt Bond ETF"),
            record("IE_TECH", layer=3, sub_class="Sector equity", name="Technology ETF Acc"),
        ]
    )
