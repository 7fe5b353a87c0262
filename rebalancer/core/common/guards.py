"""
FILE: rebalancer/core/common/guards.py
"""

from decimal import Decimal
from typing import Iterable, Mapping


class AllocationInputError(ValueError):
    """Raised when caller-supplied allocation inputs cannot be processed."""


class AllocationInvariantError(AssertionError):
    """Raised when an allocation result breaks an exactness or sign guarantee."""


def require_finite(value: Decimal, *, field: str) -> Decimal:
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    if not value.is_finite():
        raise AllocationInputError(f"{field} must be a finite amount, got {value}")
    return value


def require_finite_mapping(values: Mapping, *, field: str) -> dict:
    return {key: require_finite(value, field=f"{field}[{key}]") for key, value in values.items()}


def assert_exact_sum(values: Iterable[Decimal], expected: Decimal, *, context: str) -> None:
    actual = sum(values, Decimal("0"))
    if actual != expected:
        raise AllocationInvariantError(
            f"{context}: amounts sum to {actual}, expected {expected}"
        )


def assert_non_negative(values: Mapping, *, context: str) -> None:
    negatives = sorted(str(key) for key, value in values.items() if value < 0)
    if negatives:
        raise AllocationInvariantError(f"{context}: negative amounts for {', '.join(negatives)}")
