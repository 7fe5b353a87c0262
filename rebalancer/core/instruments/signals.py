"""
FILE: rebalancer/core/instruments/signals.py

Per-instrument signals feeding the layer weighting: valuation, redundancy,
data quality and cost. All arithmetic stays in Decimal.
"""

from decimal import Decimal
from typing import Dict, Mapping, Optional, Sequence

from rebalancer.core.instruments.profiles import is_etf, is_reit
from rebalancer.core.models import ExtractionRecord, ValuationSnapshot

ZERO = Decimal("0")
ONE = Decimal("1")

EARNINGS_YIELD_CAP = Decimal("0.20")
EV_EBITDA_REFERENCE = Decimal("12")
DIVIDEND_YIELD_CAP = Decimal("0.08")
PRICE_TO_BOOK_REFERENCE = Decimal("2")

ETF_VALUATION_WEIGHTS = {
    "holdings": Decimal("0.65"),
    "current": Decimal("0.20"),
    "price_to_book": Decimal("0.10"),
    "dividend": Decimal("0.05"),
}
REIT_VALUATION_WEIGHTS = {
    "longterm": Decimal("0.40"),
    "current": Decimal("0.20"),
    "ev_to_ebitda": Decimal("0.20"),
    "price_to_book": Decimal("0.10"),
}
STOCK_VALUATION_WEIGHTS = {
    "longterm": Decimal("0.5"),
    "current": Decimal("0.2"),
    "ev_to_ebitda": Decimal("0.2"),
    "dividend": Decimal("0.05"),
    "price_to_book": Decimal("0.05"),
}

PE_METHOD_QUALITY = {
    "ttm": Decimal("1.0"),
    "forward": Decimal("0.90"),
    "provider_weighted_avg": Decimal("0.95"),
    "provider_aggregate": Decimal("0.90"),
}
PE_HORIZON_QUALITY = {"normalized": Decimal("1.0"), "ttm": Decimal("0.95")}
NEG_EARNINGS_QUALITY = {
    "exclude": Decimal("1.0"),
    "set_null": Decimal("0.95"),
    "aggregate_allows_negative": Decimal("0.90"),
}
QUALITY_FLOOR = Decimal("0.7")

MAX_DATA_QUALITY_PENALTY = Decimal("0.25")
MISSING_FIELD_PENALTY = Decimal("0.01")
WARNING_PENALTY = Decimal("0.05")


def _clamp(value: Decimal, low: Decimal = ZERO, high: Decimal = ONE) -> Decimal:
    return max(low, min(high, value))


def _positive(value: Optional[Decimal]) -> Optional[Decimal]:
    return value if value is not None and value > ZERO else None


def _yield_from(
    earnings_yield: Optional[Decimal], price_earnings: Optional[Decimal]
) -> Optional[Decimal]:
    if _positive(earnings_yield):
        return earnings_yield
    if _positive(price_earnings):
        return ONE / price_earnings
    return None


def _capped_ratio(numerator: Optional[Decimal], cap: Decimal) -> Optional[Decimal]:
    if numerator is None:
        return None
    return min(numerator / cap, ONE)


def _inverse_ratio(reference: Decimal, multiple: Optional[Decimal]) -> Optional[Decimal]:
    if not _positive(multiple):
        return None
    return min(reference / multiple, ONE)


def _quality_lookup(
    table: Mapping[str, Decimal], value: Optional[str], *, other: Decimal, missing: Decimal
) -> Decimal:
    if not value:
        return missing
    return table.get(value.strip().lower(), other)


def valuation_quality_multiplier(valuation: ValuationSnapshot) -> Decimal:
    multiplier = (
        _quality_lookup(
            PE_METHOD_QUALITY, valuation.pe_method, other=Decimal("0.92"), missing=Decimal("0.95")
        )
        * _quality_lookup(
            PE_HORIZON_QUALITY, valuation.pe_horizon, other=Decimal("0.92"), missing=Decimal("0.95")
        )
        * _quality_lookup(
            NEG_EARNINGS_QUALITY,
            valuation.neg_earnings_handling,
            other=Decimal("0.92"),
            missing=Decimal("0.97"),
        )
    )
    return _clamp(multiplier, QUALITY_FLOOR, ONE)


def valuation_sub_scores(valuation: ValuationSnapshot) -> Dict[str, Optional[Decimal]]:
    return {
        "holdings": _capped_ratio(
            _yield_from(valuation.earnings_yield_ttm_holdings, valuation.pe_ttm_holdings),
            EARNINGS_YIELD_CAP,
        ),
        "longterm": _capped_ratio(
            _yield_from(valuation.earnings_yield_longterm, valuation.pe_longterm),
            EARNINGS_YIELD_CAP,
        ),
        "current": _capped_ratio(_yield_from(None, valuation.pe_current), EARNINGS_YIELD_CAP),
        "ev_to_ebitda": _inverse_ratio(EV_EBITDA_REFERENCE, valuation.ev_to_ebitda),
        "dividend": _capped_ratio(_positive(valuation.dividend_yield), DIVIDEND_YIELD_CAP),
        "price_to_book": _inverse_ratio(PRICE_TO_BOOK_REFERENCE, valuation.price_to_book),
    }


def valuation_score(record: ExtractionRecord) -> Optional[Decimal]:
    """
    Score in [0, 1] where cheaper instruments score higher.

    Returns None when the record carries no usable valuation multiple.
    """
    if record.valuation is None:
        return None
    if is_etf(record):
        category_weights = ETF_VALUATION_WEIGHTS
    elif is_reit(record):
        category_weights = REIT_VALUATION_WEIGHTS
    else:
        category_weights = STOCK_VALUATION_WEIGHTS

    sub_scores = valuation_sub_scores(record.valuation)
    weighted = ZERO
    weight_total = ZERO
    for name, weight in category_weights.items():
        score = sub_scores.get(name)
        if score is None or score <= ZERO:
            continue
        weighted += weight * score
        weight_total += weight
    if weight_total == ZERO:
        return None
    return _clamp(weighted / weight_total * valuation_quality_multiplier(record.valuation))


def _normalized_exposures(exposures: Mapping[str, Decimal]) -> Dict[str, Decimal]:
    cleaned = {key.strip().lower(): value for key, value in exposures.items() if key.strip()}
    if any(value > ONE for value in cleaned.values()):
        return {key: value / Decimal("100") for key, value in cleaned.items()}
    return cleaned


def exposure_overlap(left: Mapping[str, Decimal], right: Mapping[str, Decimal]) -> Decimal:
    a = _normalized_exposures(left)
    b = _normalized_exposures(right)
    if not a or not b:
        return ZERO
    total = max(sum(a.values(), ZERO), sum(b.values(), ZERO))
    if total > ZERO:
        shared = sum((min(a[key], b[key]) for key in a.keys() & b.keys()), ZERO)
        return _clamp(shared / total)
    return Decimal(len(a.keys() & b.keys())) / Decimal(max(len(a), len(b)))


def sector_factor(layer: int) -> Decimal:
    if layer == 1:
        return Decimal("0.5")
    if layer == 5:
        return ZERO
    return ONE


def _average_overlap(
    record: ExtractionRecord, peers: Sequence[ExtractionRecord], attribute: str
) -> Decimal:
    others = [peer for peer in peers if peer.isin != record.isin]
    if not others:
        return ZERO
    overlaps = [
        exposure_overlap(getattr(record, attribute), getattr(peer, attribute)) for peer in others
    ]
    return sum(overlaps, ZERO) / Decimal(len(others))


def benchmark_overlap(record: ExtractionRecord, peers: Sequence[ExtractionRecord]) -> Decimal:
    benchmark = (record.benchmark_index or "").strip().lower()
    others = [peer for peer in peers if peer.isin != record.isin]
    if not benchmark or not others:
        return ZERO
    shared = sum(
        1 for peer in others if (peer.benchmark_index or "").strip().lower() == benchmark
    )
    return Decimal(shared) / Decimal(len(others))


def redundancy(
    record: ExtractionRecord,
    peers: Sequence[ExtractionRecord],
    *,
    layer: int,
    use_benchmark: bool = True,
    use_regions: bool = True,
    use_holdings: bool = True,
    use_sectors: bool = True,
) -> Decimal:
    """Weighted average overlap of ``record`` with the other instruments in its layer."""
    components = []
    if use_benchmark:
        components.append((ONE, benchmark_overlap(record, peers)))
    if use_regions:
        components.append((ONE, _average_overlap(record, peers, "regions")))
    if use_holdings:
        components.append((ONE, _average_overlap(record, peers, "top_holdings")))
    factor = sector_factor(layer)
    if use_sectors and factor > ZERO:
        components.append((factor, _average_overlap(record, peers, "sectors")))
    weight_total = sum((weight for weight, _ in components), ZERO)
    if weight_total == ZERO:
        return ZERO
    return _clamp(sum((weight * value for weight, value in components), ZERO) / weight_total)


def data_quality_penalty(record: ExtractionRecord) -> Decimal:
    penalty = (
        Decimal(len(record.missing_fields)) * MISSING_FIELD_PENALTY
        + Decimal(len(record.warnings)) * WARNING_PENALTY
    )
    return min(MAX_DATA_QUALITY_PENALTY, penalty)


def cost_factor(record: ExtractionRecord) -> Optional[Decimal]:
    if record.ongoing_charges_pct is None:
        return None
    return ONE / (ONE + record.ongoing_charges_pct)
