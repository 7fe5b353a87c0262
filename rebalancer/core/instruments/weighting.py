"""
FILE: rebalancer/core/instruments/weighting.py
"""

from decimal import Decimal
from typing import Dict, Mapping, Optional, Sequence

from rebalancer.core.common.rounding import apportion
from rebalancer.core.instruments.signals import (
    cost_factor,
    data_quality_penalty,
    redundancy,
    sector_factor,
    valuation_score,
)
from rebalancer.core.models import ExtractionRecord, LayerWeightingSummary

ZERO = Decimal("0")
ONE = Decimal("1")
WEIGHT_QUANTUM = Decimal("1e-8")
MIN_SCORE = Decimal("0.0001")
VALUATION_BASE = Decimal("0.7")
VALUATION_SPAN = Decimal("0.3")


def equal_weights(isins: Sequence[str]) -> Dict[str, Decimal]:
    ordered = sorted(set(isins))
    if not ordered:
        return {}
    share = ONE / Decimal(len(ordered))
    return apportion({isin: share for isin in ordered}, ONE, quantum=WEIGHT_QUANTUM)


def compute_layer_weights(
    *,
    layer: int,
    isins: Sequence[str],
    records: Mapping[str, Optional[ExtractionRecord]],
) -> LayerWeightingSummary:
    """
    Derive normalised instrument weights for one layer.

    A signal only contributes when every instrument in the layer carries it.
    """
    ordered = sorted(set(isins))
    layer_records = [records.get(isin) for isin in ordered]
    if not ordered or any(record is None for record in layer_records):
        return LayerWeightingSummary(
            layer=layer,
            instrument_count=len(ordered),
            weighted=False,
            weights=equal_weights(ordered),
        )

    multi = len(ordered) > 1
    cost_used = all(record.ongoing_charges_pct is not None for record in layer_records)
    benchmark_used = multi and all(record.benchmark_index for record in layer_records)
    regions_used = multi and all(record.regions for record in layer_records)
    holdings_used = multi and all(record.top_holdings for record in layer_records)
    sectors_used = (
        multi and sector_factor(layer) > ZERO and all(record.sectors for record in layer_records)
    )
    valuations = {record.isin: valuation_score(record) for record in layer_records}
    valuation_used = all(score is not None for score in valuations.values())
    penalties = {record.isin: data_quality_penalty(record) for record in layer_records}
    data_quality_used = any(penalty > ZERO for penalty in penalties.values())
    redundancy_used = benchmark_used or regions_used or holdings_used or sectors_used

    weighted = cost_used or redundancy_used or valuation_used or data_quality_used
    if not weighted:
        return LayerWeightingSummary(
            layer=layer,
            instrument_count=len(ordered),
            weighted=False,
            weights=equal_weights(ordered),
        )

    scores: Dict[str, Decimal] = {}
    for record in layer_records:
        score = ONE
        if cost_used:
            score *= cost_factor(record)
        if redundancy_used:
            score *= ONE - redundancy(
                record,
                layer_records,
                layer=layer,
                use_benchmark=benchmark_used,
                use_regions=regions_used,
                use_holdings=holdings_used,
                use_sectors=sectors_used,
            )
        if valuation_used:
            score *= VALUATION_BASE + VALUATION_SPAN * valuations[record.isin]
        if data_quality_used:
            score *= ONE - penalties[record.isin]
        scores[record.isin] = max(score, MIN_SCORE)

    score_total = sum(scores.values(), ZERO)
    weights = apportion(
        {isin: score / score_total for isin, score in scores.items()}, ONE, quantum=WEIGHT_QUANTUM
    )
    return LayerWeightingSummary(
        layer=layer,
        instrument_count=len(ordered),
        weighted=True,
        cost_used=cost_used,
        benchmark_used=benchmark_used,
        regions_used=regions_used,
        holdings_used=holdings_used,
        sectors_used=sectors_used,
        valuation_used=valuation_used,
        data_quality_used=data_quality_used,
        weights=weights,
    )
