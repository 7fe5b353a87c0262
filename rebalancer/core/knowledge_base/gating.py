"""
FILE: rebalancer/core/knowledge_base/gating.py
"""

from typing import Dict, Iterable, Tuple

from rebalancer.core.knowledge_base.repository import KnowledgeBase
from rebalancer.core.models import ExtractionRecord, GatingResult, normalize_isin

COMPLETE_STATUSES = frozenset({"COMPLETE", "APPROVED", "APPLIED"})


def is_record_complete(record: ExtractionRecord) -> bool:
    return (record.status or "").strip().upper() in COMPLETE_STATUSES


def in_scope_isins(isins: Iterable[str]) -> list[str]:
    return sorted({isin for isin in (normalize_isin(raw) for raw in isins) if isin})


def evaluate_gating(
    *, knowledge_base: KnowledgeBase, isins: Iterable[str]
) -> Tuple[GatingResult, Dict[str, ExtractionRecord]]:
    """
    Fetch every in-scope ISIN in one batch and report which lack complete data.

    Only complete records are returned alongside the gating result.
    """
    scope = in_scope_isins(isins)
    if not knowledge_base.enabled:
        return GatingResult(enabled=False, complete=not scope, missing_isins=scope), {}
    if not scope:
        return GatingResult(enabled=True, complete=True, missing_isins=[]), {}

    fetched = knowledge_base.fetch(scope)
    records = {
        isin: record
        for isin, record in fetched.items()
        if isin in scope and is_record_complete(record)
    }
    missing = [isin for isin in scope if isin not in records]
    return GatingResult(enabled=True, complete=not missing, missing_isins=missing), records
