from rebalancer.core.knowledge_base.gating import (
    COMPLETE_STATUSES,
    evaluate_gating,
    in_scope_isins,
    is_record_complete,
)
from rebalancer.core.knowledge_base.repository import KnowledgeBase

__all__ = [
    "COMPLETE_STATUSES",
    "KnowledgeBase",
    "evaluate_gating",
    "in_scope_isins",
    "is_record_complete",
]
