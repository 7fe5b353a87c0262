from typing import Iterable, Optional

from rebalancer.core.config import RebalancerSettings, load_settings
from rebalancer.core.knowledge_base.repository import KnowledgeBase
from rebalancer.core.models import ExtractionRecord
from rebalancer.infrastructure.knowledge_base.in_memory import InMemoryKnowledgeBase


def build_knowledge_base(
    records: Optional[Iterable[ExtractionRecord]] = None,
    *,
    settings: Optional[RebalancerSettings] = None,
) -> KnowledgeBase:
    resolved = settings or load_settings()
    return InMemoryKnowledgeBase(records, enabled=resolved.knowledge_base_enabled)
