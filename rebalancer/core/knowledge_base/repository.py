from typing import Dict, List, Protocol, Sequence

from rebalancer.core.models import ExtractionRecord


class KnowledgeBase(Protocol):
    @property
    def enabled(self) -> bool: ...

    def fetch(self, isins: Sequence[str]) -> Dict[str, ExtractionRecord]: ...

    def catalog(self) -> List[ExtractionRecord]: ...
