from copy import deepcopy
from threading import Lock
from typing import Dict, Iterable, List, Optional, Sequence

from rebalancer.core.knowledge_base.repository import KnowledgeBase
from rebalancer.core.models import ExtractionRecord


class InMemoryKnowledgeBase(KnowledgeBase):
    def __init__(
        self, records: Optional[Iterable[ExtractionRecord]] = None, *, enabled: bool = True
    ) -> None:
        self._lock = Lock()
        self._enabled = enabled
        self._records: Dict[str, ExtractionRecord] = {}
        for record in records or []:
            self._records[record.isin] = deepcopy(record)

    @property
    def enabled(self) -> bool:
        return self._enabled

    def upsert(self, record: ExtractionRecord) -> None:
        with self._lock:
            self._records[record.isin] = deepcopy(record)

    def fetch(self, isins: Sequence[str]) -> Dict[str, ExtractionRecord]:
        with self._lock:
            return {
                isin: deepcopy(self._records[isin]) for isin in isins if isin in self._records
            }

    def catalog(self) -> List[ExtractionRecord]:
        with self._lock:
            return [deepcopy(self._records[isin]) for isin in sorted(self._records)]
