"""
FILE: rebalancer/core/instruments/profiles.py

Keyword-based instrument profiles used for gap detection and scoring.
"""

import re
from typing import Iterable, List, Optional, Set, Tuple

from rebalancer.core.models import ExtractionRecord

GAP_CATEGORIES = ("sub_class", "theme", "localisation", "distribution")

THEME_KEYWORDS = (
    "technology",
    "health",
    "dividend",
    "real estate",
    "small cap",
    "mid cap",
    "emerging",
    "sustainable",
    "esg",
    "value",
    "growth",
    "quality",
    "momentum",
    "equal weight",
    "infra",
    "infrastructure",
)

LOCALE_KEYWORDS = {
    "united states": "united states",
    "usa": "united states",
    "us": "united states",
    "europe": "europe",
    "european": "europe",
    "emerging": "emerging markets",
    "emerging markets": "emerging markets",
    "japan": "japan",
    "asia": "asia",
    "global": "global",
    "world": "global",
    "uk": "united kingdom",
    "united kingdom": "united kingdom",
}

_ACCUMULATING = re.compile(r"\bacc(?:umulating)?\b")
_DISTRIBUTING = re.compile(r"\bdist(?:ributing|ribution)?\b")

Gap = Tuple[str, str]


def _lower(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def _contains_word(text: str, keyword: str) -> bool:
    return re.search(rf"\b{re.escape(keyword)}\b", text) is not None


def _descriptive_text(record: ExtractionRecord) -> str:
    parts = [record.name, record.sub_class, record.layer_notes, record.benchmark_index]
    return " ".join(_lower(part) for part in parts if part)


def is_etf(record: ExtractionRecord) -> bool:
    instrument_type = _lower(record.instrument_type)
    return (
        "etf" in instrument_type
        or "ucits" in instrument_type
        or "fund" in _lower(record.asset_class)
    )


def is_reit(record: ExtractionRecord) -> bool:
    return any(
        "reit" in _lower(value)
        for value in (record.instrument_type, record.sub_class, record.layer_notes)
    )


def is_single_stock(record: ExtractionRecord) -> bool:
    notes = _lower(record.layer_notes)
    if any(marker in notes for marker in ("single stock", "single-company", "single issuer")):
        return True
    if "single-stock" in _lower(record.sub_class):
        return True
    instrument_type = _lower(record.instrument_type)
    if "etf" in instrument_type:
        return False
    return "share" in instrument_type or "equity" in instrument_type


def themes(record: ExtractionRecord) -> Set[str]:
    text = _descriptive_text(record)
    return {keyword for keyword in THEME_KEYWORDS if _contains_word(text, keyword)}


def locales(record: ExtractionRecord) -> Set[str]:
    found = {_lower(region) for region, weight in record.regions.items() if weight > 0}
    text = _descriptive_text(record)
    for keyword, locale in LOCALE_KEYWORDS.items():
        if _contains_word(text, keyword):
            found.add(locale)
    return {locale for locale in found if locale}


def distribution(record: ExtractionRecord) -> Optional[str]:
    name = _lower(record.name)
    if _ACCUMULATING.search(name):
        return "accumulating"
    if _DISTRIBUTING.search(name):
        return "distributing"
    return None


def coverage(record: ExtractionRecord) -> Set[Gap]:
    covered: Set[Gap] = set()
    sub_class = _lower(record.sub_class)
    if sub_class:
        covered.add(("sub_class", sub_class))
    covered.update(("theme", theme) for theme in themes(record))
    covered.update(("localisation", locale) for locale in locales(record))
    share_class = distribution(record)
    if share_class:
        covered.add(("distribution", share_class))
    return covered


def combined_coverage(records: Iterable[ExtractionRecord]) -> Set[Gap]:
    covered: Set[Gap] = set()
    for record in records:
        covered |= coverage(record)
    return covered


def sort_gaps(gaps: Iterable[Gap]) -> List[Gap]:
    return sorted(gaps, key=lambda gap: (GAP_CATEGORIES.index(gap[0]), gap[1]))
