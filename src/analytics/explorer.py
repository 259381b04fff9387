"""
Event explorer helpers: filtering, facet values and recent sources.

Works on already-loaded events; nothing here touches the repository.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from src.schemas.event import AnalyticsEvent, DataSource

ENRICHMENT_FILTERS = ("all", "enriched", "unenriched")
RECENT_SOURCES_SHOWN = 4


@dataclass
class EventFilter:
    """
    Explorer filter state.

    `event_type` and `country` accept None or "all" for no filtering;
    `search` matches case-insensitively against event_type, user_id and country.
    """

    search: str = ""
    event_type: Optional[str] = None
    country: Optional[str] = None
    enrichment: str = "all"

    def __post_init__(self):
        if self.enrichment not in ENRICHMENT_FILTERS:
            raise ValueError(
                f"enrichment must be one of {ENRICHMENT_FILTERS}, got '{self.enrichment}'"
            )

    def matches(self, event: AnalyticsEvent) -> bool:
        if self.search:
            needle = self.search.lower()
            haystack = (event.event_type, event.user_id, event.country)
            if not any(value and needle in value.lower() for value in haystack):
                return False

        if _is_set(self.event_type) and event.event_type != self.event_type:
            return False
        if _is_set(self.country) and event.country != self.country:
            return False

        if self.enrichment == "enriched":
            return event.is_enriched
        if self.enrichment == "unenriched":
            return not event.is_enriched
        return True


def _is_set(value: Optional[str]) -> bool:
    return value is not None and value != "all"


def filter_events(
    events: Sequence[AnalyticsEvent], event_filter: Optional[EventFilter] = None
) -> List[AnalyticsEvent]:
    """Events matching the filter, in input order."""
    if event_filter is None:
        return list(events)
    return [e for e in events if event_filter.matches(e)]


def event_facets(events: Sequence[AnalyticsEvent]) -> Dict[str, List[str]]:
    """Distinct non-empty event types and countries, first-seen order."""
    event_types: Dict[str, None] = {}
    countries: Dict[str, None] = {}
    for event in events:
        if event.event_type:
            event_types.setdefault(event.event_type)
        if event.country:
            countries.setdefault(event.country)
    return {"event_types": list(event_types), "countries": list(countries)}


def explorer_summary(events: Sequence[AnalyticsEvent]) -> Tuple[int, int]:
    """(shown, enriched) counts for a filtered listing."""
    return len(events), sum(1 for e in events if e.is_enriched)


def recent_sources(
    sources: Sequence[DataSource], limit: int = RECENT_SOURCES_SHOWN
) -> List[Dict[str, Any]]:
    """Newest-first data sources trimmed for display."""
    return [
        {
            "id": s.id,
            "name": s.name,
            "processing_status": s.processing_status.value,
            "total_events": s.total_events,
            "enriched_events": s.enriched_events,
            "created_date": s.created_date.isoformat(),
        }
        for s in list(sources)[: max(limit, 0)]
    ]
