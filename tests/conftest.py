"""
Shared pytest fixtures for the event analytics ingest test suite.

Provides factories for AnalyticsEvent objects and simple in-process fakes for
the pipeline collaborators.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pytest

from src.ingestion.extraction import ExtractionResult
from src.ingestion.persist import InMemoryEventRepository
from src.schemas.event import AnalyticsEvent


@pytest.fixture
def create_event():
    """
    Return a function that creates AnalyticsEvent objects with sensible defaults.

    All defaults can be overridden via keyword arguments.

    Example:
        event = create_event(event_type="Purchase", ip_address="8.8.8.8")
    """

    def _create_event(
        event_type: str = "Page View",
        timestamp: Optional[datetime] = None,
        ip_address: Optional[str] = None,
        **kwargs,
    ) -> AnalyticsEvent:
        if timestamp is None:
            timestamp = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)

        defaults = {
            "event_id": str(uuid.uuid4()),
            "timestamp": timestamp,
            "event_type": event_type,
            "ip_address": ip_address,
            "user_id": "user-1",
        }
        defaults.update(kwargs)
        return AnalyticsEvent(**defaults)

    return _create_event


@pytest.fixture
def enriched_event(create_event):
    """Return a factory for already-enriched events."""

    def _enriched_event(country: str = "Spain", **kwargs) -> AnalyticsEvent:
        return create_event(ip_address="1.2.3.4", **kwargs).with_enrichment(
            country=country,
            city="Madrid",
            region="Madrid",
            organization="Telefonica",
            confidence=0.9,
        )

    return _enriched_event


@pytest.fixture
def repository():
    """Fresh in-memory repository."""
    return InMemoryEventRepository()


class FakeStorage:
    """Storage collaborator returning a fixed URL."""

    def __init__(self, url: str = "file:///tmp/export.json", error: Optional[Exception] = None):
        self.url = url
        self.error = error
        self.calls: List[str] = []

    async def store(self, content: bytes, filename: str) -> str:
        self.calls.append(filename)
        if self.error is not None:
            raise self.error
        return self.url


class FakeExtractor:
    """Extractor collaborator answering with a canned result."""

    def __init__(self, result: ExtractionResult):
        self.result = result
        self.calls: List[str] = []

    async def extract(self, file_url: str, json_schema: Dict[str, Any]) -> ExtractionResult:
        self.calls.append(file_url)
        return self.result


class FakeEnricher:
    """
    Enricher collaborator keyed by IP address.

    Values are response mappings or exceptions to raise.
    """

    def __init__(self, responses: Optional[Dict[str, Any]] = None):
        self.responses = responses or {}
        self.calls: List[str] = []

    async def enrich(self, ip_address: str):
        self.calls.append(ip_address)
        response = self.responses.get(
            ip_address,
            {"country": "Spain", "city": "Madrid", "region": "Madrid", "organization": "ISP"},
        )
        if isinstance(response, Exception):
            raise response
        return response


class FailingRepository(InMemoryEventRepository):
    """In-memory repository whose Nth bulk write raises."""

    def __init__(self, fail_on_call: int = 2):
        super().__init__()
        self.fail_on_call = fail_on_call
        self.bulk_calls = 0

    def bulk_create_events(self, events):
        self.bulk_calls += 1
        if self.bulk_calls == self.fail_on_call:
            raise RuntimeError("connection reset")
        return super().bulk_create_events(events)


@pytest.fixture
def fake_storage():
    return FakeStorage()


@pytest.fixture
def make_storage():
    """Factory for storage fakes, optionally raising on store()."""
    return FakeStorage


@pytest.fixture
def make_extractor():
    """Factory for extractor fakes from an ExtractionResult."""
    return FakeExtractor


@pytest.fixture
def make_enricher():
    """Factory for enricher fakes from a {ip: response-or-exception} mapping."""
    return FakeEnricher


@pytest.fixture
def failing_repository():
    """Factory for repositories whose Nth bulk write raises."""
    return FailingRepository


@pytest.fixture
def raw_record():
    """
    Return a function building raw extraction records.

    Timestamps increase with the record index.
    """

    def _raw_record(idx: int, ip_address: Optional[str] = None, **kwargs) -> Dict[str, Any]:
        record = {
            "event_id": f"evt-{idx}",
            "timestamp": f"2024-06-{1 + idx // 24:02d}T{idx % 24:02d}:00:00Z",
            "event_type": "Page View",
            "user_id": f"user-{idx % 3}",
            "ip_address": ip_address,
        }
        record.update(kwargs)
        return record

    return _raw_record
