"""
Unit tests for the extraction module.

Tests for ExportFileExtractor parsing and ExtractionAdapter normalization.
"""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from src.ingestion.errors import ExtractionError
from src.ingestion.extraction import (
    ExportFileExtractor,
    ExtractionAdapter,
    ExtractionResult,
    normalize_output,
)
from src.schemas.event import AnalyticsEvent

SCHEMA = AnalyticsEvent.extraction_schema()


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def extractor():
    return ExportFileExtractor()


@pytest.fixture
def write_file(tmp_path):
    """Write content to a file and return its file:// URL."""

    def _write(name: str, content: str) -> str:
        path = tmp_path / name
        path.write_text(content, encoding="utf-8")
        return path.as_uri()

    return _write


# =============================================================================
# TEST CLASSES
# =============================================================================


class TestNormalizeOutput:
    """Tests for normalize_output."""

    def test_none_is_empty(self):
        assert normalize_output(None) == []

    def test_single_object_becomes_list(self):
        assert normalize_output({"a": 1}) == [{"a": 1}]

    def test_list_kept(self):
        assert normalize_output([{"a": 1}, {"b": 2}]) == [{"a": 1}, {"b": 2}]


class TestExportFileExtractor:
    """Tests for ExportFileExtractor."""

    def test_json_array(self, extractor, write_file):
        url = write_file(
            "export.json",
            json.dumps(
                [
                    {"event_type": "Click", "timestamp": "2024-01-01T00:00:00Z"},
                    {"event_type": "View", "timestamp": "2024-01-02T00:00:00Z"},
                ]
            ),
        )
        result = asyncio.run(extractor.extract(url, SCHEMA))
        assert result.success
        assert [r["event_type"] for r in result.output] == ["Click", "View"]

    def test_single_object(self, extractor, write_file):
        url = write_file(
            "one.json", json.dumps({"event_type": "Click", "timestamp": "2024-01-01T00:00:00Z"})
        )
        result = asyncio.run(extractor.extract(url, SCHEMA))
        assert result.success
        assert isinstance(result.output, dict)

    def test_events_envelope(self, extractor, write_file):
        url = write_file(
            "wrapped.json",
            json.dumps({"events": [{"event_type": "Click", "timestamp": "2024-01-01"}]}),
        )
        result = asyncio.run(extractor.extract(url, SCHEMA))
        assert len(result.output) == 1

    def test_json_lines_with_amplitude_aliases(self, extractor, write_file):
        lines = [
            {"event_type": "Click", "event_time": "2024-01-01 10:00:00", "ip": "8.8.8.8", "$insert_id": "a1"},
            {"event_type": "View", "event_time": "2024-01-01 11:00:00", "ip": "1.1.1.1", "$insert_id": "a2"},
        ]
        url = write_file("export.jsonl", "\n".join(json.dumps(line) for line in lines))
        result = asyncio.run(extractor.extract(url, SCHEMA))
        assert result.success
        first = result.output[0]
        assert first["timestamp"] == "2024-01-01 10:00:00"
        assert first["ip_address"] == "8.8.8.8"
        assert first["event_id"] == "a1"

    def test_canonical_column_beats_alias(self, extractor, write_file):
        url = write_file(
            "export.json",
            json.dumps({"timestamp": "2024-01-01T00:00:00Z", "event_time": "2023-01-01", "event_type": "X"}),
        )
        result = asyncio.run(extractor.extract(url, SCHEMA))
        assert result.output["timestamp"] == "2024-01-01T00:00:00Z"

    def test_drops_fields_outside_schema(self, extractor, write_file):
        url = write_file(
            "export.json",
            json.dumps({"event_type": "X", "timestamp": "2024-01-01", "session_id": 9, "country": "US"}),
        )
        result = asyncio.run(extractor.extract(url, SCHEMA))
        assert "session_id" not in result.output
        assert "country" not in result.output

    def test_csv(self, extractor, write_file):
        content = (
            "event_type,timestamp,user_id,ip_address,event_properties\n"
            'Click,2024-01-01T00:00:00Z,u1,8.8.8.8,"{""plan"": ""pro""}"\n'
            "View,2024-01-02T00:00:00Z,u2,,\n"
        )
        url = write_file("export.csv", content)
        result = asyncio.run(extractor.extract(url, SCHEMA))
        assert result.success
        assert result.output[0]["event_properties"] == {"plan": "pro"}
        assert result.output[1]["ip_address"] is None

    def test_empty_file(self, extractor, write_file):
        url = write_file("empty.json", "   ")
        result = asyncio.run(extractor.extract(url, SCHEMA))
        assert result.success
        assert result.output == []

    def test_invalid_json_is_error_result(self, extractor, write_file):
        url = write_file("broken.json", "[{not json")
        result = asyncio.run(extractor.extract(url, SCHEMA))
        assert not result.success
        assert "Could not parse" in result.details

    def test_non_object_records_pass_through(self, extractor, write_file):
        # The adapter rejects them as malformed output
        url = write_file("scalar.json", "[1, 2]")
        result = asyncio.run(extractor.extract(url, SCHEMA))
        assert result.success
        assert result.output == [1, 2]

    def test_missing_file_is_error_result(self, extractor, tmp_path):
        result = asyncio.run(extractor.extract((tmp_path / "missing.json").as_uri(), SCHEMA))
        assert not result.success
        assert "Could not read file" in result.details

    def test_unsupported_scheme(self, extractor):
        result = asyncio.run(extractor.extract("ftp://host/file.json", SCHEMA))
        assert not result.success

    def test_http_url(self, extractor):
        response = MagicMock()
        response.content = b'[{"event_type": "Click", "timestamp": "2024-01-01"}]'
        response.raise_for_status = MagicMock()
        client = AsyncMock()
        client.get = AsyncMock(return_value=response)
        client.__aenter__.return_value = client

        with patch("src.ingestion.extraction.httpx.AsyncClient", return_value=client):
            result = asyncio.run(extractor.extract("https://files.example.com/e.json", SCHEMA))

        assert result.success
        client.get.assert_awaited_once_with("https://files.example.com/e.json")

    def test_http_error_is_error_result(self, extractor):
        client = AsyncMock()
        client.get = AsyncMock(side_effect=httpx.ConnectError("refused"))
        client.__aenter__.return_value = client

        with patch("src.ingestion.extraction.httpx.AsyncClient", return_value=client):
            result = asyncio.run(extractor.extract("https://files.example.com/e.json", SCHEMA))

        assert not result.success


class TestExtractionAdapter:
    """Tests for ExtractionAdapter."""

    def test_list_output(self, make_extractor, raw_record):
        fake = make_extractor(
            ExtractionResult(status="success", output=[raw_record(0), raw_record(1)])
        )
        events = asyncio.run(ExtractionAdapter(fake).extract("file:///x.json"))
        assert [e.event_id for e in events] == ["evt-0", "evt-1"]
        assert fake.calls == ["file:///x.json"]

    def test_single_object_output(self, make_extractor, raw_record):
        fake = make_extractor(ExtractionResult(status="success", output=raw_record(0)))
        events = asyncio.run(ExtractionAdapter(fake).extract("file:///x.json"))
        assert len(events) == 1

    def test_none_output(self, make_extractor):
        fake = make_extractor(ExtractionResult(status="success", output=None))
        assert asyncio.run(ExtractionAdapter(fake).extract("file:///x.json")) == []

    def test_error_status_reports_details_verbatim(self, make_extractor):
        fake = make_extractor(ExtractionResult(status="error", details="Unsupported file type"))
        with pytest.raises(ExtractionError) as exc_info:
            asyncio.run(ExtractionAdapter(fake).extract("file:///x.json"))
        assert exc_info.value.message == "Unsupported file type"
        assert exc_info.value.details == "Unsupported file type"

    def test_error_status_without_details(self, make_extractor):
        fake = make_extractor(ExtractionResult(status="error"))
        with pytest.raises(ExtractionError, match="Failed to extract data"):
            asyncio.run(ExtractionAdapter(fake).extract("file:///x.json"))

    def test_non_object_record_is_malformed(self, make_extractor, raw_record):
        fake = make_extractor(ExtractionResult(status="success", output=[raw_record(0), 5]))
        with pytest.raises(ExtractionError, match="record 1"):
            asyncio.run(ExtractionAdapter(fake).extract("file:///x.json"))

    def test_invalid_record_is_malformed(self, make_extractor):
        fake = make_extractor(ExtractionResult(status="success", output=[{"event_type": "X"}]))
        with pytest.raises(ExtractionError, match="record 0"):
            asyncio.run(ExtractionAdapter(fake).extract("file:///x.json"))

    def test_enrichment_fields_discarded(self, make_extractor, raw_record):
        record = raw_record(0, country="US", is_enriched=True, enrichment_confidence=0.9)
        fake = make_extractor(ExtractionResult(status="success", output=[record]))
        events = asyncio.run(ExtractionAdapter(fake).extract("file:///x.json"))
        assert events[0].is_enriched is False
        assert events[0].country is None

    def test_collaborator_exception(self):
        extractor = MagicMock()
        extractor.extract = AsyncMock(side_effect=RuntimeError("service down"))
        with pytest.raises(ExtractionError, match="service down"):
            asyncio.run(ExtractionAdapter(extractor).extract("file:///x.json"))

    def test_timeout(self):
        async def _slow(file_url, json_schema):
            await asyncio.sleep(1)

        extractor = MagicMock()
        extractor.extract = _slow
        with pytest.raises(ExtractionError, match="timed out"):
            asyncio.run(ExtractionAdapter(extractor, timeout=0.01).extract("file:///x.json"))

    def test_unexpected_response_type(self):
        extractor = MagicMock()
        extractor.extract = AsyncMock(return_value={"status": "success"})
        with pytest.raises(ExtractionError, match="unexpected response"):
            asyncio.run(ExtractionAdapter(extractor).extract("file:///x.json"))
