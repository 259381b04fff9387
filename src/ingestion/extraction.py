"""
Extraction Adapter.

Turns a stored export file into an ordered list of raw AnalyticsEvent records.

Architecture:
    Extractor (structured-extraction service) → ExtractionAdapter → [AnalyticsEvent]

The Extractor contract mirrors the external extraction service: it receives a
file URL and a target JSON schema and answers with a status, an output that is
either one record or a list of records, and an optional details message.
"""

import asyncio
import csv
import io
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Union
from urllib.parse import urlparse
from urllib.request import url2pathname

import httpx
from pydantic import ValidationError

from src.ingestion.errors import ExtractionError
from src.schemas.event import ENRICHMENT_FIELDS, AnalyticsEvent

logger = logging.getLogger(__name__)

Record = Dict[str, Any]

# Amplitude export column -> AnalyticsEvent field
FIELD_ALIASES: Dict[str, str] = {
    "event_time": "timestamp",
    "client_event_time": "timestamp",
    "time": "timestamp",
    "ip": "ip_address",
    "$insert_id": "event_id",
    "insert_id": "event_id",
    "uuid": "event_id",
}

_MAPPING_FIELDS = ("event_properties", "user_properties")


@dataclass
class ExtractionResult:
    """
    Result of an extraction call.

    `output` is a single record or a list of records when status is "success".
    """

    status: str
    output: Union[Record, List[Record], None] = None
    details: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == "success"


class Extractor(Protocol):
    """Structured-extraction collaborator."""

    async def extract(self, file_url: str, json_schema: Dict[str, Any]) -> ExtractionResult: ...


# ============================================================================
# EXPORT FILE EXTRACTOR
# ============================================================================


class ExportFileExtractor:
    """
    Parses analytics export files (JSON, JSON Lines, CSV) into event records.

    Supports file:// URLs and http(s) URLs. Content problems are reported as
    an error result with details rather than raised.
    """

    def __init__(self, request_timeout: float = 30.0):
        self.request_timeout = request_timeout

    async def extract(self, file_url: str, json_schema: Dict[str, Any]) -> ExtractionResult:
        try:
            raw = await self._read(file_url)
        except (OSError, httpx.HTTPError, ValueError) as e:
            return ExtractionResult(status="error", details=f"Could not read file: {e}")

        try:
            text = raw.decode("utf-8-sig")
        except UnicodeDecodeError:
            return ExtractionResult(status="error", details="File is not UTF-8 text")

        try:
            parsed = self._parse(text, file_url)
        except (json.JSONDecodeError, csv.Error) as e:
            return ExtractionResult(status="error", details=f"Could not parse file: {e}")

        allowed = set(json_schema.get("properties", {}))
        if isinstance(parsed, list):
            output: Union[Record, List[Record]] = [
                self._project(r, allowed) if isinstance(r, dict) else r for r in parsed
            ]
        elif isinstance(parsed, dict):
            output = self._project(parsed, allowed)
        else:
            return ExtractionResult(
                status="error", details="File does not contain event records"
            )

        return ExtractionResult(status="success", output=output)

    async def _read(self, file_url: str) -> bytes:
        parsed = urlparse(file_url)
        if parsed.scheme in ("http", "https"):
            async with httpx.AsyncClient(timeout=self.request_timeout) as client:
                response = await client.get(file_url)
                response.raise_for_status()
                return response.content
        if parsed.scheme == "file":
            path = Path(url2pathname(parsed.path))
        elif parsed.scheme == "":
            path = Path(file_url)
        else:
            raise ValueError(f"Unsupported URL scheme '{parsed.scheme}'")
        return await asyncio.to_thread(path.read_bytes)

    def _parse(self, text: str, file_url: str) -> Any:
        stripped = text.strip()
        if not stripped:
            return []

        if file_url.lower().endswith(".csv") or stripped[0] not in "[{":
            return self._parse_csv(stripped)

        try:
            data = json.loads(stripped)
        except json.JSONDecodeError:
            if stripped[0] != "{":
                raise
            # JSON Lines: one event object per line
            return [json.loads(line) for line in stripped.splitlines() if line.strip()]

        if isinstance(data, dict):
            for key in ("events", "data"):
                if isinstance(data.get(key), list):
                    return data[key]
        return data

    def _parse_csv(self, text: str) -> List[Record]:
        reader = csv.DictReader(io.StringIO(text))
        rows = []
        for row in reader:
            record: Record = {k: (v if v != "" else None) for k, v in row.items() if k}
            for name in _MAPPING_FIELDS:
                value = record.get(name)
                if isinstance(value, str) and value.lstrip().startswith("{"):
                    record[name] = json.loads(value)
            rows.append(record)
        return rows

    def _project(self, record: Record, allowed: set) -> Record:
        """Apply column aliases and keep only schema fields."""
        out: Record = {}
        for key, value in record.items():
            name = FIELD_ALIASES.get(key, key)
            # A canonical column beats its alias
            if name in out and name != key:
                continue
            if not allowed or name in allowed:
                out[name] = value
        return out


# ============================================================================
# EXTRACTION ADAPTER
# ============================================================================


class ExtractionAdapter:
    """
    Calls the extraction collaborator and normalizes its output.

    Raises ExtractionError on non-success status, timeout, collaborator error
    or malformed records.
    """

    def __init__(self, extractor: Extractor, timeout: Optional[float] = None):
        self.extractor = extractor
        self.timeout = timeout

    async def extract(self, file_url: str) -> List[AnalyticsEvent]:
        schema = AnalyticsEvent.extraction_schema()
        try:
            result = await asyncio.wait_for(
                self.extractor.extract(file_url, schema), timeout=self.timeout
            )
        except asyncio.TimeoutError as e:
            raise ExtractionError(f"Extraction timed out after {self.timeout}s") from e
        except ExtractionError:
            raise
        except Exception as e:
            raise ExtractionError(f"Extraction service failed: {e}") from e

        if not isinstance(result, ExtractionResult):
            raise ExtractionError("Extraction service returned an unexpected response")
        if not result.success:
            raise ExtractionError("Failed to extract data", details=result.details)

        records = normalize_output(result.output)
        events = [self._to_event(idx, record) for idx, record in enumerate(records)]
        logger.info(f"Extracted {len(events)} events from {file_url}")
        return events

    def _to_event(self, idx: int, record: Any) -> AnalyticsEvent:
        if not isinstance(record, dict):
            raise ExtractionError(
                f"Malformed extraction output: record {idx} is {type(record).__name__}, not an object"
            )
        data = {k: v for k, v in record.items() if k not in ENRICHMENT_FIELDS}
        data.pop("is_enriched", None)
        data.pop("enrichment_confidence", None)
        try:
            return AnalyticsEvent.model_validate(data)
        except ValidationError as e:
            raise ExtractionError(f"Malformed extraction output: record {idx}: {e}") from e


def normalize_output(output: Any) -> List[Any]:
    """A single returned object is a sequence of one; None is empty."""
    if output is None:
        return []
    if isinstance(output, list):
        return output
    return [output]
