# src/schemas/event.py
"""
Analytics Event and DataSource schemas.

AnalyticsEvent is one event extracted from an analytics export file, optionally
enriched with location/organization data derived from its IP address.
DataSource is the summary record of one completed ingest run.

Both field sets are the persisted contract consumed by the dashboard and the
event explorer, so field names must stay stable.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

ENRICHMENT_FIELDS = ("country", "city", "region", "organization")


def _utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    try:
        return value.astimezone(timezone.utc)
    except OverflowError as e:
        raise ValueError(f"timestamp {value.isoformat()} is out of range in UTC") from e


# ============================================================================
# ENUMS
# ============================================================================


class ProcessingStatus(str, Enum):
    """Processing status of a DataSource."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class SourceType(str, Enum):
    """Ingest format family of a DataSource."""

    AMPLITUDE_EXPORT = "amplitude_export"


# ============================================================================
# EVENT
# ============================================================================


class AnalyticsEvent(BaseModel):
    """
    One ingested analytics event.

    Enrichment invariant:
    - is_enriched=True  -> country, city, region and organization are set and
      enrichment_confidence > 0
    - is_enriched=False -> those four fields are None and confidence == 0
    """

    model_config = ConfigDict(extra="ignore")

    # Identity
    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime

    # Actor
    user_id: Optional[str] = None
    device_id: Optional[str] = None

    # Classification
    event_type: str = Field(..., min_length=1)

    # Network
    ip_address: Optional[str] = None

    # Enrichment outputs
    country: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    organization: Optional[str] = None
    is_enriched: bool = False
    enrichment_confidence: float = Field(default=0.0, ge=0.0, le=1.0)

    # Opaque payloads
    event_properties: Dict[str, Any] = Field(default_factory=dict)
    user_properties: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("timestamp")
    @classmethod
    def _timestamp_utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @field_validator("event_id", mode="before")
    @classmethod
    def _coerce_event_id(cls, v: Any) -> Any:
        if v is None or (isinstance(v, str) and not v.strip()):
            return str(uuid.uuid4())
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("user_id", "device_id", "ip_address", mode="before")
    @classmethod
    def _coerce_identifier(cls, v: Any) -> Any:
        # Exports frequently carry numeric ids
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v

    @field_validator("event_properties", "user_properties", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> Any:
        return {} if v is None else v

    @model_validator(mode="after")
    def _check_enrichment_invariant(self) -> "AnalyticsEvent":
        outputs = [getattr(self, name) for name in ENRICHMENT_FIELDS]
        if self.is_enriched:
            if not all(outputs):
                raise ValueError("enriched event must have country, city, region and organization")
            if self.enrichment_confidence <= 0:
                raise ValueError("enriched event must have enrichment_confidence > 0")
        else:
            if any(o is not None for o in outputs):
                raise ValueError("unenriched event must not carry enrichment outputs")
            if self.enrichment_confidence != 0:
                raise ValueError("unenriched event must have enrichment_confidence == 0")
        return self

    @property
    def has_ip(self) -> bool:
        """Presence of an IP address is the precondition for enrichment."""
        return bool(self.ip_address)

    def with_enrichment(
        self,
        country: str,
        city: str,
        region: str,
        organization: str,
        confidence: float,
    ) -> "AnalyticsEvent":
        """Return a validated copy carrying the enrichment outputs."""
        data = self.model_dump()
        data.update(
            country=country,
            city=city,
            region=region,
            organization=organization,
            is_enriched=True,
            enrichment_confidence=confidence,
        )
        return AnalyticsEvent.model_validate(data)

    def without_enrichment(self) -> "AnalyticsEvent":
        """Return a copy explicitly marked as not enriched."""
        data = self.model_dump()
        data.update({name: None for name in ENRICHMENT_FIELDS})
        data.update(is_enriched=False, enrichment_confidence=0.0)
        return AnalyticsEvent.model_validate(data)

    @classmethod
    def extraction_schema(cls) -> Dict[str, Any]:
        """
        JSON schema handed to the extraction service.

        Enrichment outputs are omitted: extracted events always start unenriched.
        """
        schema = cls.model_json_schema()
        excluded = set(ENRICHMENT_FIELDS) | {"is_enriched", "enrichment_confidence"}
        schema["properties"] = {
            k: v for k, v in schema.get("properties", {}).items() if k not in excluded
        }
        schema["required"] = [
            r for r in schema.get("required", []) if r not in excluded
        ]
        return schema


# ============================================================================
# DATA SOURCE
# ============================================================================


class DataSource(BaseModel):
    """Summary record of one ingest run."""

    id: Optional[str] = None
    name: str
    source_type: SourceType = SourceType.AMPLITUDE_EXPORT
    file_url: str
    total_events: int = Field(default=0, ge=0)
    processed_events: int = Field(default=0, ge=0)
    enriched_events: int = Field(default=0, ge=0)
    processing_status: ProcessingStatus = ProcessingStatus.PENDING
    date_range_start: Optional[datetime] = None
    date_range_end: Optional[datetime] = None
    created_date: datetime = Field(default_factory=_utc_now)

    @model_validator(mode="after")
    def _check_counts(self) -> "DataSource":
        if not (self.enriched_events <= self.processed_events <= self.total_events):
            raise ValueError(
                "expected enriched_events <= processed_events <= total_events, got "
                f"{self.enriched_events}/{self.processed_events}/{self.total_events}"
            )
        return self


def default_source_name(filename: str) -> str:
    """Uploaded filename minus its last extension ('export.json' -> 'export')."""
    name = filename.rsplit("/", 1)[-1]
    stem, dot, _ = name.rpartition(".")
    if dot and stem:
        return stem
    return name
