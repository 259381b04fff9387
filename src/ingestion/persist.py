# Persistence layer for ingested data
"""
Persistence Layer for Event Ingestion.

EventRepository is the storage contract (create, bulk-create, list-with-sort)
over the two record kinds: analytics events and data sources.
BatchPersistenceWriter writes one ingest run through that contract: event
batches first, sequentially, then the DataSource summary.
"""

import asyncio
import logging
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Iterator, List, Optional, Protocol, Tuple

from psycopg2.extras import Json, RealDictCursor, execute_values

from src.ingestion.errors import PersistenceError
from src.schemas.event import AnalyticsEvent, DataSource, ProcessingStatus, SourceType

logger = logging.getLogger(__name__)


class EventRepository(Protocol):
    """Storage contract used by the pipeline and the dashboard."""

    def create_data_source(self, data_source: DataSource) -> DataSource: ...

    def bulk_create_events(self, events: List[AnalyticsEvent]) -> int: ...

    def list_events(
        self, sort: str = "-timestamp", limit: Optional[int] = None
    ) -> List[AnalyticsEvent]: ...

    def list_data_sources(
        self, sort: str = "-created_date", limit: Optional[int] = None
    ) -> List[DataSource]: ...


def parse_sort(sort: str) -> Tuple[str, bool]:
    """Split '-timestamp' into ('timestamp', descending=True)."""
    sort = (sort or "").strip()
    if sort.startswith("-"):
        return sort[1:], True
    return sort, False


# ============================================================================
# IN-MEMORY REPOSITORY
# ============================================================================


class InMemoryEventRepository:
    """List-backed repository used when no database is configured."""

    def __init__(self) -> None:
        self.events: List[AnalyticsEvent] = []
        self.data_sources: List[DataSource] = []

    def create_data_source(self, data_source: DataSource) -> DataSource:
        created = data_source.model_copy(update={"id": str(uuid.uuid4())})
        self.data_sources.append(created)
        return created

    def bulk_create_events(self, events: List[AnalyticsEvent]) -> int:
        self.events.extend(events)
        return len(events)

    def list_events(
        self, sort: str = "-timestamp", limit: Optional[int] = None
    ) -> List[AnalyticsEvent]:
        return self._sorted(self.events, sort, limit)

    def list_data_sources(
        self, sort: str = "-created_date", limit: Optional[int] = None
    ) -> List[DataSource]:
        return self._sorted(self.data_sources, sort, limit)

    def snapshot_counts(self) -> dict[str, int]:
        return {"events": len(self.events), "data_sources": len(self.data_sources)}

    def _sorted(self, rows: list, sort: str, limit: Optional[int]) -> list:
        field, descending = parse_sort(sort)
        result = list(rows)
        if field:
            present = [r for r in result if getattr(r, field, None) is not None]
            missing = [r for r in result if getattr(r, field, None) is None]
            present.sort(key=lambda r: getattr(r, field), reverse=descending)
            result = present + missing
        if limit is not None:
            result = result[:limit]
        return result


# ============================================================================
# POSTGRES REPOSITORY
# ============================================================================

_EVENT_COLUMNS = (
    "event_id",
    "timestamp",
    "user_id",
    "device_id",
    "event_type",
    "ip_address",
    "country",
    "city",
    "region",
    "organization",
    "is_enriched",
    "enrichment_confidence",
    "event_properties",
    "user_properties",
)

_DATA_SOURCE_COLUMNS = (
    "name",
    "source_type",
    "file_url",
    "total_events",
    "processed_events",
    "enriched_events",
    "processing_status",
    "date_range_start",
    "date_range_end",
    "created_date",
)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS analytics_events (
    id BIGSERIAL PRIMARY KEY,
    event_id TEXT NOT NULL,
    timestamp TIMESTAMPTZ NOT NULL,
    user_id TEXT,
    device_id TEXT,
    event_type TEXT NOT NULL,
    ip_address TEXT,
    country TEXT,
    city TEXT,
    region TEXT,
    organization TEXT,
    is_enriched BOOLEAN NOT NULL DEFAULT FALSE,
    enrichment_confidence DOUBLE PRECISION NOT NULL DEFAULT 0,
    event_properties JSONB NOT NULL DEFAULT '{}'::jsonb,
    user_properties JSONB NOT NULL DEFAULT '{}'::jsonb
);
CREATE INDEX IF NOT EXISTS idx_analytics_events_timestamp ON analytics_events (timestamp);

CREATE TABLE IF NOT EXISTS data_sources (
    id UUID PRIMARY KEY,
    name TEXT NOT NULL,
    source_type TEXT NOT NULL,
    file_url TEXT NOT NULL,
    total_events INTEGER NOT NULL,
    processed_events INTEGER NOT NULL,
    enriched_events INTEGER NOT NULL,
    processing_status TEXT NOT NULL,
    date_range_start TIMESTAMPTZ,
    date_range_end TIMESTAMPTZ,
    created_date TIMESTAMPTZ NOT NULL
);
"""


class PostgresEventRepository:
    """
    psycopg2-backed repository over a connection pool.

    Each call checks out its own connection and returns it to the pool when
    done. Every write is committed before returning, so a later failure never
    rolls back earlier calls.
    """

    def __init__(self, pool) -> None:
        """Initialize with a psycopg2 ThreadedConnectionPool."""
        self.pool = pool

    @contextmanager
    def _connection(self) -> Iterator[Any]:
        conn = self.pool.getconn()
        try:
            yield conn
        finally:
            self.pool.putconn(conn)

    def ensure_schema(self) -> None:
        with self._connection() as conn:
            self._write(conn, lambda cur: cur.execute(SCHEMA_SQL))

    def create_data_source(self, data_source: DataSource) -> DataSource:
        created = data_source.model_copy(update={"id": str(uuid.uuid4())})
        values = [created.id] + [
            self._db_value(getattr(created, c)) for c in _DATA_SOURCE_COLUMNS
        ]
        columns = ", ".join(("id",) + _DATA_SOURCE_COLUMNS)
        placeholders = ", ".join(["%s"] * len(values))
        with self._connection() as conn:
            self._write(
                conn,
                lambda cur: cur.execute(
                    f"INSERT INTO data_sources ({columns}) VALUES ({placeholders})",
                    values,
                ),
            )
        return created

    def bulk_create_events(self, events: List[AnalyticsEvent]) -> int:
        if not events:
            return 0
        rows = [
            tuple(self._db_value(getattr(e, c)) for c in _EVENT_COLUMNS) for e in events
        ]
        with self._connection() as conn:
            self._write(
                conn,
                lambda cur: execute_values(
                    cur,
                    f"INSERT INTO analytics_events ({', '.join(_EVENT_COLUMNS)}) VALUES %s",
                    rows,
                ),
            )
        return len(rows)

    def list_events(
        self, sort: str = "-timestamp", limit: Optional[int] = None
    ) -> List[AnalyticsEvent]:
        rows = self._select("analytics_events", _EVENT_COLUMNS, sort, limit)
        return [AnalyticsEvent.model_validate(row) for row in rows]

    def list_data_sources(
        self, sort: str = "-created_date", limit: Optional[int] = None
    ) -> List[DataSource]:
        rows = self._select(
            "data_sources", ("id",) + _DATA_SOURCE_COLUMNS, sort, limit
        )
        return [DataSource.model_validate({**row, "id": str(row["id"])}) for row in rows]

    @staticmethod
    def _write(conn, statement: Callable[[Any], Any]) -> None:
        try:
            with conn.cursor() as cur:
                statement(cur)
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    def _select(
        self, table: str, columns: Tuple[str, ...], sort: str, limit: Optional[int]
    ) -> List[dict]:
        field, descending = parse_sort(sort)
        sql = f"SELECT {', '.join(columns)} FROM {table}"
        if field:
            # Only known column names are ever interpolated
            if field not in columns:
                raise ValueError(f"Cannot sort {table} by '{field}'")
            sql += f" ORDER BY {field} {'DESC' if descending else 'ASC'} NULLS LAST"
        params: tuple = ()
        if limit is not None:
            sql += " LIMIT %s"
            params = (limit,)
        with self._connection() as conn:
            try:
                with conn.cursor(cursor_factory=RealDictCursor) as cur:
                    cur.execute(sql, params)
                    rows = [dict(r) for r in cur.fetchall()]
            except Exception:
                conn.rollback()
                raise
            # End the read transaction before the connection goes back to the pool
            conn.rollback()
        return rows

    @staticmethod
    def _db_value(value: Any) -> Any:
        if isinstance(value, dict):
            return Json(value)
        if isinstance(value, (ProcessingStatus, SourceType)):
            return value.value
        return value


# ============================================================================
# BATCH PERSISTENCE WRITER
# ============================================================================


def is_chronological(events: List[AnalyticsEvent]) -> bool:
    """True when timestamps never decrease along the sequence."""
    return all(a.timestamp <= b.timestamp for a, b in zip(events, events[1:]))


def compute_date_range(
    events: List[AnalyticsEvent], strategy: str = "sorted"
) -> Tuple[Optional[datetime], Optional[datetime]]:
    """
    Earliest/latest timestamp of a batch, (None, None) when empty.

    'positional' takes the first and last element as extracted; 'sorted' uses
    the true minimum and maximum.
    """
    if not events:
        return None, None
    if strategy == "positional":
        return events[0].timestamp, events[-1].timestamp
    timestamps = [e.timestamp for e in events]
    return min(timestamps), max(timestamps)


class BatchPersistenceWriter:
    """
    Writes enriched events in fixed-size batches, then the DataSource summary.

    Batches are written one at a time. A failed write raises PersistenceError
    carrying the number of events already committed; nothing is retried or
    rolled back, and no DataSource summary is created for a failed run.

    Writes are never abandoned mid-flight, so events_written is exactly what
    was committed. Bounding how long a write may take is left to the
    repository (PostgresEventRepository sessions carry a statement_timeout).
    """

    def __init__(
        self,
        repository: EventRepository,
        batch_size: int = 50,
        date_range_strategy: str = "sorted",
    ):
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self.repository = repository
        self.batch_size = batch_size
        self.date_range_strategy = date_range_strategy

    def build_summary(
        self,
        events: List[AnalyticsEvent],
        file_url: str,
        source_name: str,
        source_type: SourceType = SourceType.AMPLITUDE_EXPORT,
    ) -> DataSource:
        """Counts and date range for a completed run."""
        if events and not is_chronological(events):
            logger.warning(
                f"Events for '{source_name}' are not in timestamp order; "
                f"date range uses the '{self.date_range_strategy}' strategy"
            )
        start, end = compute_date_range(events, self.date_range_strategy)
        return DataSource(
            name=source_name,
            source_type=source_type,
            file_url=file_url,
            total_events=len(events),
            processed_events=len(events),
            enriched_events=sum(1 for e in events if e.is_enriched),
            processing_status=ProcessingStatus.COMPLETED,
            date_range_start=start,
            date_range_end=end,
        )

    async def persist(
        self,
        events: List[AnalyticsEvent],
        file_url: str,
        source_name: str,
        source_type: SourceType = SourceType.AMPLITUDE_EXPORT,
    ) -> DataSource:
        summary = self.build_summary(events, file_url, source_name, source_type)

        written = 0
        for start in range(0, len(events), self.batch_size):
            batch = events[start : start + self.batch_size]
            try:
                await self._call(self.repository.bulk_create_events, batch)
            except Exception as e:
                logger.error(
                    f"Batch write failed at offset {start}; {written} events already committed: {e}"
                )
                raise PersistenceError(
                    f"Failed to save events: {e}", events_written=written
                ) from e
            written += len(batch)
            logger.debug(f"Wrote batch of {len(batch)} events ({written}/{len(events)})")

        try:
            created = await self._call(self.repository.create_data_source, summary)
        except Exception as e:
            raise PersistenceError(
                f"Failed to save data source summary: {e}", events_written=written
            ) from e

        logger.info(
            f"Persisted {written} events for '{source_name}' "
            f"({summary.enriched_events} enriched)"
        )
        return created

    async def _call(self, func, *args):
        return await asyncio.to_thread(func, *args)
