"""
Pipeline Orchestrator.

Drives one ingest run through an explicit state machine:

    Idle → Uploading → Extracting → Enriching → Persisting → {Completed | Failed}

Each transient stage has one transition function that returns the next stage
or raises an IngestionError, which ends the run in Failed. Only one run may be
active at a time. A run can be cancelled between stages; while uploading,
extracting or enriching the in-flight stage is interrupted as well, but a
batch write is never interrupted.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from src.configs.config import PipelineConfig
from src.configs.logging import with_context
from src.ingestion.enrichment import EnrichmentEngine
from src.ingestion.errors import (
    ErrorKind,
    IngestionError,
    PersistenceError,
    PipelineBusyError,
    PipelineCancelled,
    StorageError,
)
from src.ingestion.extraction import ExtractionAdapter
from src.ingestion.persist import BatchPersistenceWriter
from src.ingestion.storage import FileStorage
from src.schemas.event import AnalyticsEvent, DataSource, SourceType, default_source_name

logger = logging.getLogger(__name__)


class PipelineStage(str, Enum):
    """Stage of a pipeline run."""

    IDLE = "idle"
    UPLOADING = "uploading"
    EXTRACTING = "extracting"
    ENRICHING = "enriching"
    PERSISTING = "persisting"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (PipelineStage.COMPLETED, PipelineStage.FAILED)

    @property
    def is_active(self) -> bool:
        return not self.is_terminal and self is not PipelineStage.IDLE


# Coarse quartile progress on entering each stage, independent of event count
STAGE_PROGRESS: Dict[PipelineStage, int] = {
    PipelineStage.IDLE: 0,
    PipelineStage.UPLOADING: 25,
    PipelineStage.EXTRACTING: 50,
    PipelineStage.ENRICHING: 75,
    PipelineStage.PERSISTING: 100,
    PipelineStage.COMPLETED: 100,
}


@dataclass
class PipelineRun:
    """Ephemeral state of one pipeline execution. Never persisted."""

    run_id: str
    filename: str
    source_name: str
    stage: PipelineStage = PipelineStage.IDLE
    progress_percent: int = 0
    file_url: Optional[str] = None
    extracted_events: List[AnalyticsEvent] = field(default_factory=list)
    enriched_count: int = 0
    events_written: int = 0
    data_source: Optional[DataSource] = None
    error_kind: Optional[ErrorKind] = None
    error_message: Optional[str] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    ended_at: Optional[datetime] = None

    def advance(self, stage: PipelineStage) -> None:
        """Enter `stage`; progress never decreases within a run."""
        self.stage = stage
        self.progress_percent = max(self.progress_percent, STAGE_PROGRESS.get(stage, 0))
        if stage.is_terminal:
            self.ended_at = datetime.now(timezone.utc)

    def fail(self, kind: Optional[ErrorKind], message: str, events_written: int = 0) -> None:
        self.error_kind = kind
        self.error_message = message
        self.events_written = events_written
        self.advance(PipelineStage.FAILED)

    def snapshot(self) -> Dict[str, Any]:
        """Serializable view for observers; omits the working event set."""
        return {
            "run_id": self.run_id,
            "filename": self.filename,
            "source_name": self.source_name,
            "stage": self.stage.value,
            "progress_percent": self.progress_percent,
            "file_url": self.file_url,
            "extracted_count": len(self.extracted_events),
            "enriched_count": self.enriched_count,
            "events_written": self.events_written,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "error_message": self.error_message,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
        }


@dataclass
class RunResult:
    """Outcome of a pipeline run."""

    run_id: str
    stage: PipelineStage
    processed_events: int = 0
    enriched_events: int = 0
    events_written: int = 0
    data_source: Optional[DataSource] = None
    error_kind: Optional[ErrorKind] = None
    error_message: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.stage is PipelineStage.COMPLETED

    @classmethod
    def from_run(cls, run: PipelineRun) -> "RunResult":
        return cls(
            run_id=run.run_id,
            stage=run.stage,
            processed_events=len(run.extracted_events),
            enriched_events=run.enriched_count,
            events_written=run.events_written,
            data_source=run.data_source,
            error_kind=run.error_kind,
            error_message=run.error_message,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "stage": self.stage.value,
            "success": self.success,
            "processed_events": self.processed_events,
            "enriched_events": self.enriched_events,
            "events_written": self.events_written,
            "data_source": self.data_source.model_dump(mode="json") if self.data_source else None,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "error_message": self.error_message,
        }


RunListener = Callable[[PipelineRun], None]


class PipelineOrchestrator:
    """
    Coordinates storage, extraction, enrichment and persistence for uploads.

    Responsibilities:
    - Enforce a single active run
    - Drive stage transitions and progress
    - Convert stage failures into one terminal error per run
    - Notify subscribed observers on every transition
    - Keep a short history of run results
    """

    def __init__(
        self,
        storage: FileStorage,
        extraction: ExtractionAdapter,
        enrichment: EnrichmentEngine,
        writer: BatchPersistenceWriter,
        config: Optional[PipelineConfig] = None,
        history_size: int = 20,
    ):
        self.storage = storage
        self.extraction = extraction
        self.enrichment = enrichment
        self.writer = writer
        self.config = config or PipelineConfig()
        self.history_size = history_size

        self.execution_history: List[RunResult] = []
        self._run: Optional[PipelineRun] = None
        self._listeners: List[RunListener] = []
        self._cancel_requested = False
        self._stage_task: Optional[asyncio.Task] = None
        self._content: bytes = b""

        self._transitions: Dict[
            PipelineStage, Callable[[PipelineRun], Awaitable[PipelineStage]]
        ] = {
            PipelineStage.UPLOADING: self._upload,
            PipelineStage.EXTRACTING: self._extract,
            PipelineStage.ENRICHING: self._enrich,
            PipelineStage.PERSISTING: self._persist,
        }

    # ========================================================================
    # OBSERVATION
    # ========================================================================

    @property
    def current_run(self) -> Optional[PipelineRun]:
        return self._run

    @property
    def is_active(self) -> bool:
        return self._run is not None and self._run.stage.is_active

    def subscribe(self, listener: RunListener) -> Callable[[], None]:
        """Register a transition listener; returns an unsubscribe function."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self, run: PipelineRun) -> None:
        for listener in list(self._listeners):
            try:
                listener(run)
            except Exception as e:
                logger.warning(f"Run listener failed: {e}")

    def _enter(self, run: PipelineRun, stage: PipelineStage) -> None:
        run.advance(stage)
        with_context(logger, run_id=run.run_id, source_name=run.source_name, stage=stage.value).info(
            f"Stage {stage.value} ({run.progress_percent}%)"
        )
        self._notify(run)

    # ========================================================================
    # EXECUTION
    # ========================================================================

    async def run(
        self,
        content: bytes,
        filename: str,
        source_name: Optional[str] = None,
    ) -> RunResult:
        """
        Execute a full ingest run for one uploaded file.

        Args:
            content: Raw file bytes
            filename: Original filename
            source_name: Display name; defaults to the filename minus extension

        Returns:
            RunResult in stage COMPLETED or FAILED

        Raises:
            PipelineBusyError: If another run is still active
        """
        if self.is_active:
            raise PipelineBusyError(
                f"Run {self._run.run_id} is still {self._run.stage.value}"
            )

        run = PipelineRun(
            run_id=uuid.uuid4().hex[:12],
            filename=filename,
            source_name=(source_name or "").strip() or default_source_name(filename),
        )
        self._run = run
        self._cancel_requested = False
        self._content = content

        stage = PipelineStage.UPLOADING
        try:
            while not stage.is_terminal:
                if self._cancel_requested:
                    raise PipelineCancelled()
                self._enter(run, stage)
                stage = await self._run_stage(run, stage)
            self._enter(run, PipelineStage.COMPLETED)

        except IngestionError as e:
            written = getattr(e, "events_written", run.events_written)
            run.fail(e.kind, e.message, events_written=written)
            with_context(logger, run_id=run.run_id, stage=PipelineStage.FAILED.value).error(
                f"Run failed ({e.kind.value}): {e.message}"
            )
            self._notify(run)

        except asyncio.CancelledError:
            run.fail(ErrorKind.CANCELLED, "Pipeline run cancelled", run.events_written)
            self._notify(run)
            self._record(run)
            raise

        except Exception as e:
            logger.error(f"Unexpected error in run {run.run_id}: {e}", exc_info=True)
            run.fail(None, str(e), run.events_written)
            self._notify(run)
            self._record(run)
            raise

        finally:
            self._content = b""
            self._stage_task = None

        return self._record(run)

    async def _run_stage(self, run: PipelineRun, stage: PipelineStage) -> PipelineStage:
        transition = self._transitions[stage]
        if stage is PipelineStage.PERSISTING:
            # Batch writes are never interrupted
            return await transition(run)
        if self._cancel_requested:
            raise PipelineCancelled()

        self._stage_task = asyncio.ensure_future(transition(run))
        try:
            return await self._stage_task
        except asyncio.CancelledError:
            if self._cancel_requested:
                raise PipelineCancelled()
            self._stage_task.cancel()
            raise

    def cancel(self) -> bool:
        """
        Request cancellation of the active run.

        Returns:
            True if a run was active. A run that is already persisting
            finishes its writes and completes normally.
        """
        if not self.is_active:
            return False
        self._cancel_requested = True
        logger.info(f"Cancellation requested for run {self._run.run_id}")
        if (
            self._stage_task is not None
            and not self._stage_task.done()
            and self._run.stage is not PipelineStage.PERSISTING
        ):
            self._stage_task.cancel()
        return True

    def reset(self) -> None:
        """Drop the finished run so observers see Idle again."""
        if self.is_active:
            raise PipelineBusyError("Cannot reset while a run is active")
        self._run = None

    # ========================================================================
    # STAGE TRANSITIONS
    # ========================================================================

    async def _upload(self, run: PipelineRun) -> PipelineStage:
        try:
            run.file_url = await asyncio.wait_for(
                self.storage.store(self._content, run.filename),
                timeout=self.config.storage_timeout,
            )
        except StorageError:
            raise
        except asyncio.TimeoutError as e:
            raise StorageError(
                f"Upload timed out after {self.config.storage_timeout}s"
            ) from e
        except Exception as e:
            raise StorageError(f"Upload failed: {e}") from e
        return PipelineStage.EXTRACTING

    async def _extract(self, run: PipelineRun) -> PipelineStage:
        run.extracted_events = await self.extraction.extract(run.file_url)
        return PipelineStage.ENRICHING

    async def _enrich(self, run: PipelineRun) -> PipelineStage:
        run.extracted_events = await self.enrichment.enrich(run.extracted_events)
        run.enriched_count = sum(1 for e in run.extracted_events if e.is_enriched)
        return PipelineStage.PERSISTING

    async def _persist(self, run: PipelineRun) -> PipelineStage:
        try:
            run.data_source = await self.writer.persist(
                run.extracted_events,
                file_url=run.file_url,
                source_name=run.source_name,
                source_type=SourceType(self.config.source_type),
            )
        except PersistenceError as e:
            run.events_written = e.events_written
            raise
        run.events_written = len(run.extracted_events)
        return PipelineStage.COMPLETED

    # ========================================================================
    # HISTORY & STATS
    # ========================================================================

    def _record(self, run: PipelineRun) -> RunResult:
        result = RunResult.from_run(run)
        self.execution_history.append(result)
        del self.execution_history[: -self.history_size]
        return result

    def get_execution_stats(self) -> dict:
        """Aggregate statistics over the retained run history."""
        results = self.execution_history
        if not results:
            return {"total_runs": 0}

        successful = [r for r in results if r.success]
        return {
            "total_runs": len(results),
            "successful_runs": len(successful),
            "failed_runs": len(results) - len(successful),
            "total_events_processed": sum(r.processed_events for r in successful),
            "total_events_enriched": sum(r.enriched_events for r in successful),
        }


def create_orchestrator(
    storage: FileStorage,
    extractor,
    enricher,
    repository,
    config: Optional[PipelineConfig] = None,
) -> PipelineOrchestrator:
    """
    Wire an orchestrator from collaborators and pipeline configuration.

    Args:
        storage: FileStorage collaborator
        extractor: Extractor collaborator
        enricher: IPEnricher collaborator
        repository: EventRepository
        config: PipelineConfig (defaults when omitted)
    """
    config = config or PipelineConfig()
    return PipelineOrchestrator(
        storage=storage,
        extraction=ExtractionAdapter(extractor, timeout=config.extraction_timeout),
        enrichment=EnrichmentEngine(
            enricher,
            concurrency=config.enrichment_concurrency,
            timeout=config.enrichment_timeout,
            default_confidence=config.default_confidence,
        ),
        writer=BatchPersistenceWriter(
            repository,
            batch_size=config.batch_size,
            date_range_strategy=config.date_range_strategy,
        ),
        config=config,
    )
