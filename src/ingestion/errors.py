"""
Ingestion error taxonomy.

Storage, extraction and persistence errors are fatal to a pipeline run.
EnrichmentFailure is raised by enrichment collaborators and is always
recovered per event by the EnrichmentEngine.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Terminal failure kind of a pipeline run."""

    STORAGE_ERROR = "storage_error"
    EXTRACTION_ERROR = "extraction_error"
    PERSISTENCE_ERROR = "persistence_error"
    CANCELLED = "cancelled"


class IngestionError(Exception):
    """Base class for errors that end a pipeline run."""

    kind: ErrorKind

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class StorageError(IngestionError):
    """The raw file could not be stored."""

    kind = ErrorKind.STORAGE_ERROR


class ExtractionError(IngestionError):
    """Extraction returned a non-success status or malformed output."""

    kind = ErrorKind.EXTRACTION_ERROR

    def __init__(self, message: str, details: Optional[str] = None):
        # Service-provided details win over our own message
        super().__init__(details or message)
        self.details = details


class PersistenceError(IngestionError):
    """A repository write failed; `events_written` events are already committed."""

    kind = ErrorKind.PERSISTENCE_ERROR

    def __init__(self, message: str, events_written: int = 0):
        super().__init__(message)
        self.events_written = events_written


class PipelineCancelled(IngestionError):
    """The run was cancelled between stages."""

    kind = ErrorKind.CANCELLED

    def __init__(self, message: str = "Pipeline run cancelled", events_written: int = 0):
        super().__init__(message)
        self.events_written = events_written


class EnrichmentFailure(Exception):
    """Enrichment of a single IP address failed."""


class PipelineBusyError(RuntimeError):
    """A run was requested while another run is still active."""
