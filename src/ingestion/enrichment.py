"""
Enrichment Engine: adds location/organization data derived from IP addresses.

Every event with an ip_address gets exactly one enrichment attempt. A failed
attempt (collaborator error, timeout, malformed response) downgrades only that
event to unenriched; it never fails the batch or touches any other event.

Attempts run concurrently behind a semaphore; results are written into a
pre-sized list by input position, so output order always equals input order.
"""

import asyncio
import logging
from typing import Any, List, Mapping, Optional, Protocol, Union

from pydantic import BaseModel, Field

from src.agents.llm.base_llm_client import BaseLLMClient, LLMClientError
from src.ingestion.errors import EnrichmentFailure
from src.schemas.event import AnalyticsEvent

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.8

_SYSTEM_PROMPT = (
    "You enrich IP addresses with location and organization data for an "
    "analytics platform. Answer with your best estimate and a confidence "
    "between 0 and 1."
)


class IPEnrichment(BaseModel):
    """Response schema of the enrichment collaborator."""

    country: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    region: str = Field(..., min_length=1)
    organization: str = Field(..., min_length=1)
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class IPEnricher(Protocol):
    """Enrichment collaborator: IP address in, location/organization guess out."""

    async def enrich(self, ip_address: str) -> Union[IPEnrichment, Mapping[str, Any]]: ...


class LLMIPEnricher:
    """Asks an LLM for a location/organization guess for one IP address."""

    def __init__(
        self,
        llm_client: BaseLLMClient,
        temperature: float = 0.1,
        max_tokens: int = 300,
    ):
        self.llm_client = llm_client
        self.temperature = temperature
        self.max_tokens = max_tokens

    async def enrich(self, ip_address: str) -> IPEnrichment:
        user_prompt = (
            f"Enrich this IP address with location and organization data. IP: {ip_address}. "
            "Provide realistic location data based on the IP address pattern."
        )
        try:
            return await self.llm_client.complete_structured(
                system_prompt=_SYSTEM_PROMPT,
                user_prompt=user_prompt,
                output_schema=IPEnrichment,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except LLMClientError as e:
            raise EnrichmentFailure(str(e)) from e


class EnrichmentEngine:
    """
    Enriches a sequence of events, isolating failures per event.

    Args:
        enricher: Enrichment collaborator
        concurrency: Maximum number of in-flight enrichment calls
        timeout: Per-call timeout in seconds (None disables it)
        default_confidence: Used when the collaborator omits a confidence
    """

    def __init__(
        self,
        enricher: IPEnricher,
        concurrency: int = 5,
        timeout: Optional[float] = 30.0,
        default_confidence: float = DEFAULT_CONFIDENCE,
    ):
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")
        self.enricher = enricher
        self.concurrency = concurrency
        self.timeout = timeout
        self.default_confidence = default_confidence

    async def enrich(self, events: List[AnalyticsEvent]) -> List[AnalyticsEvent]:
        """Return enriched copies of `events`, same length and order."""
        results: List[Optional[AnalyticsEvent]] = [None] * len(events)
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _worker(idx: int, event: AnalyticsEvent) -> None:
            async with semaphore:
                results[idx] = await self._enrich_one(idx, event)

        await asyncio.gather(*(_worker(i, e) for i, e in enumerate(events)))

        enriched = sum(1 for e in results if e is not None and e.is_enriched)
        logger.info(f"Enrichment finished: {enriched}/{len(events)} events enriched")
        return results  # type: ignore[return-value]

    async def _enrich_one(self, idx: int, event: AnalyticsEvent) -> AnalyticsEvent:
        if event.is_enriched:
            return event
        if not event.has_ip:
            return event.without_enrichment()

        try:
            response = await asyncio.wait_for(
                self.enricher.enrich(event.ip_address), timeout=self.timeout
            )
            data = (
                response
                if isinstance(response, IPEnrichment)
                else IPEnrichment.model_validate(response)
            )
            return event.with_enrichment(
                country=data.country,
                city=data.city,
                region=data.region,
                organization=data.organization,
                confidence=data.confidence or self.default_confidence,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"Enrichment timed out for event {idx} (ip={event.ip_address}) after {self.timeout}s"
            )
        except Exception as e:
            logger.warning(f"Enrichment failed for event {idx} (ip={event.ip_address}): {e}")

        return event.without_enrichment()
