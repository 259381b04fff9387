"""
Ingestion Layer for the event analytics platform.

Turns uploaded analytics export files into stored, IP-enriched events.

Key Components:
- PipelineOrchestrator: Drives upload -> extract -> enrich -> persist as a state machine
- ExtractionAdapter: Normalizes extraction output into AnalyticsEvent records
- EnrichmentEngine: Per-event IP enrichment with failure isolation
- BatchPersistenceWriter: Sequential batch writes plus the DataSource summary
"""
