"""
enrichment — Best-effort origin/network metadata attached to deliveries.

Sub-modules:
    sources  — public-IP / country lookup services, tried in order
    record   — EnrichmentRecord: one TimedLatch per collected field
"""
