"""
delivery — Resilient best-effort message delivery.

Sub-modules:
    channels/      — Per-transport send backends (bot API, query string, beacon)
    chain          — Strategy + sequential fallback chain
    latch          — TimedLatch: single-write, bounded-wait value slot
    single_flight  — SingleFlightInitializer for configuration acquisition
    render         — Deterministic message rendering
    orchestrator   — DeliveryOrchestrator: the public initialize()/deliver()
    models         — Data structures shared across the system
"""
