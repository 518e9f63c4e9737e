"""
Core package — cross-cutting concerns.

Modules:
    config          — environment variables & settings
    logging_config  — structured logging + observability sink
    errors          — exception hierarchy & HTTP handlers
    middleware      — request logging / correlation IDs
    health          — component health aggregation
"""
