"""
Core package — cross-cutting concerns.

Modules:
    config          — environment variables & settings
    logging_config  — structured JSON / pretty logging
    middleware      — request logging, correlation IDs
    errors          — exception hierarchy & handlers
    health          — health check aggregation
    database        — async SQLAlchemy engine & sessions
    ids             — monotonic id and timestamp generation
"""
