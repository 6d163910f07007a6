"""
storage — Persistence ports and their adapters.

Sub-modules:
    ports       — Protocols the alerting pipeline depends on
    memory      — In-process adapters (default, tests, demos)
    sql_models  — SQLAlchemy ORM tables
    sql_store   — SQLAlchemy async adapters (SQLite / PostgreSQL)
"""
