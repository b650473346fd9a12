from __future__ import annotations

from app.config import Settings

from .base import LedgerStore


def get_ledger_store(settings: Settings) -> LedgerStore:
    """Return the PostgreSQL ledger when configured, else an in-memory one."""
    if settings.db_enabled:
        from .pg_store import PgLedgerStore

        return PgLedgerStore()
    from .memory_store import InMemoryLedgerStore

    return InMemoryLedgerStore()
