from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

import psycopg2
from psycopg2.pool import ThreadedConnectionPool

from app.config import settings

logger = logging.getLogger(__name__)

# Store calls run in worker threads (asyncio.to_thread), so the pool must be thread-safe
_pool: ThreadedConnectionPool | None = None


def init_pool() -> None:
    global _pool
    if _pool is not None or not settings.db_enabled:
        return
    _pool = ThreadedConnectionPool(1, 10, dsn=settings.db_dsn)
    logger.info("ledger pool ready", extra={"event": settings.db_host})


def close_pool() -> None:
    global _pool
    if _pool is None:
        return
    _pool.closeall()
    _pool = None


def _checkout(pool: ThreadedConnectionPool) -> psycopg2.extensions.connection:
    """Take a connection and pin the schema, replacing one stale connection."""
    for attempt in range(2):
        conn = pool.getconn()
        try:
            if settings.db_schema:
                with conn.cursor() as cur:
                    cur.execute(f"SET search_path TO {settings.db_schema}")
            return conn
        except (psycopg2.OperationalError, psycopg2.InterfaceError):
            pool.putconn(conn, close=True)
            if attempt == 1:
                raise
    raise psycopg2.OperationalError("no usable ledger connection")


@contextmanager
def get_conn() -> Iterator[psycopg2.extensions.connection]:
    """Yield a connection committed on success, or ``None`` without a database."""
    if _pool is None:
        init_pool()
    pool = _pool
    if pool is None:
        yield None  # type: ignore[misc]
        return
    conn = _checkout(pool)
    try:
        yield conn
        conn.commit()
    except Exception:
        try:
            conn.rollback()
        except psycopg2.Error:
            logger.info("ledger rollback failed", extra={"event": "rollback"})
        raise
    finally:
        pool.putconn(conn)
