"""
Connection pool for the API.

FastAPI opens the pool on startup and closes it on shutdown (see
`api/main.py`). Each request borrows one connection through `get_conn` and
hands it back when the response is done, on success and on error.

Borrowers beyond `maxconn` wait for a free slot for up to `timeout` seconds
instead of failing at once. A caller that still cannot get a connection gets
`StoreUnavailable`. Opening a new physical connection is bounded separately
by `DB_CONNECT_TIMEOUT_SEC`.
"""
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

import psycopg2
from psycopg2.pool import ThreadedConnectionPool

from api.config import (
    DATABASE_URL,
    DB_CONNECT_TIMEOUT_SEC,
    DB_POOL_MAX,
    DB_POOL_MIN,
    DB_POOL_TIMEOUT_SEC,
)
from api.store import StoreUnavailable

_pool: Optional[ThreadedConnectionPool] = None
_slots: Optional[threading.BoundedSemaphore] = None


def init_pool(
    dsn: str = DATABASE_URL,
    minconn: int = DB_POOL_MIN,
    maxconn: int = DB_POOL_MAX,
) -> None:
    global _pool, _slots
    if _pool is not None:
        return
    _pool = ThreadedConnectionPool(
        minconn,
        maxconn,
        dsn,
        connect_timeout=DB_CONNECT_TIMEOUT_SEC,
    )
    _slots = threading.BoundedSemaphore(maxconn)


def close_pool() -> None:
    global _pool, _slots
    if _pool is None:
        return
    _pool.closeall()
    _pool = None
    _slots = None


def pool() -> ThreadedConnectionPool:
    if _pool is None:
        raise RuntimeError("DB pool is not initialized. Call init_pool() on startup.")
    return _pool


@contextmanager
def connection(timeout: float = DB_POOL_TIMEOUT_SEC) -> Iterator:
    p = pool()
    slots = _slots
    if not slots.acquire(timeout=timeout):
        raise StoreUnavailable(f"no database connection available within {timeout}s")
    try:
        try:
            conn = p.getconn()
        except psycopg2.Error as exc:
            raise StoreUnavailable(f"acquire connection: {exc}") from exc
        try:
            yield conn
        finally:
            broken = bool(conn.closed)
            if not broken:
                try:
                    # reads leave an open transaction behind; end it before reuse
                    conn.rollback()
                except psycopg2.Error:
                    broken = True
            p.putconn(conn, close=broken)
    finally:
        slots.release()


def get_conn() -> Iterator:
    with connection() as conn:
        yield conn
