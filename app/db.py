"""Postgres helpers: pooled connections, timed queries and per-request stats."""

from __future__ import annotations

import contextvars
import logging
import os
import time
from contextlib import contextmanager
from typing import Any, Callable, Iterable

import psycopg2
import psycopg2.errors
import psycopg2.extras
from psycopg2.pool import SimpleConnectionPool


_POOL: SimpleConnectionPool | None = None
_logger = logging.getLogger("strata.db")
_query_logger = logging.getLogger("strata.db.query")
_ACTIVE_CONN: contextvars.ContextVar[Any | None] = contextvars.ContextVar("strata_db_active_conn", default=None)
_DB_STATS: contextvars.ContextVar[dict | None] = contextvars.ContextVar("strata_db_stats", default=None)
_DB_QUERY_LOG: contextvars.ContextVar[list | None] = contextvars.ContextVar("strata_db_query_log", default=None)
_SLOW_MS = float(os.getenv("STRATA_QUERY_SLOW_MS", "200"))
_LOG_ALL = os.getenv("STRATA_QUERY_LOG", "").strip() == "1"


def get_db_url() -> str:
    url = os.getenv("STRATA_DB_URL") or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError("STRATA_DB_URL or DATABASE_URL is required when USE_DB=1")
    return url


def _empty_stats() -> dict:
    return {"queries": 0, "acquire_ms": 0.0, "execute_ms": 0.0, "decode_ms": 0.0, "total_ms": 0.0}


def reset_db_stats() -> None:
    _DB_STATS.set(_empty_stats())
    _DB_QUERY_LOG.set([])


def get_db_stats() -> dict:
    stats = _DB_STATS.get()
    return stats if isinstance(stats, dict) else _empty_stats()


def get_db_query_log() -> list:
    log = _DB_QUERY_LOG.get()
    return log if isinstance(log, list) else []


def _bump(**deltas: float) -> None:
    stats = dict(get_db_stats())
    for key, delta in deltas.items():
        stats[key] = stats.get(key, 0) + delta
    _DB_STATS.set(stats)


def _redact_params(params: Iterable[Any] | None) -> list[Any] | None:
    if params is None:
        return None
    redacted: list[Any] = []
    for val in params:
        if isinstance(val, (bytes, bytearray)):
            redacted.append(f"<bytes:{len(val)}>")
        elif isinstance(val, str) and len(val) > 80:
            redacted.append(f"{val[:40]}...{val[-10:]}")
        else:
            redacted.append(val)
    return redacted


def _log_query(query_name: str | None, params: Iterable[Any] | None, elapsed_ms: float, rowcount: int | None) -> None:
    log = list(get_db_query_log())
    log.append(query_name or "unnamed")
    _DB_QUERY_LOG.set(log)
    if not query_name and not _LOG_ALL and elapsed_ms < _SLOW_MS:
        return
    message = {
        "query": query_name or "unnamed",
        "ms": round(elapsed_ms, 2),
        "rowcount": rowcount,
        "params": _redact_params(params),
    }
    if elapsed_ms >= _SLOW_MS:
        _query_logger.warning("db_slow_query=%s", message)
    else:
        _query_logger.info("db_query=%s", message)


def init_pool(minconn: int | None = None, maxconn: int | None = None) -> None:
    global _POOL
    if _POOL is None:
        if minconn is None:
            minconn = int(os.getenv("STRATA_DB_POOL_MIN", "1"))
        if maxconn is None:
            maxconn = int(os.getenv("STRATA_DB_POOL_MAX", "10"))
        _POOL = SimpleConnectionPool(minconn, maxconn, dsn=get_db_url())
        _logger.info("db_pool_ready min=%s max=%s", minconn, maxconn)


def _get_pool() -> SimpleConnectionPool:
    if _POOL is None:
        init_pool()
    return _POOL


@contextmanager
def get_conn():
    """Borrow a pooled connection; commit on success, roll back on error.

    Nested calls inside an active block reuse the same connection so a
    multi-statement write shares one transaction.
    """
    active = _ACTIVE_CONN.get()
    if active is not None:
        yield active
        return
    pool = _get_pool()
    acquire_start = time.perf_counter()
    conn = pool.getconn()
    _bump(acquire_ms=(time.perf_counter() - acquire_start) * 1000)
    token = _ACTIVE_CONN.set(conn)
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        _ACTIVE_CONN.reset(token)
        pool.putconn(conn)


def _run(conn, sql: str, params: Iterable[Any] | None, query_name: str | None, reader: Callable[[Any], Any], dict_rows: bool) -> Any:
    start = time.perf_counter()
    factory = psycopg2.extras.RealDictCursor if dict_rows else None
    with conn.cursor(cursor_factory=factory) as cur:
        cur.execute(sql, params or [])
        executed = time.perf_counter()
        result = reader(cur)
        rowcount = cur.rowcount
    done = time.perf_counter()
    elapsed_ms = (done - start) * 1000
    _bump(
        queries=1,
        total_ms=elapsed_ms,
        execute_ms=(executed - start) * 1000,
        decode_ms=(done - executed) * 1000,
    )
    _log_query(query_name, params, elapsed_ms, rowcount)
    return result


def fetch_one(conn, sql: str, params: Iterable[Any] | None = None, query_name: str | None = None) -> dict | None:
    def _read(cur) -> dict | None:
        row = cur.fetchone()
        return dict(row) if row else None

    return _run(conn, sql, params, query_name, _read, dict_rows=True)


def fetch_all(conn, sql: str, params: Iterable[Any] | None = None, query_name: str | None = None) -> list[dict]:
    return _run(conn, sql, params, query_name, lambda cur: [dict(r) for r in cur.fetchall()], dict_rows=True)


def execute(conn, sql: str, params: Iterable[Any] | None = None, query_name: str | None = None) -> int:
    return _run(conn, sql, params, query_name, lambda cur: cur.rowcount, dict_rows=False)


def is_unique_violation(exc: BaseException) -> bool:
    return isinstance(exc, psycopg2.errors.UniqueViolation)
