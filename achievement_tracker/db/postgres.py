from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

from achievement_tracker.errors import StoreUnavailable


def _import_psycopg() -> Any:
    try:
        import psycopg  # type: ignore
    except ImportError as exc:
        raise RuntimeError("psycopg is required for PostgreSQL backends; install psycopg[binary]") from exc
    return psycopg


class PostgresTxRunner:
    """Run callback logic in one PostgreSQL transaction bounded by a statement deadline."""

    def __init__(self, dsn: str, *, timeout_ms: int = 3000) -> None:
        if not dsn.strip():
            raise ValueError("POSTGRES_DSN must not be empty")
        if timeout_ms <= 0:
            raise ValueError("timeout_ms must be positive")
        self._dsn = dsn.strip()
        self._timeout_ms = int(timeout_ms)

    def run_in_tx(self, *, fn: Callable[[Any], Any]) -> Any:
        psycopg = _import_psycopg()
        connect_timeout = max(1, self._timeout_ms // 1000)
        try:
            with psycopg.connect(self._dsn, connect_timeout=connect_timeout) as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT set_config('statement_timeout', %s, true)", (str(self._timeout_ms),))
                result = fn(conn)
                conn.commit()
                return result
        except psycopg.OperationalError as exc:
            raise StoreUnavailable("postgres", str(exc)) from exc


SCHEMA_PATH = Path(__file__).with_name("schema.sql")


def apply_schema(*, tx_runner: PostgresTxRunner, schema_sql: str | None = None) -> None:
    sql = SCHEMA_PATH.read_text(encoding="utf-8") if schema_sql is None else schema_sql

    def _op(conn: Any) -> None:
        with conn.cursor() as cur:
            cur.execute(sql)

    tx_runner.run_in_tx(fn=_op)
