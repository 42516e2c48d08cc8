from __future__ import annotations

import re
import threading
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from achievement_tracker.db.postgres import PostgresTxRunner

_COLUMNS = (
    "id",
    "student_id",
    "mongo_achievement_id",
    "status",
    "submitted_at",
    "verified_at",
    "verified_by",
    "rejection_note",
    "created_at",
    "updated_at",
)
# Columns a status transition may write; id, owner, pointer and created_at are immutable.
_MUTABLE_COLUMNS = frozenset(
    {"status", "submitted_at", "verified_at", "verified_by", "rejection_note", "updated_at"}
)


def _validate_identifier(name: str) -> str:
    if not re.fullmatch(r"[A-Za-z_][A-Za-z0-9_]*", name):
        raise ValueError(f"invalid SQL identifier: {name}")
    return name


def _iso(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _row_to_reference(row: tuple[Any, ...]) -> dict[str, Any]:
    item = {name: _iso(row[idx]) for idx, name in enumerate(_COLUMNS)}
    item["id"] = str(item["id"])
    item["student_id"] = str(item["student_id"])
    return item


def _check_changes(changes: dict[str, Any]) -> None:
    unknown = set(changes) - _MUTABLE_COLUMNS
    if unknown:
        raise ValueError(f"immutable reference columns: {sorted(unknown)}")


class InMemoryAchievementReferencesRepository:
    def __init__(self, references: dict[str, dict[str, Any]]) -> None:
        self._references = references
        self._lock = threading.Lock()

    def create(self, *, reference: dict[str, Any]) -> dict[str, Any]:
        item = dict(reference)
        with self._lock:
            self._references[str(item["id"])] = item
        return dict(item)

    def get(self, *, reference_id: str) -> dict[str, Any] | None:
        row = self._references.get(reference_id)
        if row is None:
            return None
        return dict(row)

    def _scoped(self, *, student_ids: list[str] | None, status: str | None) -> list[dict[str, Any]]:
        rows = list(self._references.values())
        if student_ids is not None:
            allowed = set(student_ids)
            rows = [x for x in rows if x.get("student_id") in allowed]
        if status:
            rows = [x for x in rows if x.get("status") == status]
        return rows

    def list(
        self,
        *,
        student_ids: list[str] | None,
        status: str | None,
        limit: int,
        offset: int,
    ) -> list[dict[str, Any]]:
        rows = list(enumerate(self._scoped(student_ids=student_ids, status=status)))
        rows.sort(key=lambda pair: (str(pair[1].get("created_at") or ""), pair[0]), reverse=True)
        return [dict(row) for _, row in rows[offset : offset + limit]]

    def count(self, *, student_ids: list[str] | None, status: str | None) -> int:
        return len(self._scoped(student_ids=student_ids, status=status))

    def count_by_status(self, *, student_ids: list[str] | None) -> dict[str, int]:
        counts: dict[str, int] = {}
        for row in self._scoped(student_ids=student_ids, status=None):
            key = str(row.get("status"))
            counts[key] = counts.get(key, 0) + 1
        return counts

    def list_content_ids(self, *, student_ids: list[str] | None) -> list[str]:
        return [str(x["mongo_achievement_id"]) for x in self._scoped(student_ids=student_ids, status=None)]

    def transition(
        self,
        *,
        reference_id: str,
        from_statuses: Iterable[str],
        changes: dict[str, Any],
    ) -> dict[str, Any] | None:
        _check_changes(changes)
        allowed = set(from_statuses)
        with self._lock:
            row = self._references.get(reference_id)
            if row is None or row.get("status") not in allowed:
                return None
            row.update(changes)
            return dict(row)

    def delete(self, *, reference_id: str, expected_status: str) -> bool:
        with self._lock:
            row = self._references.get(reference_id)
            if row is None or row.get("status") != expected_status:
                return False
            del self._references[reference_id]
            return True


class PostgresAchievementReferencesRepository:
    """Workflow records; status preconditions are evaluated inside the writing statement."""

    def __init__(self, *, tx_runner: PostgresTxRunner, table_name: str = "achievement_references") -> None:
        self._tx_runner = tx_runner
        self._table_name = _validate_identifier(table_name)

    @staticmethod
    def _where(*, student_ids: list[str] | None, status: str | None) -> tuple[str, list[Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        if student_ids is not None:
            clauses.append("student_id = ANY(%s)")
            params.append(list(student_ids))
        if status:
            clauses.append("status = %s")
            params.append(status)
        if not clauses:
            return "", params
        return "WHERE " + " AND ".join(clauses), params

    def create(self, *, reference: dict[str, Any]) -> dict[str, Any]:
        item = dict(reference)
        sql = f"""
            INSERT INTO {self._table_name} ({", ".join(_COLUMNS)})
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        """

        def _op(conn: Any) -> dict[str, Any]:
            with conn.cursor() as cur:
                cur.execute(sql, tuple(item.get(name) for name in _COLUMNS))
            return item

        return self._tx_runner.run_in_tx(fn=_op)

    def get(self, *, reference_id: str) -> dict[str, Any] | None:
        sql = f"""
            SELECT {", ".join(_COLUMNS)}
            FROM {self._table_name}
            WHERE id = %s
            LIMIT 1
        """

        def _op(conn: Any) -> dict[str, Any] | None:
            with conn.cursor() as cur:
                cur.execute(sql, (reference_id,))
                row = cur.fetchone()
            if row is None:
                return None
            return _row_to_reference(row)

        return self._tx_runner.run_in_tx(fn=_op)

    def list(
        self,
        *,
        student_ids: list[str] | None,
        status: str | None,
        limit: int,
        offset: int,
    ) -> list[dict[str, Any]]:
        where, params = self._where(student_ids=student_ids, status=status)
        sql = f"""
            SELECT {", ".join(_COLUMNS)}
            FROM {self._table_name}
            {where}
            ORDER BY created_at DESC, id DESC
            LIMIT %s OFFSET %s
        """

        def _op(conn: Any) -> list[dict[str, Any]]:
            with conn.cursor() as cur:
                cur.execute(sql, (*params, int(limit), int(offset)))
                rows = cur.fetchall() or []
            return [_row_to_reference(row) for row in rows]

        return self._tx_runner.run_in_tx(fn=_op)

    def count(self, *, student_ids: list[str] | None, status: str | None) -> int:
        where, params = self._where(student_ids=student_ids, status=status)
        sql = f"SELECT COUNT(*) FROM {self._table_name} {where}"

        def _op(conn: Any) -> int:
            with conn.cursor() as cur:
                cur.execute(sql, tuple(params))
                row = cur.fetchone()
            return int(row[0]) if row else 0

        return self._tx_runner.run_in_tx(fn=_op)

    def count_by_status(self, *, student_ids: list[str] | None) -> dict[str, int]:
        where, params = self._where(student_ids=student_ids, status=None)
        sql = f"SELECT status, COUNT(*) FROM {self._table_name} {where} GROUP BY status"

        def _op(conn: Any) -> dict[str, int]:
            with conn.cursor() as cur:
                cur.execute(sql, tuple(params))
                rows = cur.fetchall() or []
            return {str(row[0]): int(row[1]) for row in rows}

        return self._tx_runner.run_in_tx(fn=_op)

    def list_content_ids(self, *, student_ids: list[str] | None) -> list[str]:
        where, params = self._where(student_ids=student_ids, status=None)
        sql = f"SELECT mongo_achievement_id FROM {self._table_name} {where}"

        def _op(conn: Any) -> list[str]:
            with conn.cursor() as cur:
                cur.execute(sql, tuple(params))
                rows = cur.fetchall() or []
            return [str(row[0]) for row in rows]

        return self._tx_runner.run_in_tx(fn=_op)

    def transition(
        self,
        *,
        reference_id: str,
        from_statuses: Iterable[str],
        changes: dict[str, Any],
    ) -> dict[str, Any] | None:
        _check_changes(changes)
        names = sorted(changes)
        assignments = ", ".join(f"{_validate_identifier(name)} = %s" for name in names)
        sql = f"""
            UPDATE {self._table_name}
            SET {assignments}
            WHERE id = %s AND status = ANY(%s)
            RETURNING {", ".join(_COLUMNS)}
        """
        params = (*(changes[name] for name in names), reference_id, sorted(set(from_statuses)))

        def _op(conn: Any) -> dict[str, Any] | None:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                row = cur.fetchone()
            if row is None:
                return None
            return _row_to_reference(row)

        return self._tx_runner.run_in_tx(fn=_op)

    def delete(self, *, reference_id: str, expected_status: str) -> bool:
        sql = f"DELETE FROM {self._table_name} WHERE id = %s AND status = %s"

        def _op(conn: Any) -> bool:
            with conn.cursor() as cur:
                cur.execute(sql, (reference_id, expected_status))
                return cur.rowcount > 0

        return self._tx_runner.run_in_tx(fn=_op)
