from __future__ import annotations

import re
from datetime import datetime
from typing import Any

from achievement_tracker.db.postgres import PostgresTxRunner


def _validate_identifier(name: str) -> str:
    if not re.fullmatch(r"[A-Za-z_][A-Za-z0-9_]*", name):
        raise ValueError(f"invalid SQL identifier: {name}")
    return name


def _row_to_lecturer(row: tuple[Any, ...]) -> dict[str, Any]:
    created_at = row[4]
    return {
        "id": str(row[0]),
        "user_id": str(row[1]),
        "lecturer_number": row[2],
        "department": row[3],
        "created_at": created_at.isoformat() if isinstance(created_at, datetime) else created_at,
    }


class InMemoryLecturersRepository:
    def __init__(self, lecturers: dict[str, dict[str, Any]]) -> None:
        self._lecturers = lecturers

    def upsert(self, *, lecturer: dict[str, Any]) -> dict[str, Any]:
        item = dict(lecturer)
        self._lecturers[str(item["id"])] = item
        return dict(item)

    def get(self, *, lecturer_id: str) -> dict[str, Any] | None:
        row = self._lecturers.get(lecturer_id)
        return dict(row) if row is not None else None

    def find_by_user(self, *, user_id: str) -> dict[str, Any] | None:
        for row in self._lecturers.values():
            if row.get("user_id") == user_id:
                return dict(row)
        return None


class PostgresLecturersRepository:
    def __init__(self, *, tx_runner: PostgresTxRunner, table_name: str = "lecturers") -> None:
        self._tx_runner = tx_runner
        self._table_name = _validate_identifier(table_name)

    def upsert(self, *, lecturer: dict[str, Any]) -> dict[str, Any]:
        item = dict(lecturer)
        sql = f"""
            INSERT INTO {self._table_name} (id, user_id, lecturer_number, department)
            VALUES (%s, %s, %s, %s)
            ON CONFLICT(id) DO UPDATE SET
                user_id = EXCLUDED.user_id,
                lecturer_number = EXCLUDED.lecturer_number,
                department = EXCLUDED.department
        """

        def _op(conn: Any) -> dict[str, Any]:
            with conn.cursor() as cur:
                cur.execute(
                    sql,
                    (item["id"], item["user_id"], item.get("lecturer_number", ""), item.get("department", "")),
                )
            return item

        return self._tx_runner.run_in_tx(fn=_op)

    def _find_one(self, *, column: str, value: str) -> dict[str, Any] | None:
        sql = f"""
            SELECT id, user_id, lecturer_number, department, created_at
            FROM {self._table_name}
            WHERE {_validate_identifier(column)} = %s
            LIMIT 1
        """

        def _op(conn: Any) -> dict[str, Any] | None:
            with conn.cursor() as cur:
                cur.execute(sql, (value,))
                row = cur.fetchone()
            if row is None:
                return None
            return _row_to_lecturer(row)

        return self._tx_runner.run_in_tx(fn=_op)

    def get(self, *, lecturer_id: str) -> dict[str, Any] | None:
        return self._find_one(column="id", value=lecturer_id)

    def find_by_user(self, *, user_id: str) -> dict[str, Any] | None:
        return self._find_one(column="user_id", value=user_id)
