from __future__ import annotations

import re
from datetime import datetime
from typing import Any

from achievement_tracker.db.postgres import PostgresTxRunner


def _validate_identifier(name: str) -> str:
    if not re.fullmatch(r"[A-Za-z_][A-Za-z0-9_]*", name):
        raise ValueError(f"invalid SQL identifier: {name}")
    return name


def _row_to_student(row: tuple[Any, ...]) -> dict[str, Any]:
    created_at = row[6]
    return {
        "id": str(row[0]),
        "user_id": str(row[1]),
        "student_number": row[2],
        "program_study": row[3],
        "academic_year": row[4],
        "advisor_id": str(row[5]) if row[5] is not None else None,
        "created_at": created_at.isoformat() if isinstance(created_at, datetime) else created_at,
    }


class InMemoryStudentsRepository:
    def __init__(self, students: dict[str, dict[str, Any]]) -> None:
        self._students = students

    def upsert(self, *, student: dict[str, Any]) -> dict[str, Any]:
        item = dict(student)
        item.setdefault("advisor_id", None)
        self._students[str(item["id"])] = item
        return dict(item)

    def find_by_user(self, *, user_id: str) -> dict[str, Any] | None:
        for row in self._students.values():
            if row.get("user_id") == user_id:
                return dict(row)
        return None

    def list_ids_by_advisor(self, *, lecturer_id: str) -> list[str]:
        return [str(x["id"]) for x in self._students.values() if x.get("advisor_id") == lecturer_id]


class PostgresStudentsRepository:
    def __init__(self, *, tx_runner: PostgresTxRunner, table_name: str = "students") -> None:
        self._tx_runner = tx_runner
        self._table_name = _validate_identifier(table_name)

    def upsert(self, *, student: dict[str, Any]) -> dict[str, Any]:
        item = dict(student)
        sql = f"""
            INSERT INTO {self._table_name} (
                id, user_id, student_number, program_study, academic_year, advisor_id
            ) VALUES (%s, %s, %s, %s, %s, %s)
            ON CONFLICT(id) DO UPDATE SET
                user_id = EXCLUDED.user_id,
                student_number = EXCLUDED.student_number,
                program_study = EXCLUDED.program_study,
                academic_year = EXCLUDED.academic_year,
                advisor_id = EXCLUDED.advisor_id
        """

        def _op(conn: Any) -> dict[str, Any]:
            with conn.cursor() as cur:
                cur.execute(
                    sql,
                    (
                        item["id"],
                        item["user_id"],
                        item.get("student_number", ""),
                        item.get("program_study", ""),
                        item.get("academic_year", ""),
                        item.get("advisor_id"),
                    ),
                )
            return item

        return self._tx_runner.run_in_tx(fn=_op)

    def find_by_user(self, *, user_id: str) -> dict[str, Any] | None:
        sql = f"""
            SELECT id, user_id, student_number, program_study, academic_year, advisor_id, created_at
            FROM {self._table_name}
            WHERE user_id = %s
            LIMIT 1
        """

        def _op(conn: Any) -> dict[str, Any] | None:
            with conn.cursor() as cur:
                cur.execute(sql, (user_id,))
                row = cur.fetchone()
            if row is None:
                return None
            return _row_to_student(row)

        return self._tx_runner.run_in_tx(fn=_op)

    def list_ids_by_advisor(self, *, lecturer_id: str) -> list[str]:
        sql = f"SELECT id FROM {self._table_name} WHERE advisor_id = %s"

        def _op(conn: Any) -> list[str]:
            with conn.cursor() as cur:
                cur.execute(sql, (lecturer_id,))
                rows = cur.fetchall() or []
            return [str(row[0]) for row in rows]

        return self._tx_runner.run_in_tx(fn=_op)
