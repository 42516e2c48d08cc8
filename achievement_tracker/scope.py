from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

_ROLE_ALIASES = {
    "student": "student",
    "mahasiswa": "student",
    "advisor": "advisor",
    "lecturer": "advisor",
    "dosen wali": "advisor",
    "dosen_wali": "advisor",
    "admin": "admin",
    "administrator": "admin",
}


class Role(str, Enum):
    STUDENT = "student"
    ADVISOR = "advisor"
    ADMIN = "admin"

    @classmethod
    def from_name(cls, name: str) -> Role:
        """Accepts the canonical names and the deployment's localized ones ("Mahasiswa", "Dosen Wali")."""
        key = " ".join(str(name or "").strip().lower().split())
        canonical = _ROLE_ALIASES.get(key)
        if canonical is None:
            raise ValueError(f"unknown role: {name}")
        return cls(canonical)


class StudentDirectory(Protocol):
    def find_by_user(self, *, user_id: str) -> dict[str, Any] | None: ...

    def list_ids_by_advisor(self, *, lecturer_id: str) -> list[str]: ...


class LecturerDirectory(Protocol):
    def find_by_user(self, *, user_id: str) -> dict[str, Any] | None: ...


@dataclass(frozen=True)
class AccessScope:
    unrestricted: bool = False
    student_ids: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def everyone(cls) -> AccessScope:
        return cls(unrestricted=True)

    @classmethod
    def only(cls, student_ids: list[str] | set[str] | frozenset[str]) -> AccessScope:
        return cls(unrestricted=False, student_ids=frozenset(str(x) for x in student_ids))

    @property
    def is_empty(self) -> bool:
        return not self.unrestricted and not self.student_ids

    def permits(self, student_id: str) -> bool:
        return self.unrestricted or student_id in self.student_ids

    def filter_ids(self) -> list[str] | None:
        """None means no owner filter; otherwise a sorted id list for store queries."""
        if self.unrestricted:
            return None
        return sorted(self.student_ids)


def resolve_scope(
    *,
    user_id: str,
    role: Role,
    students: StudentDirectory,
    lecturers: LecturerDirectory,
) -> AccessScope:
    if role is Role.STUDENT:
        student = students.find_by_user(user_id=user_id)
        if student is None:
            return AccessScope.only([])
        return AccessScope.only([str(student["id"])])
    if role is Role.ADVISOR:
        lecturer = lecturers.find_by_user(user_id=user_id)
        if lecturer is None:
            return AccessScope.only([])
        return AccessScope.only(students.list_ids_by_advisor(lecturer_id=str(lecturer["id"])))
    if role is Role.ADMIN:
        return AccessScope.everyone()
    raise ValueError(f"unsupported role: {role!r}")
