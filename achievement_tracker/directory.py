from __future__ import annotations

import logging
from typing import Any, Protocol

from achievement_tracker.achievements import store_call
from achievement_tracker.errors import invalid_input_error
from achievement_tracker.schemas import LecturerProfileRequest, StudentProfileRequest
from achievement_tracker.scope import Role

logger = logging.getLogger(__name__)


class StudentProfiles(Protocol):
    def upsert(self, *, student: dict[str, Any]) -> dict[str, Any]: ...

    def find_by_user(self, *, user_id: str) -> dict[str, Any] | None: ...


class LecturerProfiles(Protocol):
    def upsert(self, *, lecturer: dict[str, Any]) -> dict[str, Any]: ...

    def get(self, *, lecturer_id: str) -> dict[str, Any] | None: ...

    def find_by_user(self, *, user_id: str) -> dict[str, Any] | None: ...


class DirectoryService:
    """Student and lecturer profiles that tie token users to achievement ownership and advising."""

    def __init__(self, *, students: StudentProfiles, lecturers: LecturerProfiles) -> None:
        self.students = students
        self.lecturers = lecturers

    def put_student(self, *, student_id: str, request: StudentProfileRequest) -> dict[str, Any]:
        with store_call("put_student"):
            existing = self.students.find_by_user(user_id=request.user_id)
            if existing is not None and str(existing["id"]) != student_id:
                raise invalid_input_error(f"user {request.user_id} already has student profile {existing['id']}")
            if request.advisor_id and self.lecturers.get(lecturer_id=request.advisor_id) is None:
                raise invalid_input_error(f"unknown advisor: {request.advisor_id}")
            student = self.students.upsert(student={"id": student_id, **request.model_dump()})
        logger.info(
            "student_profile_saved student_id=%s user_id=%s advisor_id=%s",
            student_id,
            request.user_id,
            request.advisor_id,
        )
        return student

    def put_lecturer(self, *, lecturer_id: str, request: LecturerProfileRequest) -> dict[str, Any]:
        with store_call("put_lecturer"):
            existing = self.lecturers.find_by_user(user_id=request.user_id)
            if existing is not None and str(existing["id"]) != lecturer_id:
                raise invalid_input_error(f"user {request.user_id} already has lecturer profile {existing['id']}")
            lecturer = self.lecturers.upsert(lecturer={"id": lecturer_id, **request.model_dump()})
        logger.info("lecturer_profile_saved lecturer_id=%s user_id=%s", lecturer_id, request.user_id)
        return lecturer

    def profile(self, *, user_id: str, role: Role) -> dict[str, Any] | None:
        """The caller's own student or lecturer profile; admins have none."""
        with store_call("profile"):
            if role is Role.STUDENT:
                return self.students.find_by_user(user_id=user_id)
            if role is Role.ADVISOR:
                return self.lecturers.find_by_user(user_id=user_id)
            return None
