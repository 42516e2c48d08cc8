from __future__ import annotations

import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any, Protocol

from achievement_tracker.errors import (
    StoreUnavailable,
    data_integrity_error,
    invalid_input_error,
    invalid_state_error,
    not_found_error,
    store_unavailable_error,
    unauthorized_error,
)
from achievement_tracker.schemas import (
    AttachmentRequest,
    CreateAchievementRequest,
    UpdateAchievementRequest,
    details_for_type,
    pagination_meta,
)
from achievement_tracker.scope import AccessScope, LecturerDirectory, Role, StudentDirectory, resolve_scope

logger = logging.getLogger(__name__)

STATUSES = ("draft", "submitted", "verified", "rejected")
VERIFY_ACTIONS = {"verify": "verified", "reject": "rejected"}
MAX_PAGE_SIZE = 100


class ContentStore(Protocol):
    def create(self, *, content: dict[str, Any]) -> dict[str, Any]: ...

    def get(self, *, content_id: str) -> dict[str, Any] | None: ...

    def get_many(self, *, content_ids: list[str]) -> dict[str, dict[str, Any]]: ...

    def update(self, *, content_id: str, fields: dict[str, Any]) -> dict[str, Any] | None: ...

    def add_attachment(self, *, content_id: str, attachment: dict[str, Any]) -> dict[str, Any] | None: ...

    def delete(self, *, content_id: str) -> bool: ...

    def aggregate_by_type(self, *, content_ids: list[str]) -> list[dict[str, Any]]: ...


class ReferenceStore(Protocol):
    def create(self, *, reference: dict[str, Any]) -> dict[str, Any]: ...

    def get(self, *, reference_id: str) -> dict[str, Any] | None: ...

    def list(
        self, *, student_ids: list[str] | None, status: str | None, limit: int, offset: int
    ) -> list[dict[str, Any]]: ...

    def count(self, *, student_ids: list[str] | None, status: str | None) -> int: ...

    def count_by_status(self, *, student_ids: list[str] | None) -> dict[str, int]: ...

    def list_content_ids(self, *, student_ids: list[str] | None) -> list[str]: ...

    def transition(
        self, *, reference_id: str, from_statuses: set[str], changes: dict[str, Any]
    ) -> dict[str, Any] | None: ...

    def delete(self, *, reference_id: str, expected_status: str) -> bool: ...


def _utcnow_iso() -> str:
    return datetime.now(UTC).isoformat()


def _normalize_tags(tags: list[str] | None) -> list[str]:
    out: list[str] = []
    for tag in tags or []:
        value = str(tag).strip()
        if value and value not in out:
            out.append(value)
    return out


@contextmanager
def store_call(operation: str) -> Iterator[None]:
    try:
        yield
    except StoreUnavailable as exc:
        logger.warning("store_unavailable operation=%s store=%s detail=%s", operation, exc.store, exc.detail)
        raise store_unavailable_error(operation=operation, exc=exc) from exc


class AchievementService:
    """Achievement lifecycle over a document store (content) and a relational store (references).

    The reference row owns status and ownership; the content document owns the
    substantive data. They are joined only by ``mongo_achievement_id``.
    """

    # operation -> statuses it may start from
    ALLOWED_FROM: dict[str, set[str]] = {
        "update": {"draft", "rejected"},
        "add_attachment": {"draft", "rejected"},
        "delete": {"draft"},
        "submit": {"draft", "rejected"},
        "verify": {"submitted"},
        "reject": {"submitted"},
    }

    def __init__(
        self,
        *,
        contents: ContentStore,
        references: ReferenceStore,
        students: StudentDirectory,
        lecturers: LecturerDirectory,
    ) -> None:
        self.contents = contents
        self.references = references
        self.students = students
        self.lecturers = lecturers

    def resolve_scope(self, *, caller_id: str, caller_role: Role) -> AccessScope:
        return resolve_scope(user_id=caller_id, role=caller_role, students=self.students, lecturers=self.lecturers)

    def _load_reference(self, reference_id: str) -> dict[str, Any]:
        reference = self.references.get(reference_id=reference_id)
        if reference is None:
            raise not_found_error("ACHIEVEMENT_NOT_FOUND", "achievement not found")
        return reference

    def _require_owner(self, *, reference: dict[str, Any], caller_id: str) -> None:
        student = self.students.find_by_user(user_id=caller_id)
        if student is None or str(student["id"]) != str(reference["student_id"]):
            raise unauthorized_error("only the owning student may modify this achievement")

    def _require_status(self, *, reference: dict[str, Any], operation: str) -> None:
        status = reference.get("status")
        if status not in self.ALLOWED_FROM[operation]:
            raise invalid_state_error(f"cannot {operation} achievement in status {status}")

    def _load_content(self, reference: dict[str, Any]) -> dict[str, Any]:
        content = self.contents.get(content_id=str(reference["mongo_achievement_id"]))
        if content is None:
            logger.error(
                "achievement_content_missing reference_id=%s content_id=%s",
                reference["id"],
                reference["mongo_achievement_id"],
            )
            raise data_integrity_error(f"content for achievement {reference['id']} is missing")
        return content

    def _transition(
        self,
        *,
        reference: dict[str, Any],
        operation: str,
        changes: dict[str, Any],
    ) -> dict[str, Any]:
        self._require_status(reference=reference, operation=operation)
        from_statuses = self.ALLOWED_FROM[operation]
        updated = self.references.transition(
            reference_id=reference["id"],
            from_statuses=from_statuses,
            changes=changes,
        )
        if updated is None:
            # status moved between the read and the conditional write
            current = self._load_reference(reference["id"])
            raise invalid_state_error(f"cannot {operation} achievement in status {current.get('status')}")
        logger.info(
            "achievement_transition reference_id=%s operation=%s from=%s to=%s",
            updated["id"],
            operation,
            reference.get("status"),
            updated.get("status"),
        )
        return updated

    def create(self, *, owner_user_id: str, request: CreateAchievementRequest) -> dict[str, Any]:
        with store_call("create"):
            student = self.students.find_by_user(user_id=owner_user_id)
            if student is None:
                raise not_found_error("STUDENT_PROFILE_NOT_FOUND", "student profile not found")
            try:
                details = details_for_type(request.achievement_type, request.details)
            except ValueError as exc:
                raise invalid_input_error(str(exc)) from exc

            content = self.contents.create(
                content={
                    "student_id": str(student["id"]),
                    "achievement_type": request.achievement_type,
                    "title": request.title,
                    "description": request.description,
                    "details": details,
                    "attachments": [],
                    "tags": _normalize_tags(request.tags),
                    "points": request.points,
                }
            )
            now = _utcnow_iso()
            reference = {
                "id": str(uuid.uuid4()),
                "student_id": str(student["id"]),
                "mongo_achievement_id": content["id"],
                "status": "draft",
                "submitted_at": None,
                "verified_at": None,
                "verified_by": None,
                "rejection_note": None,
                "created_at": now,
                "updated_at": now,
            }
            try:
                reference = self.references.create(reference=reference)
            except Exception:
                logger.warning("achievement_content_orphaned content_id=%s", content["id"])
                raise
        logger.info("achievement_created reference_id=%s student_id=%s", reference["id"], reference["student_id"])
        return {**reference, "achievement": content}

    def get(self, *, reference_id: str, caller_id: str, caller_role: Role) -> dict[str, Any]:
        with store_call("get"):
            reference = self._load_reference(reference_id)
            scope = self.resolve_scope(caller_id=caller_id, caller_role=caller_role)
            if not scope.permits(str(reference["student_id"])):
                raise unauthorized_error("achievement is outside the caller's scope")
            content = self._load_content(reference)
        return {**reference, "achievement": content}

    def list(
        self,
        *,
        caller_id: str,
        caller_role: Role,
        status: str | None = None,
        page: int = 1,
        page_size: int = 10,
    ) -> dict[str, Any]:
        if status and status not in STATUSES:
            raise invalid_input_error(f"unknown status filter: {status}")
        if page < 1:
            raise invalid_input_error("page must be >= 1")
        page_size = min(max(1, page_size), MAX_PAGE_SIZE)

        with store_call("list"):
            scope = self.resolve_scope(caller_id=caller_id, caller_role=caller_role)
            if scope.is_empty:
                return {"items": [], "pagination": pagination_meta(page=page, page_size=page_size, total_items=0)}
            student_ids = scope.filter_ids()
            total = self.references.count(student_ids=student_ids, status=status or None)
            rows = self.references.list(
                student_ids=student_ids,
                status=status or None,
                limit=page_size,
                offset=(page - 1) * page_size,
            )
            contents = self.contents.get_many(content_ids=[str(x["mongo_achievement_id"]) for x in rows])

        items: list[dict[str, Any]] = []
        for row in rows:
            content = contents.get(str(row["mongo_achievement_id"]))
            if content is None:
                logger.warning(
                    "achievement_content_missing_in_list reference_id=%s content_id=%s",
                    row["id"],
                    row["mongo_achievement_id"],
                )
            items.append({**row, "achievement": content})
        return {"items": items, "pagination": pagination_meta(page=page, page_size=page_size, total_items=total)}

    def update(self, *, reference_id: str, caller_id: str, request: UpdateAchievementRequest) -> dict[str, Any]:
        with store_call("update"):
            reference = self._load_reference(reference_id)
            self._require_owner(reference=reference, caller_id=caller_id)
            self._require_status(reference=reference, operation="update")
            current = self._load_content(reference)

            fields = request.model_dump(exclude_unset=True)
            fields.pop("details", None)
            if request.details is not None:
                try:
                    fields["details"] = details_for_type(str(current["achievement_type"]), request.details)
                except ValueError as exc:
                    raise invalid_input_error(str(exc)) from exc
            if "tags" in fields:
                fields["tags"] = _normalize_tags(fields["tags"])
            for name in ("title", "description", "points", "tags"):
                if name in fields and fields[name] is None:
                    del fields[name]

            content = self.contents.update(content_id=str(reference["mongo_achievement_id"]), fields=fields)
            if content is None:
                raise data_integrity_error(f"content for achievement {reference['id']} is missing")
        logger.info("achievement_updated reference_id=%s fields=%s", reference["id"], sorted(fields))
        return {**reference, "achievement": content}

    def delete(self, *, reference_id: str, caller_id: str) -> None:
        with store_call("delete"):
            reference = self._load_reference(reference_id)
            self._require_owner(reference=reference, caller_id=caller_id)
            self._require_status(reference=reference, operation="delete")
            # content first: a leftover reference is detectable, a leftover document is not
            if not self.contents.delete(content_id=str(reference["mongo_achievement_id"])):
                logger.warning(
                    "achievement_content_already_missing reference_id=%s content_id=%s",
                    reference["id"],
                    reference["mongo_achievement_id"],
                )
            if not self.references.delete(reference_id=reference["id"], expected_status="draft"):
                logger.error("achievement_reference_orphaned reference_id=%s", reference["id"])
                raise data_integrity_error(
                    f"achievement {reference['id']} changed status during delete; its content is already removed"
                )
        logger.info("achievement_deleted reference_id=%s", reference["id"])

    def submit(self, *, reference_id: str, caller_id: str) -> dict[str, Any]:
        with store_call("submit"):
            reference = self._load_reference(reference_id)
            self._require_owner(reference=reference, caller_id=caller_id)
            now = _utcnow_iso()
            return self._transition(
                reference=reference,
                operation="submit",
                changes={
                    "status": "submitted",
                    "submitted_at": now,
                    "verified_at": None,
                    "verified_by": None,
                    "rejection_note": None,
                    "updated_at": now,
                },
            )

    def verify(
        self,
        *,
        reference_id: str,
        verifier_id: str,
        verifier_role: Role,
        action: str,
        note: str = "",
    ) -> dict[str, Any]:
        with store_call("verify"):
            reference = self._load_reference(reference_id)
            if verifier_role is Role.STUDENT:
                raise unauthorized_error("students cannot verify achievements")
            scope = self.resolve_scope(caller_id=verifier_id, caller_role=verifier_role)
            if not scope.permits(str(reference["student_id"])):
                raise unauthorized_error("achievement is outside the verifier's scope")
            if reference.get("status") != "submitted":
                raise invalid_state_error(f"cannot {action} achievement in status {reference.get('status')}")
            if action not in VERIFY_ACTIONS:
                raise invalid_input_error(f"unknown verify action: {action}", code="VERIFY_ACTION_INVALID")

            now = _utcnow_iso()
            changes: dict[str, Any] = {
                "status": VERIFY_ACTIONS[action],
                "verified_by": verifier_id,
                "updated_at": now,
            }
            if action == "verify":
                changes["verified_at"] = now
                changes["rejection_note"] = None
            else:
                changes["rejection_note"] = (note or "").strip() or None
            return self._transition(reference=reference, operation=action, changes=changes)

    def add_attachment(
        self,
        *,
        reference_id: str,
        caller_id: str,
        attachment: AttachmentRequest,
    ) -> dict[str, Any]:
        with store_call("add_attachment"):
            reference = self._load_reference(reference_id)
            self._require_owner(reference=reference, caller_id=caller_id)
            self._require_status(reference=reference, operation="add_attachment")
            content = self.contents.add_attachment(
                content_id=str(reference["mongo_achievement_id"]),
                attachment=attachment.model_dump(),
            )
            if content is None:
                logger.error("achievement_content_missing reference_id=%s", reference["id"])
                raise data_integrity_error(f"content for achievement {reference['id']} is missing")
        return {**reference, "achievement": content}

    def statistics(self, *, caller_id: str, caller_role: Role) -> dict[str, Any]:
        by_status = {status: 0 for status in STATUSES}
        with store_call("statistics"):
            scope = self.resolve_scope(caller_id=caller_id, caller_role=caller_role)
            if scope.is_empty:
                by_type: list[dict[str, Any]] = []
            else:
                student_ids = scope.filter_ids()
                for status, count in self.references.count_by_status(student_ids=student_ids).items():
                    by_status[status] = by_status.get(status, 0) + int(count)
                content_ids = self.references.list_content_ids(student_ids=student_ids)
                by_type = self.contents.aggregate_by_type(content_ids=content_ids) if content_ids else []
        return {
            "by_type": by_type,
            "by_status": by_status,
            "total_achievements": sum(by_status.values()),
            "total_points": sum(int(x["total_points"]) for x in by_type),
        }
