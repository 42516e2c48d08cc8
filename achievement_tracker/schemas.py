from __future__ import annotations

import math
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

AchievementType = Literal["competition", "publication", "organization", "certification", "other"]
ACHIEVEMENT_TYPES = ("competition", "publication", "organization", "certification", "other")

COMMON_DETAIL_FIELDS = frozenset({"event_date", "location", "organizer", "score", "custom_fields"})
TYPE_DETAIL_FIELDS: dict[str, frozenset[str]] = {
    "competition": frozenset({"competition_name", "competition_level", "rank", "medal_type"}),
    "publication": frozenset({"publication_type", "publication_title", "authors", "publisher", "issn"}),
    "organization": frozenset({"organization_name", "position", "period"}),
    "certification": frozenset({"certification_name", "issued_by", "certification_number", "valid_until"}),
    "other": frozenset(),
}


class Period(BaseModel):
    model_config = ConfigDict(extra="forbid")

    start: datetime | None = None
    end: datetime | None = None


class AchievementDetails(BaseModel):
    model_config = ConfigDict(extra="forbid")

    competition_name: str | None = None
    competition_level: str | None = None
    rank: int | None = Field(default=None, ge=1)
    medal_type: str | None = None

    publication_type: str | None = None
    publication_title: str | None = None
    authors: list[str] | None = None
    publisher: str | None = None
    issn: str | None = None

    organization_name: str | None = None
    position: str | None = None
    period: Period | None = None

    certification_name: str | None = None
    issued_by: str | None = None
    certification_number: str | None = None
    valid_until: datetime | None = None

    event_date: datetime | None = None
    location: str | None = None
    organizer: str | None = None
    score: float | None = None
    custom_fields: dict[str, str | int | float | bool | None] | None = None


def details_for_type(achievement_type: str, details: AchievementDetails | None) -> dict[str, Any]:
    """Dump the detail bag for one type; raises ValueError when another type's fields are set."""
    if achievement_type not in TYPE_DETAIL_FIELDS:
        raise ValueError(f"unknown achievement_type: {achievement_type}")
    if details is None:
        return {}
    data = details.model_dump(mode="json", exclude_none=True)
    allowed = COMMON_DETAIL_FIELDS | TYPE_DETAIL_FIELDS[achievement_type]
    foreign = sorted(set(data) - allowed)
    if foreign:
        raise ValueError(f"details fields not valid for {achievement_type}: {', '.join(foreign)}")
    return data


class CreateAchievementRequest(BaseModel):
    achievement_type: AchievementType
    title: str = Field(min_length=1, max_length=255)
    description: str = ""
    details: AchievementDetails = Field(default_factory=AchievementDetails)
    tags: list[str] = Field(default_factory=list)
    points: int = Field(default=0, ge=0)


class UpdateAchievementRequest(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    details: AchievementDetails | None = None
    tags: list[str] | None = None
    points: int | None = Field(default=None, ge=0)


class VerifyAchievementRequest(BaseModel):
    action: str
    note: str = ""


class AttachmentRequest(BaseModel):
    file_name: str = Field(min_length=1)
    file_url: str = Field(min_length=1)
    file_type: str = ""


class StudentProfileRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    user_id: str = Field(min_length=1)
    student_number: str = Field(min_length=1, max_length=32)
    program_study: str = ""
    academic_year: str = ""
    advisor_id: str | None = None


class LecturerProfileRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    user_id: str = Field(min_length=1)
    lecturer_number: str = Field(min_length=1, max_length=32)
    department: str = ""


def pagination_meta(*, page: int, page_size: int, total_items: int) -> dict[str, int]:
    return {
        "page": page,
        "page_size": page_size,
        "total_items": total_items,
        "total_pages": math.ceil(total_items / page_size) if page_size > 0 else 0,
    }


def success_envelope(data: Any, trace_id: str, message: str = "ok") -> dict[str, Any]:
    return {
        "success": True,
        "data": data,
        "message": message,
        "meta": {
            "trace_id": trace_id,
        },
    }


def paginated_envelope(*, items: list[Any], pagination: dict[str, int], trace_id: str) -> dict[str, Any]:
    envelope = success_envelope(items, trace_id)
    envelope["meta"]["pagination"] = pagination
    return envelope


def error_envelope(
    *,
    code: str,
    message: str,
    error_class: str,
    retryable: bool,
    trace_id: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    error: dict[str, Any] = {
        "code": code,
        "message": message,
        "retryable": retryable,
        "class": error_class,
    }
    if details is not None:
        error["details"] = details
    return {
        "success": False,
        "error": error,
        "meta": {
            "trace_id": trace_id,
        },
    }
