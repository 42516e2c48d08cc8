from __future__ import annotations

from fastapi import APIRouter, Request

from achievement_tracker.directory import DirectoryService
from achievement_tracker.routes._deps import auth_from_request, trace_id_from_request
from achievement_tracker.schemas import LecturerProfileRequest, StudentProfileRequest, success_envelope
from achievement_tracker.security import require_permission

router = APIRouter(prefix="/api/v1", tags=["directory"])


def _directory(request: Request) -> DirectoryService:
    return request.app.state.directory_service


@router.get("/auth/profile")
def get_profile(request: Request):
    auth = auth_from_request(request)
    profile = _directory(request).profile(user_id=auth.user_id, role=auth.role)
    data = {
        "user_id": auth.user_id,
        "role": auth.role.value,
        "permissions": sorted(auth.permissions),
        "profile": profile,
    }
    return success_envelope(data, trace_id_from_request(request))


@router.put("/students/{student_id}")
def put_student(student_id: str, payload: StudentProfileRequest, request: Request):
    auth = auth_from_request(request)
    require_permission(auth, "user:manage", cfg=request.app.state.security_cfg)
    data = _directory(request).put_student(student_id=student_id, request=payload)
    return success_envelope(data, trace_id_from_request(request), message="student profile saved")


@router.put("/lecturers/{lecturer_id}")
def put_lecturer(lecturer_id: str, payload: LecturerProfileRequest, request: Request):
    auth = auth_from_request(request)
    require_permission(auth, "user:manage", cfg=request.app.state.security_cfg)
    data = _directory(request).put_lecturer(lecturer_id=lecturer_id, request=payload)
    return success_envelope(data, trace_id_from_request(request), message="lecturer profile saved")
