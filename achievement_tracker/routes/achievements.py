from __future__ import annotations

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

from achievement_tracker.routes._deps import auth_from_request, service_from_request, trace_id_from_request
from achievement_tracker.schemas import (
    AttachmentRequest,
    CreateAchievementRequest,
    UpdateAchievementRequest,
    VerifyAchievementRequest,
    paginated_envelope,
    success_envelope,
)
from achievement_tracker.scope import Role
from achievement_tracker.security import require_permission, require_role

router = APIRouter(prefix="/api/v1", tags=["achievements"])


@router.get("/achievements")
def list_achievements(
    request: Request,
    status: str | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
):
    auth = auth_from_request(request)
    data = service_from_request(request).list(
        caller_id=auth.user_id,
        caller_role=auth.role,
        status=status,
        page=page,
        page_size=limit,
    )
    return paginated_envelope(
        items=data["items"],
        pagination=data["pagination"],
        trace_id=trace_id_from_request(request),
    )


@router.get("/achievements/{achievement_id}")
def get_achievement(achievement_id: str, request: Request):
    auth = auth_from_request(request)
    data = service_from_request(request).get(
        reference_id=achievement_id,
        caller_id=auth.user_id,
        caller_role=auth.role,
    )
    return success_envelope(data, trace_id_from_request(request))


@router.post("/achievements")
def create_achievement(payload: CreateAchievementRequest, request: Request):
    auth = auth_from_request(request)
    require_permission(auth, "achievement:create", cfg=request.app.state.security_cfg)
    data = service_from_request(request).create(owner_user_id=auth.user_id, request=payload)
    return JSONResponse(
        status_code=201,
        content=success_envelope(data, trace_id_from_request(request), message="achievement created"),
    )


@router.put("/achievements/{achievement_id}")
def update_achievement(achievement_id: str, payload: UpdateAchievementRequest, request: Request):
    auth = auth_from_request(request)
    require_permission(auth, "achievement:update", cfg=request.app.state.security_cfg)
    data = service_from_request(request).update(
        reference_id=achievement_id,
        caller_id=auth.user_id,
        request=payload,
    )
    return success_envelope(data, trace_id_from_request(request), message="achievement updated")


@router.delete("/achievements/{achievement_id}")
def delete_achievement(achievement_id: str, request: Request):
    auth = auth_from_request(request)
    require_permission(auth, "achievement:delete", cfg=request.app.state.security_cfg)
    service_from_request(request).delete(reference_id=achievement_id, caller_id=auth.user_id)
    return success_envelope(
        {"id": achievement_id, "deleted": True},
        trace_id_from_request(request),
        message="achievement deleted",
    )


@router.post("/achievements/{achievement_id}/submit")
def submit_achievement(achievement_id: str, request: Request):
    auth = auth_from_request(request)
    require_role(auth, Role.STUDENT)
    data = service_from_request(request).submit(reference_id=achievement_id, caller_id=auth.user_id)
    return success_envelope(data, trace_id_from_request(request), message="achievement submitted")


@router.post("/achievements/{achievement_id}/verify")
def verify_achievement(achievement_id: str, payload: VerifyAchievementRequest, request: Request):
    auth = auth_from_request(request)
    require_permission(auth, "achievement:verify", cfg=request.app.state.security_cfg)
    data = service_from_request(request).verify(
        reference_id=achievement_id,
        verifier_id=auth.user_id,
        verifier_role=auth.role,
        action=payload.action,
        note=payload.note,
    )
    return success_envelope(data, trace_id_from_request(request), message=f"achievement {data['status']}")


@router.post("/achievements/{achievement_id}/attachments")
def add_attachment(achievement_id: str, payload: AttachmentRequest, request: Request):
    auth = auth_from_request(request)
    require_permission(auth, "achievement:update", cfg=request.app.state.security_cfg)
    data = service_from_request(request).add_attachment(
        reference_id=achievement_id,
        caller_id=auth.user_id,
        attachment=payload,
    )
    return JSONResponse(
        status_code=201,
        content=success_envelope(data, trace_id_from_request(request), message="attachment added"),
    )


@router.get("/reports/statistics")
def achievement_statistics(request: Request):
    auth = auth_from_request(request)
    data = service_from_request(request).statistics(caller_id=auth.user_id, caller_role=auth.role)
    return success_envelope(data, trace_id_from_request(request))
