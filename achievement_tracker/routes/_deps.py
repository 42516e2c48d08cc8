from __future__ import annotations

import logging
import uuid

from fastapi import Request
from fastapi.responses import JSONResponse

from achievement_tracker.achievements import AchievementService
from achievement_tracker.errors import unauthenticated_error
from achievement_tracker.schemas import error_envelope
from achievement_tracker.security import AuthContext, redact_sensitive

logger = logging.getLogger(__name__)


def trace_id_from_request(request: Request) -> str:
    trace_id = getattr(request.state, "trace_id", None)
    if trace_id:
        return trace_id
    return uuid.uuid4().hex


def request_id_from_request(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return request_id
    return f"req_{uuid.uuid4().hex[:12]}"


def auth_from_request(request: Request) -> AuthContext:
    auth = getattr(request.state, "auth", None)
    if auth is None:
        raise unauthenticated_error("missing Authorization bearer token")
    return auth


def service_from_request(request: Request) -> AchievementService:
    return request.app.state.achievement_service


def error_response(
    request: Request,
    *,
    code: str,
    message: str,
    error_class: str,
    retryable: bool,
    status_code: int,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=error_envelope(
            code=code,
            message=message,
            error_class=error_class,
            retryable=retryable,
            trace_id=trace_id_from_request(request),
        ),
    )


def log_security_block(*, request: Request, code: str, detail: str) -> None:
    security_cfg = request.app.state.security_cfg
    headers_obj = dict(request.headers.items())
    headers_payload = redact_sensitive(headers_obj) if security_cfg.log_redaction_enabled else headers_obj
    auth = getattr(request.state, "auth", None)
    logger.warning(
        "security_blocked code=%s detail=%s path=%s user_id=%s trace_id=%s headers=%s",
        code,
        detail,
        request.url.path,
        auth.user_id if auth is not None else "anonymous",
        trace_id_from_request(request),
        headers_payload,
    )
