from __future__ import annotations

import logging
import os
import uuid
from collections.abc import Mapping

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.cors import CORSMiddleware

from achievement_tracker.achievements import AchievementService
from achievement_tracker.directory import DirectoryService
from achievement_tracker.errors import ApiError
from achievement_tracker.routes._deps import (
    error_response,
    log_security_block,
    request_id_from_request,
    trace_id_from_request,
)
from achievement_tracker.routes.achievements import router as achievements_router
from achievement_tracker.routes.directory import router as directory_router
from achievement_tracker.schemas import success_envelope
from achievement_tracker.security import JwtSecurityConfig, parse_and_validate_bearer_token
from achievement_tracker.store import create_achievement_service_from_env

logger = logging.getLogger(__name__)

_PUBLIC_PATHS = {"/api/v1/health"}
_SECURITY_CODES = {"AUTH_UNAUTHORIZED", "AUTH_FORBIDDEN", "ACHIEVEMENT_FORBIDDEN"}


def create_app(
    *,
    service: AchievementService | None = None,
    environ: Mapping[str, str] | None = None,
) -> FastAPI:
    env = os.environ if environ is None else environ
    app = FastAPI(title="Student Achievement API", version="0.1.0")
    app.state.security_cfg = JwtSecurityConfig.from_env(env)
    app.state.achievement_service = service if service is not None else create_achievement_service_from_env(env)
    app.state.directory_service = DirectoryService(
        students=app.state.achievement_service.students,
        lecturers=app.state.achievement_service.lecturers,
    )
    cors_origins = env.get("CORS_ALLOW_ORIGINS", "http://127.0.0.1:5173,http://localhost:5173")
    allow_origins = [x.strip() for x in cors_origins.split(",") if x.strip()]
    if allow_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=allow_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.middleware("http")
    async def authenticate_and_trace(request: Request, call_next):
        incoming_trace_id = request.headers.get("x-trace-id", "").strip()
        request.state.trace_id = incoming_trace_id or uuid.uuid4().hex
        request.state.request_id = request.headers.get("x-request-id", f"req_{uuid.uuid4().hex[:12]}")
        request.state.auth = None
        try:
            path = request.url.path
            if path.startswith("/api/v1/") and path not in _PUBLIC_PATHS and request.method != "OPTIONS":
                request.state.auth = parse_and_validate_bearer_token(
                    authorization=request.headers.get("Authorization"),
                    cfg=app.state.security_cfg,
                )
            response = await call_next(request)
        except ApiError as exc:
            log_security_block(request=request, code=exc.code, detail=exc.message)
            response = error_response(
                request,
                code=exc.code,
                message=exc.message,
                error_class=exc.error_class,
                retryable=exc.retryable,
                status_code=exc.http_status,
            )
        response.headers["x-trace-id"] = trace_id_from_request(request)
        response.headers["x-request-id"] = request_id_from_request(request)
        return response

    @app.exception_handler(ApiError)
    async def handle_api_error(request: Request, exc: ApiError):
        if exc.code in _SECURITY_CODES:
            log_security_block(request=request, code=exc.code, detail=exc.message)
        elif exc.http_status >= 500:
            logger.error("request_failed code=%s path=%s detail=%s", exc.code, request.url.path, exc.message)
        return error_response(
            request,
            code=exc.code,
            message=exc.message,
            error_class=exc.error_class,
            retryable=exc.retryable,
            status_code=exc.http_status,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        return error_response(
            request,
            code="REQ_VALIDATION_FAILED",
            message="invalid payload",
            error_class="validation",
            retryable=False,
            status_code=400,
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return error_response(
                request,
                code="REQ_NOT_FOUND",
                message="resource not found",
                error_class="validation",
                retryable=False,
                status_code=404,
            )
        return error_response(
            request,
            code="REQ_HTTP_ERROR",
            message=str(exc.detail),
            error_class="validation",
            retryable=False,
            status_code=exc.status_code,
        )

    @app.get("/healthz")
    def healthz(request: Request) -> dict[str, object]:
        return success_envelope({"status": "ok"}, trace_id_from_request(request))

    @app.get("/api/v1/health")
    def health_api(request: Request) -> dict[str, object]:
        return success_envelope({"status": "ok"}, trace_id_from_request(request))

    app.include_router(achievements_router)
    app.include_router(directory_router)
    return app


app = create_app()
