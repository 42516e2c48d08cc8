from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    UNAUTHORIZED = "unauthorized"
    INVALID_STATE = "invalid_state"
    INVALID_INPUT = "invalid_input"
    DATA_INTEGRITY = "data_integrity"
    STORE_UNAVAILABLE = "store_unavailable"
    UNAUTHENTICATED = "unauthenticated"


class ApiError(Exception):
    def __init__(
        self,
        *,
        code: str,
        message: str,
        error_class: str,
        retryable: bool,
        http_status: int,
        kind: ErrorKind | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.error_class = error_class
        self.retryable = retryable
        self.http_status = http_status
        self.kind = kind


class StoreUnavailable(Exception):
    """Raised by store adapters when the backing server cannot be reached."""

    def __init__(self, store: str, detail: str) -> None:
        super().__init__(f"{store} unavailable: {detail}")
        self.store = store
        self.detail = detail


def not_found_error(code: str, message: str) -> ApiError:
    return ApiError(
        code=code,
        message=message,
        error_class="validation",
        retryable=False,
        http_status=404,
        kind=ErrorKind.NOT_FOUND,
    )


def unauthorized_error(message: str, code: str = "ACHIEVEMENT_FORBIDDEN") -> ApiError:
    return ApiError(
        code=code,
        message=message,
        error_class="security_sensitive",
        retryable=False,
        http_status=403,
        kind=ErrorKind.UNAUTHORIZED,
    )


def invalid_state_error(message: str) -> ApiError:
    return ApiError(
        code="ACHIEVEMENT_STATE_INVALID",
        message=message,
        error_class="business_rule",
        retryable=False,
        http_status=409,
        kind=ErrorKind.INVALID_STATE,
    )


def invalid_input_error(message: str, code: str = "REQ_VALIDATION_FAILED") -> ApiError:
    return ApiError(
        code=code,
        message=message,
        error_class="validation",
        retryable=False,
        http_status=400,
        kind=ErrorKind.INVALID_INPUT,
    )


def data_integrity_error(message: str) -> ApiError:
    return ApiError(
        code="ACHIEVEMENT_CONTENT_MISSING",
        message=message,
        error_class="data_integrity",
        retryable=False,
        http_status=500,
        kind=ErrorKind.DATA_INTEGRITY,
    )


def store_unavailable_error(*, operation: str, exc: StoreUnavailable) -> ApiError:
    return ApiError(
        code="STORE_UNAVAILABLE",
        message=f"{operation} failed: {exc.store} unavailable",
        error_class="transient",
        retryable=True,
        http_status=503,
        kind=ErrorKind.STORE_UNAVAILABLE,
    )


def unauthenticated_error(message: str) -> ApiError:
    return ApiError(
        code="AUTH_UNAUTHORIZED",
        message=message,
        error_class="security_sensitive",
        retryable=False,
        http_status=401,
        kind=ErrorKind.UNAUTHENTICATED,
    )
