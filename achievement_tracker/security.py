from __future__ import annotations

import base64
import hashlib
import hmac
import json
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from achievement_tracker.errors import ApiError, unauthenticated_error
from achievement_tracker.scope import Role

ROLE_DEFAULT_PERMISSIONS: dict[Role, frozenset[str]] = {
    Role.STUDENT: frozenset(
        {"achievement:create", "achievement:read", "achievement:update", "achievement:delete"}
    ),
    Role.ADVISOR: frozenset({"achievement:read", "achievement:verify"}),
    Role.ADMIN: frozenset(
        {
            "achievement:create",
            "achievement:read",
            "achievement:update",
            "achievement:delete",
            "achievement:verify",
            "user:manage",
        }
    ),
}


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name, "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


def _split_csv(raw: str) -> list[str]:
    return [x.strip() for x in raw.split(",") if x.strip()]


def _b64url_decode(raw: str) -> bytes:
    padded = raw + "=" * ((4 - len(raw) % 4) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        if value.strip().isdigit():
            return int(value.strip())
    return None


def redact_sensitive(value: object) -> object:
    sensitive_keys = {"authorization", "token", "secret", "password", "api_key", "apikey", "access_token", "cookie"}
    if isinstance(value, dict):
        redacted: dict[str, object] = {}
        for key, item in value.items():
            if str(key).lower() in sensitive_keys:
                redacted[str(key)] = "***REDACTED***"
            else:
                redacted[str(key)] = redact_sensitive(item)
        return redacted
    if isinstance(value, list):
        return [redact_sensitive(x) for x in value]
    if isinstance(value, str):
        if len(value) >= 24 and any(k in value.lower() for k in ("bearer ", "token", "secret")):
            return "***REDACTED***"
    return value


@dataclass
class AuthContext:
    user_id: str
    role: Role
    permissions: frozenset[str] = field(default_factory=frozenset)
    claims: dict[str, Any] = field(default_factory=dict)

    def has_permission(self, permission: str) -> bool:
        return permission in self.permissions


@dataclass
class JwtSecurityConfig:
    issuer: str
    audience: str
    shared_secret: str
    required_claims: list[str]
    role_claim: str
    enforce_permissions: bool
    log_redaction_enabled: bool

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> JwtSecurityConfig:
        env = os.environ if environ is None else environ
        return cls(
            issuer=env.get("JWT_ISSUER", "").strip(),
            audience=env.get("JWT_AUDIENCE", "").strip(),
            shared_secret=env.get("JWT_SHARED_SECRET", "").strip(),
            required_claims=_split_csv(env.get("JWT_REQUIRED_CLAIMS", "sub,role,exp")),
            role_claim=env.get("JWT_ROLE_CLAIM", "role").strip() or "role",
            enforce_permissions=_env_bool(env, "AUTH_ENFORCE_PERMISSIONS", True),
            log_redaction_enabled=_env_bool(env, "SECURITY_LOG_REDACTION_ENABLED", True),
        )


def _forbidden(message: str) -> ApiError:
    return ApiError(
        code="AUTH_FORBIDDEN",
        message=message,
        error_class="security_sensitive",
        retryable=False,
        http_status=403,
    )


def require_permission(ctx: AuthContext, permission: str, *, cfg: JwtSecurityConfig) -> None:
    if cfg.enforce_permissions and not ctx.has_permission(permission):
        raise _forbidden(f"missing permission: {permission}")


def require_role(ctx: AuthContext, role: Role) -> None:
    if ctx.role is not role:
        raise _forbidden(f"role {role.value} required")


def _parse_token_parts(token: str) -> tuple[dict[str, Any], dict[str, Any], str, str]:
    parts = token.split(".")
    if len(parts) != 3:
        raise unauthenticated_error("invalid token format")
    header_raw, payload_raw, signature_raw = parts
    try:
        header_obj = json.loads(_b64url_decode(header_raw))
        payload_obj = json.loads(_b64url_decode(payload_raw))
    except (json.JSONDecodeError, ValueError, TypeError):
        raise unauthenticated_error("invalid token payload") from None
    if not isinstance(header_obj, dict) or not isinstance(payload_obj, dict):
        raise unauthenticated_error("invalid token payload")
    return header_obj, payload_obj, f"{header_raw}.{payload_raw}", signature_raw


def _permissions_from_claims(payload: dict[str, Any], role: Role) -> frozenset[str]:
    raw = payload.get("permissions")
    if isinstance(raw, str):
        return frozenset(_split_csv(raw))
    if isinstance(raw, list):
        return frozenset(str(x).strip() for x in raw if str(x).strip())
    return ROLE_DEFAULT_PERMISSIONS[role]


def parse_and_validate_bearer_token(*, authorization: str | None, cfg: JwtSecurityConfig) -> AuthContext:
    if not authorization:
        raise unauthenticated_error("missing Authorization bearer token")
    prefix = "Bearer "
    if not authorization.startswith(prefix):
        raise unauthenticated_error("invalid Authorization header")
    token = authorization[len(prefix) :].strip()
    if not token:
        raise unauthenticated_error("empty bearer token")
    header_obj, payload_obj, signing_input, signature_raw = _parse_token_parts(token)
    if str(header_obj.get("alg", "")).upper() != "HS256":
        raise unauthenticated_error("unsupported jwt algorithm")
    if not cfg.shared_secret:
        raise unauthenticated_error("jwt shared secret not configured")
    expected = _b64url_encode(
        hmac.new(
            cfg.shared_secret.encode("utf-8"),
            signing_input.encode("ascii"),
            hashlib.sha256,
        ).digest()
    )
    if not hmac.compare_digest(expected, signature_raw):
        raise unauthenticated_error("invalid token signature")

    now_ts = int(datetime.now(UTC).timestamp())
    exp = _as_int(payload_obj.get("exp"))
    if exp is None or exp <= now_ts:
        raise unauthenticated_error("token expired")
    nbf = _as_int(payload_obj.get("nbf"))
    if nbf is not None and nbf > now_ts:
        raise unauthenticated_error("token not yet valid")

    if cfg.issuer and str(payload_obj.get("iss", "")) != cfg.issuer:
        raise unauthenticated_error("jwt issuer mismatch")
    if cfg.audience:
        aud = payload_obj.get("aud")
        if isinstance(aud, list):
            aud_ok = cfg.audience in {str(x) for x in aud}
        else:
            aud_ok = str(aud or "") == cfg.audience
        if not aud_ok:
            raise unauthenticated_error("jwt audience mismatch")

    for claim in cfg.required_claims:
        if claim not in payload_obj:
            raise unauthenticated_error(f"missing required claim: {claim}")

    user_id = str(payload_obj.get("user_id") or payload_obj.get("sub") or "").strip()
    if not user_id:
        raise unauthenticated_error("missing subject claim")
    try:
        role = Role.from_name(str(payload_obj.get(cfg.role_claim) or ""))
    except ValueError:
        raise _forbidden("unknown role") from None
    return AuthContext(
        user_id=user_id,
        role=role,
        permissions=_permissions_from_claims(payload_obj, role),
        claims=payload_obj,
    )
