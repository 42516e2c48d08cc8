from __future__ import annotations

import base64
import hashlib
import hmac
import json
from datetime import UTC, datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from achievement_tracker.errors import ApiError
from achievement_tracker.main import create_app
from achievement_tracker.scope import Role
from achievement_tracker.security import (
    JwtSecurityConfig,
    parse_and_validate_bearer_token,
    redact_sensitive,
)
from achievement_tracker.store import create_in_memory_service

SECRET = "jwt_test_key_material"


def _b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _build_hs256_token(*, secret: str, claims: dict[str, object], alg: str = "HS256") -> str:
    header = {"alg": alg, "typ": "JWT"}
    header_raw = _b64url(json.dumps(header, sort_keys=True, separators=(",", ":")).encode("utf-8"))
    payload_raw = _b64url(json.dumps(claims, sort_keys=True, separators=(",", ":")).encode("utf-8"))
    signing_input = f"{header_raw}.{payload_raw}".encode("ascii")
    signature = hmac.new(secret.encode("utf-8"), signing_input, hashlib.sha256).digest()
    return f"{header_raw}.{payload_raw}.{_b64url(signature)}"


def _claims(*, role: str = "Mahasiswa", ttl_minutes: int = 15, **extra) -> dict[str, object]:
    now = datetime.now(UTC)
    claims: dict[str, object] = {
        "iss": "ach.test",
        "aud": "ach.api",
        "sub": "user_1",
        "role": role,
        "exp": int((now + timedelta(minutes=ttl_minutes)).timestamp()),
        "iat": int(now.timestamp()),
    }
    claims.update(extra)
    return claims


def _cfg(**overrides) -> JwtSecurityConfig:
    env = {
        "JWT_ISSUER": "ach.test",
        "JWT_AUDIENCE": "ach.api",
        "JWT_SHARED_SECRET": SECRET,
        "JWT_REQUIRED_CLAIMS": "sub,role,exp",
    }
    env.update(overrides)
    return JwtSecurityConfig.from_env(env)


def _bearer(claims: dict[str, object], *, secret: str = SECRET, alg: str = "HS256") -> str:
    return f"Bearer {_build_hs256_token(secret=secret, claims=claims, alg=alg)}"


def test_valid_token_yields_role_and_default_permissions():
    ctx = parse_and_validate_bearer_token(authorization=_bearer(_claims()), cfg=_cfg())

    assert ctx.user_id == "user_1"
    assert ctx.role is Role.STUDENT
    assert ctx.has_permission("achievement:create")
    assert not ctx.has_permission("achievement:verify")


def test_permissions_claim_overrides_role_defaults():
    ctx = parse_and_validate_bearer_token(
        authorization=_bearer(_claims(role="Dosen Wali", permissions=["achievement:read"])),
        cfg=_cfg(),
    )

    assert ctx.role is Role.ADVISOR
    assert ctx.permissions == frozenset({"achievement:read"})


@pytest.mark.parametrize(
    ("authorization", "message"),
    [
        (None, "missing Authorization"),
        ("Token abc", "invalid Authorization header"),
        ("Bearer ", "empty bearer token"),
        ("Bearer a.b", "invalid token format"),
    ],
)
def test_malformed_authorization_is_unauthorized(authorization, message):
    with pytest.raises(ApiError) as exc_info:
        parse_and_validate_bearer_token(authorization=authorization, cfg=_cfg())

    assert exc_info.value.code == "AUTH_UNAUTHORIZED"
    assert exc_info.value.http_status == 401
    assert message in exc_info.value.message


def test_rejects_expired_wrong_signature_and_algorithm():
    cases = [
        (_bearer(_claims(ttl_minutes=-1)), "token expired"),
        (_bearer(_claims(), secret="other"), "invalid token signature"),
        (_bearer(_claims(), alg="none"), "unsupported jwt algorithm"),
        (_bearer(_claims(iss="elsewhere")), "issuer mismatch"),
        (_bearer(_claims(aud=["other.api"])), "audience mismatch"),
    ]
    for authorization, message in cases:
        with pytest.raises(ApiError) as exc_info:
            parse_and_validate_bearer_token(authorization=authorization, cfg=_cfg())
        assert message in exc_info.value.message


def test_missing_required_claim_is_unauthorized():
    claims = _claims()
    claims.pop("role")

    with pytest.raises(ApiError) as exc_info:
        parse_and_validate_bearer_token(authorization=_bearer(claims), cfg=_cfg())

    assert exc_info.value.message == "missing required claim: role"


def test_unknown_role_is_forbidden():
    with pytest.raises(ApiError) as exc_info:
        parse_and_validate_bearer_token(authorization=_bearer(_claims(role="dean")), cfg=_cfg())

    assert exc_info.value.code == "AUTH_FORBIDDEN"
    assert exc_info.value.http_status == 403


def test_unconfigured_secret_rejects_every_token():
    with pytest.raises(ApiError) as exc_info:
        parse_and_validate_bearer_token(authorization=_bearer(_claims()), cfg=_cfg(JWT_SHARED_SECRET=""))

    assert "not configured" in exc_info.value.message


def test_redact_sensitive_masks_authorization_headers():
    redacted = redact_sensitive({"authorization": "Bearer abc", "x-trace-id": "t1", "nested": [{"password": "p"}]})

    assert redacted == {
        "authorization": "***REDACTED***",
        "x-trace-id": "t1",
        "nested": [{"password": "***REDACTED***"}],
    }


def test_api_requires_bearer_token(monkeypatch):
    monkeypatch.setenv("JWT_SHARED_SECRET", SECRET)
    monkeypatch.setenv("JWT_ISSUER", "ach.test")
    monkeypatch.setenv("JWT_AUDIENCE", "ach.api")
    client = TestClient(create_app(service=create_in_memory_service()))

    missing = client.get("/api/v1/achievements")
    expired = client.get("/api/v1/achievements", headers={"Authorization": _bearer(_claims(ttl_minutes=-5))})
    health = client.get("/api/v1/health")

    assert missing.status_code == 401
    assert missing.json()["error"]["code"] == "AUTH_UNAUTHORIZED"
    assert missing.headers["x-trace-id"]
    assert expired.status_code == 401
    assert health.status_code == 200
