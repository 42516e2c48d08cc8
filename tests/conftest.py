import pathlib
import sys
from datetime import datetime, timedelta, timezone

import jwt
import pytest
from fastapi.testclient import TestClient

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from achievement_tracker.main import create_app
from achievement_tracker.store import create_in_memory_service

JWT_SECRET = "jwt_test_secret"

STUDENT_A = "user_student_a"
STUDENT_B = "user_student_b"
STUDENT_NO_PROFILE = "user_student_ghost"
LECTURER_L = "user_lecturer_l"
LECTURER_NO_PROFILE = "user_lecturer_ghost"
ADMIN = "user_admin"


def issue_token(
    *,
    user_id: str,
    role: str,
    secret: str = JWT_SECRET,
    permissions: list[str] | None = None,
    ttl_minutes: int = 30,
) -> str:
    now = datetime.now(timezone.utc)
    payload: dict[str, object] = {
        "sub": user_id,
        "role": role,
        "exp": int((now + timedelta(minutes=ttl_minutes)).timestamp()),
        "iat": int(now.timestamp()),
        "iss": "test-issuer",
        "aud": "test-audience",
    }
    if permissions is not None:
        payload["permissions"] = permissions
    return jwt.encode(payload, secret, algorithm="HS256")


class AuthenticatedClient:
    def __init__(self, client: TestClient, *, user_id: str = STUDENT_A, role: str = "student"):
        self._client = client
        self._user_id = user_id
        self._role = role

    def as_user(self, user_id: str, role: str) -> "AuthenticatedClient":
        return AuthenticatedClient(self._client, user_id=user_id, role=role)

    def request(self, method: str, url: str, **kwargs):
        headers = dict(kwargs.pop("headers", {}) or {})
        if url.startswith("/api/v1/") and "Authorization" not in headers:
            token = issue_token(user_id=self._user_id, role=self._role)
            headers["Authorization"] = f"Bearer {token}"
        return self._client.request(method, url, headers=headers, **kwargs)

    def __getattr__(self, name: str):
        return getattr(self._client, name)

    def get(self, url: str, **kwargs):
        return self.request("GET", url, **kwargs)

    def post(self, url: str, **kwargs):
        return self.request("POST", url, **kwargs)

    def put(self, url: str, **kwargs):
        return self.request("PUT", url, **kwargs)

    def delete(self, url: str, **kwargs):
        return self.request("DELETE", url, **kwargs)


@pytest.fixture(autouse=True)
def security_env(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("JWT_SHARED_SECRET", JWT_SECRET)
    monkeypatch.setenv("JWT_ISSUER", "test-issuer")
    monkeypatch.setenv("JWT_AUDIENCE", "test-audience")
    monkeypatch.setenv("JWT_REQUIRED_CLAIMS", "sub,role,exp")
    monkeypatch.delenv("ACH_REQUIRE_TRUESTACK", raising=False)
    monkeypatch.delenv("ACH_REFERENCE_BACKEND", raising=False)
    monkeypatch.delenv("ACH_CONTENT_BACKEND", raising=False)
    monkeypatch.delenv("AUTH_ENFORCE_PERMISSIONS", raising=False)
    yield


@pytest.fixture
def service():
    svc = create_in_memory_service()
    svc.lecturers.upsert(
        lecturer={"id": "lec_l", "user_id": LECTURER_L, "lecturer_number": "L-001", "department": "CS"}
    )
    svc.students.upsert(
        student={
            "id": "stu_a",
            "user_id": STUDENT_A,
            "student_number": "S-001",
            "program_study": "Informatics",
            "academic_year": "2023",
            "advisor_id": "lec_l",
        }
    )
    svc.students.upsert(
        student={
            "id": "stu_b",
            "user_id": STUDENT_B,
            "student_number": "S-002",
            "program_study": "Informatics",
            "academic_year": "2023",
            "advisor_id": None,
        }
    )
    return svc


@pytest.fixture
def client(service) -> AuthenticatedClient:
    app = create_app(service=service)
    return AuthenticatedClient(TestClient(app))
