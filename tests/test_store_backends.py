from __future__ import annotations

import pytest

from achievement_tracker.repositories import (
    InMemoryAchievementContentsRepository,
    InMemoryAchievementReferencesRepository,
    MongoAchievementContentsRepository,
    PostgresAchievementReferencesRepository,
    PostgresStudentsRepository,
)
from achievement_tracker.runtime_profile import store_timeout_ms, true_stack_required
from achievement_tracker.store import create_achievement_service_from_env


def test_defaults_to_in_memory_backends():
    service = create_achievement_service_from_env({})

    assert isinstance(service.contents, InMemoryAchievementContentsRepository)
    assert isinstance(service.references, InMemoryAchievementReferencesRepository)


def test_postgres_backend_requires_dsn():
    with pytest.raises(ValueError, match="POSTGRES_DSN"):
        create_achievement_service_from_env({"ACH_REFERENCE_BACKEND": "postgres"})


def test_postgres_reference_backend_wires_directories():
    service = create_achievement_service_from_env(
        {"ACH_REFERENCE_BACKEND": "postgres", "POSTGRES_DSN": "postgresql://localhost/ach"}
    )

    assert isinstance(service.references, PostgresAchievementReferencesRepository)
    assert isinstance(service.students, PostgresStudentsRepository)


def test_mongo_content_backend_is_lazy_about_connecting():
    service = create_achievement_service_from_env(
        {"ACH_CONTENT_BACKEND": "mongo", "MONGODB_URI": "mongodb://127.0.0.1:1", "STORE_TIMEOUT_MS": "200"}
    )

    assert isinstance(service.contents, MongoAchievementContentsRepository)


def test_true_stack_forbids_memory_backends():
    with pytest.raises(RuntimeError, match="ACH_CONTENT_BACKEND must be mongo"):
        create_achievement_service_from_env({"ACH_REQUIRE_TRUESTACK": "true"})
    with pytest.raises(RuntimeError, match="ACH_REFERENCE_BACKEND must be postgres"):
        create_achievement_service_from_env(
            {"ACH_REQUIRE_TRUESTACK": "true", "ACH_CONTENT_BACKEND": "mongo", "MONGODB_URI": "mongodb://127.0.0.1:1"}
        )


def test_unknown_backend_is_rejected():
    with pytest.raises(ValueError, match="unsupported ACH_CONTENT_BACKEND"):
        create_achievement_service_from_env({"ACH_CONTENT_BACKEND": "couchdb"})


def test_runtime_profile_helpers():
    assert true_stack_required({"ACH_REQUIRE_TRUESTACK": "yes"}) is True
    assert true_stack_required({}) is False
    assert store_timeout_ms({}) == 3000
    assert store_timeout_ms({"STORE_TIMEOUT_MS": "50"}) == 100
    assert store_timeout_ms({"STORE_TIMEOUT_MS": "abc"}) == 3000
