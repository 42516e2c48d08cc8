from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from typing import Any

from achievement_tracker.achievements import AchievementService
from achievement_tracker.db.mongo import MongoCollectionRunner
from achievement_tracker.db.postgres import PostgresTxRunner
from achievement_tracker.repositories import (
    InMemoryAchievementContentsRepository,
    InMemoryAchievementReferencesRepository,
    InMemoryLecturersRepository,
    InMemoryStudentsRepository,
    MongoAchievementContentsRepository,
    PostgresAchievementReferencesRepository,
    PostgresLecturersRepository,
    PostgresStudentsRepository,
)
from achievement_tracker.runtime_profile import store_timeout_ms, true_stack_required

logger = logging.getLogger(__name__)


def create_in_memory_service() -> AchievementService:
    return AchievementService(
        contents=InMemoryAchievementContentsRepository({}),
        references=InMemoryAchievementReferencesRepository({}),
        students=InMemoryStudentsRepository({}),
        lecturers=InMemoryLecturersRepository({}),
    )


def _create_content_store(env: Mapping[str, str], *, timeout_ms: int) -> Any:
    backend = env.get("ACH_CONTENT_BACKEND", "memory").strip().lower()
    if true_stack_required(env) and backend != "mongo":
        raise RuntimeError("ACH_CONTENT_BACKEND must be mongo when ACH_REQUIRE_TRUESTACK=true")
    if backend == "mongo":
        runner = MongoCollectionRunner(
            uri=env.get("MONGODB_URI", "mongodb://localhost:27017"),
            database=env.get("MONGODB_DATABASE", "achievement_db"),
            collection=env.get("MONGODB_COLLECTION", "achievements").strip() or "achievements",
            timeout_ms=timeout_ms,
        )
        return MongoAchievementContentsRepository(runner=runner)
    if backend != "memory":
        raise ValueError(f"unsupported ACH_CONTENT_BACKEND: {backend}")
    return InMemoryAchievementContentsRepository({})


def _create_relational_stores(env: Mapping[str, str], *, timeout_ms: int) -> tuple[Any, Any, Any]:
    backend = env.get("ACH_REFERENCE_BACKEND", "memory").strip().lower()
    if true_stack_required(env) and backend != "postgres":
        raise RuntimeError("ACH_REFERENCE_BACKEND must be postgres when ACH_REQUIRE_TRUESTACK=true")
    if backend == "postgres":
        dsn = env.get("POSTGRES_DSN", "").strip()
        if not dsn:
            raise ValueError("POSTGRES_DSN must be set when ACH_REFERENCE_BACKEND=postgres")
        tx_runner = PostgresTxRunner(dsn, timeout_ms=timeout_ms)
        return (
            PostgresAchievementReferencesRepository(tx_runner=tx_runner),
            PostgresStudentsRepository(tx_runner=tx_runner),
            PostgresLecturersRepository(tx_runner=tx_runner),
        )
    if backend != "memory":
        raise ValueError(f"unsupported ACH_REFERENCE_BACKEND: {backend}")
    return (
        InMemoryAchievementReferencesRepository({}),
        InMemoryStudentsRepository({}),
        InMemoryLecturersRepository({}),
    )


def create_achievement_service_from_env(environ: Mapping[str, str] | None = None) -> AchievementService:
    env = os.environ if environ is None else environ
    timeout_ms = store_timeout_ms(env)
    contents = _create_content_store(env, timeout_ms=timeout_ms)
    references, students, lecturers = _create_relational_stores(env, timeout_ms=timeout_ms)
    logger.info(
        "achievement_service_configured content=%s reference=%s timeout_ms=%s",
        type(contents).__name__,
        type(references).__name__,
        timeout_ms,
    )
    return AchievementService(contents=contents, references=references, students=students, lecturers=lecturers)
