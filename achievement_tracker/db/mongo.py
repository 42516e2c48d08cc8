from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from achievement_tracker.errors import StoreUnavailable

logger = logging.getLogger(__name__)


def _import_pymongo() -> Any:
    try:
        import pymongo.errors  # type: ignore
    except ImportError as exc:
        raise RuntimeError("pymongo is required for ACH_CONTENT_BACKEND=mongo; install pymongo>=4.9") from exc
    return pymongo


class MongoCollectionRunner:
    """Hands one pooled collection handle to callbacks and maps driver outages to StoreUnavailable."""

    def __init__(
        self,
        *,
        uri: str,
        database: str,
        collection: str = "achievements",
        timeout_ms: int = 3000,
        client: Any | None = None,
    ) -> None:
        if not uri.strip():
            raise ValueError("MONGODB_URI must not be empty")
        if not database.strip():
            raise ValueError("MONGODB_DATABASE must not be empty")
        self._pymongo = _import_pymongo()
        if client is None:
            client = self._pymongo.MongoClient(
                uri.strip(),
                serverSelectionTimeoutMS=timeout_ms,
                connectTimeoutMS=timeout_ms,
                timeoutMS=timeout_ms,
                tz_aware=True,
            )
        self._client = client
        self._collection = client[database.strip()][collection]

    def run(self, *, fn: Callable[[Any], Any]) -> Any:
        errors = self._pymongo.errors
        try:
            return fn(self._collection)
        except (errors.ConnectionFailure, errors.ServerSelectionTimeoutError, errors.NetworkTimeout) as exc:
            raise StoreUnavailable("mongodb", str(exc)) from exc

    def ensure_indexes(self) -> None:
        self.run(fn=lambda coll: coll.create_index("studentId"))
        logger.info("mongo_indexes_ensured collection=%s", self._collection.name)

    def close(self) -> None:
        self._client.close()
