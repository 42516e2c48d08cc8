from __future__ import annotations

import re
import threading
import uuid
from datetime import UTC, datetime
from typing import Any

from achievement_tracker.db.mongo import MongoCollectionRunner

# Fields update() may replace; student_id and achievement_type are fixed at creation.
UPDATABLE_FIELDS = ("title", "description", "details", "tags", "points")


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _json_safe(value: Any) -> Any:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.isoformat()
    if isinstance(value, dict):
        return {str(key): _json_safe(val) for key, val in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(item) for item in value]
    return value


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def _snake(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def _details_to_bson(details: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, value in details.items():
        if value is None:
            continue
        # custom_fields keys are caller-owned and stored verbatim
        out[_camel(key)] = dict(value) if key == "custom_fields" else value
    return out


def _details_from_bson(raw: dict[str, Any] | None) -> dict[str, Any]:
    if not isinstance(raw, dict):
        return {}
    out: dict[str, Any] = {}
    for key, value in raw.items():
        name = _snake(key)
        out[name] = _json_safe(dict(value)) if name == "custom_fields" and isinstance(value, dict) else _json_safe(value)
    return out


def _attachment_to_bson(attachment: dict[str, Any]) -> dict[str, Any]:
    return {
        "fileName": attachment.get("file_name"),
        "fileUrl": attachment.get("file_url"),
        "fileType": attachment.get("file_type"),
        "uploadedAt": attachment.get("uploaded_at"),
    }


def _attachment_from_bson(raw: dict[str, Any]) -> dict[str, Any]:
    return {
        "file_name": raw.get("fileName"),
        "file_url": raw.get("fileUrl"),
        "file_type": raw.get("fileType"),
        "uploaded_at": _json_safe(raw.get("uploadedAt")),
    }


class InMemoryAchievementContentsRepository:
    def __init__(self, contents: dict[str, dict[str, Any]]) -> None:
        self._contents = contents
        self._lock = threading.Lock()

    def create(self, *, content: dict[str, Any]) -> dict[str, Any]:
        now = _utcnow().isoformat()
        item = dict(content)
        item["id"] = f"ach_{uuid.uuid4().hex[:24]}"
        item.setdefault("attachments", [])
        item["created_at"] = now
        item["updated_at"] = now
        with self._lock:
            self._contents[item["id"]] = item
        return dict(item)

    def get(self, *, content_id: str) -> dict[str, Any] | None:
        row = self._contents.get(content_id)
        if row is None:
            return None
        return dict(row)

    def get_many(self, *, content_ids: list[str]) -> dict[str, dict[str, Any]]:
        return {cid: dict(self._contents[cid]) for cid in content_ids if cid in self._contents}

    def update(self, *, content_id: str, fields: dict[str, Any]) -> dict[str, Any] | None:
        with self._lock:
            row = self._contents.get(content_id)
            if row is None:
                return None
            for name in UPDATABLE_FIELDS:
                if name in fields:
                    row[name] = fields[name]
            row["updated_at"] = _utcnow().isoformat()
            return dict(row)

    def add_attachment(self, *, content_id: str, attachment: dict[str, Any]) -> dict[str, Any] | None:
        with self._lock:
            row = self._contents.get(content_id)
            if row is None:
                return None
            now = _utcnow().isoformat()
            row["attachments"] = [*row.get("attachments", []), {**attachment, "uploaded_at": now}]
            row["updated_at"] = now
            return dict(row)

    def delete(self, *, content_id: str) -> bool:
        with self._lock:
            return self._contents.pop(content_id, None) is not None

    def aggregate_by_type(self, *, content_ids: list[str]) -> list[dict[str, Any]]:
        groups: dict[str, dict[str, Any]] = {}
        for cid in set(content_ids):
            row = self._contents.get(cid)
            if row is None:
                continue
            kind = str(row.get("achievement_type"))
            group = groups.setdefault(kind, {"achievement_type": kind, "count": 0, "total_points": 0})
            group["count"] += 1
            group["total_points"] += int(row.get("points") or 0)
        return sorted(groups.values(), key=lambda x: x["achievement_type"])


class MongoAchievementContentsRepository:
    """Achievement documents keyed by ObjectId, using the collection's camelCase field names."""

    def __init__(self, *, runner: MongoCollectionRunner) -> None:
        from bson import ObjectId  # type: ignore

        self._runner = runner
        self._object_id = ObjectId

    def _oid(self, content_id: str) -> Any | None:
        if not self._object_id.is_valid(content_id):
            return None
        return self._object_id(content_id)

    @staticmethod
    def _to_content(doc: dict[str, Any]) -> dict[str, Any]:
        return {
            "id": str(doc["_id"]),
            "student_id": doc.get("studentId"),
            "achievement_type": doc.get("achievementType"),
            "title": doc.get("title", ""),
            "description": doc.get("description", ""),
            "details": _details_from_bson(doc.get("details")),
            "attachments": [_attachment_from_bson(x) for x in doc.get("attachments") or []],
            "tags": list(doc.get("tags") or []),
            "points": int(doc.get("points") or 0),
            "created_at": _json_safe(doc.get("createdAt")),
            "updated_at": _json_safe(doc.get("updatedAt")),
        }

    def create(self, *, content: dict[str, Any]) -> dict[str, Any]:
        now = _utcnow()
        doc = {
            "studentId": content["student_id"],
            "achievementType": content["achievement_type"],
            "title": content.get("title", ""),
            "description": content.get("description", ""),
            "details": _details_to_bson(content.get("details") or {}),
            "attachments": [_attachment_to_bson(x) for x in content.get("attachments") or []],
            "tags": list(content.get("tags") or []),
            "points": int(content.get("points") or 0),
            "createdAt": now,
            "updatedAt": now,
        }

        def _op(coll: Any) -> dict[str, Any]:
            result = coll.insert_one(doc)
            doc["_id"] = result.inserted_id
            return self._to_content(doc)

        return self._runner.run(fn=_op)

    def get(self, *, content_id: str) -> dict[str, Any] | None:
        oid = self._oid(content_id)
        if oid is None:
            return None

        def _op(coll: Any) -> dict[str, Any] | None:
            doc = coll.find_one({"_id": oid})
            return self._to_content(doc) if doc is not None else None

        return self._runner.run(fn=_op)

    def get_many(self, *, content_ids: list[str]) -> dict[str, dict[str, Any]]:
        oids = [oid for oid in (self._oid(x) for x in content_ids) if oid is not None]
        if not oids:
            return {}

        def _op(coll: Any) -> dict[str, dict[str, Any]]:
            items = (self._to_content(doc) for doc in coll.find({"_id": {"$in": oids}}))
            return {item["id"]: item for item in items}

        return self._runner.run(fn=_op)

    def update(self, *, content_id: str, fields: dict[str, Any]) -> dict[str, Any] | None:
        oid = self._oid(content_id)
        if oid is None:
            return None
        changes: dict[str, Any] = {"updatedAt": _utcnow()}
        for name in UPDATABLE_FIELDS:
            if name not in fields:
                continue
            value = fields[name]
            if name == "details":
                value = _details_to_bson(value or {})
            elif name == "tags":
                value = list(value or [])
            changes[name] = value

        def _op(coll: Any) -> dict[str, Any] | None:
            from pymongo import ReturnDocument  # type: ignore

            doc = coll.find_one_and_update(
                {"_id": oid},
                {"$set": changes},
                return_document=ReturnDocument.AFTER,
            )
            return self._to_content(doc) if doc is not None else None

        return self._runner.run(fn=_op)

    def add_attachment(self, *, content_id: str, attachment: dict[str, Any]) -> dict[str, Any] | None:
        oid = self._oid(content_id)
        if oid is None:
            return None
        now = _utcnow()
        stamped = {**_attachment_to_bson(attachment), "uploadedAt": now}

        def _op(coll: Any) -> dict[str, Any] | None:
            from pymongo import ReturnDocument  # type: ignore

            doc = coll.find_one_and_update(
                {"_id": oid},
                {"$push": {"attachments": stamped}, "$set": {"updatedAt": now}},
                return_document=ReturnDocument.AFTER,
            )
            return self._to_content(doc) if doc is not None else None

        return self._runner.run(fn=_op)

    def delete(self, *, content_id: str) -> bool:
        oid = self._oid(content_id)
        if oid is None:
            return False
        return self._runner.run(fn=lambda coll: coll.delete_one({"_id": oid}).deleted_count > 0)

    def aggregate_by_type(self, *, content_ids: list[str]) -> list[dict[str, Any]]:
        oids = [oid for oid in (self._oid(x) for x in content_ids) if oid is not None]
        if not oids:
            return []
        pipeline = [
            {"$match": {"_id": {"$in": oids}}},
            {
                "$group": {
                    "_id": "$achievementType",
                    "count": {"$sum": 1},
                    "totalPoints": {"$sum": "$points"},
                }
            },
            {"$sort": {"_id": 1}},
        ]

        def _op(coll: Any) -> list[dict[str, Any]]:
            return [
                {
                    "achievement_type": str(row["_id"]),
                    "count": int(row.get("count") or 0),
                    "total_points": int(row.get("totalPoints") or 0),
                }
                for row in coll.aggregate(pipeline)
            ]

        return self._runner.run(fn=_op)
