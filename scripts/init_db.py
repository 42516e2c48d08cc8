#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from achievement_tracker.db.mongo import MongoCollectionRunner
from achievement_tracker.db.postgres import PostgresTxRunner, apply_schema


def main() -> int:
    parser = argparse.ArgumentParser(description="Create achievement tables in PostgreSQL and indexes in MongoDB")
    parser.add_argument("--dsn", default=os.getenv("POSTGRES_DSN", ""), help="PostgreSQL DSN")
    parser.add_argument("--mongo-uri", default=os.getenv("MONGODB_URI", "mongodb://localhost:27017"))
    parser.add_argument("--mongo-database", default=os.getenv("MONGODB_DATABASE", "achievement_db"))
    parser.add_argument("--mongo-collection", default=os.getenv("MONGODB_COLLECTION", "achievements"))
    parser.add_argument("--skip-mongo", action="store_true", help="only apply the relational schema")
    args = parser.parse_args()

    dsn = str(args.dsn or "").strip()
    if not dsn:
        raise SystemExit("POSTGRES_DSN is required (pass --dsn or set env)")

    apply_schema(tx_runner=PostgresTxRunner(dsn))
    result: dict[str, object] = {"postgres_schema": "applied", "mongo_indexes": "skipped"}
    if not args.skip_mongo:
        runner = MongoCollectionRunner(
            uri=args.mongo_uri,
            database=args.mongo_database,
            collection=args.mongo_collection,
        )
        try:
            runner.ensure_indexes()
        finally:
            runner.close()
        result["mongo_indexes"] = "applied"
    print(json.dumps(result, ensure_ascii=True, sort_keys=True, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
