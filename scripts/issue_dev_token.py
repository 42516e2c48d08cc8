#!/usr/bin/env python3
from __future__ import annotations

import argparse
import os
import time

import jwt


def main() -> int:
    parser = argparse.ArgumentParser(description="Issue an HS256 bearer token for local API calls")
    parser.add_argument("--user-id", required=True)
    parser.add_argument("--role", required=True, help="student, advisor or admin (localized names accepted)")
    parser.add_argument("--permissions", default="", help="comma-separated; default uses the role's permissions")
    parser.add_argument("--ttl-seconds", type=int, default=3600)
    parser.add_argument("--secret", default=os.getenv("JWT_SHARED_SECRET", ""))
    args = parser.parse_args()

    secret = str(args.secret or "").strip()
    if not secret:
        raise SystemExit("JWT_SHARED_SECRET is required (pass --secret or set env)")

    now = int(time.time())
    payload: dict[str, object] = {
        "sub": args.user_id,
        "role": args.role,
        "iat": now,
        "exp": now + max(1, args.ttl_seconds),
    }
    if os.getenv("JWT_ISSUER", "").strip():
        payload["iss"] = os.environ["JWT_ISSUER"].strip()
    if os.getenv("JWT_AUDIENCE", "").strip():
        payload["aud"] = os.environ["JWT_AUDIENCE"].strip()
    permissions = [x.strip() for x in args.permissions.split(",") if x.strip()]
    if permissions:
        payload["permissions"] = permissions
    print(jwt.encode(payload, secret, algorithm="HS256"))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
