from __future__ import annotations

from collections.abc import Mapping
import os


def _as_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def true_stack_required(environ: Mapping[str, str] | None = None) -> bool:
    """True when in-memory store twins must not be used (staging, production)."""
    env = os.environ if environ is None else environ
    return _as_bool(env.get("ACH_REQUIRE_TRUESTACK", "false"))


def store_timeout_ms(environ: Mapping[str, str] | None = None) -> int:
    env = os.environ if environ is None else environ
    raw = env.get("STORE_TIMEOUT_MS", "").strip()
    if not raw:
        return 3000
    try:
        value = int(raw)
    except ValueError:
        return 3000
    return max(100, value)
