from __future__ import annotations

import pathlib
import tomllib

ROOT = pathlib.Path(__file__).resolve().parents[1]


def _pyproject() -> dict:
    return tomllib.loads((ROOT / "pyproject.toml").read_text(encoding="utf-8"))


def test_dev_token_script_dependency_is_declared_outside_tests():
    script = (ROOT / "scripts" / "issue_dev_token.py").read_text(encoding="utf-8")
    dev = _pyproject()["project"]["optional-dependencies"]["dev"]

    assert "import jwt" in script
    assert any(dep.lower().startswith("pyjwt") for dep in dev)


def test_runtime_dependencies_cover_both_store_drivers():
    deps = [dep.lower() for dep in _pyproject()["project"]["dependencies"]]

    assert any(dep.startswith("psycopg") for dep in deps)
    assert any(dep.startswith("pymongo") for dep in deps)
