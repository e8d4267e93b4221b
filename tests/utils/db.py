"""Throwaway SQLite databases for tests."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Tuple


def provision_test_database(prefix: str = "looptask_test") -> Tuple[str, str]:
    """Create an empty SQLite file; return ``(path, database_uri)``.

    ``TEST_DATABASE_URL`` overrides the file, in which case the path is empty
    and nothing is cleaned up.
    """
    override_url = os.environ.get("TEST_DATABASE_URL")
    if override_url:
        return "", override_url

    handle, path = tempfile.mkstemp(prefix=f"{prefix}_", suffix=".db")
    os.close(handle)
    return path, f"sqlite:///{path}"


def cleanup_test_database(path: str) -> None:
    if not path:
        return
    database_file = Path(path)
    if database_file.exists():
        database_file.unlink()


def rebuild_database_engine(db, database_uri: str):
    """Point the default engine at ``database_uri``.

    Flask-SQLAlchemy builds its engines in ``init_app``, so changing the
    config afterwards has no effect without this.
    """

    engines = db.engines
    engine = engines.pop(None, None)

    if engine is not None:
        engine.dispose()

    engine_options = getattr(db, "_engine_options", {}) or {}
    engines[None] = db.create_engine(database_uri, **engine_options)
    return engines[None]


__all__ = [
    "cleanup_test_database",
    "provision_test_database",
    "rebuild_database_engine",
]
