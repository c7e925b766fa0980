from __future__ import annotations

import os
from dataclasses import dataclass

STATS_BACKENDS = {"file", "redis", "firestore"}


def normalize_backend(value: str | None) -> str:
    backend = (value or "").strip().lower()
    if backend in STATS_BACKENDS:
        return backend
    return "file"


@dataclass(slots=True)
class StorageSettings:
    backend: str
    db_path: str
    redis_url: str
    redis_stats_key: str
    firestore_project_id: str | None
    firestore_stats_doc: str

    @classmethod
    def from_env(cls) -> "StorageSettings":
        return cls(
            backend=normalize_backend(os.getenv("STATS_BACKEND")),
            db_path=os.getenv("DB_PATH", "").strip() or "./db.json",
            redis_url=os.getenv("REDIS_URL", "redis://redis:6379/0"),
            redis_stats_key=os.getenv("REDIS_STATS_KEY", "flywheel:stats"),
            firestore_project_id=os.getenv("FIRESTORE_PROJECT_ID") or None,
            firestore_stats_doc=(os.getenv("FIRESTORE_STATS_DOC", "").strip("/") or "flywheel/stats"),
        )
