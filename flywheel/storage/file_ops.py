from __future__ import annotations

import asyncio
import json
import os
import tempfile
from pathlib import Path
from typing import Any

from .helpers import dump_document


def _read_json(path: Path) -> dict[str, Any] | None:
    if not path.exists():
        return None
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def _write_json_atomic(path: Path, document: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    descriptor, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(descriptor, "w", encoding="utf-8") as handle:
            handle.write(dump_document(document))
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class FileStatsBackend:
    name = "file"

    def __init__(self, path: str) -> None:
        self._path = Path(path)

    async def connect(self) -> None:
        return None

    async def close(self) -> None:
        return None

    async def read_document(self) -> dict[str, Any] | None:
        return await asyncio.to_thread(_read_json, self._path)

    async def write_document(self, document: dict[str, Any]) -> None:
        await asyncio.to_thread(_write_json_atomic, self._path, document)
