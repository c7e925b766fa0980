from __future__ import annotations

import asyncio
import os
from typing import Any

from google.cloud import firestore


def normalize_doc_path(doc_path: str) -> str:
    segments = [part for part in doc_path.strip("/").split("/") if part]
    if not segments:
        raise ValueError("FIRESTORE_STATS_DOC must not be empty.")
    if len(segments) % 2 == 1:
        segments.append("current")
    return "/".join(segments)


class FirestoreStatsBackend:
    name = "firestore"

    def __init__(self, *, project_id: str | None, doc_path: str) -> None:
        self._project_id = project_id
        self._doc_path = normalize_doc_path(doc_path)
        self._firestore: firestore.Client | None = None
        self._doc_ref: Any | None = None

    @property
    def doc_path(self) -> str:
        return self._doc_path

    async def connect(self) -> None:
        if self._doc_ref is not None:
            return
        firebase_credentials = os.getenv("FIREBASE_CREDENTIALS")
        if firebase_credentials and not os.getenv("GOOGLE_APPLICATION_CREDENTIALS"):
            os.environ["GOOGLE_APPLICATION_CREDENTIALS"] = firebase_credentials

        self._firestore = firestore.Client(project=self._project_id)
        self._doc_ref = self._firestore.document(self._doc_path)

    async def close(self) -> None:
        self._doc_ref = None
        self._firestore = None

    async def read_document(self) -> dict[str, Any] | None:
        snapshot = await asyncio.to_thread(self._require_doc_ref().get)
        if not snapshot.exists:
            return None
        return snapshot.to_dict() or {}

    async def write_document(self, document: dict[str, Any]) -> None:
        # whole-document replace, no merge
        await asyncio.to_thread(self._require_doc_ref().set, document)

    def _require_doc_ref(self) -> Any:
        if self._doc_ref is None:
            raise RuntimeError("Firestore client is not initialized.")
        return self._doc_ref
