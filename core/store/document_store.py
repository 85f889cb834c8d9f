"""Document store keyed by hierarchical string paths.

Paths alternate collection and document ids, e.g. ``users/u1/tables/t1``.
Records are plain JSON-compatible dicts.
"""

from __future__ import annotations

import copy
import json
import threading
from pathlib import Path
from typing import Any, Protocol

from core.utils.errors import DocumentNotFoundError

_STORE_VERSION = 1

Record = dict[str, Any]


class DocumentStore(Protocol):
    """Narrow get/set interface used by services."""

    def get(self, path: str) -> Record | None: ...

    def set(self, path: str, record: Record) -> None: ...

    def update(self, path: str, fields: Record) -> Record: ...

    def delete(self, path: str) -> bool: ...

    def list_children(self, collection_path: str) -> list[tuple[str, Record]]: ...

    def find(self, collection_path: str, field: str, value: Any) -> list[tuple[str, Record]]: ...


class MemoryDocumentStore:
    """Process-local store, mainly for development and tests."""

    def __init__(self) -> None:
        self._documents: dict[str, Record] = {}
        self._lock = threading.RLock()

    def get(self, path: str) -> Record | None:
        with self._lock:
            record = self._load().get(_normalize_path(path))
            return copy.deepcopy(record) if record is not None else None

    def set(self, path: str, record: Record) -> None:
        with self._lock:
            documents = self._load()
            documents[_normalize_path(path)] = copy.deepcopy(record)
            self._save(documents)

    def update(self, path: str, fields: Record) -> Record:
        """Shallow-merge ``fields`` into an existing document."""

        key = _normalize_path(path)
        with self._lock:
            documents = self._load()
            if key not in documents:
                raise DocumentNotFoundError(key)
            merged = dict(documents[key])
            merged.update(copy.deepcopy(fields))
            documents[key] = merged
            self._save(documents)
            return copy.deepcopy(merged)

    def delete(self, path: str) -> bool:
        key = _normalize_path(path)
        with self._lock:
            documents = self._load()
            if key not in documents:
                return False
            del documents[key]
            self._save(documents)
            return True

    def list_children(self, collection_path: str) -> list[tuple[str, Record]]:
        """Return ``(doc_id, record)`` for direct children, sorted by id."""

        prefix = _normalize_path(collection_path) + "/"
        with self._lock:
            documents = self._load()
            children = [
                (key[len(prefix) :], copy.deepcopy(record))
                for key, record in documents.items()
                if key.startswith(prefix) and "/" not in key[len(prefix) :]
            ]
        return sorted(children, key=lambda item: item[0])

    def find(self, collection_path: str, field: str, value: Any) -> list[tuple[str, Record]]:
        return [
            (doc_id, record)
            for doc_id, record in self.list_children(collection_path)
            if record.get(field) == value
        ]

    def _load(self) -> dict[str, Record]:
        return self._documents

    def _save(self, documents: dict[str, Record]) -> None:
        self._documents = documents


class JsonFileDocumentStore(MemoryDocumentStore):
    """Persist all documents in a single JSON file with atomic replace writes."""

    def __init__(self, store_path: Path) -> None:
        super().__init__()
        self._store_path = store_path

    @property
    def store_path(self) -> Path:
        return self._store_path

    def _load(self) -> dict[str, Record]:
        if not self._store_path.exists():
            return {}

        try:
            raw = json.loads(self._store_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid document store JSON: {self._store_path}") from exc

        documents = raw.get("documents", {})
        if not isinstance(documents, dict):
            raise ValueError(f"Invalid document store layout: {self._store_path}")
        return documents

    def _save(self, documents: dict[str, Record]) -> None:
        self._store_path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self._store_path.with_suffix(f"{self._store_path.suffix}.tmp")

        payload = {
            "version": _STORE_VERSION,
            "documents": {key: documents[key] for key in sorted(documents)},
        }
        temp_path.write_text(
            json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False),
            encoding="utf-8",
        )
        temp_path.replace(self._store_path)


def _normalize_path(path: str) -> str:
    parts = [part for part in path.strip().split("/") if part]
    if not parts:
        raise ValueError("document path must not be empty")
    return "/".join(parts)
