"""Typed load/save helpers on top of the document store."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TypeVar

from pydantic import BaseModel

from core.store.document_store import DocumentStore
from core.utils.errors import DocumentNotFoundError

ModelT = TypeVar("ModelT", bound=BaseModel)


def load_record(store: DocumentStore, path: str, model: type[ModelT]) -> ModelT:
    raw = store.get(path)
    if raw is None:
        raise DocumentNotFoundError(path)
    return model.model_validate(raw)


def save_record(store: DocumentStore, path: str, record: BaseModel) -> None:
    store.set(path, record.model_dump(mode="json"))


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
