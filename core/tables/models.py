"""Table records as stored under ``users/{uid}/tables/{id}``."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class TableRecord(BaseModel):
    """A named collection of rows created against one preset string."""

    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    preset_string: str
    file_type: str = ".txt"
    tags: list[str] = Field(default_factory=list)
    data: list[dict[str, Any]] = Field(default_factory=list)
    size: int = 0
    created_at: datetime | None = None
    last_edited: datetime | None = None
    last_exported: datetime | None = None
