"""Data models for preset strings: column definitions and parsed presets."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

COLUMN_TYPES: tuple[str, ...] = ("text", "number", "boolean", "json")
DEFAULT_EXPORT_AS = ".txt"
DEFAULT_WRITE_AS = ""

_COLUMN_DEFAULTS: dict[str, str] = {
    "name": "",
    "value": "",
    "type": "text",
    "important": "no",
    "write": "",
}


class ColumnDef(BaseModel):
    """One schema field of a preset.

    Absent or null fields fall back to documented defaults instead of failing,
    so legacy presets that omit fields keep parsing. Other non-string values
    are stringified, lists and objects as compact JSON. Unknown keys are kept.
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    name: str = ""
    value: str = ""
    type: str = "text"
    important: str = "no"
    write: str = ""

    @field_validator("name", "value", "type", "important", "write", mode="before")
    @classmethod
    def _coerce_scalar(cls, raw: object, info: ValidationInfo) -> object:
        if raw is None:
            return _COLUMN_DEFAULTS[info.field_name or ""]
        if isinstance(raw, bool):
            return "true" if raw else "false"
        if isinstance(raw, (int, float)):
            return str(raw)
        if not isinstance(raw, str):
            try:
                return json.dumps(raw, ensure_ascii=False, separators=(",", ":"))
            except (TypeError, ValueError):
                return str(raw)
        return raw

    @property
    def is_required(self) -> bool:
        return self.important == "yes"


@dataclass(frozen=True)
class ParsedPreset:
    """Structured form of a preset string."""

    columns: list[ColumnDef] = field(default_factory=list)
    export_as: str = DEFAULT_EXPORT_AS
    write_as: str = DEFAULT_WRITE_AS

    def column_for(self, value: str) -> ColumnDef | None:
        """Look up a column by key; the last column with that key wins."""

        found: ColumnDef | None = None
        for column in self.columns:
            if column.value == value:
                found = column
        return found

    def to_dict(self) -> dict[str, Any]:
        return {
            "columns": [column.model_dump() for column in self.columns],
            "export_as": self.export_as,
            "write_as": self.write_as,
        }


@dataclass(frozen=True)
class PresetIssue:
    """Soft, non-fatal diagnostic about a parsed preset."""

    kind: str
    message: str
    column: str | None = None
    token: str | None = None


class PresetRecord(BaseModel):
    """A saved preset, either in a user's library or the community list."""

    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    description: str = ""
    author_id: str
    author_name: str = "Anonymous"
    is_public: bool = False
    is_official: bool = False
    download_count: int = 0
    preset_string: str
    tags: list[str] = Field(default_factory=list)
    author_username: str = ""
    author_avatar_url: str | None = None
