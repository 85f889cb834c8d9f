"""Export report models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class IncompleteRow(BaseModel):
    """A row missing one or more columns marked important."""

    model_config = ConfigDict(extra="forbid")

    row_id: str | None = None
    index: int
    missing_fields: list[str] = Field(default_factory=list)


class ExportReport(BaseModel):
    """Advisory diagnostics gathered while rendering an export."""

    model_config = ConfigDict(extra="forbid")

    incomplete_rows: list[IncompleteRow] = Field(default_factory=list)
    unused_columns: list[str] = Field(default_factory=list)


class ExportOutput(BaseModel):
    """Rendered export text plus its suggested filename."""

    model_config = ConfigDict(extra="forbid")

    content: str
    filename: str
    row_count: int
    report: ExportReport = Field(default_factory=ExportReport)
