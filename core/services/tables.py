"""Table operations: creation from presets, row editing, export, AI fill."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any

from core.accounts.models import UserRecord
from core.ai.client import TextCompletionClient
from core.ai.flows import populate_columns
from core.presets.parser import require_parsed_preset, sniff_file_type
from core.render.models import ExportOutput
from core.render.row_renderer import ROW_ID_KEY, render_export
from core.services.accounts import save_user
from core.services.presets import get_preset
from core.services.records import load_record, save_record, utcnow
from core.store import paths
from core.store.document_store import DocumentStore
from core.tables.models import TableRecord
from core.tables.rows import (
    ROW_CREDIT_COST,
    check_row_quota,
    coerce_cell_value,
    coerce_row_values,
    compute_table_size,
    new_row,
)
from core.utils.errors import DocumentNotFoundError, InvalidCellValueError, PlanRequiredError

logger = logging.getLogger("dataweaver.tables")

MIN_POPULATE_PROMPT_LENGTH = 10


def create_table(
    store: DocumentStore,
    user: UserRecord,
    *,
    name: str,
    preset_id: str,
    now: datetime | None = None,
) -> TableRecord:
    """Create an empty table from one of the user's presets.

    Tables made from a public preset count as a community download.
    """

    preset = get_preset(store, user.uid, preset_id)
    created = now or utcnow()
    table = TableRecord(
        id=uuid.uuid4().hex,
        name=name,
        preset_string=preset.preset_string,
        file_type=sniff_file_type(preset.preset_string),
        tags=list(preset.tags),
        created_at=created,
        last_edited=created,
    )
    save_record(store, paths.table_path(user.uid, table.id), table)

    if preset.is_public:
        _record_download(store, preset_id=preset.id, author_id=preset.author_id)
    return table


def get_table(store: DocumentStore, uid: str, table_id: str) -> TableRecord:
    return load_record(store, paths.table_path(uid, table_id), TableRecord)


def list_tables(store: DocumentStore, uid: str) -> list[TableRecord]:
    return [
        TableRecord.model_validate({**record, "id": doc_id})
        for doc_id, record in store.list_children(paths.tables_collection(uid))
    ]


def add_row(
    store: DocumentStore,
    user: UserRecord,
    table_id: str,
    values: dict[str, Any],
    *,
    now: datetime | None = None,
) -> tuple[TableRecord, UserRecord]:
    """Append a row; costs one credit and the storage it occupies."""

    table = get_table(store, user.uid, table_id)
    parsed = require_parsed_preset(table.preset_string)

    row = new_row(coerce_row_values(parsed, values))
    check_row_quota(user, size_delta=0, credits=ROW_CREDIT_COST)
    return _commit_rows(
        store, user, table, [*table.data, row], credits=ROW_CREDIT_COST, now=now
    )


def update_cell(
    store: DocumentStore,
    user: UserRecord,
    table_id: str,
    row_id: str,
    column_key: str,
    raw_value: Any,
    *,
    now: datetime | None = None,
) -> tuple[TableRecord, UserRecord]:
    table = get_table(store, user.uid, table_id)
    parsed = require_parsed_preset(table.preset_string)

    column = parsed.column_for(column_key)
    if column is None:
        raise InvalidCellValueError(
            f"unknown column '{column_key}'", column=column_key, column_type="", value=raw_value
        )
    value = coerce_cell_value(column, raw_value)

    rows = [dict(row) for row in table.data]
    target = _find_row(rows, row_id, table_id=table_id, uid=user.uid)
    target[column_key] = value
    return _commit_rows(store, user, table, rows, now=now)


def delete_row(
    store: DocumentStore,
    user: UserRecord,
    table_id: str,
    row_id: str,
    *,
    now: datetime | None = None,
) -> tuple[TableRecord, UserRecord]:
    table = get_table(store, user.uid, table_id)
    _find_row(table.data, row_id, table_id=table_id, uid=user.uid)
    rows = [row for row in table.data if row.get(ROW_ID_KEY) != row_id]
    return _commit_rows(store, user, table, rows, now=now)


def export_table(
    store: DocumentStore,
    uid: str,
    table_id: str,
    *,
    record_export: bool = True,
    now: datetime | None = None,
) -> ExportOutput:
    """Render every row of a table through its preset.

    Raises:
        InvalidPresetFormatError: When the table's preset string does not parse.
    """

    table = get_table(store, uid, table_id)
    parsed = require_parsed_preset(table.preset_string)
    output = render_export(table.name, parsed, table.data)

    if record_export:
        store.update(
            paths.table_path(uid, table_id),
            {"last_exported": (now or utcnow()).isoformat()},
        )
    logger.info("Exported table %s (%d rows) as %s", table_id, output.row_count, output.filename)
    return output


def populate_table(
    store: DocumentStore,
    user: UserRecord,
    table_id: str,
    *,
    columns: list[str],
    prompt: str,
    client: TextCompletionClient,
    now: datetime | None = None,
) -> tuple[TableRecord, UserRecord]:
    """Fill empty cells of ``columns`` using the completion service."""

    if not user.is_paid:
        raise PlanRequiredError(
            "AI bulk completion requires a paid plan.",
            feature="populate_columns",
            plan=user.subscription_plan,
        )
    if len(prompt.strip()) < MIN_POPULATE_PROMPT_LENGTH:
        raise ValueError(f"Prompt must be at least {MIN_POPULATE_PROMPT_LENGTH} characters.")
    if not columns:
        raise ValueError("You must select at least one column.")

    table = get_table(store, user.uid, table_id)
    if not table.data:
        raise ValueError("There is no data in the table to process.")

    parsed = require_parsed_preset(table.preset_string)
    unknown = [key for key in columns if parsed.column_for(key) is None]
    if unknown:
        raise ValueError(f"Unknown columns: {', '.join(unknown)}")

    rows = populate_columns(
        client,
        rows=table.data,
        preset_string=table.preset_string,
        parsed=parsed,
        columns=columns,
        user_prompt=prompt,
    )
    return _commit_rows(store, user, table, rows, now=now)


def _commit_rows(
    store: DocumentStore,
    user: UserRecord,
    table: TableRecord,
    rows: list[dict[str, Any]],
    *,
    credits: int = 0,
    now: datetime | None = None,
) -> tuple[TableRecord, UserRecord]:
    new_size = compute_table_size(rows)
    size_delta = new_size - table.size
    check_row_quota(user, size_delta=size_delta)

    updated_table = table.model_copy(
        update={"data": rows, "size": new_size, "last_edited": now or utcnow()}
    )
    updated_user = user.model_copy(
        update={
            "storage_used": user.storage_used + size_delta,
            "credits_used": user.credits_used + credits,
        }
    )
    save_record(store, paths.table_path(user.uid, table.id), updated_table)
    save_user(store, updated_user)
    return updated_table, updated_user


def _find_row(
    rows: list[dict[str, Any]], row_id: str, *, table_id: str, uid: str
) -> dict[str, Any]:
    for row in rows:
        if row.get(ROW_ID_KEY) == row_id:
            return row
    raise DocumentNotFoundError(f"{paths.table_path(uid, table_id)}/rows/{row_id}")


def _record_download(store: DocumentStore, *, preset_id: str, author_id: str) -> None:
    community_path = paths.community_preset_path(preset_id)
    community = store.get(community_path)
    if community is not None:
        store.update(
            community_path, {"download_count": int(community.get("download_count", 0)) + 1}
        )

    author_path = paths.user_path(author_id)
    author = store.get(author_path)
    if author is not None:
        store.update(author_path, {"total_downloads": int(author.get("total_downloads", 0)) + 1})
