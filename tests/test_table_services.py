from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest

from core.accounts.entitlements import apply_entitlement_change, subscription_change
from core.accounts.models import PlanDetails, UserRecord
from core.accounts.plans import get_plan
from core.services.accounts import ensure_user, load_user, save_user
from core.services.presets import publish_preset, save_preset
from core.services.tables import (
    add_row,
    create_table,
    delete_row,
    export_table,
    get_table,
    list_tables,
    populate_table,
    update_cell,
)
from core.store import paths
from core.store.document_store import MemoryDocumentStore
from core.tables.rows import compute_table_size
from core.utils.errors import (
    DocumentNotFoundError,
    InvalidCellValueError,
    PlanRequiredError,
    QuotaExceededError,
)

_PRESET = (
    '[TABLE(EXPORT-AS:.jsonl)(WRITE-AS:{"prompt":"ID1","score":ID2}):['
    '{"name":"Prompt","value":"p","important":"yes","write":"ID1"},'
    '{"name":"Score","value":"s","type":"number","write":"ID2"}'
    "]]"
)
_NOW = datetime(2026, 2, 2, 10, 0, tzinfo=timezone.utc)


class FakeCompletionClient:
    def __init__(self, response: str) -> None:
        self.model = "fake"
        self.response = response

    def complete(self, prompt: str, *, json_output: bool = False) -> str:
        return self.response


def _setup(store: MemoryDocumentStore, uid: str = "u1") -> tuple[UserRecord, str]:
    user = ensure_user(store, uid, display_name="Table Owner")
    record, _, _ = save_preset(store, user, _PRESET)
    return user, record.id


def _paid(store: MemoryDocumentStore, user: UserRecord) -> UserRecord:
    upgraded = apply_entitlement_change(
        user,
        subscription_change(
            get_plan("Starter"), customer_id=None, subscription_id=None, subscription_ends_at=None
        ),
    )
    save_user(store, upgraded)
    return upgraded


def test_create_table_copies_preset_and_sniffs_file_type() -> None:
    store = MemoryDocumentStore()
    user, preset_id = _setup(store)

    table = create_table(store, user, name="Prompts", preset_id=preset_id, now=_NOW)

    assert table.file_type == ".jsonl"
    assert table.preset_string == _PRESET
    assert table.data == []
    assert get_table(store, user.uid, table.id) == table
    assert [item.id for item in list_tables(store, user.uid)] == [table.id]


def test_create_table_from_public_preset_counts_download() -> None:
    store = MemoryDocumentStore()
    author, preset_id = _setup(store, "author")
    publish_preset(store, author, preset_id, name="Shared", description="", tags="")

    create_table(store, author, name="Mine", preset_id=preset_id)

    community = store.get(paths.community_preset_path(preset_id))
    assert community is not None
    assert community["download_count"] == 1
    assert load_user(store, "author").total_downloads == 1


def test_add_row_charges_credit_and_storage() -> None:
    store = MemoryDocumentStore()
    user, preset_id = _setup(store)
    table = create_table(store, user, name="t", preset_id=preset_id)

    table, user = add_row(store, user, table.id, {"p": "hello", "s": "3", "junk": 1})

    assert len(table.data) == 1
    row = table.data[0]
    assert row["p"] == "hello"
    assert row["s"] == 3
    assert "junk" not in row
    assert row["__id"]
    assert table.size == compute_table_size(table.data)
    assert user.credits_used == 1
    assert user.storage_used == table.size
    assert load_user(store, user.uid) == user


def test_add_row_without_credits_is_rejected() -> None:
    store = MemoryDocumentStore()
    user, preset_id = _setup(store)
    table = create_table(store, user, name="t", preset_id=preset_id)
    user = user.model_copy(update={"credits_used": user.plan_details.credit_limit})

    with pytest.raises(QuotaExceededError) as exc_info:
        add_row(store, user, table.id, {"p": "x"})

    assert exc_info.value.resource == "credits"
    assert get_table(store, user.uid, table.id).data == []


def test_add_row_beyond_storage_is_rejected() -> None:
    store = MemoryDocumentStore()
    user, preset_id = _setup(store)
    table = create_table(store, user, name="t", preset_id=preset_id)
    user = user.model_copy(update={"plan_details": PlanDetails(credit_limit=100, storage_limit=10)})

    with pytest.raises(QuotaExceededError) as exc_info:
        add_row(store, user, table.id, {"p": "a long enough prompt"})

    assert exc_info.value.resource == "storage"


def test_update_cell_coerces_value_and_adjusts_storage() -> None:
    store = MemoryDocumentStore()
    user, preset_id = _setup(store)
    table = create_table(store, user, name="t", preset_id=preset_id)
    table, user = add_row(store, user, table.id, {"p": "hello"})
    row_id = table.data[0]["__id"]

    table, user = update_cell(store, user, table.id, row_id, "s", "2.5")

    assert table.data[0]["s"] == 2.5
    assert user.storage_used == table.size
    assert user.credits_used == 1


def test_update_cell_rejects_unknown_column_and_bad_value() -> None:
    store = MemoryDocumentStore()
    user, preset_id = _setup(store)
    table = create_table(store, user, name="t", preset_id=preset_id)
    table, user = add_row(store, user, table.id, {"p": "hello"})
    row_id = table.data[0]["__id"]

    with pytest.raises(InvalidCellValueError):
        update_cell(store, user, table.id, row_id, "nope", "x")
    with pytest.raises(InvalidCellValueError):
        update_cell(store, user, table.id, row_id, "s", "many")
    with pytest.raises(DocumentNotFoundError):
        update_cell(store, user, table.id, "missing-row", "p", "x")


def test_delete_row_releases_storage() -> None:
    store = MemoryDocumentStore()
    user, preset_id = _setup(store)
    table = create_table(store, user, name="t", preset_id=preset_id)
    table, user = add_row(store, user, table.id, {"p": "hello"})

    table, user = delete_row(store, user, table.id, table.data[0]["__id"])

    assert table.data == []
    assert user.storage_used == compute_table_size([])
    assert user.credits_used == 1


def test_export_table_renders_rows_and_records_export_time() -> None:
    store = MemoryDocumentStore()
    user, preset_id = _setup(store)
    table = create_table(store, user, name="Prompts", preset_id=preset_id)
    table, user = add_row(store, user, table.id, {"p": "Say hi", "s": "5"})
    table, user = add_row(store, user, table.id, {"s": "1"})

    output = export_table(store, user.uid, table.id, now=_NOW)

    assert output.filename == "Prompts.jsonl"
    lines = output.content.splitlines()
    assert json.loads(lines[0]) == {"prompt": "Say hi", "score": 5}
    assert lines[1] == '{"prompt":"","score":1}'
    assert [item.index for item in output.report.incomplete_rows] == [1]
    assert get_table(store, user.uid, table.id).last_exported == _NOW


def test_export_without_recording_leaves_table_untouched() -> None:
    store = MemoryDocumentStore()
    user, preset_id = _setup(store)
    table = create_table(store, user, name="t", preset_id=preset_id)

    export_table(store, user.uid, table.id, record_export=False)

    assert get_table(store, user.uid, table.id).last_exported is None


def test_populate_requires_paid_plan() -> None:
    store = MemoryDocumentStore()
    user, preset_id = _setup(store)
    table = create_table(store, user, name="t", preset_id=preset_id)

    with pytest.raises(PlanRequiredError):
        populate_table(
            store,
            user,
            table.id,
            columns=["s"],
            prompt="Score every prompt from 1 to 5.",
            client=FakeCompletionClient("{}"),
        )


@pytest.mark.parametrize(
    ("columns", "prompt", "message"),
    [
        (["s"], "short", "at least 10 characters"),
        ([], "Score every prompt from 1 to 5.", "at least one column"),
        (["zzz"], "Score every prompt from 1 to 5.", "Unknown columns"),
    ],
)
def test_populate_validates_inputs(columns: list[str], prompt: str, message: str) -> None:
    store = MemoryDocumentStore()
    user, preset_id = _setup(store)
    user = _paid(store, user)
    table = create_table(store, user, name="t", preset_id=preset_id)
    table, user = add_row(store, user, table.id, {"p": "hello"})

    with pytest.raises(ValueError, match=message):
        populate_table(
            store,
            user,
            table.id,
            columns=columns,
            prompt=prompt,
            client=FakeCompletionClient("{}"),
        )


def test_populate_rejects_empty_table() -> None:
    store = MemoryDocumentStore()
    user, preset_id = _setup(store)
    user = _paid(store, user)
    table = create_table(store, user, name="t", preset_id=preset_id)

    with pytest.raises(ValueError, match="no data"):
        populate_table(
            store,
            user,
            table.id,
            columns=["s"],
            prompt="Score every prompt from 1 to 5.",
            client=FakeCompletionClient("{}"),
        )


def test_populate_saves_merged_rows() -> None:
    store = MemoryDocumentStore()
    user, preset_id = _setup(store)
    user = _paid(store, user)
    table = create_table(store, user, name="t", preset_id=preset_id)
    table, user = add_row(store, user, table.id, {"p": "hello"})
    row_id = table.data[0]["__id"]
    client = FakeCompletionClient(json.dumps({"updatedData": [{"__id": row_id, "s": 4}]}))

    table, user = populate_table(
        store,
        user,
        table.id,
        columns=["s"],
        prompt="Score every prompt from 1 to 5.",
        client=client,
    )

    assert table.data == [{"__id": row_id, "p": "hello", "s": 4}]
    assert get_table(store, user.uid, table.id).data == table.data
    assert user.storage_used == table.size
