"""Row mutations: cell coercion, size accounting and quota checks."""

from __future__ import annotations

import json
import math
import uuid
from collections.abc import Mapping
from typing import Any

from core.accounts.models import UserRecord
from core.presets.models import ColumnDef, ParsedPreset
from core.render.row_renderer import ROW_ID_KEY
from core.utils.errors import InvalidCellValueError, QuotaExceededError

ROW_CREDIT_COST = 1

_TRUE_STRINGS = frozenset({"true", "1", "yes", "y", "on"})
_FALSE_STRINGS = frozenset({"false", "0", "no", "n", "off", ""})


def coerce_cell_value(column: ColumnDef, raw: Any) -> Any:
    """Convert form input to the value stored for ``column``.

    ``number`` becomes int or float (blank becomes None), ``boolean`` becomes
    bool; ``text``, ``json`` and unknown types are stored as given.
    """

    if column.type == "number":
        return _coerce_number(column, raw)
    if column.type == "boolean":
        return _coerce_boolean(column, raw)
    return raw


def coerce_row_values(parsed: ParsedPreset, values: Mapping[str, Any]) -> dict[str, Any]:
    """Coerce known columns and drop keys that are not part of the schema."""

    row: dict[str, Any] = {}
    for key, raw in values.items():
        column = parsed.column_for(key)
        if column is None:
            continue
        row[key] = coerce_cell_value(column, raw)
    return row


def new_row(values: Mapping[str, Any]) -> dict[str, Any]:
    row = dict(values)
    row[ROW_ID_KEY] = uuid.uuid4().hex
    return row


def compute_table_size(rows: list[dict[str, Any]]) -> int:
    """Stored size of a table's rows: length of their compact JSON text."""

    return len(json.dumps(rows, ensure_ascii=False, separators=(",", ":")))


def check_row_quota(user: UserRecord, *, size_delta: int, credits: int = 0) -> None:
    """Raise QuotaExceededError when credits or storage would run out."""

    if credits > 0:
        remaining = user.credits_remaining()
        if remaining is not None and remaining < credits:
            raise QuotaExceededError(
                f"You need {credits} credit(s), but you have {remaining}.",
                resource="credits",
                required=credits,
                available=remaining,
            )

    if size_delta > 0:
        available = user.storage_remaining()
        if available is not None and available < size_delta:
            raise QuotaExceededError(
                "This change would exceed your storage limit.",
                resource="storage",
                required=size_delta,
                available=available,
            )


def _coerce_number(column: ColumnDef, raw: Any) -> int | float | None:
    if raw is None:
        return None
    if isinstance(raw, bool):
        return int(raw)
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float):
        return _require_finite(column, raw, raw)
    text = str(raw).strip()
    if not text:
        return None
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError as exc:
        raise InvalidCellValueError(
            f"'{raw}' is not a number",
            column=column.value,
            column_type=column.type,
            value=raw,
        ) from exc
    return _require_finite(column, number, raw)


def _require_finite(column: ColumnDef, number: float, raw: Any) -> float:
    if not math.isfinite(number):
        raise InvalidCellValueError(
            f"'{raw}' is not a finite number",
            column=column.value,
            column_type=column.type,
            value=raw,
        )
    return number


def _coerce_boolean(column: ColumnDef, raw: Any) -> bool:
    if raw is None:
        return False
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, (int, float)):
        return raw != 0
    text = str(raw).strip().lower()
    if text in _TRUE_STRINGS:
        return True
    if text in _FALSE_STRINGS:
        return False
    raise InvalidCellValueError(
        f"'{raw}' is not a boolean",
        column=column.value,
        column_type=column.type,
        value=raw,
    )
