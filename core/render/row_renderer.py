"""Text renderer that substitutes row values into a preset's row template."""

from __future__ import annotations

import json
import math
import re
from collections.abc import Iterable, Mapping
from decimal import Decimal
from typing import Any

from core.presets.models import ColumnDef, ParsedPreset
from core.render.models import ExportOutput, ExportReport, IncompleteRow

ROW_ID_KEY = "__id"

_TOKEN_SPECIALS_RE = re.compile(r"[-/\\^$*+?.()|\[\]{}]")


def render_rows(parsed: ParsedPreset, rows: Iterable[Mapping[str, Any]]) -> str:
    """Render every row through ``parsed.write_as``, one line per row.

    Each column's write token is replaced everywhere it occurs in the row
    template, in column order, so a later column sharing a token overwrites
    an earlier one. Absent or null values render as an empty string.
    """

    patterns = _compile_column_patterns(parsed.columns)
    chunks: list[str] = []
    for row in rows:
        row_text = parsed.write_as
        for column, pattern in patterns:
            replacement = stringify_cell(row.get(column.value))
            row_text = pattern.sub(lambda _match, text=replacement: text, row_text)
        chunks.append(row_text)
        chunks.append("\n")
    return "".join(chunks)


def suggested_filename(table_name: str, parsed: ParsedPreset) -> str:
    """Table display name followed by the preset's export extension."""

    return f"{table_name}{parsed.export_as}"


def render_export(
    table_name: str,
    parsed: ParsedPreset,
    rows: list[Mapping[str, Any]],
) -> ExportOutput:
    """Render an export and attach advisory completeness diagnostics."""

    return ExportOutput(
        content=render_rows(parsed, rows),
        filename=suggested_filename(table_name, parsed),
        row_count=len(rows),
        report=_build_report(parsed, rows),
    )


def stringify_cell(value: object) -> str:
    """Best-effort text form of a cell value."""

    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return format_number(value)
    try:
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError):
        return str(value)


def format_number(value: float) -> str:
    """Shortest round-trip text for ``value`` using ECMAScript number notation.

    Magnitudes from 1e-6 up to but excluding 1e21 use plain decimal digits,
    anything else uses exponent form (``1e-7``, ``1.5e+21``).
    """

    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    if value == 0:
        return "0"

    sign = "-" if value < 0 else ""
    _, digit_tuple, exponent = Decimal(repr(abs(value))).as_tuple()
    digits = "".join(str(digit) for digit in digit_tuple).rstrip("0")
    exponent += len(digit_tuple) - len(digits)
    k = len(digits)
    # n is the position of the decimal point relative to the first digit.
    n = exponent + k

    if k <= n <= 21:
        return sign + digits + "0" * (n - k)
    if 0 < n <= 21:
        return f"{sign}{digits[:n]}.{digits[n:]}"
    if -6 < n <= 0:
        return sign + "0." + "0" * -n + digits
    mantissa = digits if k == 1 else f"{digits[0]}.{digits[1:]}"
    exponent_sign = "+" if n - 1 >= 0 else "-"
    return f"{sign}{mantissa}e{exponent_sign}{abs(n - 1)}"


def escape_token(token: str) -> str:
    """Backslash-escape pattern metacharacters so the token matches literally."""

    return _TOKEN_SPECIALS_RE.sub(lambda match: "\\" + match.group(0), token)


def _compile_column_patterns(
    columns: list[ColumnDef],
) -> list[tuple[ColumnDef, re.Pattern[str]]]:
    # An empty token would match between every character; such columns are skipped.
    last_for_token: dict[str, ColumnDef] = {}
    for column in columns:
        if column.write:
            last_for_token.pop(column.write, None)
            last_for_token[column.write] = column
    return [
        (column, re.compile(escape_token(token))) for token, column in last_for_token.items()
    ]


def _build_report(parsed: ParsedPreset, rows: list[Mapping[str, Any]]) -> ExportReport:
    required = [column.value for column in parsed.columns if column.is_required]

    incomplete: list[IncompleteRow] = []
    for index, row in enumerate(rows):
        missing = [key for key in required if _is_empty(row.get(key))]
        if missing:
            row_id = row.get(ROW_ID_KEY)
            incomplete.append(
                IncompleteRow(
                    row_id=str(row_id) if row_id is not None else None,
                    index=index,
                    missing_fields=missing,
                )
            )

    unused = [
        column.value
        for column in parsed.columns
        if not column.write or column.write not in parsed.write_as
    ]
    return ExportReport(incomplete_rows=incomplete, unused_columns=unused)


def _is_empty(value: object) -> bool:
    return value is None or value == ""
