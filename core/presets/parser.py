"""Preset string parser.

A preset string looks like::

    [TABLE(EXPORT-AS:.jsonl)(WRITE-AS:{"prompt":"ID1"}):[
     {"name":"Question","value":"q","type":"text","important":"yes","write":"ID1"}
    ]]

Parsing never raises in the default mode: any malformed input yields ``None``.
"""

from __future__ import annotations

import json
import logging
import re
from collections import Counter

from pydantic import ValidationError

from core.presets.models import (
    DEFAULT_EXPORT_AS,
    DEFAULT_WRITE_AS,
    ColumnDef,
    ParsedPreset,
    PresetIssue,
)
from core.utils.errors import InvalidPresetFormatError

logger = logging.getLogger("dataweaver.presets")

_ENVELOPE_RE = re.compile(r"\[TABLE\((.*?)\):\s*([\s\S]*?)\]")
_FILE_TYPE_RE = re.compile(r"EXPORT-AS:(\.\w+)", re.ASCII)
_OPTION_SEPARATOR = ")("
_EXPORT_AS_KEY = "EXPORT-AS"
_WRITE_AS_KEY = "WRITE-AS"


def parse_preset_string(preset_string: str, strict: bool = False) -> ParsedPreset | None:
    """Parse a preset string into columns, export extension and row template.

    Rules:
    - The whole string must match ``[TABLE(<options>):<columns>]``.
    - Options are ``KEY:VALUE`` pairs joined by ``)(``; only the first ``:``
      separates key from value. ``EXPORT-AS`` and ``WRITE-AS`` are recognized,
      anything else is ignored.
    - A column body without enclosing ``[``/``]`` is wrapped before decoding.

    Args:
        preset_string: Raw preset string as stored.
        strict: When True, raise InvalidPresetFormatError instead of returning None.

    Returns:
        ParsedPreset, or None when the string is not a valid preset.
    """

    try:
        return _parse(preset_string)
    except InvalidPresetFormatError as exc:
        logger.debug("Failed to parse preset string: %s", exc)
        if strict:
            raise
        return None


def require_parsed_preset(preset_string: str) -> ParsedPreset:
    """Strict parse for callers that report the failure to the user."""

    parsed = parse_preset_string(preset_string, strict=True)
    if parsed is None:
        raise InvalidPresetFormatError("Invalid preset format", preset_string=preset_string)
    return parsed


def sniff_file_type(preset_string: str) -> str:
    """Return the first ``EXPORT-AS`` extension found in the raw string."""

    match = _FILE_TYPE_RE.search(preset_string)
    return match.group(1) if match else DEFAULT_EXPORT_AS


def lint_preset(parsed: ParsedPreset) -> list[PresetIssue]:
    """Collect advisory issues; none of them prevents parsing or export."""

    issues: list[PresetIssue] = []

    token_counts = Counter(column.write for column in parsed.columns if column.write)
    value_counts = Counter(column.value for column in parsed.columns)

    for column in parsed.columns:
        if not column.write:
            issues.append(
                PresetIssue(
                    kind="empty_write_token",
                    message=f"column '{column.value}' has no write token",
                    column=column.value,
                )
            )
            continue
        if column.write not in parsed.write_as:
            issues.append(
                PresetIssue(
                    kind="missing_placeholder",
                    message=f"write token '{column.write}' does not appear in WRITE-AS",
                    column=column.value,
                    token=column.write,
                )
            )

    for token, count in token_counts.items():
        if count > 1:
            issues.append(
                PresetIssue(
                    kind="duplicate_write_token",
                    message=f"write token '{token}' is used by {count} columns; the last one wins",
                    token=token,
                )
            )

    for value, count in value_counts.items():
        if count > 1:
            issues.append(
                PresetIssue(
                    kind="duplicate_value",
                    message=f"column key '{value}' is used by {count} columns",
                    column=value,
                )
            )

    return issues


def _parse(preset_string: str) -> ParsedPreset:
    if not isinstance(preset_string, str):
        raise InvalidPresetFormatError("preset string must be text")

    match = _ENVELOPE_RE.fullmatch(preset_string)
    if match is None:
        raise InvalidPresetFormatError(
            "preset string does not match [TABLE(...):...]", preset_string=preset_string
        )

    export_as, write_as = _parse_options(match.group(1))
    columns = _parse_columns(match.group(2).strip(), preset_string)
    return ParsedPreset(columns=columns, export_as=export_as, write_as=write_as)


def _parse_options(options_str: str) -> tuple[str, str]:
    if options_str.endswith(")"):
        options_str = options_str[:-1]

    export_as = DEFAULT_EXPORT_AS
    write_as = DEFAULT_WRITE_AS
    for option in options_str.split(_OPTION_SEPARATOR):
        key, _, value = option.partition(":")
        if key == _EXPORT_AS_KEY:
            export_as = value
        elif key == _WRITE_AS_KEY:
            write_as = value
    return export_as, write_as


def _parse_columns(json_str: str, preset_string: str) -> list[ColumnDef]:
    # Older presets stored the column objects without the enclosing array.
    if not (json_str.startswith("[") and json_str.endswith("]")):
        json_str = f"[{json_str}]"

    try:
        raw_columns = json.loads(json_str, parse_constant=_reject_constant)
    except (ValueError, RecursionError) as exc:
        raise InvalidPresetFormatError(
            f"column body is not valid JSON: {exc}", preset_string=preset_string
        ) from exc

    if not isinstance(raw_columns, list):
        raise InvalidPresetFormatError(
            "column body must be a JSON array", preset_string=preset_string
        )

    columns: list[ColumnDef] = []
    for index, item in enumerate(raw_columns):
        if not isinstance(item, dict):
            raise InvalidPresetFormatError(
                f"column {index} is not a JSON object", preset_string=preset_string
            )
        try:
            columns.append(ColumnDef.model_validate(item))
        except ValidationError as exc:
            raise InvalidPresetFormatError(
                f"column {index} is malformed: {exc}", preset_string=preset_string
            ) from exc
    return columns


def _reject_constant(name: str) -> float:
    raise ValueError(f"invalid JSON constant: {name}")
