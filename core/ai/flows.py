"""AI-assisted flows: preset generation, file conversion, column population.

Every flow receives its completion client explicitly.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from core.ai.client import TextCompletionClient
from core.ai.prompts import (
    CONVERT_FILE_PROMPT,
    GENERATE_PRESET_PROMPT,
    POPULATE_COLUMNS_PROMPT,
)
from core.presets.models import ParsedPreset
from core.presets.parser import parse_preset_string
from core.render.row_renderer import ROW_ID_KEY
from core.tables.rows import coerce_cell_value
from core.utils.errors import AiOutputError, InvalidCellValueError

logger = logging.getLogger("dataweaver.ai")

_CODE_FENCE_RE = re.compile(r"```[a-zA-Z]*\n?|```\n?")
_THINK_RE = re.compile(r"<think>[\s\S]*?</think>")


@dataclass(frozen=True)
class GeneratedPreset:
    preset_string: str
    parsed: ParsedPreset


class ConvertFileOutput(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    converted_content: str = Field(alias="convertedContent")
    file_name: str = Field(alias="fileName")


class _PresetOutput(BaseModel):
    model_config = ConfigDict(extra="ignore")

    preset: str


class _PopulateOutput(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    updated_data: list[dict[str, Any]] = Field(alias="updatedData")


def generate_preset_from_description(
    client: TextCompletionClient, description: str
) -> GeneratedPreset:
    """Ask the model for a preset string and accept it only if it parses."""

    prompt = GENERATE_PRESET_PROMPT.format(description=description)
    raw = client.complete(prompt, json_output=True)
    cleaned = clean_model_text(raw)

    if cleaned.startswith("[TABLE("):
        preset_string = cleaned
    else:
        preset_string = _validate_json_output(_PresetOutput, cleaned, flow="generate_preset").preset
        preset_string = preset_string.strip()

    parsed = parse_preset_string(preset_string)
    if parsed is None:
        raise AiOutputError(
            "The AI model did not return a valid preset.",
            flow="generate_preset",
            raw_output=raw,
        )
    return GeneratedPreset(preset_string=preset_string, parsed=parsed)


def convert_file(
    client: TextCompletionClient, file_content: str, user_prompt: str
) -> ConvertFileOutput:
    raw = client.complete(
        CONVERT_FILE_PROMPT.format(file_content=file_content, user_prompt=user_prompt),
        json_output=True,
    )
    return _validate_json_output(ConvertFileOutput, clean_model_text(raw), flow="convert_file")


def populate_columns(
    client: TextCompletionClient,
    *,
    rows: list[dict[str, Any]],
    preset_string: str,
    parsed: ParsedPreset,
    columns: list[str],
    user_prompt: str,
) -> list[dict[str, Any]]:
    """Fill empty cells of ``columns`` and return the merged rows.

    Only empty cells of the requested columns change; every other value, the
    row order and the row ids come from ``rows``.
    """

    prompt = POPULATE_COLUMNS_PROMPT.format(
        preset_string=preset_string,
        user_prompt=user_prompt,
        columns="\n".join(f"- {column}" for column in columns),
        table_data=json.dumps(rows, ensure_ascii=False),
    )
    raw = client.complete(prompt, json_output=True)
    output = _validate_json_output(_PopulateOutput, clean_model_text(raw), flow="populate_columns")

    if len(output.updated_data) != len(rows):
        raise AiOutputError(
            f"expected {len(rows)} rows from the model, got {len(output.updated_data)}",
            flow="populate_columns",
            raw_output=raw,
        )

    returned_by_id = {
        str(item[ROW_ID_KEY]): item for item in output.updated_data if item.get(ROW_ID_KEY)
    }
    merged: list[dict[str, Any]] = []
    for index, row in enumerate(rows):
        candidate = returned_by_id.get(str(row.get(ROW_ID_KEY)), output.updated_data[index])
        merged.append(_merge_row(row, candidate, parsed, columns))
    return merged


def clean_model_text(raw: str) -> str:
    """Strip reasoning blocks and Markdown code fences from model text."""

    text = _THINK_RE.sub("", raw)
    return _CODE_FENCE_RE.sub("", text).strip()


def _merge_row(
    original: dict[str, Any],
    candidate: Mapping[str, Any],
    parsed: ParsedPreset,
    columns: list[str],
) -> dict[str, Any]:
    merged = dict(original)
    for key in columns:
        column = parsed.column_for(key)
        if column is None or not _is_blank(original.get(key)):
            continue
        value = candidate.get(key)
        if _is_blank(value):
            continue
        try:
            merged[key] = coerce_cell_value(column, value)
        except InvalidCellValueError as exc:
            logger.warning("Dropping generated value for %s: %s", key, exc)
    return merged


def _validate_json_output(model: type[Any], text: str, *, flow: str) -> Any:
    payload = _extract_json_object(text, flow=flow)
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise AiOutputError(
            "The AI model did not return a valid output.", flow=flow, raw_output=text
        ) from exc


def _extract_json_object(text: str, *, flow: str) -> Any:
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end < start:
        raise AiOutputError("The AI model did not return JSON.", flow=flow, raw_output=text)
    try:
        return json.loads(text[start : end + 1])
    except json.JSONDecodeError as exc:
        raise AiOutputError(
            "The AI model returned malformed JSON.", flow=flow, raw_output=text
        ) from exc


def _is_blank(value: object) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())
