from __future__ import annotations

import json

import pytest

from core.ai.flows import (
    clean_model_text,
    convert_file,
    generate_preset_from_description,
    populate_columns,
)
from core.presets.parser import require_parsed_preset
from core.utils.errors import AiOutputError

_PRESET = (
    "[TABLE(EXPORT-AS:.jsonl)(WRITE-AS:ID1 ID2 ID3):["
    '{"name":"Question","value":"q","write":"ID1"},'
    '{"name":"Answer","value":"a","write":"ID2"},'
    '{"name":"Score","value":"s","type":"number","write":"ID3"}'
    "]]"
)


class FakeCompletionClient:
    def __init__(self, *responses: str) -> None:
        self.model = "fake"
        self.responses = list(responses)
        self.prompts: list[str] = []

    def complete(self, prompt: str, *, json_output: bool = False) -> str:
        self.prompts.append(prompt)
        return self.responses.pop(0)


def test_clean_model_text_strips_fences_and_think_blocks() -> None:
    raw = '<think>plan it</think>\n```json\n{"preset": "x"}\n```'

    assert clean_model_text(raw) == '{"preset": "x"}'


def test_generate_preset_accepts_json_wrapped_preset() -> None:
    client = FakeCompletionClient(json.dumps({"preset": _PRESET}))

    generated = generate_preset_from_description(client, "Q&A dataset with a score")

    assert generated.preset_string == _PRESET
    assert len(generated.parsed.columns) == 3
    assert "Q&A dataset with a score" in client.prompts[0]


def test_generate_preset_accepts_raw_preset_text() -> None:
    client = FakeCompletionClient(f"```\n{_PRESET}\n```")

    generated = generate_preset_from_description(client, "anything")

    assert generated.parsed.export_as == ".jsonl"


def test_generate_preset_rejects_unparseable_output() -> None:
    client = FakeCompletionClient(json.dumps({"preset": "[TABLE(broken"}))

    with pytest.raises(AiOutputError) as exc_info:
        generate_preset_from_description(client, "anything")

    assert exc_info.value.flow == "generate_preset"


def test_generate_preset_rejects_non_json_output() -> None:
    with pytest.raises(AiOutputError):
        generate_preset_from_description(FakeCompletionClient("sorry, I cannot"), "anything")


def test_convert_file_reads_camel_case_output() -> None:
    client = FakeCompletionClient(
        json.dumps({"convertedContent": "a,b\n1,2\n", "fileName": "data.csv"})
    )

    output = convert_file(client, '[{"a":1,"b":2}]', "make it csv")

    assert output.converted_content == "a,b\n1,2\n"
    assert output.file_name == "data.csv"
    assert "make it csv" in client.prompts[0]


def test_convert_file_requires_both_fields() -> None:
    with pytest.raises(AiOutputError):
        convert_file(FakeCompletionClient(json.dumps({"fileName": "x"})), "text", "prompt")


def test_populate_fills_only_blank_cells_of_requested_columns() -> None:
    parsed = require_parsed_preset(_PRESET)
    rows = [
        {"__id": "r1", "q": "2+2?", "a": "", "s": None},
        {"__id": "r2", "q": "Capital of France?", "a": "Paris", "s": None},
    ]
    client = FakeCompletionClient(
        json.dumps(
            {
                "updatedData": [
                    {"__id": "r2", "q": "changed", "a": "Lyon", "s": "9"},
                    {"__id": "r1", "q": "changed", "a": "4", "s": "10", "extra": "x"},
                ]
            }
        )
    )

    merged = populate_columns(
        client,
        rows=rows,
        preset_string=_PRESET,
        parsed=parsed,
        columns=["a", "s"],
        user_prompt="Answer each question and score it.",
    )

    assert merged == [
        {"__id": "r1", "q": "2+2?", "a": "4", "s": 10},
        {"__id": "r2", "q": "Capital of France?", "a": "Paris", "s": 9},
    ]
    assert rows[0]["a"] == ""


def test_populate_falls_back_to_row_position_without_ids() -> None:
    parsed = require_parsed_preset(_PRESET)
    client = FakeCompletionClient(json.dumps({"updatedData": [{"a": "filled"}]}))

    merged = populate_columns(
        client,
        rows=[{"__id": "r1", "q": "x"}],
        preset_string=_PRESET,
        parsed=parsed,
        columns=["a"],
        user_prompt="Fill in the answers please.",
    )

    assert merged == [{"__id": "r1", "q": "x", "a": "filled"}]


def test_populate_drops_values_that_do_not_coerce() -> None:
    parsed = require_parsed_preset(_PRESET)
    client = FakeCompletionClient(json.dumps({"updatedData": [{"__id": "r1", "s": "high"}]}))

    merged = populate_columns(
        client,
        rows=[{"__id": "r1", "q": "x"}],
        preset_string=_PRESET,
        parsed=parsed,
        columns=["s"],
        user_prompt="Score every question.",
    )

    assert merged == [{"__id": "r1", "q": "x"}]


def test_populate_rejects_row_count_mismatch() -> None:
    parsed = require_parsed_preset(_PRESET)
    client = FakeCompletionClient(json.dumps({"updatedData": []}))

    with pytest.raises(AiOutputError, match="expected 1 rows"):
        populate_columns(
            client,
            rows=[{"__id": "r1"}],
            preset_string=_PRESET,
            parsed=parsed,
            columns=["a"],
            user_prompt="Fill in the answers please.",
        )
