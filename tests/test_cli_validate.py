from __future__ import annotations

import json
from pathlib import Path

from typer.testing import CliRunner

from apps.cli.main import EXIT_INVALID_PRESET, app

runner = CliRunner()

_PRESET = (
    '[TABLE(EXPORT-AS:.jsonl)(WRITE-AS:{"prompt":"ID1","completion":"ID2"}):[\n'
    ' {"name":"Question","value":"q","type":"text","important":"yes","write":"ID1"},\n'
    ' {"name":"Answer","value":"a","type":"text","important":"no","write":"ID2"}\n'
    "]]\n"
)


def test_validate_prints_summary_for_valid_preset(tmp_path: Path) -> None:
    preset = tmp_path / "qa.preset"
    preset.write_text(_PRESET, encoding="utf-8")

    result = runner.invoke(app, ["validate", "--preset", str(preset)])

    assert result.exit_code == 0
    assert "export_as=.jsonl columns=2" in result.output
    assert "q (text required)" in result.output
    assert "issues: none" in result.output
    assert "WARNING(lint)" not in result.output


def test_validate_prints_lint_warnings(tmp_path: Path) -> None:
    preset = tmp_path / "lint.preset"
    preset.write_text('[TABLE(WRITE-AS:ID1):[{"value":"x","write":"ID2"}]]', encoding="utf-8")

    result = runner.invoke(app, ["validate", "--preset", str(preset)])

    assert result.exit_code == 0
    assert "issues: missing_placeholder=1" in result.output
    assert "WARNING(lint): write token 'ID2' does not appear in WRITE-AS" in result.output


def test_validate_json_format(tmp_path: Path) -> None:
    preset = tmp_path / "qa.preset"
    preset.write_text(_PRESET, encoding="utf-8")

    result = runner.invoke(app, ["validate", "--preset", str(preset), "--format", "json"])

    assert result.exit_code == 0
    payload = json.loads(result.output)
    assert payload["export_as"] == ".jsonl"
    assert [column["value"] for column in payload["columns"]] == ["q", "a"]
    assert payload["issues"] == []


def test_validate_rejects_invalid_preset(tmp_path: Path) -> None:
    preset = tmp_path / "bad.preset"
    preset.write_text("hello world", encoding="utf-8")

    result = runner.invoke(app, ["validate", "--preset", str(preset)])

    assert result.exit_code == EXIT_INVALID_PRESET
    assert "ERROR: invalid preset format, check syntax." in result.output


def test_validate_rejects_unknown_format(tmp_path: Path) -> None:
    preset = tmp_path / "qa.preset"
    preset.write_text(_PRESET, encoding="utf-8")

    result = runner.invoke(app, ["validate", "--preset", str(preset), "--format", "xml"])

    assert result.exit_code == 1
    assert "ERROR: --format must be one of: human, json." in result.output
