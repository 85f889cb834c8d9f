"""Typer CLI entrypoint for dataweaver."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated, Any, Literal, cast

import typer

from apps.cli.format_human import render_export_summary, render_preset_summary
from apps.cli.io import (
    build_export_paths,
    existing_output_files,
    write_export_atomic,
    write_report_yaml_atomic,
)
from core.presets.models import ParsedPreset
from core.presets.parser import lint_preset, parse_preset_string
from core.render.models import ExportOutput
from core.render.row_renderer import render_export

app = typer.Typer(help="Data Weaver preset CLI", rich_markup_mode=None)
OutputFormat = Literal["human", "json"]

EXIT_INVALID_PRESET = 2
EXIT_INVALID_ROWS = 3


@app.callback()
def cli_callback() -> None:
    """CLI root callback to keep subcommands explicit."""


@app.command("validate")
def validate_command(
    preset: Annotated[Path, typer.Option(..., exists=True, dir_okay=False, file_okay=True)],
    output_format: Annotated[str, typer.Option("--format")] = "human",
) -> None:
    """Parse a preset string file and report lint warnings."""

    normalized_format = output_format.lower().strip()
    if normalized_format not in {"human", "json"}:
        typer.echo("ERROR: --format must be one of: human, json.")
        raise typer.Exit(code=1)
    format_typed = cast(OutputFormat, normalized_format)

    parsed = _load_preset(preset)
    if parsed is None:
        raise typer.Exit(code=EXIT_INVALID_PRESET)

    issues = lint_preset(parsed)
    if format_typed == "json":
        payload = {
            **parsed.to_dict(),
            "issues": [
                {"kind": issue.kind, "message": issue.message, "column": issue.column}
                for issue in issues
            ],
        }
        typer.echo(json.dumps(payload, ensure_ascii=False, sort_keys=True))
    else:
        typer.echo(render_preset_summary(parsed, issues))
        for issue in issues:
            typer.echo(f"WARNING(lint): {issue.message}")

    raise typer.Exit(code=0)


@app.command("export")
def export_command(
    preset: Annotated[Path, typer.Option(..., exists=True, dir_okay=False, file_okay=True)],
    rows: Annotated[Path, typer.Option(..., exists=True, dir_okay=False, file_okay=True)],
    name: Annotated[str, typer.Option(help="Table display name used for the filename.")] = "table",
    out_dir: Annotated[Path, typer.Option()] = Path("."),
    report_yaml: Annotated[
        Path | None,
        typer.Option(
            "--report-yaml",
            help="Also write the export report as YAML.",
        ),
    ] = None,
    force: Annotated[
        bool, typer.Option("--force", help="Overwrite outputs when they already exist.")
    ] = False,
    no_overwrite: Annotated[
        bool,
        typer.Option(
            "--no-overwrite",
            help="Fail when outputs already exist.",
        ),
    ] = False,
) -> None:
    """Render a JSON array of rows through a preset and write the export file."""

    if force and no_overwrite:
        typer.echo("ERROR: --force and --no-overwrite cannot be used together.")
        raise typer.Exit(code=1)

    parsed = _load_preset(preset)
    if parsed is None:
        raise typer.Exit(code=EXIT_INVALID_PRESET)

    try:
        row_data = _load_rows(rows)
    except ValueError as exc:
        typer.echo(f"ERROR: invalid rows file: {exc}")
        raise typer.Exit(code=EXIT_INVALID_ROWS) from exc

    output = render_export(name, parsed, row_data)
    paths = build_export_paths(out_dir, output.filename)

    extra_outputs: list[Path] = []
    if report_yaml is not None:
        extra_outputs.append(report_yaml)

    existing = existing_output_files(paths, extra_paths=extra_outputs)
    if existing and no_overwrite:
        typer.echo("ERROR: outputs already exist and --no-overwrite is enabled.")
        raise typer.Exit(code=1)
    if existing:
        names = ", ".join(path.name for path in existing)
        typer.echo(f"INFO: overwriting existing outputs: {names}")

    exit_code = _write_outputs(output, paths, report_yaml)
    typer.echo(render_export_summary(output))
    if exit_code == 0:
        typer.echo("INFO: success")
    raise typer.Exit(code=exit_code)


def _write_outputs(output: ExportOutput, paths: Any, report_yaml: Path | None) -> int:
    try:
        write_export_atomic(paths, output)
    except OSError as exc:
        typer.echo(f"ERROR: write output failed: {exc}")
        return 1

    if report_yaml is not None:
        try:
            write_report_yaml_atomic(report_yaml, output)
            typer.echo(f"INFO: wrote export report to {report_yaml}")
        except OSError as exc:
            typer.echo(f"ERROR: write report failed: {exc}")
            return 1
    return 0


def _load_preset(path: Path) -> ParsedPreset | None:
    preset_string = path.read_text(encoding="utf-8").strip()
    parsed = parse_preset_string(preset_string)
    if parsed is None:
        typer.echo("ERROR: invalid preset format, check syntax.")
    return parsed


def _load_rows(path: Path) -> list[dict[str, Any]]:
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"not valid JSON ({exc})") from exc

    if isinstance(raw, dict) and isinstance(raw.get("data"), list):
        raw = raw["data"]
    if not isinstance(raw, list) or not all(isinstance(item, dict) for item in raw):
        raise ValueError("expected a JSON array of row objects")
    return raw


def main() -> None:
    """Console script entrypoint."""

    app()


if __name__ == "__main__":
    main()
