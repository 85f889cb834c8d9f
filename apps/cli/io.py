"""CLI I/O helpers for atomic output writing."""

from __future__ import annotations

import importlib
import json
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from core.render.models import ExportOutput

yaml = importlib.import_module("yaml")


@dataclass(frozen=True)
class ExportPaths:
    """Output artifact paths for one export run."""

    content: Path
    report: Path


def build_export_paths(out_dir: Path, filename: str) -> ExportPaths:
    """Build export file paths under out_dir."""

    return ExportPaths(
        content=out_dir / filename,
        report=out_dir / "out.export_report.json",
    )


def existing_output_files(paths: ExportPaths, extra_paths: list[Path] | None = None) -> list[Path]:
    """Return existing output files among the export artifact paths."""

    candidates = [paths.content, paths.report]
    if extra_paths:
        candidates.extend(extra_paths)
    return [path for path in candidates if path.exists()]


def write_export_atomic(paths: ExportPaths, output: ExportOutput) -> None:
    """Write the rendered text and its JSON report using temporary files + replace."""

    paths.content.parent.mkdir(parents=True, exist_ok=True)
    _atomic_write_text(paths.content, output.content)
    _atomic_write_json(paths.report, _report_payload(output))


def write_report_yaml_atomic(path: Path, output: ExportOutput) -> None:
    """Write the export report as YAML atomically."""

    path.parent.mkdir(parents=True, exist_ok=True)

    fd, raw_tmp_path = tempfile.mkstemp(
        dir=path.parent,
        prefix=f"{path.name}.",
        suffix=".tmp",
    )
    os.close(fd)
    tmp_path = Path(raw_tmp_path)

    try:
        with tmp_path.open("w", encoding="utf-8") as handle:
            yaml.safe_dump(_report_payload(output), handle, allow_unicode=True, sort_keys=False)
        tmp_path.replace(path)
    except Exception:
        if tmp_path.exists():
            tmp_path.unlink(missing_ok=True)
        raise


def _report_payload(output: ExportOutput) -> dict[str, Any]:
    return {
        "filename": output.filename,
        "row_count": output.row_count,
        **output.report.model_dump(mode="json"),
    }


def _atomic_write_json(path: Path, payload: dict[str, Any]) -> None:
    with tempfile.NamedTemporaryFile(
        mode="w",
        encoding="utf-8",
        dir=path.parent,
        delete=False,
        prefix=f"{path.name}.",
        suffix=".tmp",
    ) as tmp:
        tmp_path = Path(tmp.name)
        json.dump(payload, tmp, ensure_ascii=False, sort_keys=True, separators=(",", ":"))

    tmp_path.replace(path)


def _atomic_write_text(path: Path, content: str) -> None:
    fd, raw_tmp_path = tempfile.mkstemp(
        dir=path.parent,
        prefix=f"{path.name}.",
        suffix=".tmp",
    )
    os.close(fd)
    tmp_path = Path(raw_tmp_path)

    try:
        # newline="" keeps "\n" row terminators byte-exact on every platform.
        with tmp_path.open("w", encoding="utf-8", newline="") as handle:
            handle.write(content)
        tmp_path.replace(path)
    except Exception:
        if tmp_path.exists():
            tmp_path.unlink(missing_ok=True)
        raise
