"""Human-readable preset and export summaries for CLI output."""

from __future__ import annotations

from collections import Counter

from core.presets.models import ParsedPreset, PresetIssue
from core.render.models import ExportOutput


def render_preset_summary(parsed: ParsedPreset, issues: list[PresetIssue]) -> str:
    """Render one-screen summary of a parsed preset."""

    lines: list[str] = []
    lines.append("preset_summary:")
    lines.append(f"export_as={parsed.export_as} columns={len(parsed.columns)}")
    lines.append(f"write_as={parsed.write_as!r}")
    for column in parsed.columns:
        required = " required" if column.is_required else ""
        lines.append(
            f"  - {column.value} ({column.type}{required}) "
            f"name={column.name!r} write={column.write!r}"
        )

    if issues:
        counter: Counter[str] = Counter(issue.kind for issue in issues)
        top_items = sorted(counter.items(), key=lambda item: (-item[1], item[0]))
        lines.append("issues: " + ", ".join(f"{kind}={count}" for kind, count in top_items))
    else:
        lines.append("issues: none")
    return "\n".join(lines)


def render_export_summary(output: ExportOutput) -> str:
    lines = [f"export: {output.filename} rows={output.row_count}"]
    incomplete = output.report.incomplete_rows
    if incomplete:
        lines.append(f"incomplete_rows={len(incomplete)}")
        for item in incomplete[:5]:
            label = item.row_id or f"#{item.index}"
            lines.append(f"  - {label}: missing {', '.join(item.missing_fields)}")
    if output.report.unused_columns:
        lines.append("unused_columns=" + ",".join(output.report.unused_columns))
    return "\n".join(lines)
