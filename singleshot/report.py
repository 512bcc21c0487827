"""Plain-text and JSON renderings of analysis results.

Three formats are available:

- ``text``: the full report with technical estimates and detailed analysis.
- ``summary``: title, description and keywords, ready to paste into a
  stock-agency upload form.
- ``json``: the result in the response-schema key names.
"""

from __future__ import annotations

import json
import logging
from enum import Enum
from pathlib import Path
from typing import Iterable

from singleshot.models import AnalysisItem, AnalysisResult, AnalysisStatus

logger = logging.getLogger(__name__)


class ReportFormat(str, Enum):
    """Output format for a rendered result."""

    TEXT = "text"
    SUMMARY = "summary"
    JSON = "json"

    @property
    def extension(self) -> str:
        return ".json" if self == ReportFormat.JSON else ".txt"


def render_full_report(result: AnalysisResult) -> str:
    """Render the complete report."""
    params = result.technical_params
    lines = [
        f"TITLE: {result.title}",
        f"\n-- VISUAL DESCRIPTION --\n{result.visual_detail.visual_description}",
        f"\n-- KEYWORDS --\n{', '.join(result.keywords)}",
        "\n-- TECHNICAL ESTIMATES --",
        f"Focal Length: {params.focal_length}",
        f"Aperture:     {params.aperture}",
        f"ISO:          {params.iso}",
        f"Shutter:      {params.shutter_speed}",
        f"Camera:       {params.camera_type}",
        "\n-- DETAILED ANALYSIS --",
        f"LENS & OPTICS:\n{result.lens}",
        f"\nATMOSPHERE & LIGHTING:\n{result.atmosphere}",
        f"\nGEOMETRY & COMPOSITION:\n{result.geometry}",
        f"\nANGLE & PERSPECTIVE:\n{result.angle}",
        f"\nLOCATION:\n{result.location or 'N/A'}",
    ]
    return "\n".join(lines)


def render_summary(result: AnalysisResult) -> str:
    """Render title, description and keywords separated by blank lines."""
    return "\n\n".join(
        [result.title, result.visual_detail.visual_description, ", ".join(result.keywords)]
    )


def render_json(result: AnalysisResult) -> str:
    return json.dumps(result.to_wire_dict(), indent=2, ensure_ascii=False)


def render_result(result: AnalysisResult, fmt: ReportFormat = ReportFormat.TEXT) -> str:
    """Render a result in the requested format."""
    fmt = ReportFormat(fmt)
    if fmt == ReportFormat.JSON:
        return render_json(result)
    if fmt == ReportFormat.SUMMARY:
        return render_summary(result)
    return render_full_report(result)


def write_reports(
    items: Iterable[AnalysisItem],
    output_dir: Path,
    fmt: ReportFormat = ReportFormat.TEXT,
) -> list[Path]:
    """Write one report file per successful item.

    Files are named after the source file stem. Stems that repeat within
    one call get a numeric suffix (``IMG_1.txt``, ``IMG_1-2.txt``).

    Args:
        items: Items to report on; non-successful items are skipped.
        output_dir: Directory to write into, created if missing.
        fmt: Report format.

    Returns:
        Paths of the written files, in item order.

    Raises:
        OSError: If the directory or a file cannot be written.
    """
    fmt = ReportFormat(fmt)
    output_dir.mkdir(parents=True, exist_ok=True)

    written: list[Path] = []
    used_names: set[str] = set()

    for item in items:
        if item.status != AnalysisStatus.SUCCESS or item.result is None:
            continue

        stem = Path(item.filename).stem or item.id
        name = f"{stem}{fmt.extension}"
        counter = 2
        while name in used_names:
            name = f"{stem}-{counter}{fmt.extension}"
            counter += 1
        used_names.add(name)

        path = output_dir / name
        path.write_text(render_result(item.result, fmt) + "\n", encoding="utf-8")
        written.append(path)
        logger.debug(f"Wrote {fmt.value} report to {path}")

    return written
