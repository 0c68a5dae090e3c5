"""
CSV exporter — one row per control: id, title, level, status, details.
"""

from __future__ import annotations

import csv
from pathlib import Path
from typing import Iterable

from ..models import ControlResult

CSV_FIELDS = ["control_id", "title", "level", "status", "details"]


def export_csv(results: Iterable[ControlResult], path: str | Path) -> Path:
    """
    Write results to ``path``, creating parent directories.

    Returns:
        Path to the created CSV file.
    """
    filepath = Path(path)
    filepath.parent.mkdir(parents=True, exist_ok=True)

    with open(filepath, "w", newline="", encoding="utf-8-sig") as fh:
        writer = csv.DictWriter(fh, fieldnames=CSV_FIELDS, extrasaction="ignore")
        writer.writeheader()
        for result in results:
            writer.writerow(result.to_row())

    return filepath
