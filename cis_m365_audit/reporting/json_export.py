"""
JSON exporter — full results with run metadata and the read-only audit record.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional

from .. import __mode__, __version__
from ..models import ControlResult
from ..runner import summarize


def export_json(
    results: Iterable[ControlResult],
    path: str | Path,
    tenant: str = "",
    safety_record: Optional[dict] = None,
) -> Path:
    """
    Write results to ``path`` as JSON.

    Returns:
        Path to the created JSON file.
    """
    results = list(results)
    filepath = Path(path)
    filepath.parent.mkdir(parents=True, exist_ok=True)

    summary = summarize(results)

    payload = {
        "metadata": {
            "engine": "CIS Microsoft 365 Foundations Audit",
            "version": __version__,
            "tenant": tenant,
            "generated_utc": datetime.now(timezone.utc).isoformat(),
            "mode": __mode__,
        },
        "summary": summary,
        "results": [r.to_dict() for r in results],
        "safety": safety_record or {},
    }

    with open(filepath, "w", encoding="utf-8") as fh:
        json.dump(payload, fh, indent=2, default=str, ensure_ascii=False)

    return filepath
