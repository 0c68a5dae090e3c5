"""
Control runner — evaluates the selected controls one after another against a
single shared session and returns one result per control, in order.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable, Optional

from .controls.base import BaseControl
from .models import ControlResult, STATUSES

logger = logging.getLogger("cis_m365_audit.runner")


async def run_controls(
    session,
    controls: Iterable[BaseControl],
    on_result: Optional[Callable[[ControlResult], None]] = None,
) -> list[ControlResult]:
    """
    Run every control sequentially. A control never raises: failures surface
    as ERROR results, so one broken control does not stop the run.
    """
    results = []
    for control in controls:
        result = await control.run(session)
        results.append(result)
        if on_result:
            on_result(result)
    logger.info(f"Completed {len(results)} controls: {summarize(results)}")
    return results


def summarize(results: Iterable[ControlResult]) -> dict[str, int]:
    """Count of results per status, every status present."""
    counts = {status: 0 for status in STATUSES}
    for r in results:
        counts[r.status] = counts.get(r.status, 0) + 1
    return counts


def exit_code(results: Iterable[ControlResult]) -> int:
    """0 when nothing failed or errored, else 1."""
    return 1 if any(r.failed for r in results) else 0
