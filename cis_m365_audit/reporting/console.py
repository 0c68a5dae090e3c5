"""
Console reporter — coloured per-control progress lines and the final
summary table.
"""

from __future__ import annotations

import textwrap
from typing import Iterable

from colorama import Fore, Style, init as colorama_init

from ..models import ControlResult, ERROR, FAIL, MANUAL, PASS, STATUSES
from ..runner import summarize

STATUS_COLOURS = {
    PASS: Fore.GREEN,
    FAIL: Fore.RED,
    ERROR: Fore.MAGENTA,
    MANUAL: Fore.YELLOW,
}

TITLE_WIDTH = 70


class ConsoleReporter:
    """Prints results as they arrive and a summary table at the end."""

    def __init__(self, color: bool = True, show_details: bool = True):
        self.color = color
        self.show_details = show_details
        if color:
            colorama_init()

    def status(self, status: str, pad: bool = True) -> str:
        label = f"{status or '?':<6s}" if pad else (status or "?")
        if not self.color:
            return label
        return f"{STATUS_COLOURS.get(status, '')}{label}{Style.RESET_ALL}"

    def print_result(self, result: ControlResult) -> None:
        print(f"  [{self.status(result.status)}] {result.control_id:<8s} {result.title}")
        if self.show_details and result.status != PASS:
            for line in result.details:
                print(textwrap.indent(textwrap.fill(line, 100), "             "))

    def print_summary(self, results: Iterable[ControlResult]) -> None:
        results = list(results)
        counts = summarize(results)

        print("\n" + "=" * 96)
        print(" CIS MICROSOFT 365 FOUNDATIONS — RESULTS")
        print("=" * 96)
        print(f"  {'Control':<9s} {'Lvl':<4s} {'Status':<7s} Title")
        print(f"  {'─' * 9} {'─' * 4} {'─' * 7} {'─' * TITLE_WIDTH}")
        for r in results:
            title = textwrap.shorten(r.title, TITLE_WIDTH, placeholder="...")
            print(f"  {r.control_id:<9s} L{r.level:<3d} {self.status(r.status)}  {title}")
        print()
        print("  " + "   ".join(f"{self.status(s, pad=False)}: {counts[s]}" for s in STATUSES))
        print(f"  Total: {len(results)}")
        print()
