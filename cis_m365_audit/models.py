"""
Result data model — the record every control returns.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

# Terminal statuses
PASS = "PASS"
FAIL = "FAIL"
ERROR = "ERROR"
MANUAL = "MANUAL"

STATUSES = (PASS, FAIL, ERROR, MANUAL)

# Control lifecycle
INIT = "INIT"
CONNECTING = "CONNECTING"
EVALUATING = "EVALUATING"


@dataclass
class ControlResult:
    """
    Outcome of a single CIS control.
    ``status`` stays None until the control reaches a terminal state.
    """
    control_id: str                      # CIS reference, e.g. "1.3.1"
    title: str                           # Benchmark recommendation title
    section: str = ""                    # Benchmark section name
    level: int = 1                       # CIS profile level (1 or 2)
    status: Optional[str] = None
    details: list[str] = field(default_factory=list)
    state: str = INIT
    duration_seconds: float = 0.0

    def add_detail(self, line: str) -> None:
        self.details.append(line)

    def finish(self, status: str, *details: str) -> "ControlResult":
        """Move to a terminal status, appending any detail lines."""
        if status not in STATUSES:
            raise ValueError(f"Unknown status: {status}")
        self.status = status
        self.state = status
        self.details.extend(details)
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status is not None

    @property
    def failed(self) -> bool:
        return self.status in (FAIL, ERROR)

    def to_dict(self) -> dict:
        return {
            "control_id": self.control_id,
            "title": self.title,
            "section": self.section,
            "level": self.level,
            "status": self.status,
            "details": list(self.details),
            "duration_seconds": self.duration_seconds,
        }

    def to_row(self) -> dict:
        """Flat export row."""
        return {
            "control_id": self.control_id,
            "title": self.title,
            "level": self.level,
            "status": self.status,
            "details": " | ".join(self.details),
        }
