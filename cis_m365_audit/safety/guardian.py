"""
Safety Guardian — Enforces strict read-only operation.
Validates every HTTP request and Exchange cmdlet, blocks write attempts,
and logs safety events.
"""

from __future__ import annotations

import logging
import re
import sys
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger("cis_m365_audit.safety")

# ─── Blocked HTTP Methods ────────────────────────────────────────────────────

WRITE_METHODS = {"POST", "PUT", "PATCH", "DELETE"}

# The Exchange admin API tunnels every cmdlet through POST InvokeCommand
SAFE_POST_ENDPOINTS = [
    re.compile(r"/adminapi/(beta|v1\.0)/[^/]+/InvokeCommand$", re.IGNORECASE),
]

# Only read cmdlets may be tunnelled
READ_CMDLET = re.compile(r"^Get-[A-Za-z0-9]+$")


class SafetyViolation(Exception):
    """Raised when a write operation is attempted."""
    pass


class ReadOnlyGuardian:
    """
    Validates every outbound request to ensure read-only operation.
    Maintains an audit log of all safety checks and violations.
    """

    def __init__(self):
        self.violations: list[dict] = []
        self.checks_performed: int = 0
        self.started_at: str = datetime.now(timezone.utc).isoformat()
        self.requests: dict[str, int] = {}

    def validate_request(self, method: str, url: str, body: Optional[dict] = None) -> bool:
        """
        Validate that a request is read-only.
        Returns True if safe, raises SafetyViolation if not.
        """
        self.checks_performed += 1
        method_upper = method.upper()

        if method_upper in ("GET", "HEAD", "OPTIONS"):
            return True

        if method_upper == "POST":
            for pattern in SAFE_POST_ENDPOINTS:
                if pattern.search(url.split("?", 1)[0]):
                    cmdlet = ((body or {}).get("CmdletInput") or {}).get("CmdletName", "")
                    self.validate_cmdlet(cmdlet)
                    return True

        if method_upper in WRITE_METHODS:
            self._record_violation(method_upper, url, "Write HTTP method blocked")
            raise SafetyViolation(
                f"SAFETY VIOLATION: Write method blocked: {method_upper} {url}"
            )

        self._record_violation(method_upper, url, "Unknown HTTP method")
        raise SafetyViolation(f"SAFETY VIOLATION: Unknown method: {method_upper} {url}")

    def validate_cmdlet(self, cmdlet: str) -> bool:
        """Only Get-* cmdlets may run against Exchange Online."""
        if not READ_CMDLET.match(cmdlet or ""):
            self._record_violation("POST", cmdlet or "<empty>", "Non-read cmdlet blocked")
            raise SafetyViolation(f"SAFETY VIOLATION: Cmdlet blocked: {cmdlet!r}")
        return True

    def record_requests(self, service: str, count: int):
        """Add the number of requests a client sent to ``service``."""
        self.requests[service] = self.requests.get(service, 0) + count

    def _record_violation(self, method: str, target: str, reason: str):
        """Record a safety violation for audit."""
        violation = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "method": method,
            "target": target,
            "reason": reason,
        }
        self.violations.append(violation)
        logger.critical(f"SAFETY VIOLATION: {reason} — {method} {target}")

    def get_audit_record(self) -> dict:
        """Return the full safety audit record."""
        return {
            "mode": "READ-ONLY",
            "started_at": self.started_at,
            "checks_performed": self.checks_performed,
            "requests": dict(self.requests),
            "violations_detected": len(self.violations),
            "violations": self.violations,
            "status": "CLEAN" if not self.violations else "VIOLATIONS_DETECTED",
        }

    @staticmethod
    def print_banner():
        """Print the read-only warning banner."""
        enc = getattr(sys.stdout, "encoding", "") or ""
        unicode_ok = (
            sys.stdout.isatty()
            and enc.lower().replace("-", "") in ("utf8", "utf16", "utf32")
        )

        if unicode_ok:
            banner = """
╔═══════════════════════════════════════════════════════════════════════════╗
║   CIS MICROSOFT 365 FOUNDATIONS AUDIT — READ-ONLY                         ║
║                                                                           ║
║   * Graph calls are GET only                                              ║
║   * Exchange Online is queried with Get-* cmdlets only                    ║
║   * No policies, users, or settings will be modified                      ║
╚═══════════════════════════════════════════════════════════════════════════╝
"""
            try:
                print(banner)
                return
            except UnicodeEncodeError:
                pass  # fall through to ASCII banner

        print("=" * 77)
        print("  CIS MICROSOFT 365 FOUNDATIONS AUDIT -- READ-ONLY")
        print("  * Graph calls are GET only; Exchange cmdlets are Get-* only")
        print("  * No policies, users, or settings will be modified")
        print("=" * 77)
