"""
Section 3 — Microsoft Purview.
"""

from __future__ import annotations

from ..models import ControlResult, FAIL, PASS
from .base import BaseControl, ExchangePolicyControl, Expect


SECTION = "Microsoft Purview"


class AuditLogSearch(ExchangePolicyControl):
    control_id = "3.1.1"
    title = "Ensure Microsoft 365 audit log search is Enabled"
    section = SECTION
    cmdlet = "Get-AdminAuditLogConfig"
    scope = "single"
    expectations = (
        Expect("UnifiedAuditLogIngestionEnabled", equals=True),
    )


class SensitivityLabelsPublished(BaseControl):
    control_id = "3.3.1"
    title = "Ensure Information Protection sensitivity label policies are published"
    section = SECTION

    async def evaluate(self, session, result: ControlResult):
        graph = await session.graph()
        labels = await graph.get_all_pages(
            "security/informationProtection/sensitivityLabels",
            beta=True,
            skip_top=True,
        )
        active = [label for label in labels if label.get("isActive", True) is not False]
        if not active:
            return result.finish(FAIL, "No active sensitivity labels are published")
        names = sorted(
            label.get("name") or label.get("displayName") or label.get("id", "") for label in active
        )
        result.finish(PASS, f"{len(active)} sensitivity label(s) published: {', '.join(names)}")


CONTROLS = [
    AuditLogSearch,
    SensitivityLabelsPublished,
]
