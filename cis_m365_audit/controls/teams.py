"""
Section 8 — Microsoft Teams admin center.
"""

from __future__ import annotations

from .base import ManualControl

SECTION = "Microsoft Teams admin center"


class ApprovedCloudStorage(ManualControl):
    control_id = "8.1.1"
    title = "Ensure external file sharing in Teams is enabled for only approved cloud storage services"
    section = SECTION
    level = 2
    instructions = (
        "Teams client configuration is not exposed through Microsoft Graph or the Exchange "
        "admin API. Verify in the Teams admin center under Messaging > Manage apps > "
        "Files that only approved cloud storage providers are enabled."
    )


CONTROLS = [
    ApprovedCloudStorage,
]
