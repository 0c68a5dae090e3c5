"""
License footprint classification for administrative accounts.
"""

from __future__ import annotations

from typing import Iterable

# Service plans that put productivity workloads (mail, files, chat) on an
# account. An admin account holding any of them is not "reduced footprint".
HIGH_RISK_SERVICE_PLANS = frozenset({
    "EXCHANGE_S_STANDARD",
    "EXCHANGE_S_ENTERPRISE",
    "EXCHANGE_S_DESKLESS",
    "EXCHANGE_S_FOUNDATION",
    "SHAREPOINTSTANDARD",
    "SHAREPOINTENTERPRISE",
    "SHAREPOINTDESKLESS",
    "SHAREPOINTWAC",
    "ONEDRIVE_BASIC",
    "ONEDRIVESTANDARD",
    "MCOSTANDARD",
    "MCOEV",
    "TEAMS1",
    "TEAMS_AR_DOD",
    "TEAMS_AR_GCCHIGH",
    "YAMMER_ENTERPRISE",
    "OFFICESUBSCRIPTION",
})


def provisioned_service_plans(license_details: Iterable[dict]) -> list[str]:
    """Names of service plans whose provisioning succeeded, sorted and unique."""
    plans = set()
    for detail in license_details:
        for plan in detail.get("servicePlans") or []:
            if plan.get("provisioningStatus") == "Success" and plan.get("servicePlanName"):
                plans.add(plan["servicePlanName"])
    return sorted(plans)


def high_risk_plans(plans: Iterable[str]) -> list[str]:
    return sorted(set(plans) & HIGH_RISK_SERVICE_PLANS)


def has_reduced_footprint(plans: Iterable[str]) -> bool:
    """True iff no provisioned plan is on the high-risk list."""
    return not high_risk_plans(plans)
