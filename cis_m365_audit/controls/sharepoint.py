"""
Section 7 — SharePoint admin center.
Tenant sharing settings read from admin/sharepoint/settings.
"""

from __future__ import annotations

from .base import Expect, GraphSettingsControl

SECTION = "SharePoint admin center"

SHAREPOINT_SETTINGS = "admin/sharepoint/settings"

# Anything short of "Anyone" links
RESTRICTED_SHARING = (
    "disabled",
    "existingExternalUserSharingOnly",
    "externalUserSharingOnly",
)


class ModernAuthSharePoint(GraphSettingsControl):
    control_id = "7.2.1"
    title = "Ensure modern authentication for SharePoint applications is required"
    section = SECTION
    endpoint = SHAREPOINT_SETTINGS
    expectations = (
        Expect("isLegacyAuthProtocolsEnabled", equals=False),
    )


class ExternalSharingRestricted(GraphSettingsControl):
    control_id = "7.2.3"
    title = "Ensure external content sharing is restricted"
    section = SECTION
    endpoint = SHAREPOINT_SETTINGS
    expectations = (
        Expect("sharingCapability", one_of=RESTRICTED_SHARING),
    )


class GuestResharingDisabled(GraphSettingsControl):
    control_id = "7.2.5"
    title = "Ensure that SharePoint guest users cannot share items they don't own"
    section = SECTION
    level = 2
    endpoint = SHAREPOINT_SETTINGS
    expectations = (
        Expect("isResharingByExternalUsersEnabled", equals=False),
    )


class SharingDomainAllowList(GraphSettingsControl):
    control_id = "7.2.6"
    title = "Ensure SharePoint external sharing is managed through domain whitelist/blacklists"
    section = SECTION
    level = 2
    endpoint = SHAREPOINT_SETTINGS
    expectations = (
        Expect("sharingDomainRestrictionMode", equals="allowList"),
        Expect("sharingAllowedDomainList", non_empty=True),
    )


CONTROLS = [
    ModernAuthSharePoint,
    ExternalSharingRestricted,
    GuestResharingDisabled,
    SharingDomainAllowList,
]
