"""
Section 5 — Microsoft Entra admin center.
Authorization policy, guest groups, user consent and admin MFA coverage.
"""

from __future__ import annotations

import logging
import re

from ..directory import MfaPolicyEvaluator, enumerate_admin_accounts
from ..models import ControlResult, FAIL, PASS
from .base import BaseControl, Expect, GraphSettingsControl

logger = logging.getLogger("cis_m365_audit.controls.entra")

SECTION = "Microsoft Entra admin center"

AUTHORIZATION_POLICY = "policies/authorizationPolicy"

GUEST_RULE = re.compile(r"user\.userType\s+-eq\s+\"?guest\"?", re.IGNORECASE)

USER_CONSENT_PREFIX = "ManagePermissionGrantsForSelf."


class ThirdPartyAppRegistration(GraphSettingsControl):
    control_id = "5.1.2.2"
    title = "Ensure third party integrated applications are not allowed"
    section = SECTION
    endpoint = AUTHORIZATION_POLICY
    expectations = (
        Expect("defaultUserRolePermissions.allowedToCreateApps", equals=False),
    )


class TenantCreationRestricted(GraphSettingsControl):
    control_id = "5.1.2.3"
    title = "Ensure 'Restrict non-admin users from creating tenants' is set to 'Yes'"
    section = SECTION
    endpoint = AUTHORIZATION_POLICY
    expectations = (
        Expect("defaultUserRolePermissions.allowedToCreateTenants", equals=False),
    )


class DynamicGuestGroup(BaseControl):
    control_id = "5.1.3.1"
    title = "Ensure a dynamic group for guest users is created"
    section = SECTION
    level = 2

    async def evaluate(self, session, result: ControlResult):
        graph = await session.graph()
        groups = await graph.get_all_pages(
            "groups",
            params={
                "$filter": "groupTypes/any(c:c eq 'DynamicMembership')",
                "$select": "id,displayName,membershipRule,membershipRuleProcessingState",
            },
        )
        guest_groups = [g for g in groups if GUEST_RULE.search(g.get("membershipRule") or "")]
        if not guest_groups:
            return result.finish(
                FAIL, f"None of {len(groups)} dynamic group(s) has a rule for guest users"
            )
        result.finish(
            PASS,
            "Dynamic guest group(s): "
            + ", ".join(g.get("displayName") or g["id"] for g in guest_groups),
        )


class UserConsentDisallowed(BaseControl):
    control_id = "5.1.5.2"
    title = "Ensure user consent to apps accessing company data on their behalf is not allowed"
    section = SECTION

    async def evaluate(self, session, result: ControlResult):
        graph = await session.graph()
        policy = await graph.get(AUTHORIZATION_POLICY)
        if policy.get("_not_found"):
            return result.finish(FAIL, "Authorization policy not found")

        permissions = policy.get("defaultUserRolePermissions") or {}
        assigned = permissions.get("permissionGrantPoliciesAssigned") or []
        consent = [p for p in assigned if p.startswith(USER_CONSENT_PREFIX)]
        self.verdict(
            result,
            [f"User consent policy assigned: {p}" for p in consent],
            "No user consent permission grant policy is assigned",
        )


class AdminMfaRequired(BaseControl):
    """Every enabled privileged user is targeted by an enabled MFA Conditional Access policy."""

    control_id = "5.2.2.1"
    title = "Ensure multifactor authentication is enabled for all users in administrative roles"
    section = SECTION

    async def evaluate(self, session, result: ControlResult):
        graph = await session.graph()
        evaluator = await MfaPolicyEvaluator.load(graph)
        if not evaluator.policies:
            return result.finish(FAIL, "No enabled Conditional Access policy requires MFA")

        admins = [a for a in await enumerate_admin_accounts(graph) if a.enabled]
        failures = []
        for admin in admins:
            admin.mfa_policies = await evaluator.policy_names(admin.id)
            if not admin.mfa_required:
                failures.append(
                    f"{admin.user_principal_name} ({', '.join(admin.roles)}) "
                    "is not covered by any MFA Conditional Access policy"
                )
        self.verdict(
            result,
            failures,
            f"All {len(admins)} enabled administrative accounts are covered by MFA policies",
        )


CONTROLS = [
    ThirdPartyAppRegistration,
    TenantCreationRestricted,
    DynamicGuestGroup,
    UserConsentDisallowed,
    AdminMfaRequired,
]
