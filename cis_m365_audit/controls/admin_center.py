"""
Section 1 — Microsoft 365 admin center.
Administrative accounts, public groups, shared mailboxes, and org settings.
"""

from __future__ import annotations

import logging

from ..directory import (
    GLOBAL_ADMINISTRATOR,
    MfaPolicyEvaluator,
    enumerate_admin_accounts,
    load_auth_methods,
    load_licenses,
)
from ..directory.licensing import high_risk_plans
from ..models import ControlResult, FAIL, PASS
from ..session import EXCHANGE, GRAPH
from .base import BaseControl, ExchangePolicyControl, Expect, GraphSettingsControl, ManualControl

logger = logging.getLogger("cis_m365_audit.controls.admin_center")

SECTION = "Microsoft 365 admin center"

# Password validity that the portal stores for "never expire"
NEVER_EXPIRES = 2147483647

# Office Online third-party storage integration
THIRD_PARTY_STORAGE_APP_ID = "c1f33bc0-bdb4-4248-ba9b-096807ddb43e"


class CloudOnlyAdmins(BaseControl):
    control_id = "1.1.1"
    title = "Ensure Administrative accounts are cloud-only"
    section = SECTION

    async def evaluate(self, session, result: ControlResult):
        graph = await session.graph()
        admins = await enumerate_admin_accounts(graph)
        synced = [a for a in admins if not a.cloud_only]
        self.verdict(
            result,
            [f"{a.user_principal_name} is synchronised from on-premises ({', '.join(a.roles)})"
             for a in synced],
            f"All {len(admins)} administrative accounts are cloud-only",
        )


class EmergencyAccessAccounts(BaseControl):
    """
    Emergency access accounts are the configured accounts, or when none are
    configured, the enabled cloud-only Global Administrators that hold no
    productivity licenses and are outside every MFA Conditional Access policy.
    At least two are required; each must be an enabled, cloud-only Global
    Administrator. The MFA profile of every admin is listed in the details.
    """

    control_id = "1.1.2"
    title = "Ensure two emergency access accounts have been defined"
    section = SECTION
    minimum_accounts = 2

    @property
    def emergency_accounts(self) -> list[str]:
        # Case-insensitive and order-preserving; one account listed twice counts once
        return list(dict.fromkeys(a.lower() for a in self.config.emergency_accounts))

    async def evaluate(self, session, result: ControlResult):
        graph = await session.graph()
        admins = await enumerate_admin_accounts(graph)
        evaluator = await MfaPolicyEvaluator.load(graph)
        for admin in admins:
            await load_licenses(graph, admin)
            await load_auth_methods(graph, admin)
            admin.mfa_policies = await evaluator.policy_names(admin.id)

        if self.emergency_accounts:
            by_upn = {a.user_principal_name.lower(): a for a in admins}
            accounts = [by_upn.get(upn) for upn in self.emergency_accounts]
            failures = [
                f"{upn} does not hold a privileged role"
                for upn, a in zip(self.emergency_accounts, accounts) if a is None
            ]
            accounts = [a for a in accounts if a is not None]
        else:
            failures = []
            accounts = [
                a for a in admins
                if GLOBAL_ADMINISTRATOR in a.roles and a.enabled and a.cloud_only
                and a.reduced_footprint and not a.mfa_required
            ]
            result.add_detail(
                f"Detected {len(accounts)} emergency access candidate(s): "
                + (", ".join(a.user_principal_name for a in accounts) or "none")
            )

        for account in accounts:
            if GLOBAL_ADMINISTRATOR not in account.roles:
                failures.append(f"{account.user_principal_name} is not a Global Administrator")
            if not account.enabled:
                failures.append(f"{account.user_principal_name} is disabled")
            if not account.cloud_only:
                failures.append(f"{account.user_principal_name} is synchronised from on-premises")
        if len(accounts) < self.minimum_accounts:
            failures.append(
                f"{len(accounts)} emergency access account(s) found, "
                f"at least {self.minimum_accounts} required"
            )

        result.details.extend(f"Profile: {a.profile_line()}" for a in admins)
        self.verdict(
            result,
            failures,
            f"{len(accounts)} emergency access accounts are enabled cloud-only Global Administrators",
        )


class GlobalAdminCount(BaseControl):
    control_id = "1.1.3"
    title = "Ensure that between two and four global admins are designated"
    section = SECTION
    minimum = 2
    maximum = 4

    async def evaluate(self, session, result: ControlResult):
        graph = await session.graph()
        admins = await enumerate_admin_accounts(graph, [GLOBAL_ADMINISTRATOR])
        count = len(admins)
        result.add_detail(
            "Global Administrators: " + (", ".join(a.user_principal_name for a in admins) or "none")
        )
        if self.minimum <= count <= self.maximum:
            result.finish(PASS, f"{count} Global Administrators designated")
        else:
            result.finish(
                FAIL,
                f"{count} Global Administrators designated, expected {self.minimum}-{self.maximum}",
            )


class AdminReducedFootprint(BaseControl):
    control_id = "1.1.4"
    title = "Ensure administrative accounts use licenses with a reduced application footprint"
    section = SECTION

    async def evaluate(self, session, result: ControlResult):
        graph = await session.graph()
        admins = await enumerate_admin_accounts(graph)
        failures = []
        for admin in admins:
            await load_licenses(graph, admin)
            if not admin.reduced_footprint:
                failures.append(
                    f"{admin.user_principal_name} has productivity plans provisioned: "
                    f"{', '.join(high_risk_plans(admin.service_plans))}"
                )
        self.verdict(
            result,
            failures,
            f"All {len(admins)} administrative accounts have a reduced application footprint",
        )


class PublicGroupsManaged(BaseControl):
    control_id = "1.2.1"
    title = "Ensure that only organizationally managed/approved public groups exist"
    section = SECTION
    level = 2

    async def evaluate(self, session, result: ControlResult):
        graph = await session.graph()
        groups = await graph.get_all_pages(
            "groups",
            params={
                "$filter": "groupTypes/any(c:c eq 'Unified')",
                "$select": "id,displayName,visibility",
            },
        )
        public = [g for g in groups if str(g.get("visibility") or "").lower() == "public"]
        self.verdict(
            result,
            [f"Public group requires review: {g.get('displayName')} ({g.get('id')})" for g in public],
            f"None of {len(groups)} Microsoft 365 groups is public",
        )


class SharedMailboxSignInBlocked(BaseControl):
    control_id = "1.2.2"
    title = "Ensure sign-in to shared mailboxes is blocked"
    section = SECTION
    services = (GRAPH, EXCHANGE)

    async def evaluate(self, session, result: ControlResult):
        exchange = await session.exchange()
        graph = await session.graph()
        mailboxes = await exchange.invoke(
            "Get-Mailbox",
            {"RecipientTypeDetails": "SharedMailbox", "ResultSize": "Unlimited"},
        )
        failures = []
        for mailbox in mailboxes:
            object_id = mailbox.get("ExternalDirectoryObjectId")
            name = mailbox.get("UserPrincipalName") or mailbox.get("DisplayName") or object_id
            if not object_id:
                failures.append(f"{name}: no directory object to check")
                continue
            user = await graph.get(f"users/{object_id}", params={"$select": "id,accountEnabled"})
            if user.get("_not_found"):
                failures.append(f"{name}: directory user not found")
            elif user.get("accountEnabled") is not False:
                failures.append(f"{name}: sign-in is allowed")
        self.verdict(
            result,
            failures,
            f"Sign-in is blocked for all {len(mailboxes)} shared mailboxes",
        )


class PasswordsNeverExpire(BaseControl):
    control_id = "1.3.1"
    title = "Ensure the 'Password expiration policy' is set to 'Set passwords to never expire (recommended)'"
    section = SECTION

    async def evaluate(self, session, result: ControlResult):
        graph = await session.graph()
        domains = await graph.get_all_pages("domains", skip_top=True)
        checked = []
        failures = []
        for domain in domains:
            if not domain.get("isVerified"):
                continue
            if str(domain.get("authenticationType") or "").lower() == "federated":
                logger.info(f"Skipping federated domain {domain.get('id')}")
                continue
            checked.append(domain.get("id"))
            period = domain.get("passwordValidityPeriodInDays")
            if period != NEVER_EXPIRES:
                failures.append(
                    f"{domain.get('id')}: passwords expire after "
                    f"{period if period is not None else 'an unset number of'} days"
                )
        if not checked:
            return result.finish(FAIL, "No verified managed domains found")
        self.verdict(
            result,
            failures,
            f"Passwords never expire on all {len(checked)} verified domains",
        )


class IdleSessionTimeout(GraphSettingsControl):
    control_id = "1.3.2"
    title = "Ensure 'Idle session timeout' is set to '3 hours (or less)' for unmanaged devices"
    section = SECTION
    level = 2
    endpoint = "admin/sharepoint/settings"
    expectations = (
        Expect("idleSessionSignOut.isEnabled", equals=True),
        Expect("idleSessionSignOut.signOutAfterInSeconds", minimum=1, maximum=3 * 60 * 60),
    )


class CalendarSharingDisabled(BaseControl):
    control_id = "1.3.3"
    title = "Ensure 'External sharing' of calendars is not available"
    section = SECTION
    level = 2
    services = (EXCHANGE,)

    async def evaluate(self, session, result: ControlResult):
        exchange = await session.exchange()
        policies = await exchange.invoke("Get-SharingPolicy")
        failures = []
        for policy in policies:
            if policy.get("Enabled") is False:
                continue
            external = [
                d for d in policy.get("Domains") or []
                if str(d).split(":", 1)[0] in ("*", "Anonymous")
            ]
            if external:
                failures.append(
                    f"{policy.get('Name') or policy.get('Identity')}: shares calendars with "
                    f"{', '.join(map(str, external))}"
                )
        self.verdict(result, failures, "No enabled sharing policy shares calendars externally")


class UserOwnedAppsRestricted(GraphSettingsControl):
    control_id = "1.3.4"
    title = "Ensure 'User owned apps and services' is restricted"
    section = SECTION
    endpoint = "admin/appsAndServices"
    beta = True
    expectations = (
        Expect("settings.isOfficeStoreEnabled", equals=False),
        Expect("settings.isAppAndServicesTrialEnabled", equals=False),
    )


class FormsPhishingProtection(GraphSettingsControl):
    control_id = "1.3.5"
    title = "Ensure internal phishing protection for Forms is enabled"
    section = SECTION
    endpoint = "admin/forms"
    beta = True
    expectations = (
        Expect("settings.isInOrgFormsPhishingScanEnabled", equals=True),
    )


class CustomerLockbox(ExchangePolicyControl):
    control_id = "1.3.6"
    title = "Ensure the customer lockbox feature is enabled"
    section = SECTION
    level = 2
    cmdlet = "Get-OrganizationConfig"
    scope = "single"
    expectations = (
        Expect("CustomerLockBoxEnabled", equals=True),
    )


class ThirdPartyStorageRestricted(BaseControl):
    control_id = "1.3.7"
    title = "Ensure 'third-party storage services' are restricted in 'Microsoft 365 on the web'"
    section = SECTION
    level = 2

    async def evaluate(self, session, result: ControlResult):
        graph = await session.graph()
        data = await graph.get(
            "servicePrincipals",
            params={
                "$filter": f"appId eq '{THIRD_PARTY_STORAGE_APP_ID}'",
                "$select": "id,appId,displayName,accountEnabled",
            },
        )
        principals = data.get("value", [])
        if not principals:
            return result.finish(
                FAIL,
                f"Service principal for app {THIRD_PARTY_STORAGE_APP_ID} does not exist, "
                "so third-party storage is not disabled",
            )
        self.verdict(
            result,
            [f"{p.get('displayName')}: accountEnabled is {p.get('accountEnabled')}"
             for p in principals if p.get("accountEnabled") is not False],
            "Third-party storage service principal is disabled",
        )


class SwayExternalSharing(ManualControl):
    control_id = "1.3.8"
    title = "Ensure that Sways cannot be shared with people outside of your organization"
    section = SECTION
    level = 2
    instructions = (
        "No API exposes Sway settings. In the Microsoft 365 admin center open "
        "Settings > Org Settings > Sway and confirm 'Let people in your organization "
        "share their sways with people outside your organization' is unchecked."
    )


CONTROLS = [
    CloudOnlyAdmins,
    EmergencyAccessAccounts,
    GlobalAdminCount,
    AdminReducedFootprint,
    PublicGroupsManaged,
    SharedMailboxSignInBlocked,
    PasswordsNeverExpire,
    IdleSessionTimeout,
    CalendarSharingDisabled,
    UserOwnedAppsRestricted,
    FormsPhishingProtection,
    CustomerLockbox,
    ThirdPartyStorageRestricted,
    SwayExternalSharing,
]
