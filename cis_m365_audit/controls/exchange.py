"""
Section 6 — Exchange admin center.
Mailbox auditing, mail flow, roles and organisation settings.
"""

from __future__ import annotations

import logging
import re

from ..models import ControlResult
from ..session import EXCHANGE
from .base import BaseControl, ExchangePolicyControl, Expect, object_label

logger = logging.getLogger("cis_m365_audit.controls.exchange")

SECTION = "Exchange admin center"

# Roles that let users install Outlook add-ins
ADD_IN_ROLE = re.compile(r"^My .*Apps$", re.IGNORECASE)


def _enabled(rule: dict) -> bool:
    return str(rule.get("State") or "Enabled").lower() != "disabled"


class MailboxAuditingEnabled(ExchangePolicyControl):
    control_id = "6.1.1"
    title = "Ensure 'AuditDisabled' organizationally is set to 'False'"
    section = SECTION
    cmdlet = "Get-OrganizationConfig"
    scope = "single"
    expectations = (
        Expect("AuditDisabled", equals=False),
    )


class AuditBypassDisabled(BaseControl):
    control_id = "6.1.4"
    title = "Ensure 'AuditBypassEnabled' is not enabled on mailboxes"
    section = SECTION
    services = (EXCHANGE,)

    async def evaluate(self, session, result: ControlResult):
        exchange = await session.exchange()
        associations = await exchange.invoke(
            "Get-MailboxAuditBypassAssociation", {"ResultSize": "Unlimited"}
        )
        bypassed = [a for a in associations if a.get("AuditBypassEnabled") is True]
        self.verdict(
            result,
            [f"{object_label(a)} bypasses mailbox audit logging" for a in bypassed],
            f"None of {len(associations)} mailbox audit associations bypass auditing",
        )


class MailForwardingBlocked(BaseControl):
    """No enabled transport rule redirects mail and outbound spam policies turn auto-forwarding off."""

    control_id = "6.2.1"
    title = "Ensure all forms of mail forwarding are blocked and/or disabled"
    section = SECTION
    services = (EXCHANGE,)

    async def evaluate(self, session, result: ControlResult):
        exchange = await session.exchange()
        failures = []

        rules = await exchange.invoke("Get-TransportRule")
        for rule in rules:
            if _enabled(rule) and rule.get("RedirectMessageTo"):
                targets = rule["RedirectMessageTo"]
                if isinstance(targets, list):
                    targets = ", ".join(str(t) for t in targets)
                failures.append(f"Transport rule {object_label(rule)} redirects mail to {targets}")

        policies = await exchange.invoke("Get-HostedOutboundSpamFilterPolicy")
        if not policies:
            failures.append("No outbound spam filter policy returned")
        auto_forwarding = Expect("AutoForwardingMode", equals="Off")
        for policy in policies:
            found = auto_forwarding.mismatch(policy)
            if found:
                failures.append(f"{object_label(policy)}: {found}")

        self.verdict(
            result,
            failures,
            f"No redirect rules among {len(rules)} transport rules; "
            f"auto-forwarding is off in {len(policies)} outbound policies",
        )


class NoDomainWhitelisting(BaseControl):
    control_id = "6.2.2"
    title = "Ensure mail transport rules do not whitelist specific domains"
    section = SECTION
    services = (EXCHANGE,)

    async def evaluate(self, session, result: ControlResult):
        exchange = await session.exchange()
        rules = await exchange.invoke("Get-TransportRule")
        failures = []
        for rule in rules:
            domains = rule.get("SenderDomainIs") or []
            if str(rule.get("SetSCL")) == "-1" and domains:
                failures.append(
                    f"Transport rule {object_label(rule)} bypasses spam filtering "
                    f"for {', '.join(str(d) for d in domains)}"
                )
        self.verdict(result, failures, f"None of {len(rules)} transport rules allow-list domains")


class ExternalSenderTagging(ExchangePolicyControl):
    control_id = "6.2.3"
    title = "Ensure email from external senders is identified"
    section = SECTION
    cmdlet = "Get-ExternalInOutlook"
    scope = "single"
    expectations = (
        Expect("Enabled", equals=True),
    )


class OutlookAddInsRestricted(BaseControl):
    control_id = "6.3.1"
    title = "Ensure users installing Outlook add-ins is not allowed"
    section = SECTION
    level = 2
    services = (EXCHANGE,)

    async def evaluate(self, session, result: ControlResult):
        exchange = await session.exchange()
        policies = await exchange.invoke("Get-RoleAssignmentPolicy")
        failures = []
        for policy in policies:
            roles = [str(r) for r in policy.get("AssignedRoles") or [] if ADD_IN_ROLE.match(str(r))]
            if roles:
                failures.append(f"{object_label(policy)} assigns {', '.join(sorted(roles))}")
        self.verdict(
            result,
            failures,
            f"None of {len(policies)} role assignment policies allow add-in installation",
        )


class ModernAuthExchange(ExchangePolicyControl):
    control_id = "6.5.1"
    title = "Ensure modern authentication for Exchange Online is enabled"
    section = SECTION
    cmdlet = "Get-OrganizationConfig"
    scope = "single"
    expectations = (
        Expect("OAuth2ClientProfileEnabled", equals=True),
    )


class MailTipsEnabled(ExchangePolicyControl):
    control_id = "6.5.2"
    title = "Ensure MailTips are enabled for end users"
    section = SECTION
    cmdlet = "Get-OrganizationConfig"
    scope = "single"
    expectations = (
        Expect("MailTipsAllTipsEnabled", equals=True),
        Expect("MailTipsExternalRecipientsTipsEnabled", equals=True),
        Expect("MailTipsGroupMetricsEnabled", equals=True),
        Expect("MailTipsLargeAudienceThreshold", minimum=1, maximum=25),
    )


class OwaStorageProvidersRestricted(ExchangePolicyControl):
    control_id = "6.5.3"
    title = "Ensure additional storage providers are restricted in Outlook on the web"
    section = SECTION
    level = 2
    cmdlet = "Get-OwaMailboxPolicy"
    expectations = (
        Expect("AdditionalStorageProvidersAvailable", equals=False),
    )


class SmtpAuthDisabled(ExchangePolicyControl):
    control_id = "6.5.4"
    title = "Ensure SMTP AUTH is disabled"
    section = SECTION
    cmdlet = "Get-TransportConfig"
    scope = "single"
    expectations = (
        Expect("SmtpClientAuthenticationDisabled", equals=True),
    )


CONTROLS = [
    MailboxAuditingEnabled,
    AuditBypassDisabled,
    MailForwardingBlocked,
    NoDomainWhitelisting,
    ExternalSenderTagging,
    OutlookAddInsRestricted,
    ModernAuthExchange,
    MailTipsEnabled,
    OwaStorageProvidersRestricted,
    SmtpAuthDisabled,
]
