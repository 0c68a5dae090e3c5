"""
Section 2 — Microsoft 365 Defender.
Email and collaboration protection policies, SPF, DKIM and DMARC.
"""

from __future__ import annotations

import logging
import re

from ..models import ControlResult, FAIL
from ..session import DNS, EXCHANGE, GRAPH
from .base import (
    BaseControl,
    ExchangePolicyControl,
    Expect,
    RulePolicyControl,
    object_label,
)

logger = logging.getLogger("cis_m365_audit.controls.defender")

SECTION = "Microsoft 365 Defender"

SPF_RECORD = re.compile(r"^v=spf1\b", re.IGNORECASE)
SPF_EXCHANGE_ONLINE = re.compile(r"\binclude:spf\.protection\.outlook\.com\b", re.IGNORECASE)
DMARC_RECORD = re.compile(r"^v=DMARC1\b", re.IGNORECASE)
DMARC_ENFORCING = re.compile(r"(^|;)\s*p=(quarantine|reject)\s*(;|$)", re.IGNORECASE)
DMARC_PERCENT = re.compile(r"(^|;)\s*pct=(\d+)\s*(;|$)", re.IGNORECASE)
DMARC_AGGREGATE = re.compile(r"(^|;)\s*rua=mailto:", re.IGNORECASE)
DMARC_FORENSIC = re.compile(r"(^|;)\s*ruf=mailto:", re.IGNORECASE)


class SafeLinksOfficeApps(RulePolicyControl):
    control_id = "2.1.1"
    title = "Ensure Safe Links for Office Applications is Enabled"
    section = SECTION
    level = 2
    cmdlet = "Get-SafeLinksPolicy"
    rule_cmdlet = "Get-SafeLinksRule"
    rule_policy_field = "SafeLinksPolicy"
    expectations = (
        Expect("EnableSafeLinksForEmail", equals=True),
        Expect("EnableSafeLinksForTeams", equals=True),
        Expect("EnableSafeLinksForOffice", equals=True),
        Expect("TrackClicks", equals=True),
        Expect("AllowClickThrough", equals=False),
        Expect("ScanUrls", equals=True),
        Expect("EnableForInternalSenders", equals=True),
        Expect("DeliverMessageAfterScan", equals=True),
        Expect("DisableUrlRewrite", equals=False),
    )


class CommonAttachmentFilter(ExchangePolicyControl):
    control_id = "2.1.2"
    title = "Ensure the Common Attachment Types Filter is enabled"
    section = SECTION
    cmdlet = "Get-MalwareFilterPolicy"
    expectations = (
        Expect("EnableFileFilter", equals=True),
    )


class InternalMalwareNotifications(ExchangePolicyControl):
    control_id = "2.1.3"
    title = "Ensure notifications for internal users sending malware is Enabled"
    section = SECTION
    cmdlet = "Get-MalwareFilterPolicy"
    expectations = (
        Expect("EnableInternalSenderAdminNotifications", equals=True),
        Expect("InternalSenderAdminAddress", non_empty=True),
    )


class SafeAttachmentsPolicy(RulePolicyControl):
    control_id = "2.1.4"
    title = "Ensure Safe Attachments policy is enabled"
    section = SECTION
    level = 2
    cmdlet = "Get-SafeAttachmentPolicy"
    rule_cmdlet = "Get-SafeAttachmentRule"
    rule_policy_field = "SafeAttachmentPolicy"
    expectations = (
        Expect("Enable", equals=True),
        Expect("Action", equals="Block"),
        Expect("QuarantineTag", equals="AdminOnlyAccessPolicy"),
    )


class SafeAttachmentsCollaboration(ExchangePolicyControl):
    control_id = "2.1.5"
    title = "Ensure Safe Attachments for SharePoint, OneDrive, and Microsoft Teams is Enabled"
    section = SECTION
    level = 2
    cmdlet = "Get-AtpPolicyForO365"
    scope = "single"
    expectations = (
        Expect("EnableATPForSPOTeamsODB", equals=True),
        Expect("EnableSafeDocs", equals=True),
        Expect("AllowSafeDocsOpen", equals=False),
    )


class SpamPolicyAdminNotifications(ExchangePolicyControl):
    control_id = "2.1.6"
    title = "Ensure Exchange Online Spam Policies are set to notify administrators"
    section = SECTION
    cmdlet = "Get-HostedOutboundSpamFilterPolicy"
    expectations = (
        Expect("BccSuspiciousOutboundMail", equals=True),
        Expect("BccSuspiciousOutboundAdditionalRecipients", non_empty=True),
        Expect("NotifyOutboundSpam", equals=True),
        Expect("NotifyOutboundSpamRecipients", non_empty=True),
    )


class AntiPhishingPolicy(RulePolicyControl):
    control_id = "2.1.7"
    title = "Ensure that an anti-phishing policy has been created"
    section = SECTION
    level = 2
    cmdlet = "Get-AntiPhishPolicy"
    rule_cmdlet = "Get-AntiPhishRule"
    rule_policy_field = "AntiPhishPolicy"
    fallback_to_default = True
    expectations = (
        Expect("Enabled", equals=True),
        Expect("PhishThresholdLevel", minimum=3, maximum=4),
        Expect("EnableTargetedUserProtection", equals=True),
        Expect("EnableOrganizationDomainsProtection", equals=True),
        Expect("EnableMailboxIntelligence", equals=True),
        Expect("EnableMailboxIntelligenceProtection", equals=True),
        Expect("EnableSpoofIntelligence", equals=True),
        Expect("TargetedUserProtectionAction", equals="Quarantine"),
        Expect("TargetedDomainProtectionAction", equals="Quarantine"),
        Expect("MailboxIntelligenceProtectionAction", equals="Quarantine"),
        Expect("EnableFirstContactSafetyTips", equals=True),
        Expect("EnableSimilarUsersSafetyTips", equals=True),
        Expect("EnableSimilarDomainsSafetyTips", equals=True),
        Expect("EnableUnusualCharactersSafetyTips", equals=True),
        Expect("HonorDmarcPolicy", equals=True),
    )


async def mail_domains(graph) -> list[str]:
    """Verified custom domains that carry email; onmicrosoft.com is service managed."""
    domains = await graph.get_all_pages("domains", skip_top=True)
    return sorted(
        d["id"] for d in domains
        if d.get("isVerified")
        and "Email" in (d.get("supportedServices") or [])
        and not d["id"].lower().endswith(".onmicrosoft.com")
    )


def spf_failures(domain: str, records: list[str]) -> list[str]:
    spf = [r for r in records if SPF_RECORD.search(r)]
    if not spf:
        return [f"{domain}: no SPF record published"]
    if len(spf) > 1:
        return [f"{domain}: {len(spf)} SPF records published, exactly one allowed"]
    if not SPF_EXCHANGE_ONLINE.search(spf[0]):
        return [f"{domain}: SPF record does not include spf.protection.outlook.com ({spf[0]})"]
    return []


def dmarc_failures(domain: str, records: list[str]) -> list[str]:
    dmarc = [r for r in records if DMARC_RECORD.search(r)]
    if not dmarc:
        return [f"{domain}: no DMARC record published at _dmarc.{domain}"]
    if len(dmarc) > 1:
        return [f"{domain}: {len(dmarc)} DMARC records published, exactly one allowed"]
    record = dmarc[0]
    failures = []
    if not DMARC_ENFORCING.search(record):
        failures.append(f"{domain}: DMARC policy is not quarantine or reject ({record})")
    percent = DMARC_PERCENT.search(record)
    if percent and int(percent.group(2)) != 100:
        failures.append(f"{domain}: DMARC applies to {percent.group(2)}% of messages, expected 100")
    if not DMARC_AGGREGATE.search(record):
        failures.append(f"{domain}: DMARC record has no aggregate report address (rua)")
    if not DMARC_FORENSIC.search(record):
        failures.append(f"{domain}: DMARC record has no forensic report address (ruf)")
    return failures


class SpfRecords(BaseControl):
    control_id = "2.1.8"
    title = "Ensure that SPF records are published for all Exchange Domains"
    section = SECTION
    services = (GRAPH, DNS)

    async def evaluate(self, session, result: ControlResult):
        domains = await mail_domains(await session.graph())
        if not domains:
            return result.finish(FAIL, "No verified email domains found")
        resolver = session.dns()
        failures = []
        for domain in domains:
            failures.extend(spf_failures(domain, await resolver.txt(domain)))
        self.verdict(result, failures, f"SPF records are valid for {len(domains)} domain(s)")


class DkimEnabled(BaseControl):
    control_id = "2.1.9"
    title = "Ensure that DKIM is enabled for all Exchange Online Domains"
    section = SECTION
    services = (EXCHANGE,)

    async def evaluate(self, session, result: ControlResult):
        exchange = await session.exchange()
        configs = await exchange.invoke("Get-DkimSigningConfig")
        if not configs:
            return result.finish(FAIL, "No DKIM signing configuration returned")
        failures = [
            f"{c.get('Domain') or object_label(c)}: DKIM signing is disabled"
            for c in configs if c.get("Enabled") is not True
        ]
        self.verdict(result, failures, f"DKIM signing is enabled for {len(configs)} domain(s)")


class DmarcRecords(BaseControl):
    control_id = "2.1.10"
    title = "Ensure DMARC Records for all Exchange Online domains are published"
    section = SECTION
    services = (GRAPH, DNS)

    async def evaluate(self, session, result: ControlResult):
        domains = await mail_domains(await session.graph())
        if not domains:
            return result.finish(FAIL, "No verified email domains found")
        resolver = session.dns()
        failures = []
        for domain in domains:
            failures.extend(dmarc_failures(domain, await resolver.txt(f"_dmarc.{domain}")))
        self.verdict(result, failures, f"DMARC records are valid for {len(domains)} domain(s)")


class InboundSpamNoAllowedDomains(ExchangePolicyControl):
    control_id = "2.1.14"
    title = "Ensure inbound anti-spam policies do not contain allowed domains"
    section = SECTION
    cmdlet = "Get-HostedContentFilterPolicy"
    scope = "all"
    expectations = (
        Expect("AllowedSenderDomains", empty=True, default=[]),
    )


class OutboundSpamLimits(ExchangePolicyControl):
    control_id = "2.1.15"
    title = "Ensure outbound anti-spam message limits are in place"
    section = SECTION
    cmdlet = "Get-HostedOutboundSpamFilterPolicy"
    expectations = (
        Expect("RecipientLimitExternalPerHour", minimum=1, maximum=500),
        Expect("RecipientLimitInternalPerHour", minimum=1, maximum=1000),
        Expect("RecipientLimitPerDay", minimum=1, maximum=1000),
        Expect("ActionWhenThresholdReached", equals="BlockUser"),
        Expect("NotifyOutboundSpamRecipients", non_empty=True),
    )


CONTROLS = [
    SafeLinksOfficeApps,
    CommonAttachmentFilter,
    InternalMalwareNotifications,
    SafeAttachmentsPolicy,
    SafeAttachmentsCollaboration,
    SpamPolicyAdminNotifications,
    AntiPhishingPolicy,
    SpfRecords,
    DkimEnabled,
    DmarcRecords,
    InboundSpamNoAllowedDomains,
    OutboundSpamLimits,
]
