import dns.resolver
import pytest

from cis_m365_audit.controls.defender import (
    AntiPhishingPolicy,
    DkimEnabled,
    DmarcRecords,
    InboundSpamNoAllowedDomains,
    OutboundSpamLimits,
    SafeLinksOfficeApps,
    SpamPolicyAdminNotifications,
    SpfRecords,
    dmarc_failures,
    spf_failures,
)
from cis_m365_audit.models import ERROR, FAIL, PASS

COMPLIANT_SAFE_LINKS = {
    "Identity": "Contoso Safe Links",
    "EnableSafeLinksForEmail": True,
    "EnableSafeLinksForTeams": True,
    "EnableSafeLinksForOffice": True,
    "TrackClicks": True,
    "AllowClickThrough": False,
    "ScanUrls": True,
    "EnableForInternalSenders": True,
    "DeliverMessageAfterScan": True,
    "DisableUrlRewrite": False,
}

SAFE_LINKS_RULE = {"Name": "Contoso Safe Links", "SafeLinksPolicy": "Contoso Safe Links", "Priority": 0, "State": "Enabled"}


def _outbound(**overrides):
    policy = {
        "Identity": "Default",
        "IsDefault": True,
        "RecipientLimitExternalPerHour": 500,
        "RecipientLimitInternalPerHour": 1000,
        "RecipientLimitPerDay": 1000,
        "ActionWhenThresholdReached": "BlockUser",
        "NotifyOutboundSpamRecipients": ["secops@contoso.com"],
    }
    policy.update(overrides)
    return policy


class TestSafeLinks:

    async def test_compliant_policy_passes(self, make_session):
        cmdlets = {"Get-SafeLinksRule": [SAFE_LINKS_RULE], "Get-SafeLinksPolicy": [COMPLIANT_SAFE_LINKS]}
        result = await SafeLinksOfficeApps().run(make_session(cmdlets=cmdlets))
        assert result.status == PASS

    async def test_single_mismatch_enumerated(self, make_session):
        policy = dict(COMPLIANT_SAFE_LINKS, AllowClickThrough=True)
        cmdlets = {"Get-SafeLinksRule": [SAFE_LINKS_RULE], "Get-SafeLinksPolicy": [policy]}
        result = await SafeLinksOfficeApps().run(make_session(cmdlets=cmdlets))

        assert result.status == FAIL
        assert result.details == [
            "Contoso Safe Links: AllowClickThrough: expected False, found True"
        ]

    async def test_policy_of_lowest_priority_rule_is_evaluated(self, make_session):
        weak = dict(COMPLIANT_SAFE_LINKS, Identity="Weak", ScanUrls=False)
        rules = [
            {"Name": "r-weak", "SafeLinksPolicy": "Weak", "Priority": 1},
            {"Name": "r-disabled", "SafeLinksPolicy": "Weak", "Priority": 0, "State": "Disabled"},
            dict(SAFE_LINKS_RULE, Priority=0),
        ]
        cmdlets = {"Get-SafeLinksRule": rules, "Get-SafeLinksPolicy": [weak, COMPLIANT_SAFE_LINKS]}
        result = await SafeLinksOfficeApps().run(make_session(cmdlets=cmdlets))
        assert result.status == PASS

    async def test_no_rule_fails(self, make_session):
        cmdlets = {"Get-SafeLinksRule": [], "Get-SafeLinksPolicy": [COMPLIANT_SAFE_LINKS]}
        result = await SafeLinksOfficeApps().run(make_session(cmdlets=cmdlets))
        assert result.status == FAIL

    async def test_cmdlet_error_is_error(self, make_session):
        cmdlets = {"Get-SafeLinksRule": RuntimeError("403 Forbidden")}
        result = await SafeLinksOfficeApps().run(make_session(cmdlets=cmdlets))
        assert result.status == ERROR


class TestOutboundSpam:

    async def test_default_policy_within_limits_passes(self, make_session):
        cmdlets = {"Get-HostedOutboundSpamFilterPolicy": [_outbound()]}
        result = await OutboundSpamLimits().run(make_session(cmdlets=cmdlets))
        assert result.status == PASS

    @pytest.mark.parametrize("field,value,status", [
        ("RecipientLimitExternalPerHour", 1, PASS),
        ("RecipientLimitExternalPerHour", 0, FAIL),
        ("RecipientLimitExternalPerHour", 501, FAIL),
        ("RecipientLimitInternalPerHour", 1, PASS),
        ("RecipientLimitInternalPerHour", 0, FAIL),
        ("RecipientLimitInternalPerHour", 1001, FAIL),
        ("RecipientLimitPerDay", 1, PASS),
        ("RecipientLimitPerDay", 0, FAIL),
        ("RecipientLimitPerDay", 1001, FAIL),
    ])
    async def test_limit_boundaries(self, make_session, field, value, status):
        cmdlets = {"Get-HostedOutboundSpamFilterPolicy": [_outbound(**{field: value})]}
        result = await OutboundSpamLimits().run(make_session(cmdlets=cmdlets))
        assert result.status == status

    async def test_empty_notify_list_fails(self, make_session):
        cmdlets = {"Get-HostedOutboundSpamFilterPolicy": [_outbound(NotifyOutboundSpamRecipients=[])]}
        result = await OutboundSpamLimits().run(make_session(cmdlets=cmdlets))
        assert result.status == FAIL

    async def test_no_default_policy_fails(self, make_session):
        custom = _outbound(Identity="Custom", IsDefault=False)
        cmdlets = {"Get-HostedOutboundSpamFilterPolicy": [custom]}
        result = await OutboundSpamLimits().run(make_session(cmdlets=cmdlets))
        assert result.status == FAIL
        assert result.details == ["No applicable object returned by Get-HostedOutboundSpamFilterPolicy"]

    async def test_admin_notification_missing_field_fails(self, make_session):
        cmdlets = {"Get-HostedOutboundSpamFilterPolicy": [{
            "Identity": "Default",
            "BccSuspiciousOutboundMail": True,
            "BccSuspiciousOutboundAdditionalRecipients": ["secops@contoso.com"],
            "NotifyOutboundSpam": True,
        }]}
        result = await SpamPolicyAdminNotifications().run(make_session(cmdlets=cmdlets))
        assert result.status == FAIL
        assert result.details == ["Default: NotifyOutboundSpamRecipients: expected a non-empty value, not set"]


class TestInboundSpam:

    async def test_absent_allowed_domains_is_empty(self, make_session):
        cmdlets = {"Get-HostedContentFilterPolicy": [{"Identity": "Default"}, {"Identity": "Strict"}]}
        result = await InboundSpamNoAllowedDomains().run(make_session(cmdlets=cmdlets))
        assert result.status == PASS

    async def test_every_policy_checked(self, make_session):
        cmdlets = {"Get-HostedContentFilterPolicy": [
            {"Identity": "Default", "AllowedSenderDomains": []},
            {"Identity": "Partners", "AllowedSenderDomains": ["fabrikam.com"]},
        ]}
        result = await InboundSpamNoAllowedDomains().run(make_session(cmdlets=cmdlets))
        assert result.status == FAIL
        assert result.details[0].startswith("Partners: AllowedSenderDomains")


class TestAntiPhish:

    async def test_falls_back_to_default_policy(self, make_session):
        cmdlets = {
            "Get-AntiPhishRule": [],
            "Get-AntiPhishPolicy": [{"Identity": "Office365 AntiPhish Default", "IsDefault": True, "Enabled": True}],
        }
        result = await AntiPhishingPolicy().run(make_session(cmdlets=cmdlets))
        assert result.status == FAIL
        assert all(d.startswith("Office365 AntiPhish Default: ") for d in result.details)
        assert "Office365 AntiPhish Default: PhishThresholdLevel: expected between 3 and 4, not set" in result.details


class TestDkim:

    async def test_disabled_domain_fails(self, make_session):
        cmdlets = {"Get-DkimSigningConfig": [
            {"Domain": "contoso.com", "Enabled": True},
            {"Domain": "fabrikam.com", "Enabled": False},
        ]}
        result = await DkimEnabled().run(make_session(cmdlets=cmdlets))
        assert result.status == FAIL
        assert result.details == ["fabrikam.com: DKIM signing is disabled"]


DOMAINS = [
    {"id": "contoso.com", "isVerified": True, "supportedServices": ["Email", "OfficeCommunicationsOnline"]},
    {"id": "contoso.onmicrosoft.com", "isVerified": True, "supportedServices": ["Email"]},
    {"id": "intranet.contoso.com", "isVerified": True, "supportedServices": []},
]


class TestSpf:

    def test_record_rules(self):
        assert spf_failures("c.com", ["v=spf1 include:spf.protection.outlook.com -all"]) == []
        assert spf_failures("c.com", ["MS=ms123"]) == ["c.com: no SPF record published"]
        assert "exactly one" in spf_failures("c.com", ["v=spf1 -all", "v=spf1 ~all"])[0]
        assert "does not include" in spf_failures("c.com", ["v=spf1 include:_spf.google.com ~all"])[0]

    async def test_only_custom_email_domains_queried(self, make_session):
        session = make_session(
            {"domains": DOMAINS},
            dns_records={"contoso.com": ["v=spf1 include:spf.protection.outlook.com -all"]},
        )
        result = await SpfRecords().run(session)
        assert result.status == PASS
        assert session.dns().queries == ["contoso.com"]


class TestDmarc:

    def test_record_rules(self):
        good = "v=DMARC1; p=reject; rua=mailto:d@contoso.com; ruf=mailto:f@contoso.com"
        assert dmarc_failures("c.com", [good]) == []
        assert dmarc_failures("c.com", [good + "; pct=100"]) == []
        assert len(dmarc_failures("c.com", [good.replace("p=reject", "p=none")])) == 1
        assert len(dmarc_failures("c.com", [good + "; pct=50"])) == 1
        assert len(dmarc_failures("c.com", ["v=DMARC1; p=quarantine"])) == 2
        assert dmarc_failures("c.com", []) == ["c.com: no DMARC record published at _dmarc.c.com"]
        assert dmarc_failures("c.com", [good, "v=DMARC1; p=none"]) == [
            "c.com: 2 DMARC records published, exactly one allowed"
        ]

    async def test_missing_record_fails(self, make_session):
        session = make_session({"domains": DOMAINS})
        result = await DmarcRecords().run(session)
        assert result.status == FAIL
        assert session.dns().queries == ["_dmarc.contoso.com"]

    async def test_dns_failure_is_error(self, make_session):
        session = make_session(
            {"domains": DOMAINS},
            dns_records={"_dmarc.contoso.com": dns.resolver.NoNameservers("SERVFAIL")},
        )
        result = await DmarcRecords().run(session)
        assert result.status == ERROR
        assert "SERVFAIL" in result.details[0]
