import pytest

from cis_m365_audit.directory.licensing import (
    HIGH_RISK_SERVICE_PLANS,
    has_reduced_footprint,
    high_risk_plans,
    provisioned_service_plans,
)

from conftest import license_detail


def test_no_provisioned_plans_is_reduced_footprint():
    assert has_reduced_footprint([]) is True
    assert has_reduced_footprint(provisioned_service_plans([])) is True


def test_plans_not_successfully_provisioned_do_not_count():
    details = [license_detail("EXCHANGE_S_ENTERPRISE", "TEAMS1", status="PendingActivation")]
    assert provisioned_service_plans(details) == []
    assert has_reduced_footprint(provisioned_service_plans(details)) is True


@pytest.mark.parametrize("high_risk", sorted(HIGH_RISK_SERVICE_PLANS))
def test_single_high_risk_plan_is_not_reduced(high_risk):
    low_risk = ["AAD_PREMIUM", "AAD_PREMIUM_P2", "INTUNE_A", "RMS_S_ENTERPRISE", "MFA_PREMIUM"]
    assert has_reduced_footprint(low_risk + [high_risk]) is False


def test_low_risk_plans_only():
    assert has_reduced_footprint(["AAD_PREMIUM", "INTUNE_A"]) is True


def test_high_risk_plans_listed_sorted():
    assert high_risk_plans(["TEAMS1", "AAD_PREMIUM", "EXCHANGE_S_STANDARD"]) == [
        "EXCHANGE_S_STANDARD", "TEAMS1",
    ]


def test_provisioned_plans_unique_across_licenses():
    details = [license_detail("AAD_PREMIUM", "INTUNE_A"), license_detail("AAD_PREMIUM")]
    assert provisioned_service_plans(details) == ["AAD_PREMIUM", "INTUNE_A"]
