import pytest

from cis_m365_audit.controls.base import (
    Expect,
    compare_fields,
    get_field,
    is_default_policy,
    select_effective_rule,
)


class TestExpect:

    def test_boolean_equality_is_strict(self):
        expect = Expect("Enabled", equals=True)
        assert expect.mismatch({"Enabled": True}) is None
        assert expect.mismatch({"Enabled": 1}) == "Enabled: expected True, found 1"
        assert expect.mismatch({"Enabled": "True"}) is not None

    def test_string_equality_ignores_case(self):
        assert Expect("Action", equals="Block").mismatch({"Action": "block"}) is None

    def test_missing_field_is_non_compliant(self):
        assert Expect("Enabled", equals=False).mismatch({}) == "Enabled: expected False, not set"
        assert Expect("Enabled", equals=False).mismatch({"Enabled": None}) is not None

    def test_declared_default_applies_to_missing_field(self):
        expect = Expect("AllowedSenderDomains", empty=True, default=[])
        assert expect.mismatch({}) is None
        assert expect.mismatch({"AllowedSenderDomains": ["contoso.com"]}) is not None

    def test_dotted_path(self):
        obj = {"settings": {"isOfficeStoreEnabled": False}}
        assert get_field(obj, "settings.isOfficeStoreEnabled") is False
        assert Expect("settings.isOfficeStoreEnabled", equals=False).mismatch(obj) is None
        assert Expect("settings.missing", equals=False).mismatch(obj) == "settings.missing: expected False, not set"

    @pytest.mark.parametrize("value,ok", [(0, False), (1, True), (500, True), (501, False), ("250", True), (True, False)])
    def test_range(self, value, ok):
        assert Expect("Limit", minimum=1, maximum=500).check(value) is ok

    def test_one_of(self):
        expect = Expect("sharingCapability", one_of=("disabled", "externalUserSharingOnly"))
        assert expect.mismatch({"sharingCapability": "Disabled"}) is None
        assert "one of" in expect.mismatch({"sharingCapability": "externalUserAndGuestSharing"})

    def test_non_empty(self):
        expect = Expect("Recipients", non_empty=True)
        assert expect.mismatch({"Recipients": ["secops@contoso.com"]}) is None
        assert expect.mismatch({"Recipients": []}) == "Recipients: expected a non-empty value, found []"

    def test_compare_fields_in_declared_order(self):
        mismatches = compare_fields(
            {"A": True, "B": True},
            [Expect("C", equals=True), Expect("A", equals=False), Expect("B", equals=True)],
        )
        assert mismatches == ["C: expected True, not set", "A: expected False, found True"]


class TestRuleSelection:

    def test_lowest_priority_wins(self):
        rules = [
            {"Name": "b", "Priority": 2},
            {"Name": "a", "Priority": 0},
            {"Name": "c", "Priority": 1},
        ]
        assert select_effective_rule(rules)["Name"] == "a"

    def test_disabled_rules_ignored(self):
        rules = [
            {"Name": "a", "Priority": 0, "State": "Disabled"},
            {"Name": "b", "Priority": 5, "State": "Enabled"},
        ]
        assert select_effective_rule(rules)["Name"] == "b"

    def test_tie_keeps_first_listed(self):
        rules = [{"Name": "first", "Priority": 1}, {"Name": "second", "Priority": 1}]
        assert select_effective_rule(rules)["Name"] == "first"

    def test_missing_priority_sorts_last(self):
        rules = [{"Name": "none"}, {"Name": "ten", "Priority": "10"}]
        assert select_effective_rule(rules)["Name"] == "ten"

    def test_no_enabled_rules(self):
        assert select_effective_rule([]) is None
        assert select_effective_rule([{"Priority": 0, "State": "Disabled"}]) is None


def test_default_policy_detection():
    assert is_default_policy({"Identity": "Default"})
    assert is_default_policy({"Name": "Office365 AntiPhish Default", "IsDefault": True})
    assert not is_default_policy({"Identity": "Strict Preset"})
