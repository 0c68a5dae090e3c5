import json

import pytest

from cis_m365_audit.config import AuditConfigurationError
from cis_m365_audit.profiles import ProfileStore, TenantProfile, resolve_profile


def _profile(name, **kwargs):
    return TenantProfile(name=name, tenant_id=f"{name}-tenant", client_id=f"{name}-app", **kwargs)


def test_round_trip_and_default(tmp_path):
    path = tmp_path / "profiles.json"
    store = ProfileStore.load(path)
    store.add(_profile("contoso", tenant_domain="contoso.onmicrosoft.com", emergency_accounts=["bg1@contoso.com"]))
    store.add(_profile("fabrikam"))

    loaded = ProfileStore.load(path)
    assert loaded.default_profile == "contoso"
    assert loaded.get("CONTOSO").emergency_accounts == ["bg1@contoso.com"]
    assert resolve_profile(path=path).name == "contoso"
    assert resolve_profile("fabrikam", path=path).tenant_id == "fabrikam-tenant"


def test_remove_moves_default(tmp_path):
    path = tmp_path / "profiles.json"
    store = ProfileStore.load(path)
    store.add(_profile("a"))
    store.add(_profile("b"))
    assert store.remove("a")
    assert not store.remove("a")
    assert ProfileStore.load(path).default_profile == "b"


def test_corrupt_file_is_configuration_error(tmp_path):
    path = tmp_path / "profiles.json"
    path.write_text(json.dumps({"profiles": {"x": {"tenant_id": "t"}}}), encoding="utf-8")
    with pytest.raises(AuditConfigurationError):
        ProfileStore.load(path)


def test_missing_file_is_empty(tmp_path):
    assert ProfileStore.load(tmp_path / "none.json").list_profiles() == []
