"""
Privileged role enumeration — builds one AdminAccount per user holding any
privileged directory role, with the roles unioned across memberships.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from ..graph.client import GraphClient
from .licensing import has_reduced_footprint, provisioned_service_plans
from .principals import DirectoryUser, Principal, principal_from_graph

logger = logging.getLogger("cis_m365_audit.directory.admins")

GLOBAL_ADMINISTRATOR = "Global Administrator"

# Privileged roles audited by the administrative account controls
PRIVILEGED_ROLES = (
    "Application Administrator",
    "Authentication Administrator",
    "Billing Administrator",
    "Cloud Application Administrator",
    "Conditional Access Administrator",
    "Exchange Administrator",
    GLOBAL_ADMINISTRATOR,
    "Helpdesk Administrator",
    "Password Administrator",
    "Privileged Authentication Administrator",
    "Privileged Role Administrator",
    "Security Administrator",
    "SharePoint Administrator",
    "User Administrator",
)

MEMBER_SELECT = "id,displayName,userPrincipalName,accountEnabled,onPremisesSyncEnabled"


@dataclass
class AdminAccount:
    """A directory user aggregated across every privileged role it holds."""
    id: str
    user_principal_name: str
    display_name: str = ""
    account_enabled: Optional[bool] = None
    on_premises_sync_enabled: Optional[bool] = None
    roles: list[str] = field(default_factory=list)
    license_skus: list[str] = field(default_factory=list)
    service_plans: list[str] = field(default_factory=list)
    auth_methods: list[str] = field(default_factory=list)
    mfa_policies: list[str] = field(default_factory=list)

    @property
    def enabled(self) -> bool:
        # Graph omits accountEnabled only for objects it could not read
        return self.account_enabled is not False

    @property
    def cloud_only(self) -> bool:
        return not self.on_premises_sync_enabled

    @property
    def reduced_footprint(self) -> bool:
        return has_reduced_footprint(self.service_plans)

    @property
    def mfa_required(self) -> bool:
        return bool(self.mfa_policies)

    def profile_line(self) -> str:
        """One-line MFA profile used in control details."""
        return (
            f"{self.user_principal_name}: roles=[{', '.join(self.roles)}] "
            f"enabled={self.enabled} cloudOnly={self.cloud_only} "
            f"licenses=[{', '.join(self.license_skus) or 'none'}] "
            f"methods=[{', '.join(self.auth_methods) or 'none'}] "
            f"caMfa=[{', '.join(self.mfa_policies) or 'none'}]"
        )


def aggregate_admin_accounts(role_members: dict[str, Iterable[Principal]]) -> list[AdminAccount]:
    """
    Merge role → members into one account per user principal name.
    Non-user principals are dropped. Roles come out sorted and unique;
    accounts come out sorted by principal name.
    """
    accounts: dict[str, AdminAccount] = {}
    for role_name, members in role_members.items():
        for member in members:
            if not isinstance(member, DirectoryUser):
                logger.debug(f"Skipping non-user member {member.id} of {role_name}")
                continue
            key = member.user_principal_name.lower()
            account = accounts.get(key)
            if account is None:
                account = AdminAccount(
                    id=member.id,
                    user_principal_name=member.user_principal_name,
                    display_name=member.display_name,
                    account_enabled=member.account_enabled,
                    on_premises_sync_enabled=member.on_premises_sync_enabled,
                )
                accounts[key] = account
            account.roles = sorted(set(account.roles) | {role_name})

    return sorted(accounts.values(), key=lambda a: a.user_principal_name.lower())


async def enumerate_role_members(
    graph: GraphClient,
    role_names: Iterable[str] = PRIVILEGED_ROLES,
) -> dict[str, list[Principal]]:
    """
    Resolve each role display name to its activated directory role and list
    its active members. Roles that are not activated or have no active
    members (e.g. eligible-only assignments) are logged and left out.
    """
    roles = await graph.get_all_pages("directoryRoles", skip_top=True)
    by_name = {r.get("displayName"): r for r in roles}

    role_members: dict[str, list[Principal]] = {}
    for name in role_names:
        role = by_name.get(name)
        if not role:
            logger.info(f"Role '{name}' is not activated in this tenant; skipping")
            continue

        members = await graph.get_all_pages(
            f"directoryRoles/{role['id']}/members",
            params={"$select": MEMBER_SELECT},
            skip_top=True,  # directoryRoles/*/members does not support $top
        )
        if not members:
            logger.info(f"Role '{name}' has no active members; skipping")
            continue
        role_members[name] = [principal_from_graph(m) for m in members]

    return role_members


async def enumerate_admin_accounts(
    graph: GraphClient,
    role_names: Iterable[str] = PRIVILEGED_ROLES,
) -> list[AdminAccount]:
    """Every user holding at least one of ``role_names``."""
    return aggregate_admin_accounts(await enumerate_role_members(graph, role_names))


async def load_licenses(graph: GraphClient, account: AdminAccount) -> None:
    """Fill the account's license SKUs and provisioned service plans."""
    details = await graph.get_all_pages(f"users/{account.id}/licenseDetails", skip_top=True)
    account.license_skus = sorted(
        d.get("skuPartNumber") for d in details if d.get("skuPartNumber")
    )
    account.service_plans = provisioned_service_plans(details)


async def load_auth_methods(graph: GraphClient, account: AdminAccount) -> None:
    """Fill the account's registered authentication method types."""
    methods = await graph.get_all_pages(
        f"users/{account.id}/authentication/methods", skip_top=True
    )
    types = set()
    for m in methods:
        kind = (m.get("@odata.type") or "").split(".")[-1]
        types.add(kind.replace("AuthenticationMethod", "") or "unknown")
    account.auth_methods = sorted(types)
