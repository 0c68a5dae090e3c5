"""
Conditional Access MFA applicability.

Decides whether any enabled Conditional Access policy that requires MFA
applies to a given user. Per policy, exclusion (direct or via group) wins over
inclusion; across policies a single applying policy is enough.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from ..graph.client import GraphClient

logger = logging.getLogger("cis_m365_audit.directory.conditional_access")

ALL_USERS = "All"


def _users_condition(policy: dict) -> dict:
    # Use `or {}` to handle JSON null values (key present but None)
    conditions = policy.get("conditions") or {}
    return conditions.get("users") or {}


def requires_mfa(policy: dict) -> bool:
    """Grant controls demand MFA, directly or through an authentication strength."""
    grant = policy.get("grantControls") or {}
    return "mfa" in (grant.get("builtInControls") or []) or bool(grant.get("authenticationStrength"))


def mfa_policies(policies: Iterable[dict]) -> list[dict]:
    """Enabled (enforced) policies that require MFA."""
    return [p for p in policies if p.get("state") == "enabled" and requires_mfa(p)]


def uses_groups(policy: dict) -> bool:
    users = _users_condition(policy)
    return bool(users.get("includeGroups") or users.get("excludeGroups"))


def policy_applies(user_id: str, group_ids: frozenset[str], policy: dict) -> bool:
    """
    True when ``policy`` targets ``user_id``.
    Excluded users / excluded groups are checked first and are absolute for
    this policy; otherwise "All", a direct listing or an included group match.
    """
    users = _users_condition(policy)
    if user_id in (users.get("excludeUsers") or []):
        return False
    if group_ids & set(users.get("excludeGroups") or []):
        return False

    include_users = users.get("includeUsers") or []
    if ALL_USERS in include_users or user_id in include_users:
        return True
    return bool(group_ids & set(users.get("includeGroups") or []))


class MfaPolicyEvaluator:
    """
    Evaluates MFA coverage for users against a fixed set of CA policies.
    Each user's group membership is fetched at most once per evaluator and
    only when some policy scopes by group.
    """

    def __init__(self, graph: GraphClient, policies: Iterable[dict]):
        self.graph = graph
        self.policies = mfa_policies(policies)
        self._memberships: dict[str, frozenset[str]] = {}

    @classmethod
    async def load(cls, graph: GraphClient) -> "MfaPolicyEvaluator":
        policies = await graph.get_all_pages("identity/conditionalAccess/policies")
        evaluator = cls(graph, policies)
        logger.info(
            f"{len(evaluator.policies)} of {len(policies)} CA policies are enabled and require MFA"
        )
        return evaluator

    async def group_ids(self, user_id: str) -> frozenset[str]:
        if user_id not in self._memberships:
            members = await self.graph.get_all_pages(
                f"users/{user_id}/transitiveMemberOf",
                params={"$select": "id"},
            )
            self._memberships[user_id] = frozenset(
                m["id"] for m in members
                if (m.get("@odata.type") or "").endswith("group") and m.get("id")
            )
        return self._memberships[user_id]

    async def applying_policies(self, user_id: str) -> list[dict]:
        """Every MFA policy that applies to the user."""
        group_ids: Optional[frozenset[str]] = None
        applying = []
        for policy in self.policies:
            if group_ids is None and uses_groups(policy):
                group_ids = await self.group_ids(user_id)
            if policy_applies(user_id, group_ids or frozenset(), policy):
                applying.append(policy)
        return applying

    async def policy_names(self, user_id: str) -> list[str]:
        return sorted(
            p.get("displayName") or p.get("id", "")
            for p in await self.applying_policies(user_id)
        )
