from .principals import (
    DirectoryUser,
    DirectoryGroup,
    DirectoryServicePrincipal,
    OtherPrincipal,
    Principal,
    principal_from_graph,
)
from .admins import (
    AdminAccount,
    GLOBAL_ADMINISTRATOR,
    PRIVILEGED_ROLES,
    aggregate_admin_accounts,
    enumerate_admin_accounts,
    enumerate_role_members,
    load_auth_methods,
    load_licenses,
)
from .conditional_access import MfaPolicyEvaluator, mfa_policies, policy_applies, requires_mfa
from .licensing import HIGH_RISK_SERVICE_PLANS, has_reduced_footprint, provisioned_service_plans

__all__ = [
    "DirectoryUser",
    "DirectoryGroup",
    "DirectoryServicePrincipal",
    "OtherPrincipal",
    "Principal",
    "principal_from_graph",
    "AdminAccount",
    "GLOBAL_ADMINISTRATOR",
    "PRIVILEGED_ROLES",
    "aggregate_admin_accounts",
    "enumerate_admin_accounts",
    "enumerate_role_members",
    "load_auth_methods",
    "load_licenses",
    "MfaPolicyEvaluator",
    "mfa_policies",
    "policy_applies",
    "requires_mfa",
    "HIGH_RISK_SERVICE_PLANS",
    "has_reduced_footprint",
    "provisioned_service_plans",
]
