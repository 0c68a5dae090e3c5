"""
Configuration module for the CIS M365 Audit Engine.
Defines API endpoints, tunable parameters, and operational settings.
"""

from __future__ import annotations

import importlib.util
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


class AuditConfigurationError(EnvironmentError):
    """Raised before any network call when the audit cannot be configured."""
    pass


# ─── Tenant Authentication ───────────────────────────────────────────────────

@dataclass
class CertificateAuth:
    """Certificate-based app-only authentication configuration."""
    tenant_id: str
    client_id: str
    certificate_path: str          # Path to base64-encoded PFX
    certificate_password: str = "" # Will be prompted if empty

@dataclass
class DelegatedAuth:
    """Delegated (device code) authentication configuration."""
    tenant_id: str
    client_id: str

@dataclass
class AuthConfig:
    """Authentication configuration — supports both modes."""
    mode: str = "certificate"  # "certificate" or "delegated"
    certificate: Optional[CertificateAuth] = None
    delegated: Optional[DelegatedAuth] = None

    @property
    def tenant_id(self) -> str:
        if self.mode == "delegated" and self.delegated:
            return self.delegated.tenant_id
        if self.certificate:
            return self.certificate.tenant_id
        return ""


# ─── Remote API Settings ────────────────────────────────────────────────────

GRAPH_BASE_URL = "https://graph.microsoft.com"
GRAPH_API_VERSION = "v1.0"
GRAPH_BETA_VERSION = "beta"
GRAPH_RESOURCE = "https://graph.microsoft.com"

EXCHANGE_BASE_URL = "https://outlook.office365.com"
EXCHANGE_RESOURCE = "https://outlook.office365.com"

LOGIN_AUTHORITY = "https://login.microsoftonline.com"

# Delegated scopes requested per resource
DELEGATED_SCOPES = {
    GRAPH_RESOURCE: [
        "Directory.Read.All",
        "Policy.Read.All",
        "UserAuthenticationMethod.Read.All",
        "SharePointTenantSettings.Read.All",
        "OrgSettings-AppsAndServices.Read.All",
        "OrgSettings-Forms.Read.All",
        "InformationProtectionPolicy.Read",
    ],
    EXCHANGE_RESOURCE: [f"{EXCHANGE_RESOURCE}/Exchange.Manage"],
}

# Pagination
DEFAULT_PAGE_SIZE = 999           # Maximum items per page ($top)
MAX_PAGES_PER_ENDPOINT = 1000     # Safety cap on pagination loops

# HTTP client
HTTP_TIMEOUT_SECONDS = 60.0
HTTP_CONNECT_TIMEOUT_SECONDS = 30.0

# Session reuse
DEFAULT_TOKEN_CACHE = Path.home() / ".cis_m365_audit" / "token_cache.json"


# ─── Audit Settings ─────────────────────────────────────────────────────────

@dataclass
class AuditConfig:
    """Controls which checks run and how they reach the tenant."""
    controls: list[str] = field(default_factory=list)   # Empty = all
    sections: list[str] = field(default_factory=list)   # e.g. ["1", "6"]
    emergency_accounts: list[str] = field(default_factory=list)
    tenant_domain: str = ""                # contoso.onmicrosoft.com
    graph_url: str = GRAPH_BASE_URL        # Override for sovereign clouds
    exchange_url: str = EXCHANGE_BASE_URL
    reuse_session: bool = False            # Use the persisted token cache
    token_cache_path: str = str(DEFAULT_TOKEN_CACHE)
    dns_nameservers: list[str] = field(default_factory=list)


# ─── Output Configuration ───────────────────────────────────────────────────

@dataclass
class OutputConfig:
    """Flat-file export settings. Empty path = no export."""
    csv_path: str = ""
    json_path: str = ""
    color: bool = True


# ─── Master Configuration ───────────────────────────────────────────────────

@dataclass
class EngineConfig:
    """Top-level configuration for the entire engine."""
    auth: AuthConfig = field(default_factory=AuthConfig)
    audit: AuditConfig = field(default_factory=AuditConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    verbose: bool = False

    @classmethod
    def from_file(cls, path: str | Path) -> "EngineConfig":
        """Load configuration from a JSON file."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise AuditConfigurationError(f"Cannot read config file {path}: {e}")

        config = cls()
        if "auth" in data:
            auth_data = data["auth"]
            config.auth.mode = auth_data.get("mode", "certificate")
            if "certificate" in auth_data:
                c = auth_data["certificate"]
                config.auth.certificate = CertificateAuth(
                    tenant_id=c["tenant_id"],
                    client_id=c["client_id"],
                    certificate_path=c.get("certificate_path", "./base64.txt"),
                    certificate_password=c.get("certificate_password", ""),
                )
            if "delegated" in auth_data:
                d = auth_data["delegated"]
                config.auth.delegated = DelegatedAuth(
                    tenant_id=d["tenant_id"],
                    client_id=d["client_id"],
                )
        if "audit" in data:
            for k, v in data["audit"].items():
                if hasattr(config.audit, k):
                    setattr(config.audit, k, v)
        if "output" in data:
            for k, v in data["output"].items():
                if hasattr(config.output, k):
                    setattr(config.output, k, v)
        config.verbose = data.get("verbose", False)
        return config


# ─── Required API Permissions (Least Privilege, Read-Only) ──────────────

REQUIRED_PERMISSIONS = {
    # Microsoft Graph
    "Directory.Read.All": "Roles, role members, users, groups, domains",
    "Policy.Read.All": "Conditional Access and authorization policies",
    "UserAuthenticationMethod.Read.All": "Admin authentication method registrations",
    "SharePointTenantSettings.Read.All": "SharePoint sharing and idle session settings",
    "OrgSettings-AppsAndServices.Read.All": "User owned apps and services settings",
    "OrgSettings-Forms.Read.All": "Microsoft Forms phishing protection setting",
    "InformationProtectionPolicy.Read.All": "Published sensitivity labels",

    # Exchange Online
    "Exchange.ManageAsApp": "Run Get-* cmdlets through the Exchange admin API",
}


# ─── Client Libraries ────────────────────────────────────────────────────

# Import name -> distribution name
REQUIRED_PACKAGES = {
    "httpx": "httpx",
    "msal": "msal",
    "cryptography": "cryptography",
    "dns": "dnspython",
    "colorama": "colorama",
}


def check_dependencies() -> None:
    """Raise AuditConfigurationError naming every client library that cannot be imported."""
    missing = []
    for module, distribution in REQUIRED_PACKAGES.items():
        try:
            found = importlib.util.find_spec(module) is not None
        except (ImportError, ValueError):
            found = False
        if not found:
            missing.append(distribution)
    if missing:
        raise AuditConfigurationError(
            f"Missing client librar{'y' if len(missing) == 1 else 'ies'}: {', '.join(missing)}. "
            f"Install with: pip install {' '.join(missing)}"
        )
