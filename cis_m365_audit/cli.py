"""
CIS Microsoft 365 Foundations Audit — command line interface

Usage:
    python -m cis_m365_audit                                  # default profile, all controls
    python -m cis_m365_audit --profile contoso-prod           # named profile
    python -m cis_m365_audit --config config.json             # JSON config file
    python -m cis_m365_audit --delegated --reuse-session      # device-code auth, cached session
    python -m cis_m365_audit -C 1.1.3 -C 6.5.4                # selected controls
    python -m cis_m365_audit --section 2 --output-file results.csv
    python -m cis_m365_audit --list

Profile management:
    python -m cis_m365_audit profile add <name> --tenant-id ... --client-id ...
    python -m cis_m365_audit profile list
    python -m cis_m365_audit profile remove <name>
    python -m cis_m365_audit profile set-default <name>

Exit codes: 0 all controls PASS or MANUAL, 1 any FAIL or ERROR,
2 configuration error.

This tool is STRICTLY READ-ONLY. It will NEVER modify the tenant.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

from . import __version__
from .auth.authenticator import Authenticator
from .config import (
    AuditConfigurationError,
    CertificateAuth,
    DelegatedAuth,
    EngineConfig,
    REQUIRED_PERMISSIONS,
)
from .controls import ALL_CONTROLS, build_controls
from .models import ControlResult
from .profiles import ProfileStore, TenantProfile, resolve_profile
from .reporting import ConsoleReporter, export_csv, export_json
from .runner import exit_code, run_controls
from .safety.guardian import ReadOnlyGuardian
from .session import AuditSession

logger = logging.getLogger("cis_m365_audit")

EXIT_OK = 0
EXIT_CONFIG = 2


# ---------------------------------------------------------------------------
# Profile management sub-commands
# ---------------------------------------------------------------------------

def _cmd_profile(args: argparse.Namespace) -> int:
    """Handle `profile add|list|remove|set-default` sub-commands."""
    action = args.profile_action

    if action == "list":
        return _profile_list()
    elif action == "add":
        return _profile_add(args)
    elif action == "remove":
        return _profile_remove(args)
    elif action == "set-default":
        return _profile_set_default(args)
    print("Usage: python -m cis_m365_audit profile {add|list|remove|set-default}")
    return EXIT_OK


def _profile_list() -> int:
    store = ProfileStore.load()
    profiles = store.list_profiles()
    if not profiles:
        print("No profiles configured. Add one with:\n")
        print("  python -m cis_m365_audit profile add <name> \\")
        print("    --tenant-id <GUID> --client-id <GUID> --cert-path ./base64.txt")
        return EXIT_OK

    print(f"\n  {'Name':<20s} {'Tenant ID':<38s} {'Tenant domain':<34s} {'Default'}")
    print(f"  {'─'*20} {'─'*38} {'─'*34} {'─'*7}")
    for p in profiles:
        default_marker = "  ✓" if p.name == store.default_profile else ""
        print(f"  {p.name:<20s} {p.tenant_id:<38s} {p.tenant_domain or '-':<34s}{default_marker}")
    print()
    return EXIT_OK


def _profile_add(args: argparse.Namespace) -> int:
    store = ProfileStore.load()
    name = args.profile_name
    if store.get(name):
        print(f"  Profile '{name}' already exists. It will be overwritten.")

    profile = TenantProfile(
        name=name,
        tenant_id=args.tenant_id,
        client_id=args.client_id,
        cert_path=args.cert_path or "./base64.txt",
        tenant_domain=args.tenant_domain or "",
        emergency_accounts=list(args.emergency_account or []),
        notes=args.notes or "",
    )
    set_as_default = args.set_default or not store.profiles
    store.add(profile, set_default=set_as_default)
    print(f"  Profile '{name}' saved.")
    if set_as_default:
        print("  Set as default profile.")
    return EXIT_OK


def _profile_remove(args: argparse.Namespace) -> int:
    store = ProfileStore.load()
    if store.remove(args.profile_name):
        print(f"  Profile '{args.profile_name}' removed.")
        return EXIT_OK
    print(f"  Profile '{args.profile_name}' not found.")
    return EXIT_CONFIG


def _profile_set_default(args: argparse.Namespace) -> int:
    store = ProfileStore.load()
    if store.set_default(args.profile_name):
        print(f"  Default profile set to '{args.profile_name}'.")
        return EXIT_OK
    print(f"  Profile '{args.profile_name}' not found.")
    return EXIT_CONFIG


# ---------------------------------------------------------------------------
# Arguments and configuration
# ---------------------------------------------------------------------------

def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="cis-m365-audit",
        description="CIS Microsoft 365 Foundations Benchmark audit (READ-ONLY)",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    # --- Sub-commands: profile management ---
    subparsers = parser.add_subparsers(dest="command", help="Management commands")

    prof_parser = subparsers.add_parser("profile", help="Manage tenant profiles")
    prof_sub = prof_parser.add_subparsers(dest="profile_action", help="Profile actions")

    add_p = prof_sub.add_parser("add", help="Add or update a tenant profile")
    add_p.add_argument("profile_name", help="Short name for the profile (e.g. 'contoso-prod')")
    add_p.add_argument("--tenant-id", required=True, help="Entra tenant ID (GUID)")
    add_p.add_argument("--client-id", required=True, help="App registration client ID (GUID)")
    add_p.add_argument("--cert-path", default="./base64.txt", help="Path to base64-encoded PFX")
    add_p.add_argument("--tenant-domain", help="Tenant's initial onmicrosoft.com domain")
    add_p.add_argument("--emergency-account", action="append", help="Emergency access UPN (repeatable)")
    add_p.add_argument("--notes", help="Optional admin notes")
    add_p.add_argument("--set-default", action="store_true", help="Set as default profile")

    prof_sub.add_parser("list", help="List all configured profiles")

    rm_p = prof_sub.add_parser("remove", help="Remove a profile")
    rm_p.add_argument("profile_name", help="Name of the profile to remove")

    sd_p = prof_sub.add_parser("set-default", help="Set the default profile")
    sd_p.add_argument("profile_name", help="Name of the profile to set as default")

    # --- Control selection ---
    parser.add_argument(
        "--control", "-C",
        action="append",
        default=[],
        metavar="ID",
        help="CIS control id to run, e.g. 1.1.3 (repeatable; default: all)",
    )
    parser.add_argument(
        "--section",
        action="append",
        default=[],
        metavar="N",
        help="Run every control of a benchmark section, e.g. 6 (repeatable)",
    )
    parser.add_argument("--list", action="store_true", help="List available controls and exit")

    # --- Tenant and authentication ---
    parser.add_argument("--profile", "-p", help="Tenant profile name (see 'profile list')")
    parser.add_argument("--config", "-c", type=Path, help="Path to JSON configuration file")
    parser.add_argument("--tenant-id", help="Tenant ID (overrides profile)")
    parser.add_argument("--client-id", help="Client ID (overrides profile)")
    parser.add_argument("--cert-path", type=Path, help="Path to base64-encoded PFX (overrides profile)")
    parser.add_argument(
        "--delegated",
        action="store_true",
        help="Use delegated (device-code) authentication instead of certificate",
    )
    parser.add_argument(
        "--reuse-session",
        action="store_true",
        help="Reuse and persist the token cache between runs",
    )
    parser.add_argument("--tenant-domain", help="Tenant's initial onmicrosoft.com domain")
    parser.add_argument(
        "--emergency-account",
        action="append",
        default=[],
        metavar="UPN",
        help="Designated emergency access account (repeatable)",
    )
    parser.add_argument("--graph-url", help="Microsoft Graph base URL override")
    parser.add_argument("--exchange-url", help="Exchange Online base URL override")

    # --- Output ---
    parser.add_argument("--output-file", "-o", type=Path, help="Write results to a CSV file")
    parser.add_argument("--json-file", type=Path, help="Write results to a JSON file")
    parser.add_argument("--no-color", action="store_true", help="Disable coloured status output")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> EngineConfig:
    """
    Build engine configuration. Precedence, lowest first: JSON config file,
    tenant profile, CLI flags.
    """
    if args.config:
        if not args.config.exists():
            raise AuditConfigurationError(f"Config file not found: {args.config}")
        config = EngineConfig.from_file(args.config)
    else:
        config = EngineConfig()

    if args.delegated:
        config.auth.mode = "delegated"

    profile = None
    if args.profile:
        profile = resolve_profile(args.profile)
        if not profile:
            raise AuditConfigurationError(
                f"Profile '{args.profile}' not found. Use 'profile list' to see available profiles."
            )
    elif not args.config and not args.tenant_id:
        profile = resolve_profile()

    current = config.auth.delegated if config.auth.mode == "delegated" else config.auth.certificate
    tenant_id = args.tenant_id or (profile.tenant_id if profile else "") or (current.tenant_id if current else "")
    client_id = args.client_id or (profile.client_id if profile else "") or (current.client_id if current else "")
    if not tenant_id or not client_id:
        raise AuditConfigurationError(
            "No tenant credentials found. Use --profile <name>, "
            "--tenant-id X --client-id Y, or --config config.json"
        )

    if config.auth.mode == "delegated":
        config.auth.delegated = DelegatedAuth(tenant_id=tenant_id, client_id=client_id)
    else:
        if args.cert_path:
            cert_path = str(args.cert_path)
        elif profile:
            cert_path = profile.resolve_cert_path()
        elif config.auth.certificate:
            cert_path = config.auth.certificate.certificate_path
        else:
            cert_path = "./base64.txt"
        password = config.auth.certificate.certificate_password if config.auth.certificate else ""
        config.auth.certificate = CertificateAuth(
            tenant_id=tenant_id,
            client_id=client_id,
            certificate_path=cert_path,
            certificate_password=password,
        )
        if not Path(cert_path).is_file():
            raise AuditConfigurationError(
                f"Certificate file not found: {cert_path}. Use --cert-path or update the profile."
            )

    audit = config.audit
    if profile:
        audit.tenant_domain = profile.tenant_domain or audit.tenant_domain
        audit.emergency_accounts = profile.emergency_accounts or audit.emergency_accounts
    if args.control:
        audit.controls = list(args.control)
    if args.section:
        audit.sections = list(args.section)
    if args.tenant_domain:
        audit.tenant_domain = args.tenant_domain
    if args.emergency_account:
        audit.emergency_accounts = list(args.emergency_account)
    if args.graph_url:
        audit.graph_url = args.graph_url.rstrip("/")
    if args.exchange_url:
        audit.exchange_url = args.exchange_url.rstrip("/")
    if args.reuse_session:
        audit.reuse_session = True

    if args.output_file:
        config.output.csv_path = str(args.output_file)
    if args.json_file:
        config.output.json_path = str(args.json_file)
    if args.no_color:
        config.output.color = False
    config.verbose = config.verbose or args.verbose
    return config


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )
    if not verbose:
        # msal logs token acquisition details at INFO
        logging.getLogger("msal").setLevel(logging.WARNING)
        logging.getLogger("httpx").setLevel(logging.WARNING)


def list_controls() -> int:
    for cls in ALL_CONTROLS:
        print(f"  {cls.control_id:<9s} L{cls.level}  {cls.title}")
    print(f"\n  {len(ALL_CONTROLS)} controls")
    print("\n  Required application permissions (read-only):")
    for permission, purpose in REQUIRED_PERMISSIONS.items():
        print(f"    {permission:<38s} {purpose}")
    return EXIT_OK


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------

async def run_audit(
    config: EngineConfig,
    reporter: Optional[ConsoleReporter] = None,
) -> tuple[list[ControlResult], ReadOnlyGuardian]:
    """Authenticate lazily, run the selected controls and tear everything down."""
    controls = build_controls(config.audit)
    guardian = ReadOnlyGuardian()
    authenticator = Authenticator(
        config.auth,
        cache_path=config.audit.token_cache_path,
        reuse=config.audit.reuse_session,
    )
    if authenticator.reused_session:
        print("  Reusing cached session.")

    async with AuditSession(config, authenticator, guardian=guardian) as session:
        results = await run_controls(
            session,
            controls,
            on_result=reporter.print_result if reporter else None,
        )
    return results, guardian


def write_exports(config: EngineConfig, results: list[ControlResult], guardian: ReadOnlyGuardian) -> None:
    if config.output.csv_path:
        path = export_csv(results, config.output.csv_path)
        print(f"  CSV:  {path}")
    if config.output.json_path:
        tenant = config.audit.tenant_domain or config.auth.tenant_id
        path = export_json(results, config.output.json_path, tenant, guardian.get_audit_record())
        print(f"  JSON: {path}")


def main(argv: Optional[list[str]] = None) -> int:
    """Parse arguments, run the audit and return the process exit code."""
    args = parse_args(argv)
    configure_logging(args.verbose)

    try:
        if args.command == "profile":
            return _cmd_profile(args)
        if args.list:
            return list_controls()

        config = build_config(args)
        if config.verbose:
            logging.getLogger().setLevel(logging.DEBUG)
        ReadOnlyGuardian.print_banner()

        reporter = ConsoleReporter(color=config.output.color)
        tenant = config.audit.tenant_domain or config.auth.tenant_id
        print(f"  Tenant: {tenant}    Auth: {config.auth.mode}\n")

        results, guardian = asyncio.run(run_audit(config, reporter))
        reporter.print_summary(results)
        write_exports(config, results, guardian)
    except AuditConfigurationError as e:
        print(f"\nConfiguration error: {e}", file=sys.stderr)
        return EXIT_CONFIG

    return exit_code(results)

