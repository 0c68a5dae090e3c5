"""
Authentication module — Supports certificate-based and delegated device-code auth.
Uses MSAL for token acquisition against Microsoft Identity Platform, one token
per resource (Microsoft Graph, Exchange Online).
"""

from __future__ import annotations

import base64
import getpass
import logging
import os
from pathlib import Path
from typing import Optional

from cryptography.hazmat.primitives.serialization import pkcs12, Encoding, PrivateFormat, NoEncryption
from cryptography.hazmat.primitives.hashes import SHA1
import msal

from ..config import (
    AuthConfig,
    DELEGATED_SCOPES,
    GRAPH_RESOURCE,
    LOGIN_AUTHORITY,
)

logger = logging.getLogger("cis_m365_audit.auth")


class AuthenticationError(Exception):
    """Raised when authentication fails."""
    pass


class Authenticator:
    """
    Handles MSAL-based authentication for Graph and Exchange Online.
    Supports:
      - Certificate-based app-only authentication
      - Delegated authentication (device code flow)

    When ``cache_path`` is given and ``reuse`` is set, the MSAL token cache is
    loaded from and saved back to that file so an existing session is reused.
    Otherwise the cache lives in memory and disappears with ``close()``.
    """

    def __init__(
        self,
        config: AuthConfig,
        cache_path: Optional[str | Path] = None,
        reuse: bool = False,
    ):
        self.config = config
        self.cache_path = Path(cache_path) if cache_path else None
        self.reuse = reuse
        self._cache = msal.SerializableTokenCache()
        self._app: Optional[msal.ClientApplication] = None
        self._tokens: dict[str, str] = {}

        if self.reuse and self.cache_path and self.cache_path.exists():
            self._cache.deserialize(self.cache_path.read_text(encoding="utf-8"))
            logger.info(f"Loaded token cache from {self.cache_path}")

    @property
    def reused_session(self) -> bool:
        """True when a persisted session was found and loaded."""
        return self.reuse and bool(self._cache.find(msal.TokenCache.CredentialType.ACCESS_TOKEN))

    async def acquire_token(self, resource: str = GRAPH_RESOURCE) -> str:
        """Acquire an access token for ``resource`` based on the auth mode."""
        if resource in self._tokens:
            return self._tokens[resource]

        if self.config.mode == "certificate":
            token = self._acquire_certificate_token(resource)
        elif self.config.mode == "delegated":
            token = self._acquire_delegated_token(resource)
        else:
            raise AuthenticationError(f"Unknown auth mode: {self.config.mode}")

        self._tokens[resource] = token
        return token

    def _load_certificate(self) -> dict:
        """Load the base64 PFX and return an MSAL client credential."""
        cert_config = self.config.certificate
        cert_path = cert_config.certificate_path
        password = cert_config.certificate_password
        if not password:
            password = os.environ.get("CIS_AUDIT_CERT_PASSWORD", "")
        if not password:
            password = getpass.getpass("Enter the certificate password: ")

        try:
            with open(cert_path, "r") as f:
                cert_base64 = f.read().strip()

            cert_bytes = base64.b64decode(cert_base64)
            password_bytes = password.encode("utf-8") if password else None

            private_key, certificate, _ = pkcs12.load_key_and_certificates(
                cert_bytes, password_bytes
            )

            private_key_pem = private_key.private_bytes(
                Encoding.PEM, PrivateFormat.PKCS8, NoEncryption()
            ).decode("utf-8")

            thumbprint = certificate.fingerprint(SHA1()).hex()
            logger.info(f"Certificate loaded. Thumbprint: {thumbprint}")

        except FileNotFoundError:
            raise AuthenticationError(f"Certificate file not found: {cert_path}")
        except Exception as e:
            raise AuthenticationError(f"Failed to load certificate: {e}")

        return {"thumbprint": thumbprint, "private_key": private_key_pem}

    def _acquire_certificate_token(self, resource: str) -> str:
        """Acquire token using certificate-based client credentials."""
        cert_config = self.config.certificate
        if not cert_config:
            raise AuthenticationError("Certificate auth config not provided.")

        if self._app is None:
            logger.info("Authenticating with certificate-based app credentials...")
            self._app = msal.ConfidentialClientApplication(
                client_id=cert_config.client_id,
                authority=f"{LOGIN_AUTHORITY}/{cert_config.tenant_id}",
                client_credential=self._load_certificate(),
                token_cache=self._cache,
            )

        result = self._app.acquire_token_for_client(scopes=[f"{resource}/.default"])
        return self._token_from_result(result, f"Certificate auth failed for {resource}")

    def _acquire_delegated_token(self, resource: str) -> str:
        """Acquire token silently from the cache, else via device code flow."""
        deleg_config = self.config.delegated
        if not deleg_config:
            raise AuthenticationError("Delegated auth config not provided.")

        if self._app is None:
            self._app = msal.PublicClientApplication(
                client_id=deleg_config.client_id,
                authority=f"{LOGIN_AUTHORITY}/{deleg_config.tenant_id}",
                token_cache=self._cache,
            )

        scopes = DELEGATED_SCOPES.get(resource, [f"{resource}/.default"])
        accounts = self._app.get_accounts()
        if accounts:
            result = self._app.acquire_token_silent(scopes, account=accounts[0])
            if result and "access_token" in result:
                logger.info(f"Reused cached session for {resource}")
                return result["access_token"]

        logger.info("Initiating device code authentication flow...")
        flow = self._app.initiate_device_flow(scopes=scopes)
        if "user_code" not in flow:
            raise AuthenticationError(
                f"Device code flow failed: {flow.get('error_description', 'Unknown')}"
            )

        print(f"\n{'='*60}")
        print(f"  To sign in, open: {flow['verification_uri']}")
        print(f"  Enter code: {flow['user_code']}")
        print(f"{'='*60}\n")

        result = self._app.acquire_token_by_device_flow(flow)
        return self._token_from_result(result, f"Delegated auth failed for {resource}")

    @staticmethod
    def _token_from_result(result: dict, message: str) -> str:
        if "access_token" in result:
            return result["access_token"]
        error = result.get("error_description", result.get("error", "Unknown"))
        raise AuthenticationError(f"{message}: {error}")

    def close(self):
        """Persist the cache for a reusable session, otherwise drop it."""
        if self.reuse and self.cache_path and self._cache.has_state_changed:
            self.cache_path.parent.mkdir(parents=True, exist_ok=True)
            self.cache_path.write_text(self._cache.serialize(), encoding="utf-8")
            logger.info(f"Token cache saved to {self.cache_path}")
        self._tokens.clear()
