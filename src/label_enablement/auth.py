from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional

import msal
from azure.core.exceptions import ClientAuthenticationError
from azure.identity import ManagedIdentityCredential

from .audit import JsonAuditLogger
from .config import (
    DELEGATED_AUTH_TYPES,
    CertificateAuth,
    ClientSecretAuth,
    DeviceCodeAuth,
    InteractiveAuth,
    ManagedIdentityAuth,
    TenantConfig,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccessToken:
    token: str
    principal: Optional[str] = None


class TenantAuthenticator:
    """Acquires tokens for one administrative service of one tenant.

    Delegated flows (interactive browser, device code) sign in an administrator
    through an MSAL public client; app-only flows (client secret, certificate)
    use a confidential client; managed identity goes through azure-identity.
    Each instance keeps its own MSAL token cache, so every service has an
    independent authentication context.
    """

    def __init__(self, tenant_config: TenantConfig, audit_logger: JsonAuditLogger, service: str):
        self.tenant_config = tenant_config
        self.audit = audit_logger
        self.service = service
        self._app: Optional[msal.ClientApplication] = None
        self._credential: Optional[ManagedIdentityCredential] = None

    @property
    def authority(self) -> str:
        auth_config = self.tenant_config.auth
        host = getattr(auth_config, "authority_host", "https://login.microsoftonline.com")
        return f"{host}/{self.tenant_config.tenant_id}"

    def acquire_token(self, scopes: Iterable[str]) -> AccessToken:
        auth_config = self.tenant_config.auth
        scope_list = list(scopes)

        if isinstance(auth_config, (InteractiveAuth, DeviceCodeAuth)):
            app = self._public_app()
            result = None
            accounts = app.get_accounts()
            if accounts:
                result = app.acquire_token_silent(scope_list, account=accounts[0])
            if not result:
                if isinstance(auth_config, InteractiveAuth):
                    result = app.acquire_token_interactive(
                        scope_list,
                        login_hint=auth_config.login_hint,
                        prompt="select_account",
                    )
                else:
                    result = self._device_flow(app, scope_list)
            token = self._extract_token(result)
            principal = (result.get("id_token_claims") or {}).get("preferred_username")
            if principal is None and accounts:
                principal = accounts[0].get("username")
            self._log_acquired(auth_config.type)
            return AccessToken(token, principal)

        if isinstance(auth_config, (ClientSecretAuth, CertificateAuth)):
            app = self._confidential_app()
            result = app.acquire_token_silent(scope_list, account=None)
            if not result:
                result = app.acquire_token_for_client(scopes=scope_list)
            token = self._extract_token(result)
            self._log_acquired(auth_config.type)
            return AccessToken(token, auth_config.client_id)

        if isinstance(auth_config, ManagedIdentityAuth):
            if self._credential is None:
                self._credential = ManagedIdentityCredential(client_id=auth_config.client_id)
            try:
                result = self._credential.get_token(*scope_list)
            except ClientAuthenticationError as exc:
                raise RuntimeError(f"Managed identity token acquisition failed: {exc}") from exc
            self._log_acquired(auth_config.type)
            return AccessToken(result.token, auth_config.client_id or "managed-identity")

        raise ValueError("Unsupported authentication configuration")

    def has_valid_token(self, scopes: Iterable[str]) -> bool:
        """Return whether a token can be obtained without signing anyone in.

        Delegated flows only consult the MSAL cache. App-only and managed
        identity flows never prompt, so they are always considered refreshable.
        """
        if not isinstance(self.tenant_config.auth, DELEGATED_AUTH_TYPES):
            return True
        if self._app is None:
            return False
        accounts = self._app.get_accounts()
        if not accounts:
            return False
        result = self._app.acquire_token_silent(list(scopes), account=accounts[0])
        return bool(result and "access_token" in result)

    def sign_out(self) -> None:
        """Forget cached accounts so the next token request authenticates again."""
        if self._app is not None and self.tenant_config.delegated:
            for account in self._app.get_accounts():
                self._app.remove_account(account)
        self._app = None
        self._credential = None

    def _log_acquired(self, auth_type: str) -> None:
        self.audit.info(
            "acquired_token",
            tenant_id=self.tenant_config.tenant_id,
            service=self.service,
            auth_type=auth_type,
        )

    def _public_app(self) -> msal.PublicClientApplication:
        if self._app is None:
            self._app = msal.PublicClientApplication(
                client_id=self.tenant_config.auth.client_id,
                authority=self.authority,
                token_cache=msal.TokenCache(),
            )
        return self._app  # type: ignore[return-value]

    def _confidential_app(self) -> msal.ConfidentialClientApplication:
        if self._app is None:
            auth_config = self.tenant_config.auth
            if isinstance(auth_config, ClientSecretAuth):
                credential = auth_config.client_secret.resolve()
            else:
                credential = self._load_certificate(Path(auth_config.certificate_path))
            self._app = msal.ConfidentialClientApplication(
                client_id=auth_config.client_id,
                client_credential=credential,
                authority=self.authority,
                token_cache=msal.TokenCache(),
            )
        return self._app  # type: ignore[return-value]

    @staticmethod
    def _device_flow(app: msal.PublicClientApplication, scopes: List[str]) -> dict:
        flow = app.initiate_device_flow(scopes=scopes)
        if "user_code" not in flow:
            raise RuntimeError(f"Device flow could not be started: {json.dumps(flow)}")
        print(flow["message"], flush=True)
        return app.acquire_token_by_device_flow(flow)

    @staticmethod
    def _extract_token(result: Optional[dict]) -> str:
        if not result or "access_token" not in result:
            raise RuntimeError(f"Token acquisition failed: {json.dumps(result)}")
        return result["access_token"]

    def _load_certificate(self, path: Path) -> dict:
        password = None
        auth_config = self.tenant_config.auth
        if isinstance(auth_config, CertificateAuth) and auth_config.certificate_password:
            password = auth_config.certificate_password.resolve()
        try:
            with path.open("rb") as handle:
                certificate_bytes = handle.read()
        except OSError as exc:
            raise RuntimeError(f"Failed to read certificate at {path}: {exc}") from exc

        thumbprint = auth_config.thumbprint if isinstance(auth_config, CertificateAuth) else None
        return {"private_key": certificate_bytes.decode("utf-8"), "thumbprint": thumbprint, "passphrase": password}
