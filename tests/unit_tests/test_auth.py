"""Unit tests for auth.py with MSAL patched out."""

from unittest.mock import MagicMock, patch

import pytest
from azure.core.exceptions import ClientAuthenticationError

from label_enablement.auth import TenantAuthenticator
from label_enablement.config import ClientSecretAuth, InteractiveAuth, ManagedIdentityAuth, SecretRef, TenantConfig

SCOPES = ["https://graph.microsoft.com/Directory.ReadWrite.All"]


def _tenant(auth):
    return TenantConfig(tenant_id="contoso-tenant", auth=auth)


class TestDelegatedTokens:
    @patch("label_enablement.auth.msal.PublicClientApplication")
    def test_interactive_sign_in_when_cache_is_empty(self, mock_app_cls, audit_logger):
        app = mock_app_cls.return_value
        app.get_accounts.return_value = []
        app.acquire_token_interactive.return_value = {
            "access_token": "abc",
            "id_token_claims": {"preferred_username": "admin@contoso.com"},
        }

        token = TenantAuthenticator(_tenant(InteractiveAuth(login_hint="admin@contoso.com")), audit_logger, "graph").acquire_token(SCOPES)

        assert token.token == "abc"
        assert token.principal == "admin@contoso.com"
        assert mock_app_cls.call_args.kwargs["authority"] == "https://login.microsoftonline.com/contoso-tenant"
        app.acquire_token_interactive.assert_called_once()

    @patch("label_enablement.auth.msal.PublicClientApplication")
    def test_cached_account_is_used_silently(self, mock_app_cls, audit_logger):
        app = mock_app_cls.return_value
        app.get_accounts.return_value = [{"username": "admin@contoso.com"}]
        app.acquire_token_silent.return_value = {"access_token": "cached"}

        authenticator = TenantAuthenticator(_tenant(InteractiveAuth()), audit_logger, "graph")
        first = authenticator.acquire_token(SCOPES)
        authenticator.acquire_token(SCOPES)

        assert first.token == "cached"
        assert first.principal == "admin@contoso.com"
        app.acquire_token_interactive.assert_not_called()
        mock_app_cls.assert_called_once()

    @patch("label_enablement.auth.msal.PublicClientApplication")
    def test_failed_sign_in_raises(self, mock_app_cls, audit_logger):
        app = mock_app_cls.return_value
        app.get_accounts.return_value = []
        app.acquire_token_interactive.return_value = {"error": "access_denied"}

        with pytest.raises(RuntimeError, match="access_denied"):
            TenantAuthenticator(_tenant(InteractiveAuth()), audit_logger, "graph").acquire_token(SCOPES)


class TestAppOnlyTokens:
    @patch("label_enablement.auth.msal.ConfidentialClientApplication")
    def test_client_secret(self, mock_app_cls, audit_logger):
        app = mock_app_cls.return_value
        app.acquire_token_silent.return_value = None
        app.acquire_token_for_client.return_value = {"access_token": "app-token"}
        auth = ClientSecretAuth(type="client_secret", client_id="app-id", client_secret=SecretRef(value="secret"))

        token = TenantAuthenticator(_tenant(auth), audit_logger, "graph").acquire_token(["https://graph.microsoft.com/.default"])

        assert token.token == "app-token"
        assert token.principal == "app-id"
        assert mock_app_cls.call_args.kwargs["client_credential"] == "secret"


class TestSilentValidity:
    """Tests for has_valid_token, which must never sign anyone in."""

    @patch("label_enablement.auth.msal.PublicClientApplication")
    def test_no_sign_in_yet_is_invalid(self, mock_app_cls, audit_logger):
        authenticator = TenantAuthenticator(_tenant(InteractiveAuth()), audit_logger, "graph")

        assert authenticator.has_valid_token(SCOPES) is False
        mock_app_cls.assert_not_called()

    @patch("label_enablement.auth.msal.PublicClientApplication")
    def test_expired_cache_does_not_prompt(self, mock_app_cls, audit_logger):
        app = mock_app_cls.return_value
        app.get_accounts.return_value = [{"username": "admin@contoso.com"}]
        app.acquire_token_silent.return_value = {"access_token": "cached"}
        authenticator = TenantAuthenticator(_tenant(InteractiveAuth()), audit_logger, "graph")
        authenticator.acquire_token(SCOPES)

        app.acquire_token_silent.return_value = None

        assert authenticator.has_valid_token(SCOPES) is False
        app.acquire_token_interactive.assert_not_called()

    @patch("label_enablement.auth.msal.PublicClientApplication")
    def test_cached_token_is_valid(self, mock_app_cls, audit_logger):
        app = mock_app_cls.return_value
        app.get_accounts.return_value = [{"username": "admin@contoso.com"}]
        app.acquire_token_silent.return_value = {"access_token": "cached"}
        authenticator = TenantAuthenticator(_tenant(InteractiveAuth()), audit_logger, "graph")
        authenticator.acquire_token(SCOPES)

        assert authenticator.has_valid_token(SCOPES) is True
        app.acquire_token_interactive.assert_not_called()

    def test_app_only_is_always_refreshable(self, audit_logger):
        auth = ClientSecretAuth(type="client_secret", client_id="app-id", client_secret=SecretRef(value="secret"))

        assert TenantAuthenticator(_tenant(auth), audit_logger, "graph").has_valid_token(SCOPES) is True


class TestManagedIdentity:
    @patch("label_enablement.auth.ManagedIdentityCredential")
    def test_token(self, mock_credential_cls, audit_logger):
        mock_credential_cls.return_value.get_token.return_value = MagicMock(token="mi-token")

        token = TenantAuthenticator(_tenant(ManagedIdentityAuth(type="managed_identity")), audit_logger, "graph").acquire_token(
            ["https://graph.microsoft.com/.default"]
        )

        assert token.token == "mi-token"
        assert token.principal == "managed-identity"

    @patch("label_enablement.auth.ManagedIdentityCredential")
    def test_authentication_error_becomes_runtime_error(self, mock_credential_cls, audit_logger):
        mock_credential_cls.return_value.get_token.side_effect = ClientAuthenticationError("no identity endpoint")
        authenticator = TenantAuthenticator(_tenant(ManagedIdentityAuth(type="managed_identity")), audit_logger, "graph")

        with pytest.raises(RuntimeError, match="no identity endpoint") as excinfo:
            authenticator.acquire_token(["https://graph.microsoft.com/.default"])

        assert isinstance(excinfo.value.__cause__, ClientAuthenticationError)
