from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Iterator, List, Optional

import httpx

from .audit import JsonAuditLogger
from .auth import TenantAuthenticator
from .errors import RemoteOperationError
from .models import SessionMode

logger = logging.getLogger(__name__)


class AdminApiClient:
    """Bearer-authenticated client for one tenant administrative API.

    A token is requested from the authenticator on every call (MSAL serves it
    from cache until it expires). Failed calls are audited and raised as
    :class:`RemoteOperationError`; nothing is retried.
    """

    service = "admin-api"

    def __init__(
        self,
        base_url: str,
        scopes: Iterable[str],
        authenticator: TenantAuthenticator,
        audit_logger: JsonAuditLogger,
        timeout: float = 30.0,
        http_client: Optional[httpx.Client] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.scopes = list(scopes)
        self.authenticator = authenticator
        self.audit = audit_logger
        self.timeout = timeout
        self.session = http_client or httpx.Client(timeout=self.timeout)

    def _auth_header(self) -> Dict[str, str]:
        token = self.authenticator.acquire_token(self.scopes)
        return {"Authorization": f"Bearer {token.token}"}

    def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        headers = kwargs.pop("headers", {})
        headers.update(self._auth_header())

        try:
            response = self.session.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            self.audit.error("admin_request_error", service=self.service, method=method, url=url, error=str(exc))
            raise RemoteOperationError(f"{method} {url} failed: {exc}") from exc

        if response.status_code >= 400:
            self.audit.error(
                "admin_request_failed",
                service=self.service,
                method=method,
                status=response.status_code,
                url=url,
                body=response.text,
            )
            raise RemoteOperationError(
                f"{method} {url} returned HTTP {response.status_code}",
                status=response.status_code,
                body=response.text,
            )

        self.audit.info(
            "admin_request_succeeded",
            service=self.service,
            method=method,
            status=response.status_code,
            url=url,
        )
        return response

    def url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def get(self, path: str, **kwargs: Any) -> httpx.Response:
        return self.request("GET", self.url(path), **kwargs)

    def post(self, path: str, json: Any, **kwargs: Any) -> httpx.Response:
        return self.request("POST", self.url(path), json=json, **kwargs)

    def patch(self, path: str, json: Any, **kwargs: Any) -> httpx.Response:
        return self.request("PATCH", self.url(path), json=json, **kwargs)

    def probe(self) -> bool:
        raise NotImplementedError

    def close(self) -> None:
        self.session.close()


class GraphClient(AdminApiClient):
    """Directory settings surface of Microsoft Graph."""

    service = "directory-graph"

    def iter_collection(self, path: str) -> Iterator[Dict[str, Any]]:
        response = self.get(path)
        while True:
            data = response.json()
            yield from data.get("value", [])
            next_link = data.get("@odata.nextLink")
            if not next_link:
                return
            response = self.request("GET", next_link)

    def list_setting_templates(self) -> List[Dict[str, Any]]:
        return list(self.iter_collection("/v1.0/groupSettingTemplates"))

    def list_settings(self) -> List[Dict[str, Any]]:
        return list(self.iter_collection("/v1.0/groupSettings"))

    def create_setting(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        response = self.post("/v1.0/groupSettings", json=payload)
        return response.json() if response.content else {}

    def update_setting(self, setting_id: str, values: List[Dict[str, Optional[str]]]) -> None:
        self.patch(f"/v1.0/groupSettings/{setting_id}", json={"values": values})

    def probe(self) -> bool:
        self.get("/v1.0/organization?$select=id")
        return True


class SharePointAdminClient(AdminApiClient):
    """SharePoint Online tenant administration REST surface."""

    service = "site-collaboration"

    def get_tenant_properties(self) -> Dict[str, Any]:
        response = self.get("/_api/SPO.Tenant", headers={"Accept": "application/json"})
        return response.json()

    def set_tenant_property(self, name: str, value: Any) -> None:
        self.patch(
            "/_api/SPO.Tenant",
            json={name: value},
            headers={"Accept": "application/json", "Content-Type": "application/json"},
        )

    def probe(self) -> bool:
        self.get_tenant_properties()
        return True


class ComplianceClient(AdminApiClient):
    """Security & Compliance admin API, addressed as cmdlet invocations.

    ``SessionMode.LEGACY`` targets the v1.0 admin API generation and
    ``SessionMode.MODERN`` the beta generation used by current clients.
    """

    service = "compliance"

    API_VERSIONS = {
        SessionMode.LEGACY: "v1.0",
        SessionMode.MODERN: "beta",
    }

    def __init__(self, *args: Any, tenant_id: str, mode: SessionMode = SessionMode.MODERN, **kwargs: Any):
        super().__init__(*args, **kwargs)
        if mode not in self.API_VERSIONS:
            raise ValueError(f"Unsupported compliance session mode: {mode.value}")
        self.tenant_id = tenant_id
        self.mode = mode

    @property
    def command_path(self) -> str:
        return f"/adminapi/{self.API_VERSIONS[self.mode]}/{self.tenant_id}/InvokeCommand"

    def invoke_command(self, name: str, parameters: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        payload = {"CmdletInput": {"CmdletName": name, "Parameters": parameters or {}}}
        response = self.post(self.command_path, json=payload)
        return response.json() if response.content else {}

    def probe(self) -> bool:
        self.invoke_command("Get-Label", {"ResultSize": 1})
        return True
