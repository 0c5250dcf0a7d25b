from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable, Dict, Mapping, Optional, Tuple, Union

from .audit import JsonAuditLogger
from .config import EnablementConfig
from .errors import PreconditionError, RemoteOperationError, ServiceConnectionError
from .models import AdministrativeSession, ServiceId, SessionMode

if TYPE_CHECKING:
    import httpx

    from .auth import TenantAuthenticator
    from .clients import AdminApiClient

logger = logging.getLogger(__name__)

ReconnectPolicy = Callable[[AdministrativeSession], bool]
ConnectorLoader = Callable[[], Mapping[ServiceId, "ServiceConnector"]]


def always_reuse(session: AdministrativeSession) -> bool:
    return False


def prompt_reconnect(session: AdministrativeSession, input_fn: Callable[[str], str] = input) -> bool:
    """Ask the operator whether an existing valid session should be replaced."""
    who = session.principal or "an unknown account"
    answer = input_fn(f"Already connected to {session.service.value} as {who}. Reconnect? [y/N] ")
    return answer.strip().lower() in {"y", "yes"}


class SessionMap(Dict[ServiceId, AdministrativeSession]):
    """Sessions established during one run, keyed by service."""


class ServiceConnector:
    """Creates, probes and tears down sessions for one administrative service.

    ``modes`` lists the connection modes to try, in order. Only the compliance
    service has more than one.
    """

    def __init__(
        self,
        service: ServiceId,
        authenticator: TenantAuthenticator,
        client_factory: Callable[[SessionMode], AdminApiClient],
        modes: Tuple[SessionMode, ...] = (SessionMode.DEFAULT,),
    ):
        self.service = service
        self.authenticator = authenticator
        self.client_factory = client_factory
        self.modes = modes

    def connect(self, mode: SessionMode) -> AdministrativeSession:
        client = self.client_factory(mode)
        try:
            token = self.authenticator.acquire_token(client.scopes)
            client.probe()
        except Exception:
            client.close()
            raise
        return AdministrativeSession(service=self.service, principal=token.principal, mode=mode, client=client)

    def probe(self, session: AdministrativeSession) -> bool:
        """Check the session without signing anyone in.

        A session whose token cannot be refreshed from cache is invalid; only
        then is the service itself queried.
        """
        try:
            if not self.authenticator.has_valid_token(session.client.scopes):
                logger.debug("No cached token for %s", self.service.value)
                return False
            return bool(session.client.probe())
        except (RemoteOperationError, RuntimeError) as exc:
            logger.debug("Probe for %s failed: %s", self.service.value, exc)
            return False

    def disconnect(self, session: AdministrativeSession) -> None:
        if session.client is not None:
            session.client.close()
        self.authenticator.sign_out()


def build_connectors(
    config: EnablementConfig,
    audit_logger: JsonAuditLogger,
    http_client: Optional[httpx.Client] = None,
) -> Dict[ServiceId, ServiceConnector]:
    # Imported here so the package loads before the install phase has provided msal and httpx.
    from .auth import TenantAuthenticator
    from .clients import ComplianceClient, GraphClient, SharePointAdminClient

    tenant = config.tenant
    timeout = config.request_timeout

    def authenticator(service: ServiceId) -> TenantAuthenticator:
        return TenantAuthenticator(tenant, audit_logger, service=service.value)

    graph_scope = (
        f"{tenant.graph_base_url}/Directory.ReadWrite.All" if tenant.delegated else f"{tenant.graph_base_url}/.default"
    )
    graph_auth = authenticator(ServiceId.GRAPH)
    connectors = {
        ServiceId.GRAPH: ServiceConnector(
            ServiceId.GRAPH,
            graph_auth,
            lambda mode: GraphClient(
                tenant.graph_base_url, [graph_scope], graph_auth, audit_logger, timeout, http_client
            ),
        ),
    }

    compliance_auth = authenticator(ServiceId.COMPLIANCE)
    connectors[ServiceId.COMPLIANCE] = ServiceConnector(
        ServiceId.COMPLIANCE,
        compliance_auth,
        lambda mode: ComplianceClient(
            tenant.compliance_base_url,
            [f"{tenant.compliance_base_url}/.default"],
            compliance_auth,
            audit_logger,
            timeout,
            http_client,
            tenant_id=tenant.tenant_id,
            mode=mode,
        ),
        modes=(SessionMode.LEGACY, SessionMode.MODERN),
    )

    if tenant.sharepoint_admin_url:
        admin_url = tenant.sharepoint_admin_url
        site_auth = authenticator(ServiceId.SITE)
        connectors[ServiceId.SITE] = ServiceConnector(
            ServiceId.SITE,
            site_auth,
            lambda mode: SharePointAdminClient(
                admin_url, [f"{admin_url}/.default"], site_auth, audit_logger, timeout, http_client
            ),
        )

    return connectors


class SessionManager:
    """Establishes and reuses authenticated sessions, one per service.

    The session map is owned by the caller and updated in place. ``connectors``
    may be a callable, in which case it is invoked on the first lookup.
    """

    def __init__(
        self,
        connectors: Union[Mapping[ServiceId, ServiceConnector], ConnectorLoader],
        sessions: SessionMap,
        audit_logger: JsonAuditLogger,
        reconnect_policy: ReconnectPolicy = always_reuse,
    ):
        self._connectors = connectors
        self.sessions = sessions
        self.audit = audit_logger
        self.reconnect_policy = reconnect_policy

    def ensure_session(self, service: ServiceId) -> AdministrativeSession:
        connector = self._connector(service)
        session = self.sessions.get(service)

        if session is not None:
            if connector.probe(session):
                if not self.reconnect_policy(session):
                    self.audit.info("session_reused", service=service.value, principal=session.principal)
                    return session
                self.audit.info("session_reconnect_requested", service=service.value)
            else:
                self.audit.warning("session_invalid", service=service.value)
            self.teardown(service)

        return self._connect(connector)

    def teardown(self, service: ServiceId) -> None:
        session = self.sessions.pop(service, None)
        if session is not None:
            self._connector(service).disconnect(session)
            self.audit.info("session_closed", service=service.value)

    def close_all(self) -> None:
        for service in list(self.sessions):
            self.teardown(service)

    @property
    def connectors(self) -> Mapping[ServiceId, ServiceConnector]:
        if callable(self._connectors):
            self._connectors = self._connectors()
        return self._connectors

    def _connector(self, service: ServiceId) -> ServiceConnector:
        connector = self.connectors.get(service)
        if connector is None:
            raise PreconditionError(f"No connector is configured for {service.value}")
        return connector

    def _connect(self, connector: ServiceConnector) -> AdministrativeSession:
        service = connector.service
        last_error: Optional[Exception] = None

        for mode in connector.modes:
            try:
                session = connector.connect(mode)
            except Exception as exc:  # noqa: BLE001
                last_error = exc
                self.audit.warning(
                    "session_connect_failed",
                    service=service.value,
                    mode=mode.value,
                    error=str(exc),
                )
                continue

            self.sessions[service] = session
            self.audit.info(
                "session_connected",
                service=service.value,
                mode=mode.value,
                principal=session.principal,
            )
            return session

        raise ServiceConnectionError(service.value, str(last_error)) from last_error
