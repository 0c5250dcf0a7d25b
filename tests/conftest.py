"""
Shared fixtures for the label enablement test suite.

Remote services are replaced by the in-memory fakes in tests/fakes.py; no test
talks to a real tenant.
"""

import io
import json
import sys
import uuid
from pathlib import Path

import pytest

THIS_DIR = Path(__file__).parent
TESTS_DIR_PARENT = (THIS_DIR / "..").resolve()

# so that "from tests.fakes import ..." works in test modules
sys.path.insert(0, str(TESTS_DIR_PARENT))

from label_enablement.audit import JsonAuditLogger  # noqa: E402
from label_enablement.config import EnablementConfig, TenantConfig  # noqa: E402
from label_enablement.models import ServiceId, SessionMode  # noqa: E402
from label_enablement.sessions import SessionManager, SessionMap  # noqa: E402
from tests.fakes import (  # noqa: E402
    FakeComplianceClient,
    FakeConnector,
    FakeGraphClient,
    FakeSharePointAdminClient,
)


@pytest.fixture
def audit_stream():
    return io.StringIO()


@pytest.fixture
def audit_logger(audit_stream):
    logger = JsonAuditLogger(name=f"label_enablement.test.{uuid.uuid4().hex}", stream=audit_stream)
    yield logger
    logger.close()


@pytest.fixture
def audit_events(audit_stream):
    """Return a callable that parses the JSON events logged so far."""

    def _events():
        return [json.loads(line) for line in audit_stream.getvalue().splitlines() if line.strip()]

    return _events


@pytest.fixture
def config():
    return EnablementConfig(
        tenant=TenantConfig(
            tenant_id="contoso-tenant",
            sharepoint_admin_url="https://contoso-admin.sharepoint.com",
        )
    )


@pytest.fixture
def graph_client():
    return FakeGraphClient()


@pytest.fixture
def site_client():
    return FakeSharePointAdminClient()


@pytest.fixture
def compliance_client():
    return FakeComplianceClient()


@pytest.fixture
def connectors(graph_client, site_client, compliance_client):
    return {
        ServiceId.GRAPH: FakeConnector(ServiceId.GRAPH, graph_client),
        ServiceId.SITE: FakeConnector(ServiceId.SITE, site_client),
        ServiceId.COMPLIANCE: FakeConnector(
            ServiceId.COMPLIANCE,
            compliance_client,
            modes=(SessionMode.LEGACY, SessionMode.MODERN),
        ),
    }


@pytest.fixture
def session_manager(connectors, audit_logger):
    return SessionManager(connectors, SessionMap(), audit_logger)
