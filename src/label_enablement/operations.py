from __future__ import annotations

from typing import TYPE_CHECKING

from .audit import JsonAuditLogger
from .models import StepName, StepOutcome

if TYPE_CHECKING:
    from .clients import ComplianceClient, SharePointAdminClient

# Operators are told to allow this long before labels appear everywhere.
LABEL_SYNC_PROPAGATION_HOURS = 24


class TenantFeatureToggle:
    """Turns on a boolean tenant feature of SharePoint Online.

    Setting the feature to true is idempotent on the service side, so the
    current value is not read first.
    """

    def __init__(
        self,
        site_admin: SharePointAdminClient,
        audit_logger: JsonAuditLogger,
        feature: str = "EnableAIPIntegration",
    ):
        self.site_admin = site_admin
        self.audit = audit_logger
        self.feature = feature

    def enable_collaboration_integration(self) -> StepOutcome:
        self.site_admin.set_tenant_property(self.feature, True)
        self.audit.info("tenant_feature_enabled", feature=self.feature)
        return StepOutcome.succeeded(StepName.INTEGRATION_ENABLE, f"{self.feature} set to true")


class LabelSyncTrigger:
    """Submits the label synchronization job to the compliance service.

    The job runs asynchronously; acceptance of the command is all that is
    checked here.
    """

    def __init__(
        self,
        compliance: ComplianceClient,
        audit_logger: JsonAuditLogger,
        command: str = "Execute-AzureADLabelSync",
    ):
        self.compliance = compliance
        self.audit = audit_logger
        self.command = command

    def trigger_sync(self) -> StepOutcome:
        self.compliance.invoke_command(self.command)
        self.audit.info("label_sync_submitted", command=self.command)
        return StepOutcome.succeeded(
            StepName.SYNC_TRIGGER,
            f"{self.command} accepted; propagation can take up to {LABEL_SYNC_PROPAGATION_HOURS} hours",
        )
