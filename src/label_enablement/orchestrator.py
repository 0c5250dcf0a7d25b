from __future__ import annotations

import logging
import uuid
from typing import Callable, Dict, Optional

from .audit import JsonAuditLogger
from .config import EnablementConfig
from .dependencies import DependencyManager
from .models import (
    STEP_STATES,
    DirectorySetting,
    RunReport,
    RunState,
    ServiceId,
    SettingTemplate,
    StepName,
    StepOutcome,
)
from .operations import LabelSyncTrigger, TenantFeatureToggle
from .reporting import ConsoleReporter
from .sessions import ReconnectPolicy, SessionManager, SessionMap, always_reuse, build_connectors
from .settings import IdempotentSettingWriter, SettingResolver

logger = logging.getLogger(__name__)


class EnablementOrchestrator:
    """Runs the configured enablement steps in their fixed order.

    Each step only starts after the previous one succeeded. The first failure
    ends the run in the ``Failed`` state; steps that already succeeded are left
    applied, since every step is safe to apply on its own.
    """

    def __init__(
        self,
        config: EnablementConfig,
        session_manager: SessionManager,
        dependency_manager: DependencyManager,
        audit_logger: JsonAuditLogger,
        reporter: Optional[ConsoleReporter] = None,
        skip_install: bool = False,
        force_reinstall: bool = False,
        run_id: Optional[str] = None,
    ):
        self.config = config
        self.session_manager = session_manager
        self.sessions: SessionMap = session_manager.sessions
        self.dependencies = dependency_manager
        self.audit = audit_logger
        self.reporter = reporter or ConsoleReporter()
        self.skip_install = skip_install
        self.force_reinstall = force_reinstall
        self.run_id = run_id or str(uuid.uuid4())
        self.template: Optional[SettingTemplate] = None
        self.instance: Optional[DirectorySetting] = None
        self._handlers: Dict[StepName, Callable[[], StepOutcome]] = {
            StepName.MODULES: self._ensure_modules,
            StepName.GRAPH_CONNECT: lambda: self._connect(ServiceId.GRAPH, StepName.GRAPH_CONNECT),
            StepName.TEMPLATE_RESOLVE: self._resolve_template,
            StepName.SETTING_ENABLE: self._enable_setting,
            StepName.SITE_CONNECT: lambda: self._connect(ServiceId.SITE, StepName.SITE_CONNECT),
            StepName.INTEGRATION_ENABLE: self._enable_integration,
            StepName.COMPLIANCE_CONNECT: lambda: self._connect(ServiceId.COMPLIANCE, StepName.COMPLIANCE_CONNECT),
            StepName.SYNC_TRIGGER: self._trigger_sync,
        }

    def run(self) -> RunReport:
        report = RunReport(run_id=self.run_id)
        self.audit.bind(run_id=self.run_id, tenant_id=self.config.tenant.tenant_id)
        self.audit.info("run_started", steps=[step.value for step in self.config.steps])

        for step in self.config.steps:
            self.reporter.step_started(step)
            self.audit.info("step_started", step=step.value)
            try:
                outcome = self._handlers[step]()
            except Exception as exc:  # noqa: BLE001
                outcome = StepOutcome.failed(step, exc)

            report.outcomes.append(outcome)
            self.reporter.step_finished(outcome)

            if not outcome.ok:
                report.state = RunState.FAILED
                report.failed_step = step
                report.error = outcome.error
                self.audit.error(
                    "step_failed",
                    step=step.value,
                    error=outcome.detail,
                    error_type=type(outcome.error).__name__,
                )
                break

            report.state = STEP_STATES[step]
            self.audit.info("step_completed", step=step.value, status=outcome.status.value)
        else:
            report.state = RunState.DONE

        self.audit.info("run_finished", state=report.state.value, summary=report.summary())
        self.reporter.run_finished(report)
        return report

    def _ensure_modules(self) -> StepOutcome:
        return self.dependencies.ensure(skip=self.skip_install, force=self.force_reinstall)

    def _connect(self, service: ServiceId, step: StepName) -> StepOutcome:
        session = self.session_manager.ensure_session(service)
        return StepOutcome.succeeded(step, f"Connected as {session.principal or 'unknown'} ({session.mode.value})")

    def _resolve_template(self) -> StepOutcome:
        resolver = SettingResolver(self.session_manager.ensure_session(ServiceId.GRAPH).client, self.audit)
        self.template = resolver.resolve_template(self.config.template_name)
        self.instance = resolver.resolve_instance(self.template)
        found = f"setting {self.instance.id}" if self.instance else "no setting yet"
        return StepOutcome.succeeded(
            StepName.TEMPLATE_RESOLVE, f"{self.template.display_name} ({self.template.id}), {found}"
        )

    def _enable_setting(self) -> StepOutcome:
        if self.template is None:
            raise RuntimeError("Directory setting template has not been resolved")
        writer = IdempotentSettingWriter(self.session_manager.ensure_session(ServiceId.GRAPH).client, self.audit)
        return writer.ensure_value_enabled(
            self.template,
            self.instance,
            self.config.setting_name,
            desired=self.config.desired_value,
        )

    def _enable_integration(self) -> StepOutcome:
        toggle = TenantFeatureToggle(
            self.session_manager.ensure_session(ServiceId.SITE).client,
            self.audit,
            feature=self.config.site_feature,
        )
        return toggle.enable_collaboration_integration()

    def _trigger_sync(self) -> StepOutcome:
        trigger = LabelSyncTrigger(
            self.session_manager.ensure_session(ServiceId.COMPLIANCE).client,
            self.audit,
            command=self.config.sync_command,
        )
        return trigger.trigger_sync()


def build_orchestrator(
    config: EnablementConfig,
    audit_logger: JsonAuditLogger,
    reconnect_policy: ReconnectPolicy = always_reuse,
    skip_install: bool = False,
    force_reinstall: bool = False,
) -> EnablementOrchestrator:
    # Connectors, and with them msal and httpx, are loaded only once a session is needed.
    session_manager = SessionManager(
        lambda: build_connectors(config, audit_logger),
        SessionMap(),
        audit_logger,
        reconnect_policy=reconnect_policy,
    )
    dependency_manager = DependencyManager(
        config.dependencies,
        audit_logger,
        update_installed=config.update_installed_dependencies,
    )
    return EnablementOrchestrator(
        config,
        session_manager,
        dependency_manager,
        audit_logger,
        skip_install=skip_install,
        force_reinstall=force_reinstall,
    )
