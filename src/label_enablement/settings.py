from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from .audit import JsonAuditLogger
from .errors import AmbiguousMatchError, NotFoundError, RemoteOperationError
from .models import DirectorySetting, SettingTemplate, SettingValue, StepName, StepOutcome, format_flag

if TYPE_CHECKING:
    from .clients import GraphClient

logger = logging.getLogger(__name__)


class SettingResolver:
    """Finds a directory setting template and the tenant's instance of it."""

    def __init__(self, graph: GraphClient, audit_logger: JsonAuditLogger):
        self.graph = graph
        self.audit = audit_logger

    def resolve_template(self, name: str) -> SettingTemplate:
        matches = [item for item in self.graph.list_setting_templates() if item.get("displayName") == name]
        if not matches:
            raise NotFoundError(f"Directory setting template {name!r} was not found in the tenant")
        if len(matches) > 1:
            ids = ", ".join(item["id"] for item in matches)
            raise AmbiguousMatchError(f"Directory setting template {name!r} matches several templates: {ids}")

        template = SettingTemplate.from_api(matches[0])
        self.audit.info("template_resolved", template_name=name, template_id=template.id)
        return template

    def resolve_instance(self, template: SettingTemplate) -> Optional[DirectorySetting]:
        matches = [item for item in self.graph.list_settings() if item.get("templateId") == template.id]
        if not matches:
            self.audit.info("setting_instance_absent", template_id=template.id)
            return None
        if len(matches) > 1:
            ids = ", ".join(str(item.get("id")) for item in matches)
            raise AmbiguousMatchError(
                f"Tenant holds several directory settings for template {template.display_name}: {ids}"
            )

        instance = DirectorySetting.from_api(matches[0])
        self.audit.info("setting_instance_found", template_id=template.id, setting_id=instance.id)
        return instance


class IdempotentSettingWriter:
    """Creates or updates a directory setting only when the value differs."""

    def __init__(self, graph: GraphClient, audit_logger: JsonAuditLogger, step: StepName = StepName.SETTING_ENABLE):
        self.graph = graph
        self.audit = audit_logger
        self.step = step

    def ensure_value_enabled(
        self,
        template: SettingTemplate,
        instance: Optional[DirectorySetting],
        setting_name: str,
        desired: bool = True,
    ) -> StepOutcome:
        try:
            if instance is None:
                return self._create(template, setting_name, desired)

            current = instance.get_flag(setting_name)
            if current is desired:
                self.audit.info(
                    "setting_unchanged",
                    setting_id=instance.id,
                    setting_name=setting_name,
                    value=format_flag(desired),
                )
                return StepOutcome.skipped(self.step, f"{setting_name} is already {format_flag(desired)}")

            return self._update(instance, setting_name, desired)
        except RemoteOperationError as exc:
            self.audit.error("setting_write_failed", setting_name=setting_name, error=str(exc))
            return StepOutcome.failed(self.step, exc)

    def _create(self, template: SettingTemplate, setting_name: str, desired: bool) -> StepOutcome:
        setting = DirectorySetting(
            template_id=template.id,
            values=[SettingValue(setting_name, format_flag(desired))],
        )
        created = self.graph.create_setting(setting.to_payload())
        self.audit.info(
            "setting_created",
            template_id=template.id,
            setting_id=created.get("id"),
            setting_name=setting_name,
            value=format_flag(desired),
        )
        return StepOutcome.succeeded(
            self.step, f"Created {template.display_name} setting with {setting_name}={format_flag(desired)}"
        )

    def _update(self, instance: DirectorySetting, setting_name: str, desired: bool) -> StepOutcome:
        if instance.id is None:
            raise RemoteOperationError(f"Directory setting for template {instance.template_id} has no id")
        previous = instance.get_value(setting_name)
        updated = instance.with_flag(setting_name, desired)
        self.graph.update_setting(instance.id, updated.values_payload())
        self.audit.info(
            "setting_updated",
            setting_id=instance.id,
            setting_name=setting_name,
            previous=previous,
            value=format_flag(desired),
        )
        return StepOutcome.succeeded(
            self.step, f"Updated {setting_name} from {previous!r} to {format_flag(desired)}"
        )
