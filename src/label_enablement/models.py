from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class ServiceId(str, Enum):
    GRAPH = "directory-graph"
    SITE = "site-collaboration"
    COMPLIANCE = "compliance"


class SessionMode(str, Enum):
    DEFAULT = "default"
    LEGACY = "legacy"
    MODERN = "modern"


class StepStatus(str, Enum):
    SUCCEEDED = "succeeded"
    SKIPPED_NO_CHANGE = "skipped-no-change"
    FAILED = "failed"


class StepName(str, Enum):
    MODULES = "modules"
    GRAPH_CONNECT = "graph_connect"
    TEMPLATE_RESOLVE = "template_resolve"
    SETTING_ENABLE = "setting_enable"
    SITE_CONNECT = "site_connect"
    INTEGRATION_ENABLE = "integration_enable"
    COMPLIANCE_CONNECT = "compliance_connect"
    SYNC_TRIGGER = "sync_trigger"


class RunState(str, Enum):
    START = "Start"
    MODULES_READY = "ModulesReady"
    GRAPH_CONNECTED = "GraphConnected"
    TEMPLATE_RESOLVED = "TemplateResolved"
    SETTING_ENABLED = "SettingEnabled"
    SITE_CONNECTED = "SiteConnected"
    INTEGRATION_ENABLED = "IntegrationEnabled"
    COMPLIANCE_CONNECTED = "ComplianceConnected"
    SYNC_TRIGGERED = "SyncTriggered"
    DONE = "Done"
    FAILED = "Failed"


# Canonical execution order. A configured step list must be a subsequence of it.
STEP_ORDER: Tuple[StepName, ...] = tuple(StepName)

STEP_STATES: Dict[StepName, RunState] = {
    StepName.MODULES: RunState.MODULES_READY,
    StepName.GRAPH_CONNECT: RunState.GRAPH_CONNECTED,
    StepName.TEMPLATE_RESOLVE: RunState.TEMPLATE_RESOLVED,
    StepName.SETTING_ENABLE: RunState.SETTING_ENABLED,
    StepName.SITE_CONNECT: RunState.SITE_CONNECTED,
    StepName.INTEGRATION_ENABLE: RunState.INTEGRATION_ENABLED,
    StepName.COMPLIANCE_CONNECT: RunState.COMPLIANCE_CONNECTED,
    StepName.SYNC_TRIGGER: RunState.SYNC_TRIGGERED,
}

STEP_PREREQUISITES: Dict[StepName, StepName] = {
    StepName.TEMPLATE_RESOLVE: StepName.GRAPH_CONNECT,
    StepName.SETTING_ENABLE: StepName.TEMPLATE_RESOLVE,
    StepName.INTEGRATION_ENABLE: StepName.SITE_CONNECT,
    StepName.SYNC_TRIGGER: StepName.COMPLIANCE_CONNECT,
}

STEP_PROFILES: Dict[str, Tuple[StepName, ...]] = {
    "full": STEP_ORDER,
    "directory-only": tuple(
        step for step in STEP_ORDER if step not in (StepName.SITE_CONNECT, StepName.INTEGRATION_ENABLE)
    ),
}

STEP_DESCRIPTIONS: Dict[StepName, str] = {
    StepName.MODULES: "Checking required packages",
    StepName.GRAPH_CONNECT: "Connecting to Microsoft Graph",
    StepName.TEMPLATE_RESOLVE: "Resolving directory setting template",
    StepName.SETTING_ENABLE: "Enabling sensitivity labels in directory settings",
    StepName.SITE_CONNECT: "Connecting to SharePoint Online admin",
    StepName.INTEGRATION_ENABLE: "Enabling sensitivity label integration for SharePoint and OneDrive",
    StepName.COMPLIANCE_CONNECT: "Connecting to Security & Compliance",
    StepName.SYNC_TRIGGER: "Triggering label synchronization",
}


def format_flag(value: bool) -> str:
    """Serialize a boolean the way directory settings store it."""
    return "True" if value else "False"


def parse_flag(raw: Optional[str]) -> Optional[bool]:
    """Exact inverse of :func:`format_flag`; anything else is unknown."""
    if raw == "True":
        return True
    if raw == "False":
        return False
    return None


@dataclass(frozen=True)
class SettingValueDefinition:
    name: str
    type: Optional[str] = None
    default_value: Optional[str] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class SettingTemplate:
    id: str
    display_name: str
    description: Optional[str] = None
    values: Tuple[SettingValueDefinition, ...] = ()

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> "SettingTemplate":
        return cls(
            id=payload["id"],
            display_name=payload.get("displayName", ""),
            description=payload.get("description"),
            values=tuple(
                SettingValueDefinition(
                    name=item["name"],
                    type=item.get("type"),
                    default_value=item.get("defaultValue"),
                    description=item.get("description"),
                )
                for item in payload.get("values", [])
            ),
        )


@dataclass(frozen=True)
class SettingValue:
    name: str
    value: Optional[str]


@dataclass
class DirectorySetting:
    template_id: str
    values: List[SettingValue] = field(default_factory=list)
    id: Optional[str] = None
    display_name: Optional[str] = None

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> "DirectorySetting":
        return cls(
            id=payload.get("id"),
            template_id=payload["templateId"],
            display_name=payload.get("displayName"),
            values=[SettingValue(item["name"], item.get("value")) for item in payload.get("values", [])],
        )

    def get_value(self, name: str) -> Optional[str]:
        for item in self.values:
            if item.name == name:
                return item.value
        return None

    def get_flag(self, name: str) -> Optional[bool]:
        return parse_flag(self.get_value(name))

    def with_flag(self, name: str, value: bool) -> "DirectorySetting":
        """Return a copy with ``name`` set to ``value``; every other pair is kept as-is."""
        serialized = format_flag(value)
        updated: List[SettingValue] = []
        found = False
        for item in self.values:
            if item.name == name:
                updated.append(SettingValue(name, serialized))
                found = True
            else:
                updated.append(item)
        if not found:
            updated.append(SettingValue(name, serialized))
        return replace(self, values=updated)

    def values_payload(self) -> List[Dict[str, Optional[str]]]:
        return [{"name": item.name, "value": item.value} for item in self.values]

    def to_payload(self) -> Dict[str, Any]:
        return {"templateId": self.template_id, "values": self.values_payload()}


@dataclass
class AdministrativeSession:
    service: ServiceId
    principal: Optional[str] = None
    mode: SessionMode = SessionMode.DEFAULT
    client: Any = field(default=None, repr=False, compare=False)


@dataclass(frozen=True)
class StepOutcome:
    step: StepName
    status: StepStatus
    detail: Optional[str] = None
    error: Optional[BaseException] = field(default=None, repr=False, compare=False)

    @classmethod
    def succeeded(cls, step: StepName, detail: Optional[str] = None) -> "StepOutcome":
        return cls(step, StepStatus.SUCCEEDED, detail)

    @classmethod
    def skipped(cls, step: StepName, detail: Optional[str] = None) -> "StepOutcome":
        return cls(step, StepStatus.SKIPPED_NO_CHANGE, detail)

    @classmethod
    def failed(cls, step: StepName, error: BaseException) -> "StepOutcome":
        return cls(step, StepStatus.FAILED, str(error), error)

    @property
    def ok(self) -> bool:
        return self.status is not StepStatus.FAILED

    def as_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"step": self.step.value, "status": self.status.value}
        if self.detail:
            payload["detail"] = self.detail
        if self.error is not None:
            payload["error_type"] = type(self.error).__name__
        return payload


@dataclass
class RunReport:
    run_id: str
    outcomes: List[StepOutcome] = field(default_factory=list)
    state: RunState = RunState.START
    failed_step: Optional[StepName] = None
    error: Optional[BaseException] = field(default=None, repr=False)

    @property
    def succeeded(self) -> bool:
        return self.state is RunState.DONE

    @property
    def exit_code(self) -> int:
        return 0 if self.succeeded else 1

    def summary(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "state": self.state.value,
            "failed_step": self.failed_step.value if self.failed_step else None,
            "error": str(self.error) if self.error is not None else None,
            "steps": [outcome.as_dict() for outcome in self.outcomes],
        }
