from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

import yaml
from packaging.version import InvalidVersion, Version
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .errors import PreconditionError
from .models import STEP_ORDER, STEP_PREREQUISITES, STEP_PROFILES, StepName

# Public client id of the Microsoft Graph Command Line Tools application.
GRAPH_CLI_CLIENT_ID = "14d82eec-204b-4c2f-b7e8-296a70dab67e"


class SecretRef(BaseModel):
    """Reference to a secret source without storing the secret in configuration.

    Only environment variables and inline values are resolved. Inline values are
    meant for local testing against a lab tenant.
    """

    env: Optional[str] = Field(
        default=None, description="Environment variable name containing the secret"
    )
    value: Optional[str] = Field(
        default=None,
        description="Inline value (use only for local development; avoid in production)",
    )

    model_config = ConfigDict(extra="forbid")

    def resolve(self) -> str:
        if self.env:
            env_value = os.getenv(self.env)
            if env_value:
                return env_value
            raise ValueError(f"Environment variable {self.env} is not set")
        if self.value:
            return self.value
        raise ValueError("No secret reference provided for resolution")


class InteractiveAuth(BaseModel):
    type: Literal["interactive"] = "interactive"
    client_id: str = GRAPH_CLI_CLIENT_ID
    login_hint: Optional[str] = Field(
        default=None, description="UPN of the administrator signing in"
    )
    authority_host: str = Field(
        default="https://login.microsoftonline.com",
        description="AAD authority host",
    )

    model_config = ConfigDict(extra="forbid")


class DeviceCodeAuth(BaseModel):
    type: Literal["device_code"]
    client_id: str = GRAPH_CLI_CLIENT_ID
    authority_host: str = Field(
        default="https://login.microsoftonline.com",
        description="AAD authority host",
    )

    model_config = ConfigDict(extra="forbid")


class ClientSecretAuth(BaseModel):
    type: Literal["client_secret"]
    client_id: str
    client_secret: SecretRef
    authority_host: str = Field(
        default="https://login.microsoftonline.com",
        description="AAD authority host",
    )

    model_config = ConfigDict(extra="forbid")


class CertificateAuth(BaseModel):
    type: Literal["certificate"]
    client_id: str
    certificate_path: Path
    thumbprint: str
    certificate_password: Optional[SecretRef] = None
    authority_host: str = Field(
        default="https://login.microsoftonline.com",
        description="AAD authority host",
    )

    model_config = ConfigDict(extra="forbid")


class ManagedIdentityAuth(BaseModel):
    type: Literal["managed_identity"]
    client_id: Optional[str] = Field(
        default=None, description="Optional user-assigned managed identity client ID"
    )

    model_config = ConfigDict(extra="forbid")


AuthConfig = Union[InteractiveAuth, DeviceCodeAuth, ClientSecretAuth, CertificateAuth, ManagedIdentityAuth]

DELEGATED_AUTH_TYPES = (InteractiveAuth, DeviceCodeAuth)


class TenantConfig(BaseModel):
    tenant_id: str
    display_name: Optional[str] = None
    auth: AuthConfig = Field(default_factory=InteractiveAuth, discriminator="type")
    graph_base_url: str = Field(
        default="https://graph.microsoft.com",
        description="Graph endpoint. Override for national clouds if needed.",
    )
    sharepoint_admin_url: Optional[str] = Field(
        default=None, description="SharePoint admin center URL, e.g. https://contoso-admin.sharepoint.com"
    )
    compliance_base_url: str = Field(
        default="https://ps.compliance.protection.outlook.com",
        description="Security & Compliance admin API host",
    )

    model_config = ConfigDict(extra="forbid")

    @field_validator("graph_base_url", "sharepoint_admin_url", "compliance_base_url")
    @classmethod
    def strip_trailing_slash(cls, value: Optional[str]) -> Optional[str]:
        return value.rstrip("/") if value else value

    @property
    def delegated(self) -> bool:
        return isinstance(self.auth, DELEGATED_AUTH_TYPES)


class DependencySpec(BaseModel):
    name: str
    minimum_version: Optional[str] = None

    model_config = ConfigDict(extra="forbid")

    @property
    def requirement(self) -> str:
        if self.minimum_version:
            return f"{self.name}>={self.minimum_version}"
        return self.name


def _default_dependencies() -> List[DependencySpec]:
    return [
        DependencySpec(name="msal", minimum_version="1.24"),
        DependencySpec(name="httpx", minimum_version="0.25"),
        DependencySpec(name="azure-identity", minimum_version="1.15"),
    ]


class EnablementConfig(BaseModel):
    tenant: TenantConfig
    template_name: str = "Group.Unified"
    setting_name: str = "EnableMIPLabels"
    desired_value: bool = True
    site_feature: str = "EnableAIPIntegration"
    sync_command: str = "Execute-AzureADLabelSync"
    steps: List[StepName] = Field(default_factory=lambda: list(STEP_ORDER))
    dependencies: List[DependencySpec] = Field(default_factory=_default_dependencies)
    update_installed_dependencies: bool = Field(
        default=True,
        description="Try to upgrade dependencies that are already installed (failures are non-fatal)",
    )
    minimum_python: str = "3.9"
    request_timeout: float = 30.0

    model_config = ConfigDict(extra="forbid")

    @field_validator("steps")
    @classmethod
    def ensure_canonical_order(cls, value: List[StepName]) -> List[StepName]:
        if not value:
            raise ValueError("At least one step must be configured")
        positions = [STEP_ORDER.index(step) for step in value]
        if positions != sorted(set(positions)):
            raise ValueError(
                "Steps must be unique and follow the order: " + ", ".join(step.value for step in STEP_ORDER)
            )
        for step in value:
            required = STEP_PREREQUISITES.get(step)
            if required is not None and required not in value:
                raise ValueError(f"Step {step.value} requires step {required.value}")
        return value

    @field_validator("minimum_python")
    @classmethod
    def ensure_version(cls, value: str) -> str:
        try:
            Version(value)
        except InvalidVersion as exc:
            raise ValueError(f"minimum_python {value!r} is not a version number") from exc
        return value

    @model_validator(mode="after")
    def ensure_site_url(self) -> "EnablementConfig":
        if StepName.SITE_CONNECT in self.steps and not self.tenant.sharepoint_admin_url:
            raise ValueError("tenant.sharepoint_admin_url is required when SharePoint steps are enabled")
        return self

    @classmethod
    def from_profile(cls, profile: str, raw: Dict[str, Any]) -> "EnablementConfig":
        """Build a configuration whose step list is the named profile."""
        if profile not in STEP_PROFILES:
            raise PreconditionError(f"Unknown profile {profile!r}; expected one of {sorted(STEP_PROFILES)}")
        return cls.build({**raw, "steps": list(STEP_PROFILES[profile])})

    @classmethod
    def build(cls, raw: Dict[str, Any]) -> "EnablementConfig":
        try:
            return cls(**raw)
        except ValidationError as exc:
            raise PreconditionError(f"Invalid configuration: {exc}") from exc

    @classmethod
    def load(cls, path: Union[str, Path]) -> "EnablementConfig":
        return cls.build(read_config_file(path))


def read_config_file(path: Union[str, Path]) -> Dict[str, Any]:
    config_path = Path(path)
    if not config_path.exists():
        raise PreconditionError(f"Configuration file not found: {config_path}")

    with config_path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}

    if not isinstance(raw, dict):
        raise PreconditionError(f"Configuration file {config_path} must contain a mapping")
    return raw
