"""Core data models for the monitoring provisioner.

Defines the schemas for:
- Provisioning input (what to monitor, who to notify)
- Derived resource names
- Alert rule specifications
- Cloud resource descriptors (what the API hands back)
- Step outcomes and the final provisioning result
"""

from __future__ import annotations

import enum
import re
from datetime import datetime, timedelta
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DEFAULT_REGION = "eastus"

SUPPORTED_REGIONS: frozenset[str] = frozenset({
    "australiaeast",
    "australiasoutheast",
    "brazilsouth",
    "canadacentral",
    "canadaeast",
    "centralindia",
    "centralus",
    "eastasia",
    "eastus",
    "eastus2",
    "francecentral",
    "germanywestcentral",
    "japaneast",
    "japanwest",
    "koreacentral",
    "northcentralus",
    "northeurope",
    "norwayeast",
    "southafricanorth",
    "southcentralus",
    "southeastasia",
    "swedencentral",
    "switzerlandnorth",
    "uaenorth",
    "uksouth",
    "ukwest",
    "westcentralus",
    "westeurope",
    "westus",
    "westus2",
    "westus3",
})

_EMAIL_RE = re.compile(r"^[A-Za-z0-9._%+-]+@[A-Za-z0-9-]+(\.[A-Za-z0-9-]+)*\.[A-Za-z]{2,}$")
_IDENTIFIER_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9._()-]*$"


# --- Enums ---


class ProvisioningStatus(enum.StrEnum):
    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    FAILURE = "failure"


class StepName(enum.StrEnum):
    VALIDATE_INPUT = "validate-input"
    PRECONDITIONS = "verify-preconditions"
    WORKSPACE = "workspace"
    TELEMETRY = "telemetry"
    APP_SETTINGS = "app-settings"
    NOTIFICATION_GROUP = "notification-group"
    RESOLVE_PLAN = "resolve-plan"
    ALERT_RULES = "alert-rules"
    DIAGNOSTICS = "diagnostics"


class Aggregation(enum.StrEnum):
    AVERAGE = "avg"
    TOTAL = "total"


class Operator(enum.StrEnum):
    GREATER_THAN = "GreaterThan"
    GREATER_THAN_OR_EQUAL = "GreaterThanOrEqual"
    LESS_THAN = "LessThan"
    LESS_THAN_OR_EQUAL = "LessThanOrEqual"

    @property
    def symbol(self) -> str:
        return _OPERATOR_SYMBOLS[self]


_OPERATOR_SYMBOLS: dict[Operator, str] = {
    Operator.GREATER_THAN: ">",
    Operator.GREATER_THAN_OR_EQUAL: ">=",
    Operator.LESS_THAN: "<",
    Operator.LESS_THAN_OR_EQUAL: "<=",
}


class AlertScope(enum.StrEnum):
    """Which resource an alert rule watches."""

    PLAN = "plan"
    APPLICATION = "application"


# --- Input ---


class ProvisioningRequest(BaseModel):
    """Immutable input to a provisioning run."""

    model_config = ConfigDict(frozen=True)

    resource_group: str = Field(..., min_length=1, max_length=90, pattern=_IDENTIFIER_PATTERN)
    application_name: str = Field(..., min_length=1, max_length=60, pattern=_IDENTIFIER_PATTERN)
    notification_email: str
    region: str = DEFAULT_REGION

    @field_validator("notification_email")
    @classmethod
    def _check_email(cls, v: str) -> str:
        v = v.strip()
        if not _EMAIL_RE.match(v):
            msg = f"not a valid email address: {v!r}"
            raise ValueError(msg)
        return v

    @field_validator("region", mode="before")
    @classmethod
    def _check_region(cls, v: Any) -> str:
        if v is None or v == "":
            return DEFAULT_REGION
        region = str(v).strip().lower().replace(" ", "")
        if region not in SUPPORTED_REGIONS:
            msg = f"unsupported region: {v!r}"
            raise ValueError(msg)
        return region


class ResourceNames(BaseModel):
    """Names derived from an application name, keyed by role."""

    model_config = ConfigDict(frozen=True)

    workspace: str
    telemetry: str
    notification_group: str
    notification_short_name: str = Field(..., max_length=12)
    diagnostic_setting: str
    alert_rules: dict[str, str] = Field(default_factory=dict)


class EmailChannel(BaseModel):
    """An email receiver inside a notification group."""

    name: str
    address: str


# --- Alert rules ---


class AlertRuleSpec(BaseModel):
    """A fully resolved metric alert rule, ready to send to the API."""

    model_config = ConfigDict(frozen=True)

    name: str
    role: str
    scope: AlertScope
    scope_resource_id: str = Field(..., min_length=1)
    metric_name: str
    aggregation: Aggregation
    operator: Operator = Operator.GREATER_THAN
    threshold: float
    evaluation_window: timedelta
    evaluation_frequency: timedelta
    severity: int = Field(..., ge=0, le=4)
    description: str = ""
    notification_target_id: str = Field(..., min_length=1)
    resource_group: str = ""

    @model_validator(mode="after")
    def _window_covers_frequency(self) -> AlertRuleSpec:
        if self.evaluation_frequency <= timedelta(0):
            msg = "evaluation_frequency must be positive"
            raise ValueError(msg)
        if self.evaluation_window < self.evaluation_frequency:
            msg = (
                f"evaluation_window ({self.evaluation_window}) is shorter than "
                f"evaluation_frequency ({self.evaluation_frequency})"
            )
            raise ValueError(msg)
        return self

    @property
    def condition(self) -> str:
        """Provider condition string, e.g. ``avg CpuPercentage > 80``."""
        return f"{self.aggregation} {self.metric_name} {self.operator.symbol} {self.threshold:g}"


# --- Descriptors returned by the cloud API ---


class Account(BaseModel):
    id: str
    name: str = ""
    tenant_id: str = ""
    user: str = ""


class ApplicationDescriptor(BaseModel):
    """An existing web application and the compute plan it runs on."""

    id: str
    name: str
    resource_group: str
    plan_id: str = ""
    region: str = ""
    default_host_name: str = ""


class ResourceDescriptor(BaseModel):
    """Common shape of everything a create-or-get call returns.

    ``created`` is False when the resource already existed.
    """

    id: str
    name: str
    created: bool = False


class WorkspaceDescriptor(ResourceDescriptor):
    retention_days: int | None = None
    customer_id: str = ""


class TelemetryDescriptor(ResourceDescriptor):
    connection_string: str = ""
    instrumentation_key: str = ""
    workspace_id: str = ""


class NotificationGroupDescriptor(ResourceDescriptor):
    short_name: str = ""


class AlertRuleDescriptor(ResourceDescriptor):
    pass


# --- Results ---


class StepOutcome(BaseModel):
    """Outcome of a single workflow step."""

    step: StepName
    ok: bool
    created: int = 0
    resource_id: str | None = None
    error: str | None = None
    attempts: int = 1
    duration_ms: float | None = None


class AlertRuleRecord(BaseModel):
    """An alert rule that exists after the run."""

    role: str
    name: str
    id: str
    scope: AlertScope
    scope_resource_id: str
    condition: str
    severity: int
    created: bool = False


class ProvisioningResult(BaseModel):
    """Everything a provisioning run produced.

    Built step by step with ``model_copy``; frozen once returned.
    """

    model_config = ConfigDict(frozen=True)

    status: ProvisioningStatus
    run_id: str
    request: ProvisioningRequest | None = None
    names: ResourceNames | None = None
    application_id: str | None = None
    plan_id: str | None = None
    workspace_id: str | None = None
    telemetry_id: str | None = None
    connection_string: str | None = None
    app_settings_applied: bool = False
    notification_group_id: str | None = None
    alert_rules: list[AlertRuleRecord] = Field(default_factory=list)
    diagnostics_enabled: bool = False
    diagnostic_log_categories: list[str] = Field(default_factory=list)
    diagnostic_metric_categories: list[str] = Field(default_factory=list)
    failed_step: StepName | None = None
    error: str | None = None
    steps: list[StepOutcome] = Field(default_factory=list)
    audit_errors: list[str] = Field(default_factory=list)
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == ProvisioningStatus.SUCCESS

    @property
    def alert_rule_ids(self) -> list[str]:
        return [r.id for r in self.alert_rules]

    @property
    def created_count(self) -> int:
        """Number of resources this run created (not found existing)."""
        return sum(s.created for s in self.steps)


# --- Audit ---


class StepEvent(BaseModel):
    """A single entry in the append-only provisioning audit log."""

    event_id: str
    timestamp: datetime
    prev_hash: str
    entry_hash: str = ""
    run_id: str
    step: StepName
    ok: bool
    application: str
    resource_group: str
    resource_id: str | None = None
    created: int = 0
    modifies_target: bool = False
    error: str | None = None
    context: dict[str, Any] | None = None
