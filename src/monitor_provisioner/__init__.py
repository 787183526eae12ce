"""monitor-provisioner: idempotent monitoring setup for cloud web applications."""

__version__ = "0.4.0"

from monitor_provisioner.audit.logger import AuditLogger, verify_log
from monitor_provisioner.cloud.api import CloudApi
from monitor_provisioner.cloud.az_cli import AzCliClient
from monitor_provisioner.cloud.azure_sdk import AzureSdkClient
from monitor_provisioner.cloud.memory import InMemoryCloudApi
from monitor_provisioner.config import ProvisionerConfig, find_config, load_config
from monitor_provisioner.errors import (
    AuthenticationError,
    CloudApiError,
    ConfigurationError,
    NotFoundError,
    PreconditionError,
    ProvisionerError,
    ProvisioningError,
)
from monitor_provisioner.models import (
    AlertRuleSpec,
    ProvisioningRequest,
    ProvisioningResult,
    ProvisioningStatus,
    ResourceNames,
    StepName,
    StepOutcome,
)
from monitor_provisioner.naming import derive_names
from monitor_provisioner.report import format_summary
from monitor_provisioner.rules import DEFAULT_ALERT_RULES, build_alert_specs
from monitor_provisioner.workflow import Provisioner, RetryPolicy, parse_request, provision

__all__ = [
    "AlertRuleSpec",
    "AuditLogger",
    "AuthenticationError",
    "AzCliClient",
    "AzureSdkClient",
    "build_alert_specs",
    "CloudApi",
    "CloudApiError",
    "ConfigurationError",
    "DEFAULT_ALERT_RULES",
    "derive_names",
    "find_config",
    "format_summary",
    "InMemoryCloudApi",
    "load_config",
    "NotFoundError",
    "parse_request",
    "PreconditionError",
    "provision",
    "Provisioner",
    "ProvisionerConfig",
    "ProvisionerError",
    "ProvisioningError",
    "ProvisioningRequest",
    "ProvisioningResult",
    "ProvisioningStatus",
    "ResourceNames",
    "RetryPolicy",
    "StepName",
    "StepOutcome",
    "verify_log",
    "__version__",
]
