"""CloudApi protocol.

Defines the interface the provisioning workflow drives. Any object with
these methods satisfies the protocol — no inheritance required.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from monitor_provisioner.models import (
    Account,
    AlertRuleDescriptor,
    AlertRuleSpec,
    ApplicationDescriptor,
    EmailChannel,
    NotificationGroupDescriptor,
    TelemetryDescriptor,
    WorkspaceDescriptor,
)


@runtime_checkable
class CloudApi(Protocol):
    """Protocol for cloud resource backends.

    Create-or-get methods return the existing resource (``created=False``)
    when one with the same name is already present. Failures raise
    ``CloudApiError``.
    """

    def get_current_account(self) -> Account | None:
        """Return the logged-in account, or None."""
        ...

    def get_application(
        self,
        resource_group: str,
        name: str,
    ) -> ApplicationDescriptor | None:
        """Return the application descriptor, or None if it doesn't exist."""
        ...

    def create_or_get_workspace(
        self,
        resource_group: str,
        name: str,
        region: str,
        retention_days: int,
    ) -> WorkspaceDescriptor:
        ...

    def create_or_get_telemetry_component(
        self,
        resource_group: str,
        name: str,
        region: str,
        workspace_id: str,
    ) -> TelemetryDescriptor:
        ...

    def set_application_config(
        self,
        app_id: str,
        settings: dict[str, str],
    ) -> None:
        """Set application settings on the target app (merges by key)."""
        ...

    def create_or_get_notification_group(
        self,
        resource_group: str,
        name: str,
        short_name: str,
        email_channel: EmailChannel,
    ) -> NotificationGroupDescriptor:
        ...

    def create_or_get_alert_rule(self, spec: AlertRuleSpec) -> AlertRuleDescriptor:
        ...

    def set_diagnostic_forwarding(
        self,
        resource_id: str,
        workspace_id: str,
        log_categories: list[str],
        metric_categories: list[str],
        setting_name: str,
    ) -> None:
        """Create or replace the named diagnostic setting."""
        ...
