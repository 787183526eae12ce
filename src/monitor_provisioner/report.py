"""Human-readable and JSON summaries of a ProvisioningResult."""

from __future__ import annotations

import json
from typing import Any

from monitor_provisioner.models import ProvisioningResult, ProvisioningStatus, StepName
from monitor_provisioner.rules import DEFAULT_ALERT_RULES, AlertRuleTemplate

PORTAL_URL = "https://portal.azure.com/#@"

_STATUS_LABELS = {
    ProvisioningStatus.SUCCESS: "SUCCESS",
    ProvisioningStatus.PARTIAL_FAILURE: "PARTIAL FAILURE",
    ProvisioningStatus.FAILURE: "FAILURE",
}

_RULE_TEMPLATES: dict[str, AlertRuleTemplate] = {t.role: t for t in DEFAULT_ALERT_RULES}

_CREATE_OR_GET_STEPS = frozenset({
    StepName.WORKSPACE,
    StepName.TELEMETRY,
    StepName.NOTIFICATION_GROUP,
})


def portal_link(resource_id: str, blade: str = "") -> str:
    """Deep link to a resource in the portal."""
    link = f"{PORTAL_URL}/resource{resource_id}"
    return f"{link}/{blade}" if blade else link


def describe_threshold(template: AlertRuleTemplate) -> str:
    minutes = int(template.window.total_seconds() // 60)
    return (
        f"{template.aggregation} {template.metric_name} "
        f"{template.operator.symbol} {template.threshold:g}{template.unit} "
        f"over {minutes}m"
    )


def format_summary(result: ProvisioningResult) -> str:
    """Format *result* as a multi-line report for an operator."""
    lines: list[str] = []
    rule = "=" * 60
    lines.append(rule)
    lines.append(f"Monitoring provisioning: {_STATUS_LABELS[result.status]}")
    lines.append(rule)

    request = result.request
    if request is not None:
        lines.append(f"Application:        {request.application_name}")
        lines.append(f"Resource group:     {request.resource_group}")
        lines.append(f"Region:             {request.region}")
        lines.append(f"Notify:             {request.notification_email}")
    lines.append(f"Run:                {result.run_id}")

    names = result.names
    if names is not None and result.workspace_id:
        lines.append("")
        lines.append("Resources:")
        lines.append(f"  Log workspace:      {names.workspace}")
        if result.telemetry_id:
            lines.append(f"  Telemetry:          {names.telemetry}")
        if result.notification_group_id:
            lines.append(
                f"  Notification group: {names.notification_group} "
                f"({names.notification_short_name})"
            )
        if result.app_settings_applied:
            lines.append("  App settings:       telemetry connection configured")
        if result.diagnostics_enabled:
            lines.append(
                f"  Diagnostics:        {names.diagnostic_setting} -> "
                f"{', '.join(result.diagnostic_log_categories)} + "
                f"{', '.join(result.diagnostic_metric_categories)}"
            )

    if result.alert_rules:
        lines.append("")
        lines.append("Alert rules:")
        for r in result.alert_rules:
            template = _RULE_TEMPLATES.get(r.role)
            threshold = describe_threshold(template) if template else r.condition
            state = "created" if r.created else "existing"
            lines.append(
                f"  {r.name:<40} sev {r.severity}  {threshold}  "
                f"[{r.scope}] ({state})"
            )

    if result.steps:
        lines.append("")
        created = result.created_count
        existing = sum(
            1 for s in result.steps if s.ok and s.step in _CREATE_OR_GET_STEPS and not s.created
        ) + sum(1 for r in result.alert_rules if not r.created)
        lines.append(f"Created {created} new resource(s); {existing} already existed.")

    if result.failed_step is not None:
        lines.append("")
        lines.append(f"Failed step: {result.failed_step}")
        lines.append(f"Error:       {result.error}")
        if result.status == ProvisioningStatus.PARTIAL_FAILURE:
            lines.append("Resources created before the failure were kept; re-run to resume.")

    if result.audit_errors:
        lines.append("")
        lines.append(f"Audit log incomplete ({len(result.audit_errors)} step(s) not recorded):")
        for message in result.audit_errors:
            lines.append(f"  {message}")

    if result.application_id:
        lines.append("")
        lines.append(f"Monitoring view: {portal_link(result.application_id, 'appInsights')}")
        if result.telemetry_id:
            lines.append(f"Telemetry:       {portal_link(result.telemetry_id, 'overview')}")

    lines.append(rule)
    return "\n".join(lines)


def result_to_dict(result: ProvisioningResult) -> dict[str, Any]:
    data = result.model_dump(mode="json")
    data["alert_rule_ids"] = result.alert_rule_ids
    data["created_count"] = result.created_count
    return data


def result_to_json(result: ProvisioningResult) -> str:
    return json.dumps(result_to_dict(result), indent=2)
