"""Built-in metric alert rules.

Host metrics (CPU, memory) live on the compute plan because several
applications can share one plan; request metrics (5xx, latency) live on
the application itself.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from monitor_provisioner.models import (
    Aggregation,
    AlertRuleSpec,
    AlertScope,
    Operator,
    ResourceNames,
)


@dataclass(frozen=True)
class AlertRuleTemplate:
    """An alert rule before scope and notification ids are known."""

    role: str
    title: str
    scope: AlertScope
    metric_name: str
    aggregation: Aggregation
    threshold: float
    severity: int
    description: str
    unit: str = ""
    operator: Operator = Operator.GREATER_THAN
    window: timedelta = timedelta(minutes=5)
    frequency: timedelta = timedelta(minutes=1)


DEFAULT_ALERT_RULES: tuple[AlertRuleTemplate, ...] = (
    AlertRuleTemplate(
        role="cpu-high",
        title="CPU high",
        scope=AlertScope.PLAN,
        metric_name="CpuPercentage",
        aggregation=Aggregation.AVERAGE,
        threshold=80,
        severity=2,
        unit="%",
        description="Average CPU usage above 80% for 5 minutes",
    ),
    AlertRuleTemplate(
        role="memory-high",
        title="Memory high",
        scope=AlertScope.PLAN,
        metric_name="MemoryPercentage",
        aggregation=Aggregation.AVERAGE,
        threshold=85,
        severity=2,
        unit="%",
        description="Average memory usage above 85% for 5 minutes",
    ),
    AlertRuleTemplate(
        role="http-5xx",
        title="HTTP 5xx",
        scope=AlertScope.APPLICATION,
        metric_name="Http5xx",
        aggregation=Aggregation.TOTAL,
        threshold=10,
        severity=1,
        description="More than 10 server errors in 5 minutes",
    ),
    AlertRuleTemplate(
        role="response-time",
        title="Response time",
        scope=AlertScope.APPLICATION,
        metric_name="HttpResponseTime",
        aggregation=Aggregation.AVERAGE,
        threshold=5,
        severity=3,
        unit="s",
        description="Average response time above 5 seconds for 5 minutes",
    ),
)


def build_alert_specs(
    names: ResourceNames,
    application_id: str,
    plan_id: str,
    notification_group_id: str,
    resource_group: str = "",
    templates: tuple[AlertRuleTemplate, ...] = DEFAULT_ALERT_RULES,
) -> list[AlertRuleSpec]:
    """Resolve templates into concrete specs for one application."""
    scope_ids = {
        AlertScope.PLAN: plan_id,
        AlertScope.APPLICATION: application_id,
    }
    specs: list[AlertRuleSpec] = []
    for t in templates:
        specs.append(AlertRuleSpec(
            name=names.alert_rules.get(t.role, f"alert-{t.role}"),
            role=t.role,
            scope=t.scope,
            scope_resource_id=scope_ids[t.scope],
            metric_name=t.metric_name,
            aggregation=t.aggregation,
            operator=t.operator,
            threshold=t.threshold,
            evaluation_window=t.window,
            evaluation_frequency=t.frequency,
            severity=t.severity,
            description=t.description,
            notification_target_id=notification_group_id,
            resource_group=resource_group,
        ))
    return specs
