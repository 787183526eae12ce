"""Provisioner — orchestrates monitoring setup for one web application.

The Provisioner checks preconditions, then walks an ordered list of
create-or-get calls against a CloudApi, threading each step's ids into
the next, and returns a ProvisioningResult. It is the only place that
decides Success / PartialFailure / Failure.
"""

from __future__ import annotations

import logging
import time
import uuid
import warnings
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, TypeVar

from pydantic import ValidationError

from monitor_provisioner.audit.logger import AuditError, AuditLogger, AuditWarning
from monitor_provisioner.config import ProvisionerConfig
from monitor_provisioner.errors import (
    AuthenticationError,
    CloudApiError,
    ConfigurationError,
    NotFoundError,
    ProvisionerError,
    ProvisioningError,
)
from monitor_provisioner.models import (
    AlertRuleDescriptor,
    AlertRuleRecord,
    AlertRuleSpec,
    ApplicationDescriptor,
    EmailChannel,
    ProvisioningRequest,
    ProvisioningResult,
    ProvisioningStatus,
    ResourceDescriptor,
    ResourceNames,
    StepName,
    StepOutcome,
    TelemetryDescriptor,
)
from monitor_provisioner.naming import derive_names
from monitor_provisioner.rules import build_alert_specs

if TYPE_CHECKING:
    from monitor_provisioner.cloud.api import CloudApi

logger = logging.getLogger(__name__)

T = TypeVar("T")
D = TypeVar("D", bound=ResourceDescriptor)

CONNECTION_STRING_SETTING = "APPLICATIONINSIGHTS_CONNECTION_STRING"
EXTENSION_VERSION_SETTING = "ApplicationInsightsAgent_EXTENSION_VERSION"
INSTRUMENTATION_MODE_SETTING = "XDT_MicrosoftApplicationInsights_Mode"

DIAGNOSTIC_LOG_CATEGORIES: tuple[str, ...] = (
    "AppServiceHTTPLogs",
    "AppServiceConsoleLogs",
    "AppServiceAppLogs",
)
DIAGNOSTIC_METRIC_CATEGORIES: tuple[str, ...] = ("AllMetrics",)

EMAIL_RECEIVER_NAME = "email-admin"

# Steps that write onto the monitored application, not just monitoring resources.
TARGET_MODIFYING_STEPS = frozenset({StepName.APP_SETTINGS, StepName.DIAGNOSTICS})

MAX_ALERT_WORKERS = 4


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry with exponential backoff for transient API errors.

    ``max_attempts=1`` means a single try and no retry.
    """

    max_attempts: int = 1
    backoff_seconds: float = 2.0
    multiplier: float = 2.0

    def delay(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number *attempt* (1-based)."""
        return self.backoff_seconds * (self.multiplier ** (attempt - 1))


class _StepFailed(Exception):
    """Carries a failed step's outcome and everything accumulated so far."""

    def __init__(
        self,
        outcome: StepOutcome,
        error: Exception,
        result: ProvisioningResult,
    ) -> None:
        super().__init__(str(error))
        self.outcome = outcome
        self.error = error
        self.result = result


def parse_request(
    resource_group: str,
    application_name: str,
    notification_email: str,
    region: str | None = None,
) -> ProvisioningRequest:
    """Validate raw input into a ProvisioningRequest.

    Raises ConfigurationError naming every invalid field.
    """
    try:
        return ProvisioningRequest(
            resource_group=resource_group,
            application_name=application_name,
            notification_email=notification_email,
            region=region,
        )
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
            for err in exc.errors()
        )
        raise ConfigurationError(f"Invalid provisioning request: {problems}") from exc


class Provisioner:
    """Orchestrates monitoring provisioning against a CloudApi.

    Lifecycle:
      1. Verify preconditions (logged in, application exists)
      2. Create or get logging workspace
      3. Create or get telemetry component (workspace-based)
      4. Apply telemetry settings to the application
      5. Create or get notification group (one email channel)
      6. Resolve the compute plan id from the application
      7. Create or get the four alert rules
      8. Create or replace diagnostic forwarding

    Nothing is rolled back when a later step fails: every call is
    create-or-get, so re-running after fixing the cause picks up where
    the failed run stopped.
    """

    def __init__(
        self,
        api: CloudApi,
        config: ProvisionerConfig | None = None,
        audit_logger: AuditLogger | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._api = api
        self._config = config or ProvisionerConfig()
        self._audit = audit_logger
        self._sleep = sleep
        self._retry = RetryPolicy(
            max_attempts=self._config.max_attempts,
            backoff_seconds=self._config.backoff_seconds,
        )

    @property
    def config(self) -> ProvisionerConfig:
        return self._config

    def run(
        self,
        resource_group: str,
        application_name: str,
        notification_email: str,
        region: str | None = None,
    ) -> ProvisioningResult:
        """Validate raw input, then provision.

        Invalid input yields a Failure result before any remote call.
        """
        try:
            request = parse_request(
                resource_group,
                application_name,
                notification_email,
                region or self._config.region,
            )
        except ConfigurationError as exc:
            now = datetime.now(tz=UTC)
            logger.error("Invalid input: %s", exc)
            return ProvisioningResult(
                status=ProvisioningStatus.FAILURE,
                run_id=_new_run_id(),
                failed_step=StepName.VALIDATE_INPUT,
                error=str(exc),
                steps=[StepOutcome(step=StepName.VALIDATE_INPUT, ok=False, error=str(exc))],
                started_at=now,
                finished_at=now,
            )
        return self.provision(request)

    def provision(self, request: ProvisioningRequest) -> ProvisioningResult:
        """Run the full workflow for *request*.

        Never raises for expected failures (not logged in, missing app,
        API errors) — those are captured in the result's status,
        ``failed_step`` and ``error`` fields.
        """
        run_id = _new_run_id()
        names = derive_names(request.application_name)
        result = ProvisioningResult(
            status=ProvisioningStatus.FAILURE,
            run_id=run_id,
            request=request,
            names=names,
            started_at=datetime.now(tz=UTC),
        )
        logger.info(
            "Provisioning monitoring for %s/%s (run %s)",
            request.resource_group, request.application_name, run_id,
        )

        # Step 1: Preconditions. Nothing is created if this fails.
        try:
            app, outcome = self._step(
                result, StepName.PRECONDITIONS,
                lambda: self._verify_preconditions(request),
                retry=False,
            )
        except _StepFailed as failed:
            return self._finish(failed.result, ProvisioningStatus.FAILURE, failed)
        result = self._record(
            result, outcome.model_copy(update={"resource_id": app.id}),
            application_id=app.id,
        )

        try:
            result = self._provision_resources(result, request, app, names)
        except _StepFailed as failed:
            return self._finish(failed.result, ProvisioningStatus.PARTIAL_FAILURE, failed)

        return self._finish(result, ProvisioningStatus.SUCCESS)

    # --- Steps 2-8 ---

    def _provision_resources(
        self,
        result: ProvisioningResult,
        request: ProvisioningRequest,
        app: ApplicationDescriptor,
        names: ResourceNames,
    ) -> ProvisioningResult:
        cfg = self._config

        # Step 2: Logging workspace
        workspace, outcome = self._step(
            result, StepName.WORKSPACE,
            lambda: _require_id(
                self._api.create_or_get_workspace(
                    request.resource_group, names.workspace,
                    request.region, cfg.retention_days,
                ),
                "workspace",
            ),
        )
        result = self._record(
            result, _with_resource(outcome, workspace),
            workspace_id=workspace.id,
        )

        # Step 3: Telemetry component bound to the workspace
        component, outcome = self._step(
            result, StepName.TELEMETRY,
            lambda: _require_connection_string(
                _require_id(
                    self._api.create_or_get_telemetry_component(
                        request.resource_group, names.telemetry,
                        request.region, workspace.id,
                    ),
                    "telemetry component",
                ),
            ),
        )
        result = self._record(
            result, _with_resource(outcome, component),
            telemetry_id=component.id,
            connection_string=component.connection_string,
        )

        # Step 4: Telemetry settings on the application itself
        settings = {
            CONNECTION_STRING_SETTING: component.connection_string,
            EXTENSION_VERSION_SETTING: cfg.extension_version,
            INSTRUMENTATION_MODE_SETTING: cfg.instrumentation_mode,
        }
        logger.warning(
            "Modifying monitored application %s: setting %s",
            app.name, ", ".join(sorted(settings)),
        )
        _, outcome = self._step(
            result, StepName.APP_SETTINGS,
            lambda: self._api.set_application_config(app.id, settings),
        )
        result = self._record(
            result, outcome.model_copy(update={"resource_id": app.id}),
            audit_context={"settings": sorted(settings)},
            app_settings_applied=True,
        )

        # Step 5: Notification group with one email channel
        channel = EmailChannel(name=EMAIL_RECEIVER_NAME, address=request.notification_email)
        group, outcome = self._step(
            result, StepName.NOTIFICATION_GROUP,
            lambda: _require_id(
                self._api.create_or_get_notification_group(
                    request.resource_group, names.notification_group,
                    names.notification_short_name, channel,
                ),
                "notification group",
            ),
        )
        result = self._record(
            result, _with_resource(outcome, group),
            notification_group_id=group.id,
        )

        # Step 6: Compute plan id, already on the application descriptor
        plan_id, outcome = self._step(
            result, StepName.RESOLVE_PLAN,
            lambda: _resolve_plan_id(app),
            retry=False,
        )
        result = self._record(
            result, outcome.model_copy(update={"resource_id": plan_id}),
            plan_id=plan_id,
        )

        # Step 7: Alert rules
        specs = build_alert_specs(
            names, app.id, plan_id, group.id,
            resource_group=request.resource_group,
        )
        result = self._create_alert_rules(result, specs)

        # Step 8: Diagnostic forwarding (create-or-replace)
        logger.warning(
            "Modifying monitored application %s: forwarding diagnostics to %s",
            app.name, workspace.name,
        )
        _, outcome = self._step(
            result, StepName.DIAGNOSTICS,
            lambda: self._api.set_diagnostic_forwarding(
                app.id, workspace.id,
                list(DIAGNOSTIC_LOG_CATEGORIES),
                list(DIAGNOSTIC_METRIC_CATEGORIES),
                names.diagnostic_setting,
            ),
        )
        return self._record(
            result, outcome.model_copy(update={"resource_id": names.diagnostic_setting}),
            audit_context={
                "logs": list(DIAGNOSTIC_LOG_CATEGORIES),
                "metrics": list(DIAGNOSTIC_METRIC_CATEGORIES),
            },
            diagnostics_enabled=True,
            diagnostic_log_categories=list(DIAGNOSTIC_LOG_CATEGORIES),
            diagnostic_metric_categories=list(DIAGNOSTIC_METRIC_CATEGORIES),
        )

    def _create_alert_rules(
        self,
        result: ProvisioningResult,
        specs: list[AlertRuleSpec],
    ) -> ProvisioningResult:
        """Create every rule; rules that succeed are kept even if others fail."""
        logger.info("Step %s (%d rules)", StepName.ALERT_RULES, len(specs))
        start = time.monotonic()

        def create(spec: AlertRuleSpec) -> tuple[AlertRuleDescriptor | Exception, int]:
            try:
                return self._call(lambda: self._api.create_or_get_alert_rule(spec))
            except Exception as exc:
                attempts = exc.attempts if isinstance(exc, CloudApiError) else 1
                return exc, attempts

        if self._config.concurrent_alerts and len(specs) > 1:
            with ThreadPoolExecutor(max_workers=min(MAX_ALERT_WORKERS, len(specs))) as pool:
                outcomes = list(pool.map(create, specs))
        else:
            outcomes = [create(spec) for spec in specs]

        records: list[AlertRuleRecord] = []
        failures: list[str] = []
        for spec, (value, _) in zip(specs, outcomes, strict=True):
            if isinstance(value, Exception):
                failures.append(f"{spec.name}: {value}")
            elif not value.id:
                failures.append(f"{spec.name}: no usable identifier returned")
            else:
                records.append(AlertRuleRecord(
                    role=spec.role,
                    name=spec.name,
                    id=value.id,
                    scope=spec.scope,
                    scope_resource_id=spec.scope_resource_id,
                    condition=spec.condition,
                    severity=spec.severity,
                    created=value.created,
                ))

        outcome = StepOutcome(
            step=StepName.ALERT_RULES,
            ok=not failures,
            created=sum(r.created for r in records),
            attempts=max(attempts for _, attempts in outcomes) if outcomes else 1,
            error="; ".join(failures) or None,
            duration_ms=(time.monotonic() - start) * 1000,
        )
        result = result.model_copy(update={"alert_rules": records})
        if failures:
            result = self._audit_step(result, outcome)
            raise _StepFailed(
                outcome,
                ProvisioningError(
                    f"{len(failures)} of {len(specs)} alert rules failed: "
                    + "; ".join(failures)
                ),
                result,
            )
        return self._record(result, outcome, audit_context={"rules": [r.name for r in records]})

    # --- Step 1 ---

    def _verify_preconditions(self, request: ProvisioningRequest) -> ApplicationDescriptor:
        account = self._api.get_current_account()
        if account is None:
            raise AuthenticationError(
                "Not logged in to the cloud account (run 'az login' first)"
            )
        logger.info("Using subscription %s (%s)", account.name or "?", account.id)

        app = self._api.get_application(request.resource_group, request.application_name)
        if app is None:
            raise NotFoundError(
                f"Application {request.application_name!r} not found in "
                f"resource group {request.resource_group!r}"
            )
        return app

    # --- Plumbing ---

    def _step(
        self,
        result: ProvisioningResult,
        step: StepName,
        fn: Callable[[], T],
        retry: bool = True,
    ) -> tuple[T, StepOutcome]:
        """Run one step; any exception becomes a _StepFailed."""
        logger.info("Step %s", step)
        start = time.monotonic()
        try:
            value, attempts = self._call(fn) if retry else (fn(), 1)
        except Exception as exc:
            error = exc if isinstance(exc, ProvisionerError) else ProvisioningError(
                f"Unexpected error: {exc}"
            )
            outcome = StepOutcome(
                step=step,
                ok=False,
                error=str(error),
                attempts=exc.attempts if isinstance(exc, CloudApiError) else 1,
                duration_ms=(time.monotonic() - start) * 1000,
            )
            result = self._audit_step(result, outcome)
            raise _StepFailed(outcome, error, result) from exc

        return value, StepOutcome(
            step=step,
            ok=True,
            attempts=attempts,
            duration_ms=(time.monotonic() - start) * 1000,
        )

    def _call(self, fn: Callable[[], T]) -> tuple[T, int]:
        """Call *fn*, retrying transient CloudApiErrors per the retry policy."""
        attempt = 1
        while True:
            try:
                return fn(), attempt
            except CloudApiError as exc:
                exc.attempts = attempt
                if not exc.transient or attempt >= self._retry.max_attempts:
                    raise
                delay = self._retry.delay(attempt)
                logger.warning(
                    "Transient API error (attempt %d/%d), retrying in %.1fs: %s",
                    attempt, self._retry.max_attempts, delay, exc,
                )
                self._sleep(delay)
                attempt += 1

    def _record(
        self,
        result: ProvisioningResult,
        outcome: StepOutcome,
        audit_context: dict[str, Any] | None = None,
        **updates: Any,
    ) -> ProvisioningResult:
        """Append a successful outcome, apply field updates, and audit it."""
        result = result.model_copy(update={**updates, "steps": [*result.steps, outcome]})
        return self._audit_step(result, outcome, audit_context)

    def _audit_step(
        self,
        result: ProvisioningResult,
        outcome: StepOutcome,
        context: dict[str, Any] | None = None,
    ) -> ProvisioningResult:
        """Write *outcome* to the audit log.

        A failed write never aborts the run: it is warned about and kept
        in ``audit_errors`` so the caller still gets the result.
        """
        if self._audit is None or result.request is None:
            return result
        try:
            self._audit.log_step(
                run_id=result.run_id,
                outcome=outcome,
                application=result.request.application_name,
                resource_group=result.request.resource_group,
                modifies_target=outcome.step in TARGET_MODIFYING_STEPS,
                context=context,
            )
        except AuditError as exc:
            message = f"Audit of step {outcome.step} failed: {exc}"
            logger.error(message)
            warnings.warn(message, AuditWarning, stacklevel=2)
            return result.model_copy(update={"audit_errors": [*result.audit_errors, message]})
        return result

    def _finish(
        self,
        result: ProvisioningResult,
        status: ProvisioningStatus,
        failed: _StepFailed | None = None,
    ) -> ProvisioningResult:
        updates: dict[str, Any] = {
            "status": status,
            "finished_at": datetime.now(tz=UTC),
        }
        if failed is not None:
            updates["failed_step"] = failed.outcome.step
            updates["error"] = str(failed.error)
            updates["steps"] = [*result.steps, failed.outcome]
            logger.error("Step %s failed: %s", failed.outcome.step, failed.error)
        else:
            logger.info("Provisioning complete: %d resource(s) created", result.created_count)
        return result.model_copy(update=updates)


def provision(
    api: CloudApi,
    request: ProvisioningRequest,
    config: ProvisionerConfig | None = None,
    audit_logger: AuditLogger | None = None,
) -> ProvisioningResult:
    """Provision monitoring for *request* with a one-off Provisioner."""
    return Provisioner(api, config=config, audit_logger=audit_logger).provision(request)


def _require_id(descriptor: D, what: str) -> D:
    if not descriptor.id:
        raise ProvisioningError(f"Creating the {what} returned no usable identifier")
    return descriptor


def _require_connection_string(component: TelemetryDescriptor) -> TelemetryDescriptor:
    if not component.connection_string:
        raise ProvisioningError(
            f"Telemetry component {component.name!r} returned no connection string"
        )
    return component


def _resolve_plan_id(app: ApplicationDescriptor) -> str:
    if not app.plan_id:
        raise ProvisioningError(f"Application {app.name!r} has no compute plan id")
    return app.plan_id


def _with_resource(outcome: StepOutcome, descriptor: ResourceDescriptor) -> StepOutcome:
    return outcome.model_copy(
        update={"resource_id": descriptor.id, "created": int(descriptor.created)},
    )


def _new_run_id() -> str:
    return f"run-{uuid.uuid4().hex[:12]}"
