"""Resource naming conventions.

Every monitoring resource name is a pure function of the application
name, so a second run computes the same names and finds the resources
the first run created instead of duplicating them.
"""

from __future__ import annotations

import hashlib
import re

from monitor_provisioner.errors import ConfigurationError
from monitor_provisioner.models import ResourceNames

ALERT_ROLES: tuple[str, ...] = ("cpu-high", "memory-high", "http-5xx", "response-time")

SHORT_NAME_MAX = 12

_NON_ALNUM = re.compile(r"[^A-Za-z0-9]")


def short_name(application_name: str) -> str:
    """Notification-group short name (provider limit: 12 characters).

    ``ag`` + up to four alphanumerics of the name + 6 hex digits of its
    SHA-256, e.g. ``agwebad41c9e``.
    """
    stem = _NON_ALNUM.sub("", application_name)[:4].lower()
    digest = hashlib.sha256(application_name.encode("utf-8")).hexdigest()[:6]
    return f"ag{stem}{digest}"[:SHORT_NAME_MAX]


def derive_names(application_name: str) -> ResourceNames:
    """Derive all monitoring resource names for *application_name*."""
    if not application_name or not application_name.strip():
        raise ConfigurationError("application name must not be empty")
    if application_name != application_name.strip():
        raise ConfigurationError(
            f"application name must not have surrounding whitespace: {application_name!r}"
        )

    app = application_name
    return ResourceNames(
        workspace=f"log-{app}",
        telemetry=f"appi-{app}",
        notification_group=f"ag-{app}",
        notification_short_name=short_name(app),
        diagnostic_setting=f"diag-{app}",
        alert_rules={role: f"alert-{app}-{role}" for role in ALERT_ROLES},
    )
