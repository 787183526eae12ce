"""Config file loading and auto-discovery for the monitoring provisioner.

Searches for ``monitor-provisioner.yaml`` in the current directory and
parent directories, parses it, and resolves the audit log path against
the config file's location.
"""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

import yaml

from monitor_provisioner.errors import ConfigurationError
from monitor_provisioner.models import DEFAULT_REGION

CONFIG_FILENAME = "monitor-provisioner.yaml"

DEFAULT_RETENTION_DAYS = 30
DEFAULT_EXTENSION_VERSION = "~3"
DEFAULT_INSTRUMENTATION_MODE = "recommended"

BACKENDS = ("sdk", "az")


@dataclass(frozen=True)
class ProvisionerConfig:
    """Parsed provisioner configuration. Every field has a default."""

    config_path: Path | None = None
    region: str = DEFAULT_REGION
    retention_days: int = DEFAULT_RETENTION_DAYS
    extension_version: str = DEFAULT_EXTENSION_VERSION
    instrumentation_mode: str = DEFAULT_INSTRUMENTATION_MODE
    concurrent_alerts: bool = True
    max_attempts: int = 1
    backoff_seconds: float = 2.0
    command_timeout: float = 300.0
    backend: str = "sdk"
    az_path: str = "az"
    subscription: str | None = None
    audit_log: str | None = None

    def __post_init__(self) -> None:
        if not 30 <= self.retention_days <= 730:
            msg = f"retention_days must be between 30 and 730, got {self.retention_days}"
            raise ConfigurationError(msg)
        if self.max_attempts < 1:
            msg = f"max_attempts must be at least 1, got {self.max_attempts}"
            raise ConfigurationError(msg)
        if self.backoff_seconds < 0:
            msg = f"backoff_seconds must not be negative, got {self.backoff_seconds}"
            raise ConfigurationError(msg)
        if self.backend not in BACKENDS:
            msg = f"backend must be one of {', '.join(BACKENDS)}, got {self.backend!r}"
            raise ConfigurationError(msg)


_KNOWN_KEYS = {f.name for f in fields(ProvisionerConfig)} - {"config_path"}


def find_config(start: Path | None = None) -> Path | None:
    """Walk from *start* (default ``cwd()``) up to the filesystem root.

    Returns the first ``monitor-provisioner.yaml`` found, or ``None``.
    """
    current = (start or Path.cwd()).resolve()
    while True:
        candidate = current / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            return None
        current = parent


def load_config(
    path: str | Path | None = None,
    *,
    auto_discover: bool = True,
) -> ProvisionerConfig:
    """Load a provisioner config file.

    Resolution order:

    1. Explicit *path* (error if it doesn't exist).
    2. Auto-discover by walking parent directories.
    3. Return an empty ``ProvisionerConfig`` (all defaults).
    """
    config_path: Path | None = None

    if path is not None:
        config_path = Path(path).resolve()
        if not config_path.is_file():
            msg = f"Config file not found: {config_path}"
            raise FileNotFoundError(msg)
    elif auto_discover:
        config_path = find_config()

    if config_path is None:
        return ProvisionerConfig()

    return _parse_config(config_path)


def _parse_config(config_path: Path) -> ProvisionerConfig:
    """Read and parse a YAML config file."""
    text = config_path.read_text(encoding="utf-8")
    data = yaml.safe_load(text) or {}

    if not isinstance(data, dict):
        msg = f"Expected a YAML mapping in {config_path}, got {type(data).__name__}"
        raise ConfigurationError(msg)

    unknown = sorted(set(data) - _KNOWN_KEYS)
    if unknown:
        msg = f"Unknown keys in {config_path}: {', '.join(unknown)}"
        raise ConfigurationError(msg)

    values: dict[str, Any] = dict(data)
    if values.get("audit_log") is not None:
        values["audit_log"] = str((config_path.parent / values["audit_log"]).resolve())

    try:
        return ProvisionerConfig(config_path=config_path, **values)
    except TypeError as exc:
        raise ConfigurationError(f"Invalid config in {config_path}: {exc}") from exc


def merge_overrides(config: ProvisionerConfig, **overrides: Any) -> ProvisionerConfig:
    """Return a copy of *config* with every non-None override applied."""
    updates = {k: v for k, v in overrides.items() if v is not None}
    if not updates:
        return config
    return replace(config, **updates)
