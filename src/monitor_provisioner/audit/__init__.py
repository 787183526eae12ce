"""Provisioning audit log."""

from monitor_provisioner.audit.logger import AuditError, AuditLogger, verify_log

__all__ = ["AuditError", "AuditLogger", "verify_log"]
