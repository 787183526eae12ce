"""Exception taxonomy for the monitoring provisioner.

The workflow never lets these escape ``Provisioner.provision()``; they
are caught at the step boundary and turned into a ``ProvisioningResult``.
"""

from __future__ import annotations


class ProvisionerError(Exception):
    """Base class for all provisioner errors."""


class ConfigurationError(ProvisionerError):
    """Raised for invalid input or config, before any remote call."""


class PreconditionError(ProvisionerError):
    """Raised when the target cannot be provisioned at all."""


class AuthenticationError(PreconditionError):
    """Raised when no account is logged in to the cloud API."""


class NotFoundError(PreconditionError):
    """Raised when the target application does not exist."""


class ProvisioningError(ProvisionerError):
    """Raised when a create-or-get call fails or returns an unusable result."""


class CloudApiError(ProvisionerError):
    """Raised by a cloud client when a remote call fails.

    ``transient`` marks failures worth retrying (throttling, timeouts).
    ``status_code`` is the HTTP status when the provider returned one.
    """

    def __init__(
        self,
        message: str,
        *,
        command: list[str] | None = None,
        stderr: str = "",
        transient: bool = False,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.command = command or []
        self.stderr = stderr
        self.transient = transient
        self.status_code = status_code
        self.attempts = 1
