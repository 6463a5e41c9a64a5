"""Exceptions for fatal sandbox-ci failures.

Counted phase failures are never raised; only the steps that abort a run
(provisioning, bootstrap, injection) use these.
"""

from __future__ import annotations


class SandboxCIError(Exception):
    """Base exception for all fatal run errors.

    Attributes:
        output: Captured remote output relevant to the failure, if any.
    """

    def __init__(self, message: str, output: str = "") -> None:
        self.output = output
        super().__init__(message)


class RuntimeUnavailableError(SandboxCIError):
    """Raised when the container runtime binary cannot be executed."""


class ProvisionError(SandboxCIError):
    """Raised when a sandbox cannot be created or made ready."""


class InstallError(SandboxCIError):
    """Raised when bootstrap packages cannot be installed.

    Attributes:
        attempts: Number of download attempts made before giving up.
    """

    def __init__(self, message: str, output: str = "", attempts: int = 0) -> None:
        self.attempts = attempts
        super().__init__(message, output)


class InjectionError(SandboxCIError):
    """Raised when the working tree cannot be transplanted into the sandbox."""
