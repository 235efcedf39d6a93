"""Exception hierarchy for the first-boot bootstrap.

Callers can catch :class:`BootstrapError` to handle every failure the tool
reports, or one of the subclasses when the distinction matters.

Examples
--------
>>> raise StepFailedError("install_grub", "grub-install exited with status 1")
Traceback (most recent call last):
...
firstboot._bootstrap_errors.StepFailedError: install_grub: grub-install exited with status 1
"""

from __future__ import annotations

from collections.abc import Sequence


class BootstrapError(RuntimeError):
    """Base error for first-boot provisioning failures."""


class ConfigError(BootstrapError):
    """Raised when an input cannot be turned into a valid configuration."""


class CommandError(BootstrapError):
    """Raised when an external system tool exits unsuccessfully."""

    def __init__(
        self,
        argv: Sequence[str],
        return_code: int | None,
        stderr: str = "",
    ) -> None:
        self.argv = tuple(argv)
        self.return_code = return_code
        self.stderr = stderr
        detail = stderr.strip() or f"exit status {return_code}"
        super().__init__(f"Command {' '.join(self.argv)!r} failed: {detail}")


class FactDiscoveryError(BootstrapError):
    """Raised when the host's external addresses cannot be determined."""


class Ipv6WaitTimeout(BootstrapError):
    """Raised when no global IPv6 address appears within the configured bound."""


class StepFailedError(BootstrapError):
    """Raised when a pipeline step fails; later steps are not attempted."""

    def __init__(self, step: str, reason: str) -> None:
        self.step = step
        super().__init__(f"{step}: {reason}")


__all__ = [
    "BootstrapError",
    "CommandError",
    "ConfigError",
    "FactDiscoveryError",
    "Ipv6WaitTimeout",
    "StepFailedError",
]
