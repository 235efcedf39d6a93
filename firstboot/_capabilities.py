"""Interfaces for the system tools the bootstrap drives.

Each protocol covers one family of external tools. The pipeline only talks to
these interfaces, so its ordering and fallback rules can be exercised with
in-memory doubles instead of a root shell on a fresh host.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol


class UserManager(Protocol):
    """Creates local accounts."""

    def create_user(self, username: str, gecos: str) -> None:
        """Create ``username`` with password login disabled."""

    def set_groups(self, username: str, groups: Sequence[str]) -> None:
        """Replace the supplementary groups of ``username``."""


class KeyImporter(Protocol):
    """Fetches SSH public keys from a public key registry."""

    def import_keys(self, account: str, user: str) -> None:
        """Authorise ``account``'s published keys for local ``user``."""


class PackageManager(Protocol):
    def refresh(self) -> None: ...

    def dist_upgrade(self) -> None: ...

    def install(self, packages: Sequence[str]) -> None: ...


class BootLoader(Protocol):
    def install(self, disk: str) -> None: ...

    def update_config(self) -> None: ...


class FirewallManager(Protocol):
    """Controls the host firewall."""

    def set_ssh_rule(self, *, limit: bool) -> None:
        """Rate-limit SSH when ``limit`` is true, otherwise allow it."""

    def enable(self) -> None: ...


class HostControl(Protocol):
    """Host-wide actions outside the other tool families."""

    def apply_hostname(self) -> None:
        """Load the kernel hostname from the freshly written hostname file."""

    def lock_root_password(self) -> None:
        """Disable password authentication for the superuser."""

    def reboot(self) -> None: ...


@dataclass(frozen=True, slots=True)
class HostCapabilities:
    """The full set of tool adapters a bootstrap run needs."""

    users: UserManager
    keys: KeyImporter
    packages: PackageManager
    boot_loader: BootLoader
    firewall: FirewallManager
    host: HostControl


__all__ = [
    "BootLoader",
    "FirewallManager",
    "HostCapabilities",
    "HostControl",
    "KeyImporter",
    "PackageManager",
    "UserManager",
]
