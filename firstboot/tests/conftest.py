from __future__ import annotations

import sys
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from firstboot._bootstrap_errors import CommandError  # imported after sys.path mutation
from firstboot._capabilities import HostCapabilities  # imported after sys.path mutation

CONFIG_ENV_KEYS = (
    "HOSTNAME",
    "DOMAIN",
    "USERNAME",
    "GECOS",
    "GROUPS",
    "LAUNCHPAD_ACCOUNT",
    "EXTRA_PACKAGES",
    "KERNEL_PACKAGE",
    "REBOOT",
    "ZFS",
    "CONFIGURE_FIREWALL",
    "LIMIT_SSH",
    "CUSTOMIZE_ETC_ISSUE",
    "DEBUG",
    "BOOT_DISK",
    "IPV6_TIMEOUT",
    "IPV6_POLL_INTERVAL",
    "SYSROOT",
)


@dataclass
class FakeSystem:
    """In-memory stand-in for the host's system tools.

    Every adapter call is appended to ``calls``; names listed in ``fail_on``
    raise :class:`CommandError` after being recorded.
    """

    calls: list[tuple[object, ...]] = field(default_factory=list)
    fail_on: set[str] = field(default_factory=set)
    ssh_rule: str | None = None
    firewall_enabled: bool = False

    def record(self, name: str, *args: object) -> None:
        self.calls.append((name, *args))
        if name in self.fail_on:
            raise CommandError([name, *map(str, args)], 1, f"{name} failed")

    def names(self) -> list[str]:
        return [str(call[0]) for call in self.calls]

    def count(self, name: str) -> int:
        return self.names().count(name)

    def capabilities(self) -> HostCapabilities:
        return HostCapabilities(
            users=_FakeUsers(self),
            keys=_FakeKeys(self),
            packages=_FakePackages(self),
            boot_loader=_FakeBootLoader(self),
            firewall=_FakeFirewall(self),
            host=_FakeHost(self),
        )


class _FakeUsers:
    def __init__(self, system: FakeSystem) -> None:
        self._system = system

    def create_user(self, username: str, gecos: str) -> None:
        self._system.record("create_user", username, gecos)

    def set_groups(self, username: str, groups: Sequence[str]) -> None:
        self._system.record("set_groups", username, tuple(groups))


class _FakeKeys:
    def __init__(self, system: FakeSystem) -> None:
        self._system = system

    def import_keys(self, account: str, user: str) -> None:
        self._system.record("import_keys", account, user)


class _FakePackages:
    def __init__(self, system: FakeSystem) -> None:
        self._system = system

    def refresh(self) -> None:
        self._system.record("refresh")

    def dist_upgrade(self) -> None:
        self._system.record("dist_upgrade")

    def install(self, packages: Sequence[str]) -> None:
        self._system.record("install_packages", tuple(packages))


class _FakeBootLoader:
    def __init__(self, system: FakeSystem) -> None:
        self._system = system

    def install(self, disk: str) -> None:
        self._system.record("grub_install", disk)

    def update_config(self) -> None:
        self._system.record("update_grub")


class _FakeFirewall:
    def __init__(self, system: FakeSystem) -> None:
        self._system = system

    def set_ssh_rule(self, *, limit: bool) -> None:
        rule = "limit" if limit else "allow"
        self._system.record("ssh_rule", rule)
        self._system.ssh_rule = rule

    def enable(self) -> None:
        self._system.record("enable_firewall")
        self._system.firewall_enabled = True


class _FakeHost:
    def __init__(self, system: FakeSystem) -> None:
        self._system = system

    def apply_hostname(self) -> None:
        self._system.record("apply_hostname")

    def lock_root_password(self) -> None:
        self._system.record("lock_root_password")

    def reboot(self) -> None:
        self._system.record("reboot")


@pytest.fixture
def fake_system() -> FakeSystem:
    return FakeSystem()


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove configuration variables inherited from the test runner."""

    for key in CONFIG_ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
