"""Command helpers wrapping the system tools on the provisioned host."""

from __future__ import annotations

import logging
import os
import shlex
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from plumbum import local
from plumbum.commands.processes import CommandNotFound, ProcessExecutionError

from firstboot._bootstrap_config import SUPERUSER
from firstboot._bootstrap_errors import CommandError
from firstboot._capabilities import HostCapabilities

logger = logging.getLogger(__name__)

SHUTDOWN = "/sbin/shutdown"
APT_GET = "apt-get"


@dataclass(slots=True)
class CommandContext:
    """Execution options for :func:`run_command`."""

    env: dict[str, str] | None = None
    stdin: str | None = None
    timeout: int | None = None


def run_command(
    command: str,
    *args: str,
    context: CommandContext | None = None,
) -> str:
    """Execute an external command and return its standard output.

    Examples
    --------
    >>> run_command("printf", "hello")
    'hello'
    """

    ctx = context or CommandContext()
    argv = [command, *args]
    logger.debug("+ %s", shlex.join(argv))
    try:
        bound = local[command][list(args)]
        if ctx.stdin is None:
            _, stdout, _ = bound.run(env=ctx.env, timeout=ctx.timeout)
        else:
            _, stdout, _ = (bound << ctx.stdin).run(env=ctx.env, timeout=ctx.timeout)
    except CommandNotFound as exc:
        raise CommandError(argv, None, f"{command}: command not found") from exc
    except ProcessExecutionError as exc:
        raise CommandError(argv, exc.retcode, exc.stderr or "") from exc
    return stdout


def apt_env() -> dict[str, str]:
    """Return the process environment with apt prompts disabled."""

    env = os.environ.copy()
    env["DEBIAN_FRONTEND"] = "noninteractive"
    return env


class SystemUserManager:
    """Account management through ``adduser`` and ``usermod``."""

    def create_user(self, username: str, gecos: str) -> None:
        run_command("adduser", "--disabled-password", "--gecos", gecos, username)

    def set_groups(self, username: str, groups: Sequence[str]) -> None:
        run_command("usermod", "-G", ",".join(groups), username)


class SshKeyImporter:
    """Imports keys with ``ssh-import-id``, as the receiving user."""

    def import_keys(self, account: str, user: str) -> None:
        if user == SUPERUSER:
            run_command("ssh-import-id", account)
            return
        run_command("sudo", "-Hu", user, "ssh-import-id", account)


class AptPackageManager:
    """Non-interactive ``apt-get`` operations."""

    def refresh(self) -> None:
        run_command(APT_GET, "update", context=CommandContext(env=apt_env()))

    def dist_upgrade(self) -> None:
        # Keep locally modified configuration files when a package ships a new one.
        run_command(
            APT_GET,
            "-yu",
            "-o",
            "Dpkg::Options::=--force-confold",
            "dist-upgrade",
            context=CommandContext(env=apt_env()),
        )

    def install(self, packages: Sequence[str]) -> None:
        run_command(
            APT_GET,
            "-yu",
            "install",
            "--install-recommends",
            *packages,
            context=CommandContext(env=apt_env()),
        )


class GrubBootLoader:
    def install(self, disk: str) -> None:
        run_command("grub-install", disk)

    def update_config(self) -> None:
        run_command("update-grub")


class UfwFirewall:
    """Host firewall managed through ``ufw``."""

    def set_ssh_rule(self, *, limit: bool) -> None:
        run_command("ufw", "limit" if limit else "allow", "ssh")

    def enable(self) -> None:
        # Without --force ufw asks for confirmation on stdin.
        run_command("ufw", "--force", "enable")


class SystemHostControl:
    """Hostname, superuser password and power control."""

    def __init__(self, hostname_file: Path) -> None:
        self._hostname_file = hostname_file

    def apply_hostname(self) -> None:
        run_command("hostname", "-F", str(self._hostname_file))

    def lock_root_password(self) -> None:
        run_command("usermod", "-p", "!", SUPERUSER)

    def reboot(self) -> None:
        run_command(SHUTDOWN, "-r", "now")


def system_capabilities(hostname_file: Path) -> HostCapabilities:
    """Return adapters that drive the real system tools."""

    return HostCapabilities(
        users=SystemUserManager(),
        keys=SshKeyImporter(),
        packages=AptPackageManager(),
        boot_loader=GrubBootLoader(),
        firewall=UfwFirewall(),
        host=SystemHostControl(hostname_file),
    )


__all__ = [
    "AptPackageManager",
    "CommandContext",
    "GrubBootLoader",
    "SshKeyImporter",
    "SystemHostControl",
    "SystemUserManager",
    "UfwFirewall",
    "apt_env",
    "run_command",
    "system_capabilities",
]
