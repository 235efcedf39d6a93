"""Bootstrap orchestration for a freshly imaged server.

The pipeline runs a fixed sequence of steps, each wrapping one family of
system tools. Later steps rely on earlier ones (the account must exist before
keys are imported for it, GRUB must be installed before a new kernel can
boot), so a failing step ends the run. SSH key import is the one exception:
when it fails, password login for the superuser stays enabled as the way in.

Rebooting is never done inside the pipeline. :func:`bootstrap` reports
whether a reboot is wanted and :func:`finalize` performs it, so library
callers can run the pipeline without losing their process.

Examples
--------
>>> capabilities = system_capabilities(hostname_path(config.sysroot))
>>> result = bootstrap(config, facts, capabilities)
>>> finalize(result, capabilities.host)
True
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from firstboot._bootstrap_config import BootstrapConfig, HostFacts
from firstboot._bootstrap_errors import CommandError, StepFailedError
from firstboot._capabilities import HostCapabilities, HostControl
from firstboot._host_files import (
    rewrite_hosts,
    rewrite_issue,
    write_apt_force_ipv4,
    write_hostname,
    write_sudoers,
)

logger = logging.getLogger(__name__)


class KeyImportOutcome(enum.Enum):
    """How the SSH key import step ended."""

    IMPORTED = "imported"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(slots=True)
class BootstrapResult:
    """What a completed pipeline run did and what it still asks for."""

    completed_steps: list[str] = field(default_factory=list)
    key_import: KeyImportOutcome = KeyImportOutcome.SKIPPED
    reboot_requested: bool = False


def configure_user(config: BootstrapConfig, capabilities: HostCapabilities) -> None:
    """Create the unprivileged account and grant it passwordless sudo."""

    capabilities.users.create_user(config.username, config.gecos)
    if config.groups:
        capabilities.users.set_groups(config.username, config.groups)
    path = write_sudoers(config.sysroot, config.username)
    print(f"Created user {config.username!r}; sudo policy written to {path}")


def import_ssh_keys(config: BootstrapConfig, capabilities: HostCapabilities) -> KeyImportOutcome:
    """Switch the superuser from password to key login when keys import.

    Failure to import is not fatal: the superuser password stays usable.
    """

    if not config.launchpad_account:
        logger.warning("No Launchpad account specified: use password instead.")
        return KeyImportOutcome.SKIPPED

    user = config.key_import_user
    try:
        capabilities.keys.import_keys(config.launchpad_account, user)
    except CommandError as exc:
        logger.warning(
            "SSH import failed: use root password for fallback. (%s)", exc
        )
        return KeyImportOutcome.FAILED

    capabilities.host.lock_root_password()
    print(f"Imported SSH keys for {user!r} from {config.launchpad_account!r}; root password locked.")
    return KeyImportOutcome.IMPORTED


def set_hostname(
    config: BootstrapConfig,
    facts: HostFacts,
    capabilities: HostCapabilities,
) -> None:
    write_hostname(config.sysroot, config.hostname)
    capabilities.host.apply_hostname()
    entry = rewrite_hosts(
        config.sysroot,
        facts.external_ipv4,
        config.qualified_name,
        config.hostname,
    )
    print(f"Hostname set to {config.hostname!r}; hosts entry: {entry}")


def set_etc_issue(config: BootstrapConfig, facts: HostFacts) -> None:
    changed = rewrite_issue(config.sysroot, facts.external_ipv4, facts.external_ipv6)
    if not changed:
        logger.warning("No distribution line found in /etc/issue; left unchanged")


def configure_apt(config: BootstrapConfig) -> None:
    # Package mirrors are intermittently unreachable over IPv6 from some clouds.
    write_apt_force_ipv4(config.sysroot)


def install_grub(config: BootstrapConfig, capabilities: HostCapabilities) -> None:
    """Boot through GRUB so the newly installed kernel is the one that runs."""

    capabilities.boot_loader.install(config.boot_disk)
    capabilities.boot_loader.update_config()


def upgrade_packages(capabilities: HostCapabilities) -> None:
    capabilities.packages.refresh()
    capabilities.packages.dist_upgrade()


def install_packages(config: BootstrapConfig, capabilities: HostCapabilities) -> None:
    """Install the enablement kernel and the extra packages."""

    capabilities.packages.install(config.install_packages)


def configure_firewall(config: BootstrapConfig, capabilities: HostCapabilities) -> None:
    capabilities.firewall.set_ssh_rule(limit=config.limit_ssh)
    capabilities.firewall.enable()


def _run_step(result: BootstrapResult, name: str, action: Callable[[], None]) -> None:
    print(f"\n--- {name} ---")
    try:
        action()
    except (CommandError, OSError) as exc:
        raise StepFailedError(name, str(exc)) from exc
    result.completed_steps.append(name)


def bootstrap(
    config: BootstrapConfig,
    facts: HostFacts,
    capabilities: HostCapabilities,
) -> BootstrapResult:
    """Run the provisioning steps in order and return the outcome.

    Raises
    ------
    StepFailedError
        When any step other than the SSH key import fails.
    """

    result = BootstrapResult()

    if config.create_user:
        _run_step(result, "configure_user", lambda: configure_user(config, capabilities))

    def _import_keys() -> None:
        result.key_import = import_ssh_keys(config, capabilities)

    _run_step(result, "import_ssh_keys", _import_keys)
    _run_step(result, "set_hostname", lambda: set_hostname(config, facts, capabilities))
    if config.customize_etc_issue:
        _run_step(result, "set_etc_issue", lambda: set_etc_issue(config, facts))
    _run_step(result, "configure_apt", lambda: configure_apt(config))
    _run_step(result, "install_grub", lambda: install_grub(config, capabilities))
    _run_step(result, "upgrade_packages", lambda: upgrade_packages(capabilities))
    _run_step(result, "install_packages", lambda: install_packages(config, capabilities))
    if config.configure_firewall:
        _run_step(result, "configure_firewall", lambda: configure_firewall(config, capabilities))

    result.reboot_requested = config.reboot
    return result


def finalize(result: BootstrapResult, host: HostControl) -> bool:
    """Reboot when the run asked for it. Returns whether a reboot was issued."""

    if not result.reboot_requested:
        return False
    print("Rebooting into the installed kernel.")
    host.reboot()
    return True


__all__ = [
    "BootstrapResult",
    "KeyImportOutcome",
    "bootstrap",
    "configure_apt",
    "configure_firewall",
    "configure_user",
    "finalize",
    "import_ssh_keys",
    "install_grub",
    "install_packages",
    "set_etc_issue",
    "set_hostname",
    "upgrade_packages",
]
