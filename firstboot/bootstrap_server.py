#!/usr/bin/env -S uv run python
# /// script
# requires-python = ">=3.11"
# dependencies = ["cyclopts>=2.9", "plumbum"]
# ///
"""Provision a freshly imaged Ubuntu LTS cloud server on first boot.

This script:
- creates an unprivileged sudo user and imports its SSH keys;
- sets the hostname, ``/etc/hosts`` and the ``/etc/issue`` banner;
- installs GRUB, upgrades the system and installs an enablement kernel;
- enables the ``ufw`` firewall; and
- reboots into the new kernel.

Every option can also be supplied through the environment variable of the
same name in upper case (``HOSTNAME``, ``LAUNCHPAD_ACCOUNT`` and so on), which
is how cloud deployment forms hand values to first-boot scripts.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Annotated

from cyclopts import App, Parameter

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from firstboot._bootstrap_config import (
    BootstrapConfig,
    HostFacts,
    PlatformInfo,
    RawBootstrapInputs,
    build_config,
)
from firstboot._bootstrap_errors import BootstrapError
from firstboot._bootstrap_flow import bootstrap, finalize
from firstboot._host_commands import system_capabilities
from firstboot._host_facts import discover_facts, network_diagnostics
from firstboot._host_files import hostname_path

app = App(help="Provision a freshly imaged Ubuntu LTS server on first boot.")
logger = logging.getLogger(__name__)

LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"


def configure_logging(*, debug: bool) -> None:
    logging.basicConfig(level=logging.DEBUG if debug else logging.INFO, format=LOG_FORMAT)


def print_platform(platform: PlatformInfo) -> None:
    print("Deploying server:")
    for key, value in platform.values:
        print(f"{key:>20}={value}")
    print()


def print_summary(config: BootstrapConfig, facts: HostFacts) -> None:
    """Print every non-empty setting and derived fact before changes begin."""

    values = config.summary()
    values["EXTERNAL_IP"] = facts.external_ipv4
    values["EXTERNAL_IPV6"] = facts.external_ipv6
    for key, value in values.items():
        if value:
            print(f"{key:>20}={value}")
    print()


def log_debug_state() -> None:
    for key, value in sorted(os.environ.items()):
        logger.debug("env %s=%s", key, value)
    for label, listing in network_diagnostics().items():
        logger.debug("%s:\n%s", label, listing.rstrip())


def run(config: BootstrapConfig) -> int:
    """Discover host facts, run the pipeline and reboot when requested."""

    print_platform(PlatformInfo.from_env())
    if config.debug:
        log_debug_state()

    try:
        facts = discover_facts(config)
    except BootstrapError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    print_summary(config, facts)

    capabilities = system_capabilities(hostname_path(config.sysroot))
    try:
        result = bootstrap(config, facts, capabilities)
    except BootstrapError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    print(f"\nServer bootstrap complete ({len(result.completed_steps)} steps).")
    try:
        finalize(result, capabilities.host)
    except BootstrapError as exc:
        print(f"error: reboot failed: {exc}", file=sys.stderr)
        return 1
    return 0


@app.default
def main(
    hostname: Annotated[str | None, Parameter(help="Short hostname.")] = None,
    domain: Annotated[str | None, Parameter(help="Domain appended to form the FQDN.")] = None,
    username: Annotated[
        str | None, Parameter(help="Unprivileged user to create; empty skips it.")
    ] = None,
    gecos: Annotated[str | None, Parameter(help="GECOS field for the new user.")] = None,
    groups: Annotated[str | None, Parameter(help="Comma-separated groups.")] = None,
    launchpad_account: Annotated[
        str | None, Parameter(help="Launchpad account to import SSH keys from.")
    ] = None,
    extra_packages: Annotated[
        str | None, Parameter(help="Whitespace-separated extra packages.")
    ] = None,
    kernel_package: Annotated[str | None, Parameter(help="Enablement kernel package.")] = None,
    reboot: Annotated[bool | None, Parameter(help="Reboot when finished.")] = None,
    zfs: Annotated[bool | None, Parameter(help="Install the ZFS utilities.")] = None,
    configure_firewall: Annotated[bool | None, Parameter(help="Enable ufw.")] = None,
    limit_ssh: Annotated[
        bool | None, Parameter(help="Rate-limit rather than allow SSH.")
    ] = None,
    customize_etc_issue: Annotated[
        bool | None, Parameter(help="Add the external IPs to /etc/issue.")
    ] = None,
    debug: Annotated[bool | None, Parameter(help="Trace environment and network state.")] = None,
    boot_disk: Annotated[str | None, Parameter(help="Disk to install GRUB on.")] = None,
    ipv6_timeout: Annotated[
        str | None, Parameter(help="Seconds to wait for IPv6; unset waits forever.")
    ] = None,
    ipv6_poll_interval: Annotated[
        str | None, Parameter(help="Seconds between IPv6 address checks.")
    ] = None,
    sysroot: Annotated[
        Path | None, Parameter(help="Root directory for edited system files.")
    ] = None,
) -> int:
    """Run the first-boot provisioning pipeline.

    Options left unset are read from the environment, then from defaults.
    """

    raw_inputs = RawBootstrapInputs(
        hostname=hostname,
        domain=domain,
        username=username,
        gecos=gecos,
        groups=groups,
        launchpad_account=launchpad_account,
        extra_packages=extra_packages,
        kernel_package=kernel_package,
        reboot=reboot,
        zfs=zfs,
        configure_firewall=configure_firewall,
        limit_ssh=limit_ssh,
        customize_etc_issue=customize_etc_issue,
        debug=debug,
        boot_disk=boot_disk,
        ipv6_timeout=ipv6_timeout,
        ipv6_poll_interval=ipv6_poll_interval,
        sysroot=sysroot,
    )
    try:
        config = build_config(raw_inputs)
    except BootstrapError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    configure_logging(debug=config.debug)
    return run(config)


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    raise SystemExit(app())
