"""Configuration records for the first-boot bootstrap.

The configuration is resolved once at startup from CLI options and the
environment (the deployment platform passes user-defined fields as
environment variables) and is never mutated afterwards. Step functions receive
it explicitly rather than consulting the environment themselves.
"""

from __future__ import annotations

import math
import os
from collections import abc as cabc
from dataclasses import dataclass
from pathlib import Path

from firstboot._bootstrap_errors import ConfigError
from firstboot._input_resolution import (
    InputResolution,
    parse_bool,
    parse_list,
    resolve_input,
)

DEFAULT_HOSTNAME = "ubuntu"
DEFAULT_USERNAME = "ubuntu"
DEFAULT_GROUPS = "adm,dialout,cdrom,floppy,sudo,audio,dip,video,plugdev,netdev"
DEFAULT_EXTRA_PACKAGES = "software-properties-common"
DEFAULT_KERNEL_PACKAGE = "linux-generic-hwe-24.04"
DEFAULT_BOOT_DISK = "/dev/sda"
DEFAULT_IPV6_POLL_INTERVAL = 1.0
ZFS_PACKAGE = "zfsutils-linux"
SUPERUSER = "root"

PLATFORM_ENV_KEYS = (
    "LINODE_ID",
    "LINODE_LISHUSERNAME",
    "LINODE_RAM",
    "LINODE_DATACENTERID",
)


@dataclass(frozen=True, slots=True)
class BootstrapConfig:
    """Resolved provisioning options."""

    hostname: str = DEFAULT_HOSTNAME
    domain: str = ""
    username: str = DEFAULT_USERNAME
    gecos: str = ""
    groups: tuple[str, ...] = parse_list(DEFAULT_GROUPS, separator=",")
    launchpad_account: str = ""
    extra_packages: tuple[str, ...] = parse_list(DEFAULT_EXTRA_PACKAGES)
    kernel_package: str = DEFAULT_KERNEL_PACKAGE
    reboot: bool = True
    zfs: bool = True
    configure_firewall: bool = True
    limit_ssh: bool = True
    customize_etc_issue: bool = True
    debug: bool = False
    boot_disk: str = DEFAULT_BOOT_DISK
    ipv6_timeout: float | None = None
    ipv6_poll_interval: float = DEFAULT_IPV6_POLL_INTERVAL
    sysroot: Path = Path("/")

    def __post_init__(self) -> None:
        if not self.hostname:
            msg = "HOSTNAME must not be empty"
            raise ConfigError(msg)
        if not (math.isfinite(self.ipv6_poll_interval) and self.ipv6_poll_interval > 0):
            msg = "IPV6_POLL_INTERVAL must be positive"
            raise ConfigError(msg)
        if self.ipv6_timeout is not None and self.ipv6_timeout < 0:
            msg = "IPV6_TIMEOUT must not be negative"
            raise ConfigError(msg)
        if self.ipv6_timeout is not None and not math.isfinite(self.ipv6_timeout):
            msg = "IPV6_TIMEOUT must be finite; leave it unset to wait without a bound"
            raise ConfigError(msg)

    @property
    def fqdn(self) -> str:
        """Return ``hostname.domain``, or an empty string without a domain.

        Examples
        --------
        >>> BootstrapConfig(hostname="web1", domain="example.com").fqdn
        'web1.example.com'
        >>> BootstrapConfig(hostname="web1").fqdn
        ''
        """

        if not self.domain:
            return ""
        return f"{self.hostname}.{self.domain}"

    @property
    def qualified_name(self) -> str:
        """Return the FQDN when a domain is set, else the bare hostname."""

        return self.fqdn or self.hostname

    @property
    def create_user(self) -> bool:
        return bool(self.username)

    @property
    def key_import_user(self) -> str:
        """Return the account that receives imported SSH keys."""

        return self.username or SUPERUSER

    @property
    def package_set(self) -> tuple[str, ...]:
        """Return the extra packages, with the ZFS tools first when requested.

        Examples
        --------
        >>> BootstrapConfig(extra_packages=("git",)).package_set
        ('zfsutils-linux', 'git')
        >>> BootstrapConfig(extra_packages=("git",), zfs=False).package_set
        ('git',)
        """

        if not self.zfs:
            return self.extra_packages
        return tuple(dict.fromkeys((ZFS_PACKAGE, *self.extra_packages)))

    @property
    def install_packages(self) -> tuple[str, ...]:
        """Return the full install list: kernel package, then the package set."""

        return (self.kernel_package, *self.package_set)

    def summary(self) -> dict[str, str]:
        """Return the configuration as display strings, keyed by input name."""

        return {
            "DEBUG": _flag(self.debug),
            "HOSTNAME": self.hostname,
            "DOMAIN": self.domain,
            "FQDN": self.fqdn,
            "USERNAME": self.username,
            "GECOS": self.gecos,
            "LAUNCHPAD_ACCOUNT": self.launchpad_account,
            "REBOOT": _flag(self.reboot),
            "KERNEL_PACKAGE": self.kernel_package,
            "EXTRA_PACKAGES": " ".join(self.package_set),
            "ZFS": _flag(self.zfs),
            "CONFIGURE_FIREWALL": _flag(self.configure_firewall),
            "LIMIT_SSH": _flag(self.limit_ssh),
            "CUSTOMIZE_ETC_ISSUE": _flag(self.customize_etc_issue),
            "GROUPS": ",".join(self.groups),
            "BOOT_DISK": self.boot_disk,
            "IPV6_TIMEOUT": "" if self.ipv6_timeout is None else f"{self.ipv6_timeout:g}",
        }


@dataclass(frozen=True, slots=True)
class HostFacts:
    """Network facts derived once at startup."""

    external_ipv4: str
    external_ipv6: str = ""


@dataclass(frozen=True, slots=True)
class PlatformInfo:
    """Identifiers published by the hosting platform, for diagnostics only."""

    values: tuple[tuple[str, str], ...]

    @classmethod
    def from_env(cls, env: cabc.Mapping[str, str] | None = None) -> PlatformInfo:
        source = env if env is not None else os.environ
        return cls(values=tuple((key, source.get(key, "")) for key in PLATFORM_ENV_KEYS))


@dataclass(frozen=True, slots=True)
class RawBootstrapInputs:
    """Raw inputs from the CLI; ``None`` means "consult the environment"."""

    hostname: str | None = None
    domain: str | None = None
    username: str | None = None
    gecos: str | None = None
    groups: str | None = None
    launchpad_account: str | None = None
    extra_packages: str | None = None
    kernel_package: str | None = None
    reboot: str | bool | None = None
    zfs: str | bool | None = None
    configure_firewall: str | bool | None = None
    limit_ssh: str | bool | None = None
    customize_etc_issue: str | bool | None = None
    debug: str | bool | None = None
    boot_disk: str | None = None
    ipv6_timeout: str | None = None
    ipv6_poll_interval: str | None = None
    sysroot: Path | None = None


def _flag(value: bool) -> str:
    return "true" if value else "false"


def _to_seconds(raw: str | Path | None, key: str) -> float | None:
    if raw is None or not str(raw).strip():
        return None
    try:
        seconds = float(str(raw))
    except ValueError as exc:
        msg = f"{key} must be a number of seconds, got: {raw!r}"
        raise ConfigError(msg) from exc
    if not math.isfinite(seconds):
        msg = f"{key} must be a finite number of seconds, got: {raw!r}"
        raise ConfigError(msg)
    return seconds


def _text(
    value: str | None,
    key: str,
    default: str,
    env: cabc.Mapping[str, str],
    *,
    blank_means_default: bool = True,
) -> str:
    resolved = resolve_input(value, InputResolution(env_key=key, default=default), env=env)
    text = str(resolved).strip()
    if not text and blank_means_default:
        return default
    return text


def _bool(
    value: str | bool | None,
    key: str,
    default: bool,
    env: cabc.Mapping[str, str],
) -> bool:
    if isinstance(value, bool):
        return value
    resolved = resolve_input(value, InputResolution(env_key=key), env=env)
    if resolved is None or not str(resolved).strip():
        return default
    return parse_bool(str(resolved), default=default)


def build_config(
    raw: RawBootstrapInputs,
    env: cabc.Mapping[str, str] | None = None,
) -> BootstrapConfig:
    """Resolve CLI values and environment variables into a configuration.

    Examples
    --------
    >>> cfg = build_config(RawBootstrapInputs(), env={"HOSTNAME": "web1", "ZFS": "false"})
    >>> cfg.hostname, cfg.zfs
    ('web1', False)
    """

    env = env if env is not None else os.environ
    hostname = _text(raw.hostname, "HOSTNAME", DEFAULT_HOSTNAME, env)
    poll_interval = _to_seconds(
        resolve_input(raw.ipv6_poll_interval, InputResolution(env_key="IPV6_POLL_INTERVAL"), env=env),
        "IPV6_POLL_INTERVAL",
    )
    sysroot = resolve_input(
        raw.sysroot,
        InputResolution(env_key="SYSROOT", default=Path("/"), as_path=True),
        env=env,
    )

    return BootstrapConfig(
        hostname=hostname,
        domain=_text(raw.domain, "DOMAIN", "", env),
        username=_text(
            raw.username,
            "USERNAME",
            DEFAULT_USERNAME,
            env,
            blank_means_default=False,
        ),
        gecos=str(resolve_input(raw.gecos, InputResolution(env_key="GECOS", default=""), env=env)),
        groups=parse_list(
            _text(raw.groups, "GROUPS", DEFAULT_GROUPS, env, blank_means_default=False),
            separator=",",
        ),
        launchpad_account=_text(raw.launchpad_account, "LAUNCHPAD_ACCOUNT", "", env),
        extra_packages=parse_list(
            _text(raw.extra_packages, "EXTRA_PACKAGES", DEFAULT_EXTRA_PACKAGES, env)
        ),
        kernel_package=_text(raw.kernel_package, "KERNEL_PACKAGE", DEFAULT_KERNEL_PACKAGE, env),
        reboot=_bool(raw.reboot, "REBOOT", True, env),
        zfs=_bool(raw.zfs, "ZFS", True, env),
        configure_firewall=_bool(raw.configure_firewall, "CONFIGURE_FIREWALL", True, env),
        limit_ssh=_bool(raw.limit_ssh, "LIMIT_SSH", True, env),
        customize_etc_issue=_bool(raw.customize_etc_issue, "CUSTOMIZE_ETC_ISSUE", True, env),
        debug=_bool(raw.debug, "DEBUG", False, env),
        boot_disk=_text(raw.boot_disk, "BOOT_DISK", DEFAULT_BOOT_DISK, env),
        ipv6_timeout=_to_seconds(
            resolve_input(raw.ipv6_timeout, InputResolution(env_key="IPV6_TIMEOUT"), env=env),
            "IPV6_TIMEOUT",
        ),
        ipv6_poll_interval=(
            DEFAULT_IPV6_POLL_INTERVAL if poll_interval is None else poll_interval
        ),
        sysroot=sysroot if isinstance(sysroot, Path) else Path(str(sysroot)),
    )


__all__ = [
    "BootstrapConfig",
    "HostFacts",
    "PlatformInfo",
    "RawBootstrapInputs",
    "SUPERUSER",
    "ZFS_PACKAGE",
    "build_config",
]
