"""Edits to system configuration files.

Every helper takes the filesystem root as its first argument so the same code
writes ``/etc`` on a live host and a scratch directory in tests.
"""

from __future__ import annotations

import os
from contextlib import suppress
from pathlib import Path

HOSTNAME_FILE = Path("etc/hostname")
HOSTS_FILE = Path("etc/hosts")
ISSUE_FILE = Path("etc/issue")
APT_FORCE_IPV4_FILE = Path("etc/apt/apt.conf.d/99force-ipv4")
SUDOERS_DIR = Path("etc/sudoers.d")

LOOPBACK_HOSTNAME_ADDRESS = "127.0.1.1"
DEFAULT_ISSUE_MARKER = "Ubuntu"


def _write_atomic(path: Path, content: str, mode: int = 0o644) -> None:
    """Replace ``path`` with ``content`` without exposing a partial file."""

    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.tmp")
    fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", errors="surrogateescape") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
    except Exception:
        with suppress(FileNotFoundError):
            os.unlink(tmp_path)
        raise
    tmp_path.replace(path)
    os.chmod(path, mode)


def _read_lines(path: Path) -> list[str]:
    # Undecodable bytes round-trip through _write_atomic unchanged.
    if not path.exists():
        return []
    return path.read_text(encoding="utf-8", errors="surrogateescape").splitlines()


def hostname_path(sysroot: Path) -> Path:
    return sysroot / HOSTNAME_FILE


def write_hostname(sysroot: Path, name: str) -> Path:
    """Write ``name`` to ``/etc/hostname`` and return the file path."""

    path = hostname_path(sysroot)
    _write_atomic(path, f"{name}\n")
    return path


def hosts_entry(ipv4: str, qualified_name: str, hostname: str) -> str:
    """Return the ``/etc/hosts`` line mapping the external address.

    Examples
    --------
    >>> hosts_entry("203.0.113.10", "web1.example.com", "web1")
    '203.0.113.10 web1.example.com web1'
    """

    return f"{ipv4} {qualified_name} {hostname}"


def rewrite_hosts(sysroot: Path, ipv4: str, qualified_name: str, hostname: str) -> str:
    """Drop the loopback hostname mapping and append the external one.

    Returns the appended line.
    """

    path = sysroot / HOSTS_FILE
    kept = [
        line
        for line in _read_lines(path)
        if line.split()[:1] != [LOOPBACK_HOSTNAME_ADDRESS]
    ]
    entry = hosts_entry(ipv4, qualified_name, hostname)
    _write_atomic(path, "\n".join([*kept, entry]) + "\n")
    return entry


def rewrite_issue(
    sysroot: Path,
    ipv4: str,
    ipv6: str,
    marker: str = DEFAULT_ISSUE_MARKER,
) -> int:
    """Append the external addresses to the distribution line(s) of ``/etc/issue``.

    Returns the number of lines changed.
    """

    path = sysroot / ISSUE_FILE
    suffix = " ".join(address for address in (ipv4, ipv6) if address)
    changed = 0
    lines = []
    for line in _read_lines(path):
        if marker in line and suffix:
            line = f"{line.rstrip()} {suffix}"
            changed += 1
        lines.append(line)
    if changed:
        _write_atomic(path, "\n".join(lines) + "\n")
    return changed


def write_apt_force_ipv4(sysroot: Path) -> Path:
    """Make apt reach its mirrors over IPv4 only."""

    path = sysroot / APT_FORCE_IPV4_FILE
    _write_atomic(path, 'Acquire::ForceIPv4 "true";\n')
    return path


def sudoers_path(sysroot: Path, username: str) -> Path:
    # sudo skips files in sudoers.d whose names contain a dot.
    return sysroot / SUDOERS_DIR / f"90-firstboot-{username.replace('.', '_')}"


def write_sudoers(sysroot: Path, username: str) -> Path:
    """Grant ``username`` passwordless sudo through a dedicated fragment."""

    path = sudoers_path(sysroot, username)
    _write_atomic(path, f"{username} ALL=(ALL) NOPASSWD: ALL\n", mode=0o440)
    return path


__all__ = [
    "hostname_path",
    "hosts_entry",
    "rewrite_hosts",
    "rewrite_issue",
    "sudoers_path",
    "write_apt_force_ipv4",
    "write_hostname",
    "write_sudoers",
]
