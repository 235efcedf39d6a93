"""Shared helpers for resolving CLI and environment inputs."""

from __future__ import annotations

import os
from collections import abc as cabc
from dataclasses import dataclass
from pathlib import Path

_TRUTHY = frozenset({"1", "true", "yes", "on"})


@dataclass(frozen=True, slots=True)
class InputResolution:
    """Configuration for resolving an input from multiple sources."""

    env_key: str
    default: str | Path | None = None
    required: bool = False
    as_path: bool = False


def resolve_input(
    param_value: str | Path | None,
    resolution: InputResolution,
    env: cabc.Mapping[str, str] | None = None,
) -> str | Path | None:
    """Resolve input from parameter, environment variable, or default.

    Examples
    --------
    >>> resolve_input(None, InputResolution(env_key="DOMAIN"), env={"DOMAIN": "example.com"})
    'example.com'
    >>> resolve_input("cli", InputResolution(env_key="DOMAIN"), env={"DOMAIN": "env"})
    'cli'
    """

    if param_value is not None:
        return param_value

    env_value = (env if env is not None else os.environ).get(resolution.env_key)
    if env_value is not None:
        return Path(env_value) if resolution.as_path else env_value

    if resolution.required:
        msg = f"{resolution.env_key} is required"
        raise SystemExit(msg)

    return resolution.default


def parse_bool(value: str | bool | None, *, default: bool) -> bool:
    """Parse a boolean flag supplied as text.

    Examples
    --------
    >>> parse_bool("YES", default=False)
    True
    >>> parse_bool(None, default=True)
    True
    >>> parse_bool("false", default=True)
    False
    """

    if isinstance(value, bool):
        return value
    if value is None:
        return default
    return value.strip().lower() in _TRUTHY


def parse_list(value: str | None, *, separator: str | None = None) -> tuple[str, ...]:
    """Split a list input, dropping blanks and repeated entries.

    ``separator=None`` splits on any whitespace.

    Examples
    --------
    >>> parse_list("adm, sudo,,adm", separator=",")
    ('adm', 'sudo')
    >>> parse_list("git  build-essential")
    ('git', 'build-essential')
    """

    if value is None:
        return ()
    items = (item.strip() for item in value.split(separator))
    return tuple(dict.fromkeys(item for item in items if item))
