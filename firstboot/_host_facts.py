"""Discovery of the host's external addresses.

The external IPv4 and IPv6 addresses are the source addresses the kernel
would pick to reach well-known public destinations. On clouds that configure
IPv6 from router advertisements the global address may appear some seconds
after boot, so the IPv6 lookup first waits for one to show up.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from firstboot._bootstrap_config import BootstrapConfig, HostFacts
from firstboot._bootstrap_errors import CommandError, FactDiscoveryError, Ipv6WaitTimeout
from firstboot._host_commands import run_command

logger = logging.getLogger(__name__)

IPV4_PROBE_DESTINATION = "8.8.8.8"
IPV6_PROBE_DESTINATION = "2001::"

DIAGNOSTIC_COMMANDS: tuple[tuple[str, ...], ...] = (
    ("-o", "addr"),
    ("-o", "link"),
    ("-o", "route"),
    ("-o", "-6", "route"),
)


def parse_route_source(output: str) -> str | None:
    """Return the address following ``src`` in ``ip route get`` output.

    Examples
    --------
    >>> parse_route_source("8.8.8.8 via 203.0.113.1 dev eth0 src 203.0.113.10 uid 0\\n    cache")
    '203.0.113.10'
    >>> parse_route_source("unreachable") is None
    True
    """

    tokens = output.split()
    for index, token in enumerate(tokens[:-1]):
        if token == "src":
            return tokens[index + 1]
    return None


def has_global_ipv6(output: str) -> bool:
    """Return whether ``ip -6 -o addr`` lists a usable global address.

    Addresses still undergoing duplicate address detection are flagged
    ``tentative`` and cannot be used as a source yet.

    Examples
    --------
    >>> has_global_ipv6("2: eth0    inet6 2001:db8::10/64 scope global dynamic mngtmpaddr")
    True
    >>> has_global_ipv6("2: eth0    inet6 2001:db8::10/64 scope global tentative")
    False
    """

    return any(
        "scope global" in line and "tentative" not in line
        for line in output.splitlines()
    )


def _route_source(destination: str, *family: str) -> str | None:
    stdout = run_command("ip", *family, "route", "get", destination)
    return parse_route_source(stdout)


def external_ipv4() -> str:
    """Return the source address used to reach the public IPv4 internet."""

    try:
        address = _route_source(IPV4_PROBE_DESTINATION)
    except CommandError as exc:
        msg = f"Cannot determine the external IPv4 address: {exc}"
        raise FactDiscoveryError(msg) from exc
    if not address:
        msg = f"Route to {IPV4_PROBE_DESTINATION} has no source address"
        raise FactDiscoveryError(msg)
    return address


def external_ipv6() -> str:
    """Return the IPv6 source address, or an empty string when unroutable."""

    try:
        address = _route_source(IPV6_PROBE_DESTINATION, "-6")
    except CommandError as exc:
        logger.warning("IPv6 route lookup failed: %s", exc)
        return ""
    return address or ""


def _list_ipv6_addresses() -> str:
    return run_command("ip", "-6", "-o", "addr")


def wait_for_ipv6(
    poll_interval: float,
    timeout: float | None = None,
    *,
    probe: Callable[[], str] = _list_ipv6_addresses,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> float:
    """Block until a global, non-tentative IPv6 address is configured.

    With ``timeout=None`` the wait has no bound. Returns the seconds waited.

    Raises
    ------
    Ipv6WaitTimeout
        If ``timeout`` elapses first.
    """

    started = clock()
    while not has_global_ipv6(probe()):
        waited = clock() - started
        if timeout is not None and waited >= timeout:
            msg = f"No global IPv6 address after {waited:.0f} second(s)"
            raise Ipv6WaitTimeout(msg)
        sleep(poll_interval)
    return clock() - started


def discover_facts(config: BootstrapConfig) -> HostFacts:
    """Derive the external addresses, waiting for IPv6 as configured."""

    ipv4 = external_ipv4()
    try:
        waited = wait_for_ipv6(config.ipv6_poll_interval, config.ipv6_timeout)
    except Ipv6WaitTimeout as exc:
        logger.warning("%s; continuing without an external IPv6 address", exc)
        return HostFacts(external_ipv4=ipv4)
    print(f"Waited {waited:.0f} second(s) for an IPv6 address.")
    return HostFacts(external_ipv4=ipv4, external_ipv6=external_ipv6())


def network_diagnostics() -> dict[str, str]:
    """Return interface, link and route listings keyed by command line."""

    listings: dict[str, str] = {}
    for args in DIAGNOSTIC_COMMANDS:
        label = " ".join(("ip", *args))
        try:
            listings[label] = run_command("ip", *args)
        except CommandError as exc:
            listings[label] = f"<unavailable: {exc}>"
    return listings


__all__ = [
    "discover_facts",
    "external_ipv4",
    "external_ipv6",
    "has_global_ipv6",
    "network_diagnostics",
    "parse_route_source",
    "wait_for_ipv6",
]
