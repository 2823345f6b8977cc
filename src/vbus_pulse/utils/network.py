"""Network interface inspection utilities."""

import socket
from pathlib import Path

import psutil  # type: ignore[import-untyped]

# Interface name prefixes used by wireless drivers
WIRELESS_PREFIXES = ("wl", "wlan", "wifi", "ath", "ra")


def is_wireless_interface(name: str) -> bool:
    """Guess whether an interface is wireless from sysfs or its name."""
    if Path(f"/sys/class/net/{name}/wireless").exists():
        return True
    return name.lower().startswith(WIRELESS_PREFIXES)


def active_interfaces() -> list[str]:
    """
    Interfaces that are up and carry a routable IPv4 address.

    Loopback and link-local (169.254/16) addresses are ignored.
    """
    stats = psutil.net_if_stats()
    active = []
    for iface, addrs in psutil.net_if_addrs().items():
        iface_stats = stats.get(iface)
        if iface_stats is None or not iface_stats.isup:
            continue
        for addr in addrs:
            if addr.family != socket.AF_INET:
                continue
            ip = addr.address
            if ip.startswith("127.") or ip.startswith("169.254."):
                continue
            active.append(iface)
            break
    return active
