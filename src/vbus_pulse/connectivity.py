"""Connectivity probing and the WiFi-only fetch policy."""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass

from .log_handler import get_structured_logger
from .utils.network import active_interfaces, is_wireless_interface

logger = get_structured_logger(__name__, component="connectivity")


@dataclass(frozen=True)
class NetworkState:
    """
    Current connectivity as seen by the host.

    Attributes:
        connected: At least one interface has a usable address
        wifi: At least one of those interfaces is wireless
    """

    connected: bool
    wifi: bool

    @classmethod
    def offline(cls) -> "NetworkState":
        return cls(connected=False, wifi=False)


class ConnectivityProbe(ABC):
    """Reports the current network state."""

    @abstractmethod
    async def current(self) -> NetworkState:
        """Return the network state at the time of the call."""


class PsutilConnectivity(ConnectivityProbe):
    """Connectivity probe based on the host's network interfaces."""

    async def current(self) -> NetworkState:
        interfaces = await asyncio.to_thread(active_interfaces)
        wifi = any(is_wireless_interface(name) for name in interfaces)
        state = NetworkState(connected=bool(interfaces), wifi=wifi)
        logger.debug("Network state", interfaces=interfaces, wifi=wifi)
        return state


def should_fetch(state: NetworkState, wifi_only: bool) -> bool:
    """Whether the fetch policy allows a network call in ``state``."""
    if wifi_only:
        return state.connected and state.wifi
    return state.connected
