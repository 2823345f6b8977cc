"""
User preferences: refresh rate and the WiFi-only flag.

Preferences are persisted as a small YAML document in the state directory.
They can be edited through the API or by hand; ``reload()`` picks up manual
edits. Every change is pushed to the registered listeners.
"""

import asyncio
import logging
from collections.abc import Awaitable
from dataclasses import asdict, dataclass, replace
from pathlib import Path
from typing import Any, Callable, Optional

import yaml

from .errors import ConfigError
from .utils.files import atomic_write_text

logger = logging.getLogger(__name__)

REFRESH_RATE = "refresh_rate"
WIFI_ONLY = "wifi_only"

DEFAULT_REFRESH_MINUTES = 10

# Receives every preference changed by one update, name -> new value
PreferenceListener = Callable[[dict[str, Any]], Awaitable[None]]


@dataclass(frozen=True)
class PreferenceValues:
    refresh_rate: str = str(DEFAULT_REFRESH_MINUTES)  # Minutes, string-encoded
    wifi_only: bool = False

    @property
    def refresh_minutes(self) -> int:
        """Refresh interval in minutes; unparsable or non-positive values fall back to 10."""
        try:
            minutes = int(str(self.refresh_rate).strip())
        except ValueError:
            return DEFAULT_REFRESH_MINUTES
        if minutes < 1:
            return DEFAULT_REFRESH_MINUTES
        return minutes


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "1", "yes", "false", "0", "no"):
        return value.lower() in ("true", "1", "yes")
    if isinstance(value, int):
        return bool(value)
    raise ConfigError(f"Invalid boolean preference: {value!r}")


class Preferences:
    """Persisted preferences with change notification."""

    def __init__(self, path: Optional[Path] = None):
        """
        Args:
            path: YAML file backing the preferences. None keeps them in memory only.
        """
        self._path = path
        self._values = PreferenceValues()
        self._listeners: list[PreferenceListener] = []
        self._lock = asyncio.Lock()

    @property
    def values(self) -> PreferenceValues:
        return self._values

    @property
    def refresh_minutes(self) -> int:
        return self._values.refresh_minutes

    @property
    def wifi_only(self) -> bool:
        return self._values.wifi_only

    def add_listener(self, listener: PreferenceListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: PreferenceListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def load(self) -> PreferenceValues:
        """Read preferences from disk without notifying listeners."""
        self._values = self._read()
        return self._values

    def _read(self) -> PreferenceValues:
        if self._path is None or not self._path.exists():
            return PreferenceValues()
        try:
            data = yaml.safe_load(self._path.read_text(encoding="utf-8")) or {}
            return PreferenceValues(
                refresh_rate=str(data.get(REFRESH_RATE, DEFAULT_REFRESH_MINUTES)),
                wifi_only=_coerce_bool(data.get(WIFI_ONLY, False)),
            )
        except (yaml.YAMLError, ConfigError, AttributeError) as e:
            logger.warning(f"Ignoring unreadable preferences at {self._path}: {e}")
            return PreferenceValues()

    async def update(
        self, refresh_rate: Optional[str] = None, wifi_only: Optional[Any] = None
    ) -> list[str]:
        """
        Change preferences, persist them and notify listeners.

        Returns:
            Names of the preferences that actually changed
        """
        changes: dict[str, Any] = {}
        if refresh_rate is not None:
            changes[REFRESH_RATE] = str(refresh_rate)
        if wifi_only is not None:
            changes[WIFI_ONLY] = _coerce_bool(wifi_only)

        async with self._lock:
            new_values = replace(self._values, **changes)
            changed = self._diff(self._values, new_values)
            if not changed:
                return []
            self._values = new_values
            if self._path is not None:
                await asyncio.to_thread(
                    atomic_write_text, self._path, yaml.safe_dump(asdict(new_values))
                )

        await self._notify(changed)
        return changed

    async def reload(self) -> list[str]:
        """Re-read the backing file and notify listeners of external edits."""
        async with self._lock:
            new_values = await asyncio.to_thread(self._read)
            changed = self._diff(self._values, new_values)
            self._values = new_values
        if changed:
            logger.info(f"Preferences reloaded, changed: {', '.join(changed)}")
            await self._notify(changed)
        return changed

    @staticmethod
    def _diff(old: PreferenceValues, new: PreferenceValues) -> list[str]:
        return [key for key in (REFRESH_RATE, WIFI_ONLY) if getattr(old, key) != getattr(new, key)]

    async def _notify(self, changed: list[str]) -> None:
        changes = {key: getattr(self._values, key) for key in changed}
        logger.debug(f"Preferences changed: {changes!r}")
        for listener in list(self._listeners):
            try:
                await listener(dict(changes))
            except Exception:
                logger.exception(f"Preference listener failed for {', '.join(changed)}")
