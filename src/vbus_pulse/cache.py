"""
Durable cache of last-known-good sensor values.

This module provides the cache store used by the refresh coordinator:
- Keeps the last successful reading of every tracked sensor
- Records when the last fetch happened and whether it succeeded
- Replaces all sensor values in one atomic write
- Survives process restarts (JSON file or Redis)
"""

import asyncio
import json
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Optional

import redis.asyncio as aioredis
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from .errors import CacheStoreError
from .log_handler import get_structured_logger
from .sensors import SensorReading
from .utils.files import atomic_write_text

logger = get_structured_logger(__name__, component="cache")


class FetchOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class CachedValue:
    """Last known value of one sensor."""

    key: str
    formatted: str
    numeric: float
    timestamp: float

    @classmethod
    def from_reading(cls, reading: SensorReading) -> "CachedValue":
        return cls(
            key=reading.key,
            formatted=reading.formatted,
            numeric=reading.numeric,
            timestamp=reading.timestamp,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "formatted": self.formatted,
            "numeric": self.numeric,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CachedValue":
        return cls(
            key=str(data["key"]),
            formatted=str(data["formatted"]),
            numeric=float(data["numeric"]),
            timestamp=float(data["timestamp"]),
        )


@dataclass(frozen=True)
class CacheEntry:
    """
    Complete cache state at one point in time.

    Attributes:
        values: Sensor name -> last known value
        last_fetch_at: When the last fetch attempt completed
        last_outcome: Outcome of that attempt
        last_success_at: When the values were last replaced
        last_error: Error message of the last failed attempt
    """

    values: Mapping[str, CachedValue] = field(default_factory=lambda: MappingProxyType({}))
    last_fetch_at: Optional[float] = None
    last_outcome: Optional[FetchOutcome] = None
    last_success_at: Optional[float] = None
    last_error: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.values

    @property
    def age(self) -> Optional[float]:
        """Seconds since the values were captured, None if never."""
        if self.last_success_at is None:
            return None
        return time.time() - self.last_success_at

    def formatted(self) -> dict[str, str]:
        return {name: value.formatted for name, value in self.values.items()}

    def to_dict(self) -> dict[str, Any]:
        return {
            "values": {name: value.to_dict() for name, value in self.values.items()},
            "last_fetch_at": self.last_fetch_at,
            "last_outcome": self.last_outcome.value if self.last_outcome else None,
            "last_success_at": self.last_success_at,
            "last_error": self.last_error,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CacheEntry":
        outcome = data.get("last_outcome")
        return cls(
            values=MappingProxyType(
                {name: CachedValue.from_dict(v) for name, v in (data.get("values") or {}).items()}
            ),
            last_fetch_at=data.get("last_fetch_at"),
            last_outcome=FetchOutcome(outcome) if outcome else None,
            last_success_at=data.get("last_success_at"),
            last_error=data.get("last_error"),
        )


class CacheStore(ABC):
    """
    Durable key/value store of sensor values plus fetch outcome metadata.

    Writes are serialized. A reader racing a write observes either the
    previous complete state or the new complete state.
    """

    def __init__(self) -> None:
        self._write_lock = asyncio.Lock()

    async def open(self) -> None:  # noqa: B027
        """Load or connect. Called once before use."""

    async def close(self) -> None:  # noqa: B027
        """Release resources."""

    @abstractmethod
    async def snapshot(self) -> CacheEntry:
        """Return the current complete state."""

    @abstractmethod
    async def _commit(self, entry: CacheEntry) -> None:
        """Persist ``entry`` as the new complete state in one atomic step."""

    async def get(self, name: str) -> tuple[Optional[CachedValue], bool]:
        """
        Get the cached value of one sensor.

        Returns:
            (value, is_present)
        """
        entry = await self.snapshot()
        value = entry.values.get(name)
        return value, value is not None

    async def get_last_outcome(self) -> tuple[Optional[float], Optional[FetchOutcome]]:
        entry = await self.snapshot()
        return entry.last_fetch_at, entry.last_outcome

    async def put(self, readings: Mapping[str, SensorReading], fetched_at: float) -> CacheEntry:
        """
        Replace all sensor values and record a successful fetch.

        Sensors missing from ``readings`` are dropped from the cache.
        """
        values = MappingProxyType(
            {name: CachedValue.from_reading(reading) for name, reading in readings.items()}
        )
        async with self._write_lock:
            entry = CacheEntry(
                values=values,
                last_fetch_at=fetched_at,
                last_outcome=FetchOutcome.SUCCESS,
                last_success_at=fetched_at,
                last_error=None,
            )
            await self._commit(entry)
        logger.debug("Cache updated", sensors=len(values))
        return entry

    async def record_failure(self, at: float, error: str = "") -> CacheEntry:
        """Record a failed fetch, keeping the cached values."""
        async with self._write_lock:
            current = await self.snapshot()
            entry = CacheEntry(
                values=current.values,
                last_fetch_at=at,
                last_outcome=FetchOutcome.FAILURE,
                last_success_at=current.last_success_at,
                last_error=error or None,
            )
            await self._commit(entry)
        logger.debug("Cache failure recorded", error=error)
        return entry


class MemoryCacheStore(CacheStore):
    """Non-durable store, used when no state directory is wanted."""

    def __init__(self) -> None:
        super().__init__()
        self._entry = CacheEntry()

    async def snapshot(self) -> CacheEntry:
        return self._entry

    async def _commit(self, entry: CacheEntry) -> None:
        self._entry = entry


class FileCacheStore(CacheStore):
    """
    Cache persisted as one JSON document.

    Every commit rewrites the whole document through a temporary file and
    ``os.replace``. The in-memory entry is swapped only after the file is in
    place, so readers never see a mix of old and new values.
    """

    def __init__(self, path: Path):
        super().__init__()
        self.path = path
        self._entry = CacheEntry()

    async def open(self) -> None:
        self._entry = await asyncio.to_thread(self._load)
        logger.info(
            "File cache opened",
            path=str(self.path),
            sensors=len(self._entry.values),
        )

    def _load(self) -> CacheEntry:
        if not self.path.exists():
            return CacheEntry()
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            return CacheEntry.from_dict(data)
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning("Unreadable cache file, starting empty", path=str(self.path), error=str(e))
            return CacheEntry()

    async def snapshot(self) -> CacheEntry:
        return self._entry

    async def _commit(self, entry: CacheEntry) -> None:
        document = json.dumps(entry.to_dict(), ensure_ascii=False, indent=2)
        try:
            await asyncio.to_thread(atomic_write_text, self.path, document)
        except OSError as e:
            raise CacheStoreError(f"Cannot write cache file {self.path}: {e}") from e
        self._entry = entry


class RedisCacheStore(CacheStore):
    """
    Cache persisted in Redis.

    Sensor values live in one hash, outcome metadata in a second hash. Both
    are written and read inside a MULTI/EXEC transaction.
    """

    def __init__(
        self,
        redis: Optional[aioredis.Redis] = None,
        url: str = "redis://localhost:6379",
        key_prefix: str = "vbus-pulse",
    ):
        super().__init__()
        self._redis = redis
        self._owns_client = redis is None
        self._url = url
        self.values_key = f"{key_prefix}:cache:values"
        self.meta_key = f"{key_prefix}:cache:meta"

    @retry(
        retry=retry_if_exception_type((aioredis.ConnectionError, OSError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def _connect(self) -> aioredis.Redis:
        client = aioredis.from_url(self._url, decode_responses=True)
        await client.ping()
        logger.info("Connected to Redis", url=self._url)
        return client

    async def open(self) -> None:
        if self._redis is None:
            try:
                self._redis = await self._connect()
            except (aioredis.ConnectionError, OSError) as e:
                raise CacheStoreError(f"Cannot connect to Redis at {self._url}: {e}") from e

    async def close(self) -> None:
        if self._redis is not None and self._owns_client:
            await self._redis.aclose()
            self._redis = None

    def _client(self) -> aioredis.Redis:
        if self._redis is None:
            raise CacheStoreError("Redis cache store is not open")
        return self._redis

    async def snapshot(self) -> CacheEntry:
        pipe = self._client().pipeline(transaction=True)
        pipe.hgetall(self.values_key)
        pipe.hgetall(self.meta_key)
        try:
            raw_values, meta = await pipe.execute()
        except (aioredis.RedisError, OSError) as e:
            raise CacheStoreError(f"Cannot read cache from Redis: {e}") from e

        outcome = meta.get("last_outcome")
        return CacheEntry(
            values=MappingProxyType(
                {name: CachedValue.from_dict(json.loads(raw)) for name, raw in raw_values.items()}
            ),
            last_fetch_at=_optional_float(meta.get("last_fetch_at")),
            last_outcome=FetchOutcome(outcome) if outcome else None,
            last_success_at=_optional_float(meta.get("last_success_at")),
            last_error=meta.get("last_error") or None,
        )

    async def _commit(self, entry: CacheEntry) -> None:
        meta = {
            "last_fetch_at": "" if entry.last_fetch_at is None else repr(entry.last_fetch_at),
            "last_outcome": entry.last_outcome.value if entry.last_outcome else "",
            "last_success_at": "" if entry.last_success_at is None else repr(entry.last_success_at),
            "last_error": entry.last_error or "",
        }
        pipe = self._client().pipeline(transaction=True)
        pipe.delete(self.values_key)
        if entry.values:
            pipe.hset(
                self.values_key,
                mapping={
                    name: json.dumps(value.to_dict(), ensure_ascii=False)
                    for name, value in entry.values.items()
                },
            )
        pipe.hset(self.meta_key, mapping=meta)
        try:
            await pipe.execute()
        except (aioredis.RedisError, OSError) as e:
            raise CacheStoreError(f"Cannot write cache to Redis: {e}") from e


def _optional_float(value: Optional[str]) -> Optional[float]:
    return float(value) if value else None


def create_cache_store(backend: str, state_dir: Path, redis_url: str, key_prefix: str) -> CacheStore:
    """Build the cache store selected by configuration."""
    if backend == "redis":
        return RedisCacheStore(url=redis_url, key_prefix=key_prefix)
    if backend == "memory":
        return MemoryCacheStore()
    return FileCacheStore(state_dir / "cache.json")
