"""
Base interface for snapshot data sources.

Data sources fetch one fresh snapshot per call. They do NOT cache, retry or
fall back - the refresh coordinator owns all of that.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from ..models import Snapshot


@dataclass
class DataSourceMetadata:
    """
    Metadata describing a data source.

    Attributes:
        source_id: Unique identifier for this data source
        name: Human-readable name
        description: Brief description of what this source provides
        endpoint: URL or other locator the source reads from
    """

    source_id: str
    name: str
    description: str
    endpoint: str = ""


class SnapshotSource(ABC):
    """
    Abstract base class for snapshot sources.

    fetch_snapshot() must either return a validated Snapshot or raise a
    FetchError (MalformedSnapshotError for unusable payloads).
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Open connections. Called once before the first fetch."""

    @abstractmethod
    async def fetch_snapshot(self) -> Snapshot:
        """
        Fetch one snapshot from the remote endpoint.

        Raises:
            FetchError: transport failure or non-success status
            MalformedSnapshotError: body is not a valid snapshot
        """

    @abstractmethod
    def get_metadata(self) -> DataSourceMetadata:
        """Return metadata without performing I/O."""

    @abstractmethod
    async def health_check(self) -> bool:
        """Lightweight reachability check."""

    @abstractmethod
    async def shutdown(self) -> None:
        """Release connections."""
