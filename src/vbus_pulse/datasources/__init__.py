"""
Data sources package for vbus-pulse.

A data source fetches one snapshot per call from a remote endpoint. Caching,
fallback and scheduling live in the refresh coordinator.
"""

from .base import DataSourceMetadata, SnapshotSource
from .vbus_source import VBusLiveSource

__all__ = [
    "DataSourceMetadata",
    "SnapshotSource",
    "VBusLiveSource",
]
