"""Exception hierarchy for vbus-pulse."""


class VBusPulseError(Exception):
    """Base class for all vbus-pulse errors."""


class FetchError(VBusPulseError):
    """The remote data source could not produce a snapshot."""


class MalformedSnapshotError(FetchError):
    """The remote data source answered, but the payload is unusable."""


class CacheStoreError(VBusPulseError):
    """The durable cache could not be read or written."""


class ConfigError(VBusPulseError):
    """Configuration or preference values are invalid."""
