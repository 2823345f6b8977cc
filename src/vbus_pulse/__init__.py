"""vbus-pulse: polls a RESOL VBus live endpoint and keeps widgets in sync."""

__version__ = "0.3.0"
