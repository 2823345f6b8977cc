"""Configuration loading and validation"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from .errors import ConfigError
from .sensors import DEFAULT_SENSOR_TABLE, Band, SensorKind, SensorSpec

logger = logging.getLogger(__name__)

# Default config search paths (in order)
CONFIG_PATHS = [
    Path("config.yaml"),
    Path.home() / ".config" / "vbus-pulse" / "config.yaml",
    Path("/etc/vbus-pulse/config.yaml"),
]


@dataclass
class SourceConfig:
    base_url: str = "https://wierde.vbus.io/"
    live_path: str = "dlx/download/live"
    channel: int = 1
    timeout: float = 60.0  # Applied to connect, read, write and pool


@dataclass
class StateConfig:
    """Where preferences, cache and the trigger journal are kept"""
    directory: str = str(Path.home() / ".local" / "state" / "vbus-pulse")

    @property
    def path(self) -> Path:
        return Path(self.directory).expanduser()


@dataclass
class CacheConfig:
    backend: str = "file"  # "file", "redis" or "memory"
    redis_url: str = "redis://localhost:6379"
    key_prefix: str = "vbus-pulse"


@dataclass
class ScheduleConfig:
    exact: bool = True
    inexact_window: float = 300.0  # Batching window in seconds when exact timers are denied


@dataclass
class LoggingConfig:
    level: str = "INFO"
    file: str = ""


@dataclass
class WebConfig:
    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = 8080


@dataclass
class WidgetConfig:
    """A widget instance attached at startup"""
    widget_id: int = 0
    min_width: int = 110
    min_height: int = 110
    sensors: list = field(default_factory=lambda: ["ECS", "Capteurs"])


@dataclass
class Config:
    source: SourceConfig = field(default_factory=SourceConfig)
    state: StateConfig = field(default_factory=StateConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    web: WebConfig = field(default_factory=WebConfig)
    widgets: list = field(default_factory=list)  # List of WidgetConfig
    sensors: tuple = DEFAULT_SENSOR_TABLE


def find_config_file() -> Optional[Path]:
    """Find config file in standard locations"""
    for path in CONFIG_PATHS:
        if path.exists():
            return path
    return None


def _parse_sensor(data: dict[str, Any]) -> SensorSpec:
    try:
        bands = tuple(Band(**band) for band in data.get("bands", []))
        return SensorSpec(
            name=data["name"],
            key=data["key"],
            field_index=int(data["field_index"]),
            kind=SensorKind(data.get("kind", SensorKind.TEMPERATURE.value)),
            column=data.get("column", "left"),
            bands=bands,
        )
    except (KeyError, TypeError, ValueError) as e:
        raise ConfigError(f"Invalid sensor entry {data!r}: {e}") from e


def load_config(config_path: Optional[str] = None) -> Config:
    """Load configuration from YAML file"""
    if config_path:
        path = Path(config_path)
    else:
        path = find_config_file()

    if path is None or not path.exists():
        logger.warning("No config file found, using defaults")
        return Config()

    logger.info(f"Loading config from: {path}")

    with open(path) as f:
        data = yaml.safe_load(f) or {}

    cache = CacheConfig(**data.get("cache", {}))
    if cache.backend not in ("file", "redis", "memory"):
        raise ConfigError(f"Unknown cache backend: {cache.backend}")

    widgets = [WidgetConfig(**widget) for widget in data.get("widgets", [])]

    sensors = DEFAULT_SENSOR_TABLE
    if data.get("sensors"):
        sensors = tuple(_parse_sensor(sensor) for sensor in data["sensors"])

    return Config(
        source=SourceConfig(**data.get("source", {})),
        state=StateConfig(**data.get("state", {})),
        cache=cache,
        schedule=ScheduleConfig(**data.get("schedule", {})),
        logging=LoggingConfig(**data.get("logging", {})),
        web=WebConfig(**data.get("web", {})),
        widgets=widgets,
        sensors=sensors,
    )
