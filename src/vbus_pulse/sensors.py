"""
Sensor table and snapshot extraction.

The field indexes and the designated packet position are a contract with the
VBus controller. They were observed on the installed device and are kept
exactly as they are; nothing here derives them from the payload.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .models import FieldValue, Snapshot

# Second packet of the first header set carries the sensor fields
DESIGNATED_PACKET_INDEX = 1

NOT_AVAILABLE = "N/A"
TEMPERATURE_UNIT = "°C"
DEFAULT_COLOR = "black"


class SensorKind(str, Enum):
    TEMPERATURE = "temperature"
    STATUS = "status"


@dataclass(frozen=True)
class Band:
    """
    A colour applied when a numeric value matches every bound that is set.

    Attributes:
        color: Colour name handed to the renderer
        gt: Value must be strictly greater than this
        ge: Value must be greater than or equal to this
        lt: Value must be strictly lower than this
    """

    color: str
    gt: Optional[float] = None
    ge: Optional[float] = None
    lt: Optional[float] = None

    def matches(self, value: float) -> bool:
        if self.gt is not None and not value > self.gt:
            return False
        if self.ge is not None and not value >= self.ge:
            return False
        if self.lt is not None and not value < self.lt:
            return False
        return True


@dataclass(frozen=True)
class SensorSpec:
    """
    Static description of one tracked sensor.

    Attributes:
        name: Display name (e.g., "ECS")
        key: Fixed cache key (e.g., "ecs-temperature")
        field_index: Field index inside the designated packet
        kind: Temperature sensors get a unit suffix, status sensors do not
        column: Dashboard column ("left", "right" or "status")
        bands: Colour bands evaluated in order, first match wins
    """

    name: str
    key: str
    field_index: int
    kind: SensorKind = SensorKind.TEMPERATURE
    column: str = "left"
    bands: tuple[Band, ...] = ()

    def color_for(self, value: float) -> str:
        for band in self.bands:
            if band.matches(value):
                return band.color
        return DEFAULT_COLOR


DEFAULT_SENSOR_TABLE: tuple[SensorSpec, ...] = (
    SensorSpec(
        "ECS",
        "ecs-temperature",
        4,
        column="right",
        bands=(Band("green", gt=41), Band("orange", ge=37)),
    ),
    SensorSpec("Capteurs", "circuit-temperature", 0, column="left", bands=(Band("green", lt=100),)),
    SensorSpec("Tampon", "buffer-temperature", 5, column="right"),
    SensorSpec("Intérieur", "indoor-temperature", 11, column="right"),
    SensorSpec("Extérieur", "outdoor-temperature", 7, column="left"),
    SensorSpec("Piscine", "pool-temperature", 10, column="left"),
    SensorSpec("Filtration", "filtration-status", 12, kind=SensorKind.STATUS, column="status"),
)


@dataclass(frozen=True)
class SensorReading:
    """
    A single extracted sensor reading.

    Attributes:
        name: Sensor display name
        key: Cache key for this sensor
        kind: Sensor kind from the table
        formatted: Value as shown to the user (unit suffix included)
        numeric: Parsed numeric value, 0.0 when the text does not parse
        timestamp: Capture time (epoch seconds) reported by the designated packet
    """

    name: str
    key: str
    kind: SensorKind
    formatted: str
    numeric: float
    timestamp: float


def parse_numeric(text: str) -> float:
    """Parse a formatted value, defaulting to 0.0."""
    try:
        return float(text)
    except (TypeError, ValueError):
        return 0.0


def find_spec(table: tuple[SensorSpec, ...], name: str) -> Optional[SensorSpec]:
    for spec in table:
        if spec.name == name:
            return spec
    return None


def extract(
    snapshot: Snapshot,
    table: tuple[SensorSpec, ...] = DEFAULT_SENSOR_TABLE,
    packet_index: int = DESIGNATED_PACKET_INDEX,
) -> dict[str, SensorReading]:
    """
    Map a snapshot to named sensor readings.

    Returns an empty dict when the designated packet is absent. Callers must
    treat that as "no data", not as a set of zero readings.
    """
    packet = snapshot.packet(packet_index)
    if packet is None:
        return {}

    # Later duplicates of a field index replace earlier ones
    by_index: dict[int, FieldValue] = {fv.field_index: fv for fv in packet.field_values}
    captured_at = packet.timestamp

    readings: dict[str, SensorReading] = {}
    for spec in table:
        field_value = by_index.get(spec.field_index)
        if field_value is None:
            formatted = NOT_AVAILABLE
            numeric = 0.0
        else:
            numeric = parse_numeric(field_value.value)
            formatted = field_value.value
            if spec.kind is SensorKind.TEMPERATURE:
                formatted = f"{formatted}{TEMPERATURE_UNIT}"

        readings[spec.name] = SensorReading(
            name=spec.name,
            key=spec.key,
            kind=spec.kind,
            formatted=formatted,
            numeric=numeric,
            timestamp=captured_at,
        )
    return readings
