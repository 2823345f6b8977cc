"""Pydantic models for the VBus live-data wire format."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class FieldValue(BaseModel):
    """One (field index, value) pair inside a packet."""

    model_config = ConfigDict(coerce_numbers_to_str=True)

    field_index: int
    raw_value: float | None = None
    value: str


class Packet(BaseModel):
    """An ordered group of field values from one VBus header."""

    header_index: int
    timestamp: float
    field_values: list[FieldValue] = Field(default_factory=list)


class HeaderSet(BaseModel):
    """All packets captured at one point in time."""

    timestamp: float
    packets: list[Packet] = Field(default_factory=list)


class HeaderSetStats(BaseModel):
    headerset_count: int = 0
    min_timestamp: float = 0.0
    max_timestamp: float = 0.0


class Snapshot(BaseModel):
    """One response from the live endpoint."""

    headerset_stats: HeaderSetStats | None = None
    headersets: list[HeaderSet] = Field(default_factory=list)

    def packet(self, index: int) -> Packet | None:
        """Return packet ``index`` of the first header set, if present."""
        if not self.headersets:
            return None
        packets = self.headersets[0].packets
        if 0 <= index < len(packets):
            return packets[index]
        return None
