"""Home-screen widget consumer: turns notifications into widget view models."""

from collections.abc import Awaitable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

from ..coordinator import Notification, NotificationKind
from ..log_handler import get_structured_logger
from ..sensors import DEFAULT_SENSOR_TABLE, NOT_AVAILABLE, SensorSpec, find_spec

logger = get_structured_logger(__name__, component="widget")

# Widgets narrower and shorter than this (dp) get the single-value layout
COMPACT_THRESHOLD_DP = 120

LOADING_TEXT = "Loading..."
ERROR_TEXT = "Error retrieving data"
ERROR_COLOR = "red"


class SizeCategory(str, Enum):
    COMPACT = "compact"
    WIDE = "wide"
    TALL = "tall"


LAYOUT_VARIANTS: dict[SizeCategory, str] = {
    SizeCategory.COMPACT: "widget_layout",
    SizeCategory.WIDE: "widget_layout_horizontal",
    SizeCategory.TALL: "widget_layout_vertical",
}


def size_category(min_width: int, min_height: int) -> SizeCategory:
    """Classify a widget from its measured dimensions in dp."""
    if min_width < COMPACT_THRESHOLD_DP and min_height < COMPACT_THRESHOLD_DP:
        return SizeCategory.COMPACT
    if min_width > min_height:
        return SizeCategory.WIDE
    return SizeCategory.TALL


def layout_for_size(min_width: int, min_height: int) -> str:
    return LAYOUT_VARIANTS[size_category(min_width, min_height)]


@dataclass(frozen=True)
class WidgetCell:
    label: str
    text: str
    color: str


@dataclass(frozen=True)
class WidgetView:
    """
    Everything a renderer needs to draw one widget instance.

    Attributes:
        widget_id: Widget instance identifier
        layout: Layout variant name
        cells: One cell per tracked sensor, in display order
        stale: Values are not from a fetch that just succeeded
        status: Notification kind the view was built from
        updated_at: Time of the last successful fetch behind the values
    """

    widget_id: int
    layout: str
    cells: tuple[WidgetCell, ...]
    stale: bool = False
    status: str = NotificationKind.FRESH.value
    updated_at: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "widget_id": self.widget_id,
            "layout": self.layout,
            "stale": self.stale,
            "status": self.status,
            "updated_at": self.updated_at,
            "cells": [
                {"label": cell.label, "text": cell.text, "color": cell.color} for cell in self.cells
            ],
        }


WidgetSink = Callable[[WidgetView], Awaitable[None]]


@dataclass(eq=False)
class WidgetConsumer:
    """
    One widget instance.

    The first tracked sensor is the only one shown by the compact layout.
    """

    widget_id: int
    min_width: int
    min_height: int
    sensors: tuple[str, ...] = ("ECS", "Capteurs")
    table: tuple[SensorSpec, ...] = DEFAULT_SENSOR_TABLE
    sink: Optional[WidgetSink] = None
    view: Optional[WidgetView] = field(default=None, init=False)

    def __post_init__(self) -> None:
        self.sensors = tuple(self.sensors)
        self.view = self.loading_view()

    @property
    def layout(self) -> str:
        return layout_for_size(self.min_width, self.min_height)

    def resize(self, min_width: int, min_height: int) -> None:
        self.min_width = min_width
        self.min_height = min_height

    def _visible_sensors(self) -> tuple[str, ...]:
        if size_category(self.min_width, self.min_height) is SizeCategory.COMPACT:
            return self.sensors[:1]
        return self.sensors

    def loading_view(self) -> WidgetView:
        cells = tuple(WidgetCell(name, LOADING_TEXT, "black") for name in self._visible_sensors())
        return WidgetView(self.widget_id, self.layout, cells, stale=True, status="loading")

    def build_view(self, notification: Notification) -> WidgetView:
        entry = notification.entry
        cells = []
        for name in self._visible_sensors():
            spec = find_spec(self.table, name)
            cached = entry.values.get(name)
            if cached is None:
                if notification.kind is NotificationKind.FRESH:
                    cells.append(WidgetCell(name, NOT_AVAILABLE, "black"))
                else:
                    cells.append(WidgetCell(name, ERROR_TEXT, ERROR_COLOR))
                continue
            color = spec.color_for(cached.numeric) if spec else "black"
            cells.append(WidgetCell(name, cached.formatted, color))

        return WidgetView(
            widget_id=self.widget_id,
            layout=self.layout,
            cells=tuple(cells),
            stale=notification.stale,
            status=notification.kind.value,
            updated_at=entry.last_success_at,
        )

    async def on_refresh(self, notification: Notification) -> None:
        self.view = self.build_view(notification)
        logger.debug(
            "Widget view updated",
            widget_id=self.widget_id,
            layout=self.view.layout,
            status=self.view.status,
        )
        if self.sink is not None:
            await self.sink(self.view)
