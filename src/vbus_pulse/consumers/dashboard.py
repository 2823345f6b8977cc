"""In-app dashboard consumer: two sensor columns plus status indicators."""

from dataclasses import dataclass, field
from typing import Any, Optional

from ..coordinator import Notification, NotificationKind
from ..sensors import DEFAULT_SENSOR_TABLE, NOT_AVAILABLE, SensorKind, SensorSpec

DATA_RETRIEVAL_ERROR = "Data retrieval error"

BANNERS = {
    NotificationKind.FRESH: None,
    NotificationKind.STALE: "Showing last known values, refresh failed",
    NotificationKind.NO_NETWORK: "No suitable network, showing last known values",
    NotificationKind.CACHED: "Showing cached values",
}


@dataclass(frozen=True)
class SensorRow:
    name: str
    value: str


@dataclass(frozen=True)
class StatusIndicator:
    name: str
    active: bool
    value: str


@dataclass(frozen=True)
class DashboardView:
    left: tuple[SensorRow, ...] = ()
    right: tuple[SensorRow, ...] = ()
    statuses: tuple[StatusIndicator, ...] = ()
    banner: Optional[str] = None
    stale: bool = True
    updated_at: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "left": [{"name": row.name, "value": row.value} for row in self.left],
            "right": [{"name": row.name, "value": row.value} for row in self.right],
            "statuses": [
                {"name": s.name, "active": s.active, "value": s.value} for s in self.statuses
            ],
            "banner": self.banner,
            "stale": self.stale,
            "updated_at": self.updated_at,
        }


@dataclass(eq=False)
class DashboardConsumer:
    """Keeps the latest dashboard view built from coordinator notifications."""

    table: tuple[SensorSpec, ...] = DEFAULT_SENSOR_TABLE
    view: DashboardView = field(default_factory=DashboardView)

    def build_view(self, notification: Notification) -> DashboardView:
        entry = notification.entry
        banner = BANNERS[notification.kind]

        if entry.is_empty:
            # Nothing was ever fetched successfully
            return DashboardView(
                left=(SensorRow(DATA_RETRIEVAL_ERROR, ""),),
                banner=banner,
                stale=notification.stale,
            )

        left: list[SensorRow] = []
        right: list[SensorRow] = []
        statuses: list[StatusIndicator] = []
        for spec in self.table:
            cached = entry.values.get(spec.name)
            text = cached.formatted if cached else NOT_AVAILABLE
            if spec.kind is SensorKind.STATUS or spec.column == "status":
                active = cached is not None and cached.numeric > 0
                statuses.append(StatusIndicator(spec.name, active, text))
            elif spec.column == "right":
                right.append(SensorRow(spec.name, text))
            else:
                left.append(SensorRow(spec.name, text))

        return DashboardView(
            left=tuple(left),
            right=tuple(right),
            statuses=tuple(statuses),
            banner=banner,
            stale=notification.stale,
            updated_at=entry.last_success_at,
        )

    async def on_refresh(self, notification: Notification) -> None:
        self.view = self.build_view(notification)
