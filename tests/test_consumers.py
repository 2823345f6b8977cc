"""Tests for widget and dashboard consumers"""

import pytest

from vbus_pulse.cache import CacheEntry, CachedValue, FetchOutcome
from vbus_pulse.consumers import DashboardConsumer, WidgetConsumer, layout_for_size, size_category
from vbus_pulse.consumers.dashboard import DATA_RETRIEVAL_ERROR
from vbus_pulse.consumers.widget import ERROR_TEXT, LOADING_TEXT, SizeCategory
from vbus_pulse.coordinator import Notification, NotificationKind, RefreshReason
from vbus_pulse.sensors import extract
from tests.mock_datasource import DEFAULT_FIELDS, make_snapshot


def entry_from(fields, **kwargs) -> CacheEntry:
    values = {
        name: CachedValue.from_reading(reading)
        for name, reading in extract(make_snapshot(fields)).items()
    }
    return CacheEntry(values=values, last_success_at=1000.0, **kwargs)


def notify(kind, entry) -> Notification:
    return Notification(kind, RefreshReason.USER, entry, created_at=1000.0)


class TestLayout:
    """Widget dimensions map to a layout variant"""

    @pytest.mark.parametrize(
        "width,height,category,layout",
        [
            (110, 110, SizeCategory.COMPACT, "widget_layout"),
            (119, 60, SizeCategory.COMPACT, "widget_layout"),
            (250, 110, SizeCategory.WIDE, "widget_layout_horizontal"),
            (110, 250, SizeCategory.TALL, "widget_layout_vertical"),
            (200, 200, SizeCategory.TALL, "widget_layout_vertical"),
            (120, 119, SizeCategory.WIDE, "widget_layout_horizontal"),
        ],
    )
    def test_layout_for_size(self, width, height, category, layout):
        assert size_category(width, height) is category
        assert layout_for_size(width, height) == layout


class TestWidgetConsumer:
    def test_loading_view(self):
        widget = WidgetConsumer(widget_id=1, min_width=250, min_height=110)

        assert [cell.text for cell in widget.view.cells] == [LOADING_TEXT, LOADING_TEXT]
        assert widget.view.stale is True

    async def test_fresh_view(self):
        widget = WidgetConsumer(widget_id=1, min_width=250, min_height=110)
        await widget.on_refresh(notify(NotificationKind.FRESH, entry_from(DEFAULT_FIELDS)))

        view = widget.view
        assert view.layout == "widget_layout_horizontal"
        assert view.stale is False
        assert [(c.label, c.text, c.color) for c in view.cells] == [
            ("ECS", "42.0°C", "green"),
            ("Capteurs", "65.3°C", "green"),
        ]

    async def test_compact_shows_first_sensor(self):
        widget = WidgetConsumer(widget_id=1, min_width=100, min_height=100)
        await widget.on_refresh(notify(NotificationKind.FRESH, entry_from(DEFAULT_FIELDS)))

        assert [cell.label for cell in widget.view.cells] == ["ECS"]

    async def test_stale_keeps_values(self):
        widget = WidgetConsumer(widget_id=1, min_width=250, min_height=110)
        await widget.on_refresh(notify(NotificationKind.STALE, entry_from({4: "45.2"})))

        assert widget.view.stale is True
        assert widget.view.status == "stale"
        assert widget.view.cells[0].text == "45.2°C"
        assert widget.view.cells[0].color == "green"

    async def test_error_without_cached_value(self):
        widget = WidgetConsumer(widget_id=1, min_width=250, min_height=110)
        entry = CacheEntry(last_outcome=FetchOutcome.FAILURE, last_error="boom")
        await widget.on_refresh(notify(NotificationKind.STALE, entry))

        assert all(cell.text == ERROR_TEXT for cell in widget.view.cells)
        assert all(cell.color == "red" for cell in widget.view.cells)

    async def test_sink_receives_view(self):
        views = []

        async def sink(view):
            views.append(view)

        widget = WidgetConsumer(widget_id=7, min_width=110, min_height=250, sink=sink)
        await widget.on_refresh(notify(NotificationKind.FRESH, entry_from(DEFAULT_FIELDS)))

        assert views == [widget.view]
        assert views[0].to_dict()["widget_id"] == 7

    async def test_resize_changes_layout(self):
        widget = WidgetConsumer(widget_id=1, min_width=100, min_height=100)
        widget.resize(300, 120)

        assert widget.layout == "widget_layout_horizontal"


class TestDashboardConsumer:
    async def test_columns(self):
        dashboard = DashboardConsumer()
        await dashboard.on_refresh(notify(NotificationKind.FRESH, entry_from(DEFAULT_FIELDS)))

        view = dashboard.view
        assert [row.name for row in view.left] == ["Capteurs", "Extérieur", "Piscine"]
        assert [row.name for row in view.right] == ["ECS", "Tampon", "Intérieur"]
        assert view.banner is None
        assert view.stale is False

    async def test_status_indicator(self):
        dashboard = DashboardConsumer()
        await dashboard.on_refresh(notify(NotificationKind.FRESH, entry_from({12: "1"})))
        assert dashboard.view.statuses[0].active is True

        await dashboard.on_refresh(notify(NotificationKind.FRESH, entry_from({12: "0"})))
        assert dashboard.view.statuses[0].active is False

    async def test_no_network_banner(self):
        dashboard = DashboardConsumer()
        await dashboard.on_refresh(notify(NotificationKind.NO_NETWORK, entry_from(DEFAULT_FIELDS)))

        assert "network" in dashboard.view.banner
        assert dashboard.view.stale is True

    async def test_empty_cache(self):
        dashboard = DashboardConsumer()
        await dashboard.on_refresh(notify(NotificationKind.STALE, CacheEntry()))

        assert dashboard.view.left[0].name == DATA_RETRIEVAL_ERROR
        assert dashboard.view.to_dict()["right"] == []
