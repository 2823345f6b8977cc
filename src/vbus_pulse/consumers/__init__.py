"""
Consumers: presentation surfaces fed by the refresh coordinator.

Consumers build view models; drawing them is left to external renderers.
"""

from .dashboard import DashboardConsumer, DashboardView
from .widget import WidgetConsumer, WidgetView, layout_for_size, size_category

__all__ = [
    "DashboardConsumer",
    "DashboardView",
    "WidgetConsumer",
    "WidgetView",
    "layout_for_size",
    "size_category",
]
