"""API routes for readings, preferences and widgets"""

from dataclasses import asdict
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field

from ..context import AppContext
from ..coordinator import Notification, NotificationKind, RefreshReason
from ..errors import ConfigError
from ..log_handler import get_structured_logger

logger = get_structured_logger(__name__, component="web")
router = APIRouter()


def get_context(request: Request) -> AppContext:
    """Get the AppContext injected by create_app()."""
    return request.app.state.context


# Pydantic models for request bodies
class PreferencesUpdate(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    refresh_rate: Optional[str] = None
    wifi_only: Optional[bool] = None


class WidgetCreate(BaseModel):
    widget_id: int
    min_width: int = Field(ge=0)
    min_height: int = Field(ge=0)
    sensors: Optional[list[str]] = None


def _preferences_dict(context: AppContext) -> dict[str, Any]:
    values = context.preferences.values
    return {
        "refresh_rate": values.refresh_rate,
        "refresh_minutes": values.refresh_minutes,
        "wifi_only": values.wifi_only,
    }


@router.get("/health")
async def health_check(context: AppContext = Depends(get_context)):
    """Health check endpoint - succeeds even when the live endpoint is down"""
    _, outcome = await context.store.get_last_outcome()
    return {
        "status": "healthy",
        "started": context.is_started,
        "last_outcome": outcome.value if outcome else None,
    }


# ============================================================================
# Readings
# ============================================================================


@router.get("/api/readings")
async def get_readings(context: AppContext = Depends(get_context)) -> dict[str, Any]:
    """Last notification, or the raw cache state when nothing was sent yet"""
    latest = context.coordinator.latest
    if latest is not None:
        return latest.to_dict()

    # Boot refresh still running
    entry = await context.store.snapshot()
    return Notification(NotificationKind.CACHED, RefreshReason.BOOT, entry).to_dict()


@router.post("/api/refresh")
async def refresh(context: AppContext = Depends(get_context)) -> dict[str, Any]:
    """User-initiated refresh; returns once the (possibly shared) fetch is done"""
    notification = await context.coordinator.request_refresh(RefreshReason.USER)
    return notification.to_dict()


@router.get("/api/status")
async def get_status(context: AppContext = Depends(get_context)) -> dict[str, Any]:
    """Scheduler, cache and coordinator state"""
    coordinator = context.coordinator
    scheduler = coordinator.scheduler
    fetched_at, outcome = await context.store.get_last_outcome()
    pending = scheduler.pending
    return {
        "scheduler": {
            "state": scheduler.state.value,
            "pending": pending.to_dict() if pending else None,
            "fire_count": scheduler.fire_count,
        },
        "cache": {
            "last_fetch_at": fetched_at,
            "last_outcome": outcome.value if outcome else None,
        },
        "coordinator": {
            "consumers": len(coordinator.consumers),
            "refresh_in_progress": coordinator.refresh_in_progress,
            "fetch_count": coordinator.fetch_count,
            "coalesced_count": coordinator.coalesced_count,
        },
        "source": asdict(context.source.get_metadata()),
    }


@router.get("/api/dashboard")
async def get_dashboard(context: AppContext = Depends(get_context)) -> dict[str, Any]:
    return context.dashboard.view.to_dict()


# ============================================================================
# Preferences
# ============================================================================


@router.get("/api/preferences")
async def get_preferences(context: AppContext = Depends(get_context)) -> dict[str, Any]:
    return _preferences_dict(context)


@router.put("/api/preferences")
async def update_preferences(
    update: PreferencesUpdate, context: AppContext = Depends(get_context)
) -> dict[str, Any]:
    """Persist preference changes; a change triggers a refresh"""
    try:
        changed = await context.preferences.update(
            refresh_rate=update.refresh_rate, wifi_only=update.wifi_only
        )
    except ConfigError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    return {"changed": changed, "preferences": _preferences_dict(context)}


# ============================================================================
# Widgets
# ============================================================================


@router.get("/api/widgets")
async def list_widgets(context: AppContext = Depends(get_context)) -> list[dict[str, Any]]:
    return [widget.view.to_dict() for widget in context.widgets.values()]


@router.post("/api/widgets", status_code=201)
async def add_widget(
    body: WidgetCreate, context: AppContext = Depends(get_context)
) -> dict[str, Any]:
    """Attach a widget instance; attaching triggers a refresh"""
    widget = await context.add_widget(
        body.widget_id, body.min_width, body.min_height, body.sensors
    )
    return widget.view.to_dict()


@router.get("/api/widgets/{widget_id}")
async def get_widget(widget_id: int, context: AppContext = Depends(get_context)) -> dict[str, Any]:
    widget = context.widgets.get(widget_id)
    if widget is None:
        raise HTTPException(status_code=404, detail=f"Unknown widget: {widget_id}")
    return widget.view.to_dict()


@router.delete("/api/widgets/{widget_id}")
async def remove_widget(
    widget_id: int, context: AppContext = Depends(get_context)
) -> dict[str, Any]:
    widget = context.remove_widget(widget_id)
    if widget is None:
        raise HTTPException(status_code=404, detail=f"Unknown widget: {widget_id}")
    return {"status": "removed", "widget_id": widget_id}
