"""
Application context for dependency injection.

Owns every long-lived component of the process so the CLI, the web app and
tests all wire the refresh engine the same way.

Usage:
    config = load_config()
    context = AppContext.create(config)
    await context.start()

    app = create_app(context=context)

    # On shutdown
    await context.shutdown()
"""

from dataclasses import dataclass, field
from typing import Optional

from .cache import CacheStore, create_cache_store
from .config import Config
from .connectivity import ConnectivityProbe, PsutilConnectivity
from .consumers import DashboardConsumer, WidgetConsumer
from .coordinator import RefreshCoordinator
from .datasources import SnapshotSource, VBusLiveSource
from .log_handler import get_structured_logger
from .preferences import Preferences
from .schedule import RefreshScheduler, TriggerJournal

logger = get_structured_logger(__name__, component="context")

PREFERENCES_FILE = "preferences.yaml"
TRIGGER_JOURNAL_FILE = "trigger.json"


@dataclass
class AppContext:
    """
    Application context containing all shared dependencies.

    Attributes:
        config: Application configuration loaded from YAML
        preferences: User preferences (refresh rate, WiFi-only)
        store: Cache store holding the last known sensor values
        source: Snapshot source for the live endpoint
        coordinator: Refresh coordinator wiring everything together
        dashboard: In-app dashboard consumer
        widgets: Attached widget consumers keyed by widget id
    """

    config: Config
    preferences: Preferences
    store: CacheStore
    source: SnapshotSource
    coordinator: RefreshCoordinator
    dashboard: DashboardConsumer
    widgets: dict[int, WidgetConsumer] = field(default_factory=dict)
    _started: bool = field(default=False, repr=False)

    @classmethod
    def create(
        cls,
        config: Config,
        source: Optional[SnapshotSource] = None,
        store: Optional[CacheStore] = None,
        connectivity: Optional[ConnectivityProbe] = None,
    ) -> "AppContext":
        """
        Build a context from configuration.

        Args:
            config: Application configuration
            source: Snapshot source override (default: live VBus endpoint)
            store: Cache store override (default: from ``config.cache``)
            connectivity: Network probe override (default: psutil based)

        Returns:
            Context ready to be started
        """
        state_dir = config.state.path
        preferences = Preferences(state_dir / PREFERENCES_FILE)
        if store is None:
            store = create_cache_store(
                config.cache.backend,
                state_dir,
                config.cache.redis_url,
                config.cache.key_prefix,
            )

        exact = config.schedule.exact
        scheduler = RefreshScheduler(
            journal=TriggerJournal(state_dir / TRIGGER_JOURNAL_FILE),
            can_schedule_exact=lambda: exact,
            inexact_window=config.schedule.inexact_window,
        )
        source = source or VBusLiveSource(config.source)
        coordinator = RefreshCoordinator(
            source=source,
            store=store,
            preferences=preferences,
            connectivity=connectivity or PsutilConnectivity(),
            scheduler=scheduler,
            sensor_table=config.sensors,
        )
        logger.debug("Created AppContext", state_dir=str(state_dir), cache=config.cache.backend)
        return cls(
            config=config,
            preferences=preferences,
            store=store,
            source=source,
            coordinator=coordinator,
            dashboard=DashboardConsumer(table=config.sensors),
        )

    @property
    def is_started(self) -> bool:
        return self._started

    async def start(self, boot: bool = True, attach_dashboard: bool = True) -> None:
        """
        Load state, attach the configured consumers and resume refreshing.

        Args:
            boot: Run the boot refresh (or resume the journaled trigger)
            attach_dashboard: Feed the dashboard view, only useful when it is served
        """
        if self._started:
            logger.warning("AppContext already started, ignoring start() call")
            return

        self.config.state.path.mkdir(parents=True, exist_ok=True)
        self.preferences.load()
        await self.store.open()
        await self.source.initialize()

        if attach_dashboard:
            await self.coordinator.attach(self.dashboard, refresh=False)
        for widget in self.config.widgets:
            await self.add_widget(
                widget.widget_id, widget.min_width, widget.min_height, widget.sensors, refresh=False
            )

        self._started = True
        logger.info(
            "AppContext started",
            widgets=len(self.widgets),
            dashboard=attach_dashboard,
            refresh_minutes=self.preferences.refresh_minutes,
        )
        if boot:
            await self.coordinator.boot()

    async def add_widget(
        self,
        widget_id: int,
        min_width: int,
        min_height: int,
        sensors: Optional[list[str]] = None,
        refresh: bool = True,
    ) -> WidgetConsumer:
        """Attach a widget instance, replacing any widget with the same id."""
        existing = self.widgets.pop(widget_id, None)
        if existing is not None:
            self.coordinator.detach(existing)

        widget = WidgetConsumer(
            widget_id=widget_id,
            min_width=min_width,
            min_height=min_height,
            sensors=tuple(sensors) if sensors else ("ECS", "Capteurs"),
            table=self.coordinator.sensor_table,
        )
        self.widgets[widget_id] = widget
        await self.coordinator.attach(widget, refresh=refresh)
        logger.info("Widget added", widget_id=widget_id, layout=widget.layout)
        return widget

    def remove_widget(self, widget_id: int) -> Optional[WidgetConsumer]:
        widget = self.widgets.pop(widget_id, None)
        if widget is not None:
            self.coordinator.detach(widget)
            logger.info("Widget removed", widget_id=widget_id)
        return widget

    async def shutdown(self) -> None:
        """
        Clean shutdown of all components.

        Safe to call multiple times or before start().
        """
        if not self._started:
            logger.debug("AppContext not started, nothing to shutdown")
            return

        logger.info("Shutting down AppContext...")
        await self.coordinator.shutdown()
        try:
            await self.source.shutdown()
        except Exception as e:
            logger.error("Error shutting down source", error=str(e))
        await self.store.close()
        self._started = False
        logger.info("AppContext shutdown complete")
