"""Shared fixtures for web tests."""

from typing import AsyncIterator

import pytest
from httpx import ASGITransport, AsyncClient

from vbus_pulse.config import Config, StateConfig, WidgetConfig
from vbus_pulse.context import AppContext
from vbus_pulse.web.app import create_app
from tests.mock_datasource import FakeConnectivity, MockSnapshotSource


@pytest.fixture
async def web_context(tmp_path) -> AsyncIterator[AppContext]:
    """Started AppContext backed by a mock source and a temp state directory."""
    config = Config(
        state=StateConfig(directory=str(tmp_path / "state")),
        widgets=[WidgetConfig(widget_id=1, min_width=110, min_height=110)],
    )
    context = AppContext.create(config, source=MockSnapshotSource(), connectivity=FakeConnectivity())
    await context.start()
    yield context
    await context.shutdown()


@pytest.fixture
async def app(web_context: AppContext):
    """Create a FastAPI app with the context injected."""
    return create_app(context=web_context)


@pytest.fixture
async def client(app) -> AsyncIterator[AsyncClient]:
    """Async HTTP test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
