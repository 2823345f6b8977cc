"""VBus.io live-data source implementation"""

from typing import Optional

import httpx
from pydantic import ValidationError

from ..config import SourceConfig
from ..errors import FetchError, MalformedSnapshotError
from ..log_handler import get_structured_logger
from ..models import Snapshot
from .base import DataSourceMetadata, SnapshotSource

logger = get_structured_logger(__name__, component="vbus")


class VBusLiveSource(SnapshotSource):
    """
    Live data from a VBus.io DL-series data logger.

    Each fetch makes exactly one HTTP request. There are no retries inside
    the call; a failed fetch is reported to the caller as a FetchError.
    """

    def __init__(self, config: SourceConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Initialize the live source.

        Args:
            config: Source configuration (base URL, path, channel, timeout)
            transport: Optional httpx transport, used by tests
        """
        self._config = config
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def initialize(self) -> None:
        """Create the HTTP client"""
        await self._ensure_client()
        logger.info("VBus live source initialized", base_url=self._config.base_url)

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            timeout = self._config.timeout
            self._client = httpx.AsyncClient(
                base_url=self._config.base_url,
                timeout=httpx.Timeout(connect=timeout, read=timeout, write=timeout, pool=timeout),
                transport=self._transport,
                event_hooks={"request": [self._log_request], "response": [self._log_response]},
            )
        return self._client

    @staticmethod
    async def _log_request(request: httpx.Request) -> None:
        logger.debug("Request", url=str(request.url))

    @staticmethod
    async def _log_response(response: httpx.Response) -> None:
        logger.debug("Response", status_code=response.status_code, url=str(response.request.url))

    async def fetch_snapshot(self) -> Snapshot:
        """
        Fetch the current live snapshot.

        Returns:
            Validated Snapshot

        Raises:
            FetchError: timeout, connection error or non-success status
            MalformedSnapshotError: body is not JSON or not snapshot-shaped
        """
        client = await self._ensure_client()
        try:
            response = await client.get(
                self._config.live_path,
                params={"channel": self._config.channel},
            )
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise FetchError(f"Timed out fetching live data: {e!r}") from e
        except httpx.HTTPStatusError as e:
            raise FetchError(f"Live data request failed with status {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise FetchError(f"Connection failed: {e!r}") from e

        try:
            return Snapshot.model_validate(response.json())
        except ValidationError as e:
            raise MalformedSnapshotError(
                f"Unexpected live data shape ({e.error_count()} errors)"
            ) from e
        except ValueError as e:
            raise MalformedSnapshotError(f"Live data is not valid JSON: {e}") from e

    def get_metadata(self) -> DataSourceMetadata:
        """Get live source metadata"""
        return DataSourceMetadata(
            source_id="vbus",
            name="VBus live data",
            description=f"Controller readings from {self._config.base_url}",
            endpoint=f"{self._config.base_url.rstrip('/')}/{self._config.live_path.lstrip('/')}",
        )

    async def health_check(self) -> bool:
        """Check if the live endpoint answers with a snapshot"""
        try:
            await self.fetch_snapshot()
            return True
        except FetchError as e:
            logger.debug("VBus health check failed", error=str(e))
            return False

    async def shutdown(self) -> None:
        """Close HTTP client"""
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.debug("VBus live source shut down")
