"""Connection lifecycle for a single shared MongoDB connection.

`ConnectionManager` owns the motor client and moves it through three states:

```
disconnected --connect()--> connecting --ping ok--> connected
     ^                          |                       |
     +---- ping failed ---------+                       |
     |     (retry after reconnect_timeout)              |
     +---------------- driver reports close ------------+
```

-   Only one low-level connect attempt is ever in flight. Callers that arrive while the manager is connecting wait on
    that attempt and all receive its outcome.
-   A failed attempt is reported to the callers that waited on it, then retried forever at a fixed delay. There is no
    backoff growth and no retry limit, callers that need bounded waiting wrap `connect()` in ``asyncio.timeout``.
-   The driver reports topology changes from its monitor threads. They are moved onto the event loop before touching
    any state, and changes reported by a client that has since been replaced are ignored.
"""
import asyncio
from contextlib import suppress
from enum import Enum
from typing import Any, Callable, Mapping

import structlog
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo import monitoring
from tramp.optionals import Optional

from gyro.exceptions import ConnectFailed
from gyro.settings import DEFAULT_URL, ConnectionSettings, resolve_settings
from gyro.signals import CLOSE, CONNECT, ERROR, RECONNECT, Signals


logger = structlog.get_logger(__name__)


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class TopologyWatcher(monitoring.TopologyListener):
    """Forwards driver topology changes for one client to its connection manager.

    pymongo calls these methods on its own monitor threads, so every notification is handed to the event loop with
    ``call_soon_threadsafe``.
    """
    def __init__(self, manager: "ConnectionManager", loop: asyncio.AbstractEventLoop):
        self._manager = manager
        self._loop = loop

    def opened(self, event: monitoring.TopologyOpenedEvent):
        pass

    def description_changed(self, event: monitoring.TopologyDescriptionChangedEvent):
        was_readable = event.previous_description.has_readable_server()
        is_readable = event.new_description.has_readable_server()
        if was_readable and not is_readable:
            self._dispatch(self._manager._handle_close)
        elif is_readable and not was_readable:
            self._dispatch(self._manager._handle_reconnect)

    def closed(self, event: monitoring.TopologyClosedEvent):
        pass

    def _dispatch(self, handler: Callable[["TopologyWatcher"], None]):
        if not self._loop.is_closed():
            self._loop.call_soon_threadsafe(handler, self)


class ConnectionManager:
    """Establishes, monitors and recovers the connection to one MongoDB URL.

    Attributes:
        url: The MongoDB connection string.
        settings: The resolved `ConnectionSettings`.
        signals: Registry that receives ``connect``, ``close``, ``reconnect`` and ``error``.
        state: The current `ConnectionState`.

    Example:
        ```python
        manager = ConnectionManager("mongodb://localhost:27017/app", {"reconnectTimeout": 1000})
        db = await manager.connect()
        users = await manager.collection("users")
        ```
    """
    def __init__(
        self,
        url: str | None = None,
        settings: ConnectionSettings | Mapping[str, Any] | None = None,
        *,
        signals: Signals | None = None,
        client_factory: Callable[..., AsyncIOMotorClient] = AsyncIOMotorClient,
    ):
        """
        Args:
            url: MongoDB connection string, defaults to the local server.
            settings: `ConnectionSettings`, or a mapping where ``reconnectTimeout`` is recognized and all other keys
                go to the motor client.
            signals: Registry to emit lifecycle signals on. A private one is created when omitted.
            client_factory: Callable that builds the motor client, called as ``client_factory(url, **options)``.
        """
        self.url = url or DEFAULT_URL
        self.settings = resolve_settings(settings)
        self.signals = signals or Signals()
        self.state = ConnectionState.DISCONNECTED

        self._client_factory = client_factory
        self._client: AsyncIOMotorClient | None = None
        self._database: AsyncIOMotorDatabase | None = None
        self._watcher: TopologyWatcher | None = None
        self._attempt: Optional[asyncio.Task[AsyncIOMotorDatabase]] = Optional.Nothing
        self._retry: asyncio.TimerHandle | None = None

    @property
    def connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    async def connect(self) -> AsyncIOMotorDatabase:
        """Returns the live database, connecting first if needed.

        Returns immediately when connected. While a connect attempt is in flight the caller waits on that attempt
        instead of starting another one.

        Raises:
            ConnectFailed: If the attempt this caller waited on failed. A retry is already scheduled when this is
                raised.
        """
        if self.state is ConnectionState.CONNECTED:
            return self._database

        match self._attempt:
            case Optional.Some(attempt):
                pass

            case _:
                attempt = self._start_attempt()

        return await asyncio.shield(attempt)

    async def collection(self, name: str) -> AsyncIOMotorCollection:
        database = await self.connect()
        return database[name]

    async def disconnect(self):
        """Stops any retry, closes the client and returns to the initial disconnected state."""
        self._cancel_retry()
        match self._attempt:
            case Optional.Some(attempt):
                attempt.cancel()
                with suppress(asyncio.CancelledError, ConnectFailed):
                    await attempt

        self._close_client()
        self.state = ConnectionState.DISCONNECTED
        logger.info("Disconnected from MongoDB", url=self.url)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()

    def _start_attempt(self) -> asyncio.Task[AsyncIOMotorDatabase]:
        self._cancel_retry()
        self.state = ConnectionState.CONNECTING

        attempt = asyncio.get_running_loop().create_task(self._open())
        self._attempt = Optional.Some(attempt)
        attempt.add_done_callback(self._attempt_finished)
        return attempt

    async def _open(self) -> AsyncIOMotorDatabase:
        self._close_client()
        logger.info("Connecting to MongoDB", url=self.url)

        watcher = TopologyWatcher(self, asyncio.get_running_loop())
        client = None
        try:
            client = self._client_factory(self.url, **self._client_options(watcher))
            await client.admin.command("ping")
            database = client.get_default_database(self.settings.database_name)

        except asyncio.CancelledError:
            if client is not None:
                client.close()
            raise

        except Exception as error:
            if client is not None:
                client.close()
            raise ConnectFailed(f"Failed to connect to MongoDB: {error}", url=self.url) from error

        self._client, self._database, self._watcher = client, database, watcher
        return database

    def _client_options(self, watcher: TopologyWatcher) -> dict[str, Any]:
        """Caller options win over the settings timeout. The watcher is appended to any caller supplied listeners."""
        options = {"serverSelectionTimeoutMS": self.settings.timeout} | self.settings.connection_options
        options["event_listeners"] = [*options.get("event_listeners", ()), watcher]
        return options

    def _attempt_finished(self, attempt: asyncio.Task[AsyncIOMotorDatabase]):
        self._attempt = Optional.Nothing
        if attempt.cancelled():
            self.state = ConnectionState.DISCONNECTED
            return

        if (error := attempt.exception()) is not None:
            self.state = ConnectionState.DISCONNECTED
            logger.error(
                "Failed to connect to MongoDB",
                url=self.url,
                error=str(error),
                retry_in_ms=self.settings.reconnect_timeout,
            )
            self._schedule_retry()
            self.signals.emit(ERROR, error)
            return

        self.state = ConnectionState.CONNECTED
        logger.info("Connected to MongoDB", url=self.url)
        self.signals.emit(CONNECT, self.url)

    def _schedule_retry(self):
        self._cancel_retry()
        self._retry = asyncio.get_running_loop().call_later(self.settings.reconnect_delay, self._retry_connect)

    def _retry_connect(self):
        self._retry = None
        if self.state is not ConnectionState.DISCONNECTED:
            return

        logger.info("Attempting to reconnect to MongoDB", url=self.url)
        self._start_attempt()

    def _cancel_retry(self):
        if self._retry is not None:
            self._retry.cancel()
            self._retry = None

    def _close_client(self):
        if self._client is not None:
            self._client.close()

        self._client = self._database = self._watcher = None

    def _handle_close(self, watcher: TopologyWatcher):
        if watcher is not self._watcher or self.state is not ConnectionState.CONNECTED:
            return

        self.state = ConnectionState.DISCONNECTED
        logger.warning("MongoDB connection closed", url=self.url)
        self.signals.emit(CLOSE, self.url)

    def _handle_reconnect(self, watcher: TopologyWatcher):
        if watcher is not self._watcher or self.state is not ConnectionState.DISCONNECTED:
            return

        self.state = ConnectionState.CONNECTED
        logger.info("MongoDB connection recovered", url=self.url)
        self.signals.emit(RECONNECT, self.url)
