"""Tenant-scoped change feed over MQTT.

The backend publishes each row change to ``<prefix>/<tenant_id>/<table>``,
so subscribing to one tenant's topics is the server-side tenant filter.
The restaurants topic only ever carries the tenant's own row.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Iterable

import paho.mqtt.client as mqtt

from ..config import RealtimeConfig
from ..context import TenantContext
from ..errors import SyncError
from ..models import Table
from .events import FeedMessage

logger = logging.getLogger(__name__)


class FeedDisconnected(SyncError):
    """The change feed connection was lost or could not be established."""


class ChangeFeed(ABC):
    """A subscription to one tenant's row changes."""

    @abstractmethod
    async def connect(self, ctx: TenantContext, tables: Iterable[Table]) -> None:
        """Open the connection and subscribe to one stream per table.

        Raises:
            FeedDisconnected: If the connection cannot be established.
        """

    @abstractmethod
    async def receive(self) -> FeedMessage:
        """Wait for the next message.

        Raises:
            FeedDisconnected: When the connection drops.
        """

    @abstractmethod
    async def close(self) -> None:
        """Tear the subscription down."""


def topic_for(prefix: str, tenant_id: str, table: Table) -> str:
    return f"{prefix}/{tenant_id}/{table.value}"


class MQTTChangeFeed(ChangeFeed):
    """Change feed backed by paho-mqtt.

    paho runs its network loop on its own thread; messages cross into the
    asyncio loop through a queue. A ``None`` on the queue marks a dropped
    connection.
    """

    def __init__(self, config: RealtimeConfig, client_id: str = ""):
        self.config = config
        self._client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=client_id)
        self._client.on_connect = self._handle_connect
        self._client.on_message = self._handle_message
        self._client.on_disconnect = self._handle_disconnect

        self._connected = False
        self._topics: dict[str, Table] = {}
        self._loop: asyncio.AbstractEventLoop | None = None
        self._queue: asyncio.Queue[FeedMessage | None] | None = None

    @property
    def connected(self) -> bool:
        return self._connected

    def _handle_connect(
        self,
        client: mqtt.Client,
        userdata: Any,
        flags: Any,
        reason_code: Any,
        properties: Any = None,
    ) -> None:
        """Handle connection to broker."""
        if reason_code == 0:
            self._connected = True
            logger.info(f"Connected to change feed at {self.config.broker}:{self.config.port}")
            for topic in self._topics:
                client.subscribe(topic, qos=1)
                logger.debug(f"Subscribed to topic: {topic}")
        else:
            logger.error(f"Failed to connect to change feed: {reason_code}")

    def _handle_message(
        self,
        client: mqtt.Client,
        userdata: Any,
        msg: mqtt.MQTTMessage,
    ) -> None:
        """Hand an incoming message to the asyncio side."""
        table = self._topics.get(msg.topic)
        if table is None:
            logger.debug(f"Ignoring message on unexpected topic {msg.topic}")
            return

        message = FeedMessage(table=table.value, payload=msg.payload)
        if self._queue and self._loop:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, message)

    def _handle_disconnect(
        self,
        client: mqtt.Client,
        userdata: Any,
        disconnect_flags: Any,
        reason_code: Any,
        properties: Any = None,
    ) -> None:
        """Handle disconnection from broker."""
        was_connected = self._connected
        self._connected = False
        logger.warning(f"Disconnected from change feed: {reason_code}")
        if was_connected and self._queue and self._loop:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, None)

    async def connect(self, ctx: TenantContext, tables: Iterable[Table]) -> None:
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._topics = {
            topic_for(self.config.topic_prefix, ctx.tenant_id, table): table
            for table in tables
        }

        if self.config.username and self.config.password:
            self._client.username_pw_set(self.config.username, self.config.password)

        try:
            self._client.connect(
                self.config.broker, self.config.port, keepalive=self.config.keepalive
            )
            self._client.loop_start()
        except Exception as e:
            raise FeedDisconnected(f"Failed to connect to change feed: {e}") from e

        polls = max(1, int(self.config.connect_timeout_seconds * 10))
        for _ in range(polls):
            if self._connected:
                return
            await asyncio.sleep(0.1)

        self._client.loop_stop()
        raise FeedDisconnected("Timeout waiting for change feed connection")

    async def receive(self) -> FeedMessage:
        if self._queue is None:
            raise FeedDisconnected("Change feed is not connected")
        message = await self._queue.get()
        if message is None:
            raise FeedDisconnected("Change feed connection lost")
        return message

    async def close(self) -> None:
        self._connected = False
        for topic in self._topics:
            self._client.unsubscribe(topic)
        self._client.loop_stop()
        self._client.disconnect()
        self._topics = {}
        self._queue = None
