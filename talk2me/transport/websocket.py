"""Reconnecting WebSocket transport to the remote speech service.

The transport is a plain pipe: it publishes every inbound text frame on the
bus in arrival order and leaves all protocol decisions to its subscribers.
"""

import asyncio
import logging
from enum import Enum
from typing import Optional, Callable, Dict, Any

import aiohttp

from ..bus import EventBus, TRANSPORT_STATUS, TRANSPORT_MESSAGE
from ..models.events import ConnectionEvent, RawMessageEvent
from .protocol import encode_client_event

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Lifecycle of the underlying WebSocket."""
    CLOSED = "closed"
    CONNECTING = "connecting"
    OPEN = "open"


class Transport:
    """Duplex channel with a fixed-backoff reconnect policy."""

    def __init__(self,
                 url: str,
                 bus: EventBus,
                 reconnect_delay: float = 5.0,
                 session_factory: Optional[Callable[[], Any]] = None):
        """Initialize transport.

        Args:
            url: WebSocket endpoint of the remote service
            bus: Event bus for connection status and inbound messages
            reconnect_delay: Seconds to wait before reconnecting after an unexpected close
            session_factory: Creates the client session (aiohttp.ClientSession by default)
        """
        self.url = url
        self.bus = bus
        self.reconnect_delay = reconnect_delay
        self.session_factory = session_factory or aiohttp.ClientSession

        self.state = ConnectionState.CLOSED
        self.should_reconnect = True
        self.reconnect_handle: Optional[asyncio.TimerHandle] = None
        self.latest_message: Optional[str] = None

        # Statistics
        self.connect_attempts = 0
        self.messages_received = 0
        self.dropped_sends = 0

        self._session = None
        self._ws = None
        self._task: Optional[asyncio.Task] = None

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.OPEN

    def connect(self) -> None:
        """Open the channel unless it is already open or connecting."""
        self._cancel_reconnect()
        if self.state in (ConnectionState.OPEN, ConnectionState.CONNECTING):
            return

        self.should_reconnect = True
        self.state = ConnectionState.CONNECTING
        self._task = asyncio.ensure_future(self._run())

    async def _run(self) -> None:
        self.connect_attempts += 1
        logger.info(f"Connecting to {self.url} (attempt {self.connect_attempts})")
        try:
            if self._session is None:
                self._session = self.session_factory()
            ws = await self._session.ws_connect(self.url)
        except asyncio.CancelledError:
            raise
        except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as e:
            logger.error(f"WebSocket connection to {self.url} failed: {e}")
            self._on_closed()
            return

        if self.state != ConnectionState.CONNECTING:
            # disconnect() ran while the handshake was in flight
            await ws.close()
            return

        self._ws = ws
        self.state = ConnectionState.OPEN
        logger.info("WebSocket connection established")
        self.bus.publish(TRANSPORT_STATUS, ConnectionEvent(is_open=True, url=self.url))

        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._on_message(msg.data)
                elif msg.type == aiohttp.WSMsgType.BINARY:
                    logger.debug(f"Ignoring {len(msg.data)} byte binary frame from server")
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.error(f"WebSocket error: {ws.exception()}")
                    break
        except asyncio.CancelledError:
            raise
        except (aiohttp.ClientError, OSError) as e:
            logger.error(f"WebSocket receive failed: {e}")

        if self._ws is ws:
            self._ws = None
            if not ws.closed:
                await ws.close()
            self._on_closed()

    def _on_message(self, payload: str) -> None:
        self.latest_message = payload
        self.messages_received += 1
        self.bus.publish(TRANSPORT_MESSAGE,
                         RawMessageEvent(payload=payload, sequence_number=self.messages_received))

    def _on_closed(self) -> None:
        """Handle an unexpected close: schedule at most one reconnect."""
        was_open = self.state == ConnectionState.OPEN
        self.state = ConnectionState.CLOSED
        logger.info("WebSocket connection closed")

        if self.should_reconnect and self.reconnect_handle is None:
            logger.info(f"Scheduling reconnection in {self.reconnect_delay} seconds...")
            loop = asyncio.get_running_loop()
            self.reconnect_handle = loop.call_later(self.reconnect_delay, self._reconnect)

        if was_open:
            self.bus.publish(TRANSPORT_STATUS, ConnectionEvent(
                is_open=False,
                url=self.url,
                reconnect_scheduled=self.reconnect_handle is not None,
            ))

    def _reconnect(self) -> None:
        self.reconnect_handle = None
        if self.should_reconnect:
            self.connect()

    def _cancel_reconnect(self) -> None:
        if self.reconnect_handle is not None:
            self.reconnect_handle.cancel()
            self.reconnect_handle = None

    async def send_bytes(self, data: bytes) -> bool:
        """Send a binary frame; dropped (returns False) unless the channel is open."""
        if not self.is_connected or self._ws is None:
            self.dropped_sends += 1
            logger.debug(f"WebSocket is not open, dropping {len(data)} bytes")
            return False
        try:
            await self._ws.send_bytes(data)
            return True
        except (aiohttp.ClientError, ConnectionError, RuntimeError) as e:
            self.dropped_sends += 1
            logger.error(f"Failed to send binary frame: {e}")
            return False

    async def send_json(self, event: str, data: Optional[Dict[str, Any]] = None) -> bool:
        """Send an ``{event, data}`` text frame; dropped unless the channel is open."""
        if not self.is_connected or self._ws is None:
            self.dropped_sends += 1
            logger.warning(f"WebSocket is not open. Unable to send '{event}'")
            return False
        try:
            await self._ws.send_str(encode_client_event(event, data))
            logger.debug(f"Sent event: {event}")
            return True
        except (aiohttp.ClientError, ConnectionError, RuntimeError) as e:
            self.dropped_sends += 1
            logger.error(f"Failed to send '{event}': {e}")
            return False

    async def disconnect(self) -> None:
        """Close intentionally; no reconnect is scheduled afterwards."""
        self.should_reconnect = False
        self._cancel_reconnect()

        was_open = self.state == ConnectionState.OPEN
        self.state = ConnectionState.CLOSED
        ws, self._ws = self._ws, None
        task, self._task = self._task, None

        if ws is not None and not ws.closed:
            await ws.close()
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        if self._session is not None:
            await self._session.close()
            self._session = None

        if was_open:
            self.bus.publish(TRANSPORT_STATUS, ConnectionEvent(is_open=False, url=self.url))
        logger.info("Transport disconnected")
