"""
WebSocket command link to the robot.

Handles:
- Async WebSocket connection with an in-band auth command
- Permissive auth acknowledgment matching
- Fixed-delay reconnection, retried until disconnect()
- Message queue for decoupled, non-blocking sending
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import websockets
from websockets.exceptions import (
    ConnectionClosed,
    InvalidStatus,
    WebSocketException,
)

from .config import DEFAULT_TOKEN, PING_INTERVAL_S, RECONNECT_DELAY_S
from .message import Command, is_auth_ack, parse_reply
from .observable import Observable

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Lifecycle of the command link."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    AUTHENTICATED = "authenticated"

    @property
    def can_send(self) -> bool:
        # Peers that never ack are tolerated, so CONNECTED is enough.
        return self in (ConnectionState.CONNECTED, ConnectionState.AUTHENTICATED)


@dataclass
class LinkStats:
    """Statistics about the command link."""
    connect_time: Optional[float] = None
    disconnect_time: Optional[float] = None
    reconnect_attempts: int = 0
    messages_sent: int = 0
    messages_failed: int = 0
    last_send_time: Optional[float] = None


class CommandLink:
    """
    Persistent authenticated command channel.

    Features:
    - connect(host, port) / disconnect() / send(command) -> bool
    - Observable `state` and `last_message`
    - One pending reconnect timer at most, fixed delay, no retry ceiling
    - Every connection attempt carries a generation number; events from a
      superseded attempt are ignored

    All methods must be called from the event loop thread.
    """

    def __init__(
        self,
        token: str = DEFAULT_TOKEN,
        reconnect_delay: float = RECONNECT_DELAY_S,
        connector: Optional[Callable[..., Awaitable[Any]]] = None,
        queue_size: int = 100,
    ):
        """
        Initialize the command link.

        Args:
            token: Shared secret sent in the auth command
            reconnect_delay: Seconds between a failure and the next attempt
            connector: Coroutine function opening the transport
                (defaults to websockets.connect)
            queue_size: Maximum number of queued outgoing frames
        """
        self.token = token
        self.reconnect_delay = reconnect_delay
        self._connector = connector or websockets.connect

        self.state: Observable[ConnectionState] = Observable(ConnectionState.DISCONNECTED)
        self.last_message: Observable[Optional[str]] = Observable(None)
        self.stats = LinkStats()

        self.server_url = ""
        self._should_reconnect = False
        self._auth_sent = False
        self._generation = 0

        self._ws = None
        self._send_queue: asyncio.Queue[str] = asyncio.Queue(maxsize=queue_size)

        # Tasks
        self._connect_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._send_task: Optional[asyncio.Task] = None
        self._close_task: Optional[asyncio.Task] = None

    @property
    def connected(self) -> bool:
        """Check if commands may currently be transmitted."""
        return self.state.value.can_send and self._ws is not None

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def connect(self, host: str, port: int) -> None:
        """
        Start connecting to ws://host:port and keep reconnecting on failure.

        A call while an attempt is already in flight is a no-op.
        """
        if not host:
            raise ValueError("host must not be empty")

        url = f"ws://{host}:{port}"
        state = self.state.value
        if state == ConnectionState.CONNECTING:
            logger.debug(f"Connection attempt to {self.server_url} already in flight")
            return

        previous_url = self.server_url
        self.server_url = url
        self._should_reconnect = True
        self._cancel_reconnect()
        self._ensure_sender()

        if state.can_send:
            if url == previous_url:
                logger.debug(f"Already connected to {url}")
                return
            logger.info(f"Switching command link from {previous_url} to {url}")
            self._teardown_connection()

        self._do_connect()

    def send(self, command: Command) -> bool:
        """
        Queue a command for sending.

        Non-blocking and best-effort. Failed sends are not retried.

        Returns:
            True if queued, False if the link cannot send right now
        """
        state = self.state.value
        if not state.can_send or self._ws is None:
            self.stats.messages_failed += 1
            logger.warning(f"Cannot send {command.kind} command - link is {state.value}")
            return False
        return self._enqueue(command.to_json())

    def disconnect(self) -> None:
        """Close the link and stop reconnecting until connect() is called again."""
        logger.info("Command link disconnecting...")
        self._should_reconnect = False
        self._cancel_reconnect()
        self._teardown_connection()

        if self._send_task:
            self._send_task.cancel()
            self._send_task = None

        self._set_state(ConnectionState.DISCONNECTED)

    async def drain(self, timeout: float = 1.0) -> bool:
        """Wait until queued frames have been written. Returns False on timeout."""
        try:
            await asyncio.wait_for(self._send_queue.join(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning(f"Send queue not drained within {timeout:.1f}s")
            return False

    def get_stats(self) -> dict:
        """Get link statistics."""
        return {
            "state": self.state.value.value,
            "server_url": self.server_url,
            "connect_time": self.stats.connect_time,
            "disconnect_time": self.stats.disconnect_time,
            "reconnect_attempts": self.stats.reconnect_attempts,
            "messages_sent": self.stats.messages_sent,
            "messages_failed": self.stats.messages_failed,
            "last_send_time": self.stats.last_send_time,
            "queue_size": self._send_queue.qsize(),
        }

    # ------------------------------------------------------------------
    # Transport event handlers
    # ------------------------------------------------------------------

    def handle_open(self) -> None:
        """Transport opened: mark connected and authenticate once."""
        if self.state.value != ConnectionState.AUTHENTICATED:
            self._set_state(ConnectionState.CONNECTED)

        if self._auth_sent:
            logger.debug("Auth already sent for this connection")
            return
        self._auth_sent = True
        self._enqueue(Command.auth(self.token).to_json())

    def handle_message(self, message) -> None:
        """Reply received: record it and look for an auth acknowledgment."""
        if isinstance(message, (bytes, bytearray)):
            text = message.decode("utf-8", errors="replace")
        else:
            text = message
        logger.debug(f"Received: {text}")
        self.last_message.set(text)

        payload = parse_reply(message)
        if payload is None:
            return
        if is_auth_ack(payload) and self.state.value == ConnectionState.CONNECTED:
            self._set_state(ConnectionState.AUTHENTICATED)
            logger.info("Authentication successful")

    def handle_closed(self, reason: str = "") -> None:
        """Transport failed or closed: go idle and schedule a reconnect."""
        logger.info(f"Command link closed: {reason or 'no reason'}")
        self._ws = None
        self._auth_sent = False
        self.stats.disconnect_time = time.time()
        self._discard_queued()
        self._set_state(ConnectionState.DISCONNECTED)
        self._schedule_reconnect()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _set_state(self, state: ConnectionState) -> None:
        if self.state.set(state):
            logger.info(f"Command link state -> {state.value}")

    def _do_connect(self) -> None:
        if self.state.value == ConnectionState.CONNECTING:
            return
        self._generation += 1
        self._auth_sent = False
        self._set_state(ConnectionState.CONNECTING)
        self._connect_task = asyncio.get_running_loop().create_task(
            self._run_connection(self._generation)
        )

    async def _run_connection(self, generation: int) -> None:
        """Open the transport and pump incoming messages until it closes."""
        logger.info(f"Connecting to {self.server_url}...")
        try:
            ws = await self._connector(
                self.server_url,
                ping_interval=PING_INTERVAL_S,
                ping_timeout=10,
                close_timeout=5,
            )
        except InvalidStatus as e:
            logger.error(f"Handshake rejected: {e}")
            self._connection_lost(generation, "handshake rejected")
            return
        except ConnectionRefusedError:
            logger.error("Connection refused - is the robot server running?")
            self._connection_lost(generation, "connection refused")
            return
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            logger.error(f"Connection failed: {e}")
            self._connection_lost(generation, str(e))
            return
        except Exception as e:
            logger.error(f"Unexpected connection error: {e}")
            self._connection_lost(generation, str(e))
            return

        if generation != self._generation:
            await ws.close()
            return

        self._ws = ws
        self.stats.connect_time = time.time()
        logger.info("WebSocket connected successfully")
        self.handle_open()

        reason = "closed by peer"
        try:
            async for message in ws:
                self.handle_message(message)
        except ConnectionClosed as e:
            reason = f"connection lost: {e}"
        except (OSError, WebSocketException) as e:
            logger.error(f"Receive failed: {e}")
            reason = str(e)
        finally:
            if self._ws is ws:
                self._ws = None
            self._connection_lost(generation, reason)

    def _connection_lost(self, generation: int, reason: str) -> None:
        if generation != self._generation:
            logger.debug(f"Ignoring close from superseded attempt {generation}")
            return
        self.handle_closed(reason)

    def _teardown_connection(self) -> None:
        """Invalidate the current attempt and close its transport."""
        self._generation += 1
        self._auth_sent = False
        ws, self._ws = self._ws, None

        if self._connect_task and not self._connect_task.done():
            self._connect_task.cancel()
        self._connect_task = None

        if ws is not None:
            self._close_task = asyncio.get_running_loop().create_task(self._close_ws(ws))
        self._discard_queued()

    async def _close_ws(self, ws) -> None:
        try:
            await ws.close(code=1000, reason="User disconnected")
        except (OSError, WebSocketException) as e:
            logger.debug(f"Close failed: {e}")

    def _schedule_reconnect(self) -> None:
        if not self._should_reconnect:
            return
        self._cancel_reconnect()
        logger.info(f"Reconnecting in {self.reconnect_delay:.1f}s...")
        self._reconnect_task = asyncio.get_running_loop().create_task(
            self._reconnect_after_delay()
        )

    async def _reconnect_after_delay(self) -> None:
        await asyncio.sleep(self.reconnect_delay)
        self._reconnect_task = None
        if self._should_reconnect and self.state.value == ConnectionState.DISCONNECTED:
            logger.info("Attempting reconnect...")
            self.stats.reconnect_attempts += 1
            self._do_connect()

    def _cancel_reconnect(self) -> None:
        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
            self._reconnect_task = None

    def _ensure_sender(self) -> None:
        if self._send_task is None or self._send_task.done():
            self._send_task = asyncio.get_running_loop().create_task(self._send_loop())

    def _enqueue(self, text: str) -> bool:
        try:
            self._send_queue.put_nowait(text)
            return True
        except asyncio.QueueFull:
            self.stats.messages_failed += 1
            logger.warning("Send queue full, dropping message")
            return False

    def _discard_queued(self) -> None:
        while not self._send_queue.empty():
            self._send_queue.get_nowait()
            self._send_queue.task_done()

    async def _send_loop(self) -> None:
        """Process outgoing message queue."""
        while True:
            text = await self._send_queue.get()
            try:
                ws = self._ws
                if ws is None:
                    # Link dropped after this frame was queued
                    self.stats.messages_failed += 1
                    continue
                try:
                    logger.debug(f"Sending: {text}")
                    await ws.send(text)
                    self.stats.messages_sent += 1
                    self.stats.last_send_time = time.time()
                except (ConnectionClosed, WebSocketException, OSError) as e:
                    self.stats.messages_failed += 1
                    logger.warning(f"Send failed: {e}")
            finally:
                self._send_queue.task_done()
