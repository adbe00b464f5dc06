"""Websocket connection to the Recky server.

The connection is an explicit state machine; every state change goes
through ``ConnectionManager._transition`` which rejects edges that are not
listed in ``TRANSITIONS``::

    DISCONNECTED -> CONNECTING -> CONNECTED -> AUTHENTICATING -> AUTHENTICATED
                        |             |              |                |
                        +-------------+--------------+-> CLOSING -> DISCONNECTED

After every close a reconnection is scheduled until
``reconnect_max_attempts`` is reached.
"""

import asyncio
import json
import logging
import time
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

import websockets
from pydantic import ValidationError

from reckyprint.config import AgentConfig
from reckyprint.job_queue import JobQueue
from reckyprint.schemas import AuthenticatePayload, Envelope, SilentPrintPayload, outbound

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    """Connection lifecycle states."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    CLOSING = "closing"


S = ConnectionState

TRANSITIONS: dict[ConnectionState, frozenset[ConnectionState]] = {
    S.DISCONNECTED: frozenset({S.CONNECTING}),
    S.CONNECTING: frozenset({S.CONNECTED, S.DISCONNECTED}),
    S.CONNECTED: frozenset({S.AUTHENTICATING, S.CLOSING, S.DISCONNECTED}),
    S.AUTHENTICATING: frozenset({S.AUTHENTICATED, S.CLOSING, S.DISCONNECTED}),
    # Re-authentication with a new credential from the control endpoint
    S.AUTHENTICATED: frozenset({S.AUTHENTICATING, S.CLOSING, S.DISCONNECTED}),
    S.CLOSING: frozenset({S.DISCONNECTED}),
}

OPEN_STATES = frozenset({S.CONNECTED, S.AUTHENTICATING, S.AUTHENTICATED})


class InvalidTransition(Exception):
    """A state change not allowed by the connection state machine."""

    def __init__(self, current: ConnectionState, target: ConnectionState):
        super().__init__(f"Invalid connection transition {current.value} -> {target.value}")
        self.current = current
        self.target = target


Opener = Callable[[str], Awaitable[Any]]


class ConnectionManager:
    """Owns the channel to the server.

    Connects and authenticates, routes inbound messages, watches the
    connection with ping/pong probes and reconnects after any close.

    Args:
        config: Agent configuration.
        queue: Queue receiving ``silentPrint`` jobs.
        opener: Coroutine opening the transport (default: websockets.connect).
    """

    def __init__(self, config: AgentConfig, queue: JobQueue, opener: Opener | None = None):
        self.config = config
        self.queue = queue
        self._open = opener or websockets.connect

        self.state = ConnectionState.DISCONNECTED
        self.reconnect_attempts = 0
        self.exhausted = False
        self.pending_pong = False
        self._token = config.agent_key
        self._ws = None
        self._reader: asyncio.Task | None = None
        self._watchdog: asyncio.Task | None = None
        self._reconnect: asyncio.Task | None = None
        self._closer: asyncio.Task | None = None
        self._probe_timer: asyncio.TimerHandle | None = None
        self._stopping = False

        self._handlers: dict[str, Callable[[Any], Awaitable[None]]] = {
            "authenticated": self._on_authenticated,
            "silentPrint": self._on_silent_print,
            "ping": self._on_ping,
            "pong": self._on_pong,
            "getQueueStats": self._on_get_queue_stats,
            "clearQueue": self._on_clear_queue,
        }

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _transition(self, target: ConnectionState) -> None:
        if target not in TRANSITIONS[self.state]:
            raise InvalidTransition(self.state, target)
        logger.info(f"Connection {self.state.value} -> {target.value}")
        previous, self.state = self.state, target

        if target is S.AUTHENTICATED:
            self.reconnect_attempts = 0
            self.exhausted = False
            self._start_watchdog()
        elif previous is S.AUTHENTICATED:
            self._stop_watchdog()

    @property
    def is_open(self) -> bool:
        return self._ws is not None and self.state in OPEN_STATES

    def status(self) -> dict:
        return {
            "state": self.state.value,
            "server_url": self.config.server_url,
            "reconnect_attempts": self.reconnect_attempts,
            "reconnect_max_attempts": self.config.reconnect_max_attempts,
            "exhausted": self.exhausted,
            "pending_pong": self.pending_pong,
        }

    # ------------------------------------------------------------------
    # Connect / close / reconnect
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the transport and start authentication.

        Transport errors are logged and turn into a scheduled reconnection.
        """
        if self._stopping:
            return

        self._transition(S.CONNECTING)
        logger.info(f"Connecting to {self.config.server_url}")
        try:
            ws = await self._open(self.config.server_url)
        except (OSError, asyncio.TimeoutError, websockets.WebSocketException) as e:
            logger.error(f"Connection to {self.config.server_url} failed: {e}")
            self._transition(S.DISCONNECTED)
            self._schedule_reconnect()
            return

        self._ws = ws
        self._transition(S.CONNECTED)
        self._reader = asyncio.create_task(self._read_loop(ws), name="reckyprint-reader")

        if self.config.auth_mode == "manual" and not self._token:
            logger.info("Waiting for a credential from the control endpoint")
            return
        await self.authenticate()

    async def authenticate(self, token: str | None = None) -> bool:
        """Send the authentication message.

        Args:
            token: New credential; replaces the configured one from now on.

        Returns:
            bool: True if the message was sent.
        """
        if token:
            self._token = token
            logger.info("Agent credential updated")

        if not self.is_open:
            logger.warning("Not connected; credential will be used on the next connection")
            return False
        if not self._token:
            logger.error("No agent credential configured")
            return False

        if self.state is not S.AUTHENTICATING:
            self._transition(S.AUTHENTICATING)
        message = outbound(
            "authenticateAgent",
            AuthenticatePayload(token=self._token, agent_name=self.config.agent_name),
        )
        if not await self.send(message):
            return False
        logger.info(f"Authentication sent as '{self.config.agent_name}'")

        if self.config.auth_mode == "optimistic":
            if self.state is S.AUTHENTICATING:
                self._transition(S.AUTHENTICATED)
        else:
            # The handshake is bounded like a keep-alive probe
            self._arm_probe_timer("authentication")
        return True

    async def _read_loop(self, ws) -> None:
        try:
            async for raw in ws:
                await self.on_message(raw)
        except websockets.ConnectionClosed as e:
            logger.warning(f"Connection closed: {e}")
        except OSError as e:
            logger.error(f"Connection error: {e}")
        finally:
            self._on_closed(ws)

    def _on_closed(self, ws) -> None:
        """Handle the end of a transport; only the first call per transport counts."""
        if ws is not self._ws:
            return
        self._ws = None
        self._cancel_probe_timer()
        if self.state is not S.DISCONNECTED:
            self._transition(S.DISCONNECTED)
        if not self._stopping:
            self._schedule_reconnect()

    async def _force_close(self, reason: str) -> None:
        """Close a stalled connection; the close handler reconnects."""
        ws = self._ws
        if ws is None or self.state not in OPEN_STATES:
            return
        logger.warning(f"Closing connection: {reason}")
        self._transition(S.CLOSING)
        self._cancel_probe_timer()
        try:
            await ws.close()
        except (OSError, websockets.WebSocketException) as e:
            logger.debug(f"Error while closing transport: {e}")
        self._on_closed(ws)
        if self._reader is not None and not self._reader.done():
            self._reader.cancel()

    def _schedule_reconnect(self) -> None:
        if self._stopping:
            return
        max_attempts = self.config.reconnect_max_attempts
        if self.reconnect_attempts >= max_attempts:
            self.exhausted = True
            logger.error(
                f"Maximum reconnection attempts ({max_attempts}) reached; "
                "restart the agent to reconnect"
            )
            return

        self.reconnect_attempts += 1
        delay = self.config.reconnect_delay
        logger.info(f"Reconnecting ({self.reconnect_attempts}/{max_attempts}) in {delay:g} seconds...")
        self._reconnect = asyncio.create_task(self._reconnect_after(delay), name="reckyprint-reconnect")

    async def _reconnect_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        await self.connect()

    async def stop(self) -> None:
        """Stop the watchdog and reconnections and close the transport."""
        self._stopping = True
        if self._reconnect is not None and not self._reconnect.done():
            self._reconnect.cancel()
        self._stop_watchdog()

        ws = self._ws
        if ws is not None:
            if self.state in OPEN_STATES:
                self._transition(S.CLOSING)
            try:
                await ws.close()
            except (OSError, websockets.WebSocketException) as e:
                logger.debug(f"Error while closing transport: {e}")
            self._on_closed(ws)

        tasks = [t for t in (self._reader, self._reconnect, self._closer) if t is not None and not t.done()]
        for task in tasks:
            if task is not asyncio.current_task():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Connection stopped")

    # ------------------------------------------------------------------
    # Keep-alive watchdog
    # ------------------------------------------------------------------

    def _start_watchdog(self) -> None:
        self._stop_watchdog()
        self.pending_pong = False
        self._watchdog = asyncio.create_task(self._watchdog_loop(), name="reckyprint-watchdog")

    def _stop_watchdog(self) -> None:
        self._cancel_probe_timer()
        self.pending_pong = False
        if self._watchdog is not None and not self._watchdog.done():
            if self._watchdog is not asyncio.current_task():
                self._watchdog.cancel()
        self._watchdog = None

    async def _watchdog_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.keepalive_interval)
            if self.pending_pong:
                self._stalled("previous keep-alive probe still unanswered")
                return
            await self._send_probe()

    async def _send_probe(self) -> None:
        self.pending_pong = True
        logger.debug("Sending keep-alive ping")
        if await self.send(outbound("ping", {"timestamp": _now_ms()})):
            self._arm_probe_timer("keep-alive")

    def _arm_probe_timer(self, what: str) -> None:
        self._cancel_probe_timer()
        loop = asyncio.get_running_loop()
        self._probe_timer = loop.call_later(
            self.config.keepalive_timeout,
            self._stalled,
            f"no {what} answer within {self.config.keepalive_timeout:g}s",
        )

    def _cancel_probe_timer(self) -> None:
        if self._probe_timer is not None:
            self._probe_timer.cancel()
            self._probe_timer = None

    def _stalled(self, reason: str) -> None:
        self._cancel_probe_timer()
        if self._closer is not None and not self._closer.done():
            return
        self._closer = asyncio.create_task(self._force_close(reason), name="reckyprint-close")

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def send(self, message: dict) -> bool:
        """Send a message as JSON.

        Returns:
            bool: True if the message was handed to the transport.
        """
        if not self.is_open:
            logger.error(f"Cannot send '{message.get('action')}': no active connection")
            return False
        try:
            await self._ws.send(json.dumps(message))
            return True
        except (OSError, websockets.ConnectionClosed) as e:
            logger.error(f"Error sending '{message.get('action')}': {e}")
            return False

    async def on_message(self, raw: str | bytes) -> None:
        """Parse and route one inbound message.

        Malformed messages and unknown actions are logged and dropped.
        """
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError, TypeError) as e:
            logger.error(f"Dropping non-JSON message ({e}): {_preview(raw)}")
            return

        if not isinstance(data, dict):
            logger.error(f"Dropping message that is not an object: {_preview(raw)}")
            return

        try:
            envelope = Envelope.model_validate(data)
        except ValidationError:
            logger.error(f"Dropping malformed message: {_preview(raw)}")
            return

        handler = self._handlers.get(envelope.action)
        if handler is None:
            logger.info(f"Ignoring unknown action '{envelope.action}'")
            return

        logger.debug(f"Received '{envelope.action}'")
        try:
            await handler(envelope.payload)
        except Exception:
            logger.exception(f"Error handling '{envelope.action}'")

    async def _on_authenticated(self, payload: Any) -> None:
        if self.state is S.AUTHENTICATED:
            return
        if self.state is not S.AUTHENTICATING:
            logger.warning(f"Unexpected 'authenticated' in state {self.state.value}")
            return
        self._cancel_probe_timer()
        self._transition(S.AUTHENTICATED)
        logger.info("Agent authenticated and waiting for print jobs")

    async def _on_silent_print(self, payload: Any) -> None:
        if not isinstance(payload, dict) or not payload:
            logger.error("Print job received without an object payload, dropping")
            return
        try:
            job_payload = SilentPrintPayload.model_validate(payload)
        except ValidationError as e:
            logger.error(f"Dropping invalid print job: {e.error_count()} error(s): {e.errors()[0]['msg']}")
            return

        logger.info(f"Print job received for {job_payload.destination or 'default printer'}")
        self.queue.enqueue(job_payload)

    async def _on_ping(self, payload: Any) -> None:
        logger.debug("Ping received, answering")
        await self.send(outbound("pong", {"timestamp": _now_ms()}))

    async def _on_pong(self, payload: Any) -> None:
        if not self.pending_pong:
            logger.debug("Unsolicited pong ignored")
            return
        self.pending_pong = False
        self._cancel_probe_timer()
        logger.debug("Keep-alive pong received")

    async def _on_get_queue_stats(self, payload: Any) -> None:
        await self.send(outbound("queueStats", self.queue.get_stats().to_payload()))

    async def _on_clear_queue(self, payload: Any) -> None:
        cleared = self.queue.clear()
        await self.send(outbound("queueCleared", {"cleared": cleared}))


def _now_ms() -> int:
    return int(time.time() * 1000)


def _preview(raw: str | bytes, limit: int = 200) -> str:
    text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else str(raw)
    return text if len(text) <= limit else text[:limit] + "..."
