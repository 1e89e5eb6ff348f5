"""Single live WebSocket to the call-center gateway.

ConnectionManager owns at most one socket at a time.  ``connect()``,
``disconnect()`` and ``send_message()`` never block: they schedule work on
the running loop and return.  Each open socket gets its own reader task;
when it ends without ``disconnect()`` having been called, a reconnect is
scheduled with bounded exponential backoff.

Liveness comes only from the transport: a socket is considered alive until
websockets reports it closed.  The heartbeat keeps intermediaries from
idling the connection out, nothing more.
"""

import asyncio
import json
import logging
import time
from typing import Any, Callable

from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI
from websockets.protocol import State as ProtocolState

from agentlink.backoff import ReconnectBackoff
from agentlink.config import AppConfig, websocket_url
from agentlink.session import Session
from agentlink.states import ConnectionState, TimerCategory

logger = logging.getLogger(__name__)

HEARTBEAT_MESSAGE = {"type": "heartbeat"}

# Errors websockets raises while opening a socket
OPEN_ERRORS = (OSError, asyncio.TimeoutError, InvalidURI, InvalidHandshake)


class ConnectionManager:
    def __init__(
        self,
        config: AppConfig,
        on_message: Callable[[str | bytes], Any],
        *,
        on_state_change: Callable[[ConnectionState], Any] | None = None,
        connector: Callable[..., Any] | None = None,
        role: str | None = None,
    ):
        self.config = config
        self._settings = config.websocket
        self._on_message = on_message
        self._on_state_change = on_state_change
        self._connector = connector or ws_connect
        self.role = config.calls.role if role is None else role
        self.backoff = ReconnectBackoff(
            base_interval=self._settings.reconnect_interval,
            max_delay=self._settings.max_reconnect_delay,
            max_attempts=self._settings.max_reconnect_attempts,
            label="call-center socket",
        )

        self.state = ConnectionState.DISCONNECTED
        self.session: Session | None = None
        self._ws = None
        self._intentional = False
        self._run_task: asyncio.Task | None = None
        # Reconnect-backoff and heartbeat tasks, at most one per category
        self._timers: dict[TimerCategory, asyncio.Task] = {}
        self._closing: asyncio.Task | None = None
        self._sends: set[asyncio.Task] = set()

    @property
    def is_open(self) -> bool:
        return self._ws is not None and self._ws.state is ProtocolState.OPEN

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    @property
    def reconnect_pending(self) -> bool:
        task = self._timers.get(TimerCategory.RECONNECT_BACKOFF)
        return task is not None and not task.done()

    # ── Public operations ──

    def connect(self, agent_id: str, caller_id: str, port: int | None = None) -> None:
        if self.is_open or (self._run_task is not None and not self._run_task.done()):
            logger.debug("connect(%s, %s) ignored: socket already open", agent_id, caller_id)
            return
        self._intentional = False
        self._cancel_reconnect()
        self.backoff.reset()
        self._open(agent_id, caller_id, port)

    def disconnect(self) -> None:
        """Close the socket and stop all retries.  Safe to call in any state."""
        self._intentional = True
        self._cancel_reconnect()
        self._stop_heartbeat()
        self.backoff.reset()

        ws, self._ws = self._ws, None
        if self._run_task is not None and not self._run_task.done():
            self._run_task.cancel()
        self._run_task = None
        if ws is not None:
            previous = self._closing
            self._closing = asyncio.get_running_loop().create_task(self._close_socket(ws, previous))
        self.session = None
        self._set_state(ConnectionState.DISCONNECTED)

    def send_message(self, message: dict) -> bool:
        """Fire-and-forget.  Returns False (and logs) when no socket is open."""
        ws = self._ws
        if ws is None or ws.state is not ProtocolState.OPEN:
            logger.warning("Socket not open, dropping %r message", message.get("type"))
            return False
        task = asyncio.get_running_loop().create_task(self._send(ws, json.dumps(message)))
        self._sends.add(task)
        task.add_done_callback(self._sends.discard)
        if self.session is not None:
            self.session.messages_sent += 1
        return True

    # ── Socket lifecycle ──

    def _open(self, agent_id: str, caller_id: str, port: int | None):
        url = websocket_url(
            self.config,
            caller_id=caller_id,
            agent_id=agent_id,
            role=self.role,
            port=port,
        )
        session = Session(agent_id=agent_id, caller_id=caller_id, url=url, port=port)
        self.session = session
        self._set_state(ConnectionState.CONNECTING)
        self._run_task = asyncio.get_running_loop().create_task(self._run(session))

    async def _run(self, session: Session):
        if self._closing is not None:
            # The previous socket must be fully closed before a new one opens.
            # Cancelling this task must not cancel the pending close.
            await asyncio.wait([self._closing])

        try:
            ws = await self._connector(
                session.url,
                open_timeout=self._settings.open_timeout,
                ping_interval=None,
            )
        except OPEN_ERRORS as exc:
            logger.error("Failed to open %s: %s", session.url, exc)
            self._handle_close(session)
            return

        if self._intentional or self.session is not session:
            await ws.close()
            return

        self._ws = ws
        self._handle_open(session)
        try:
            async for frame in ws:
                session.messages_received += 1
                try:
                    self._on_message(frame)
                except Exception:
                    logger.exception("Handler failed on frame from caller %s", session.caller_id)
        except ConnectionClosed as exc:
            logger.warning("Socket for caller %s closed: %s", session.caller_id, exc)
        finally:
            self._stop_heartbeat()
            if self._ws is ws:
                self._ws = None
        self._handle_close(session)

    def _handle_open(self, session: Session):
        session.opened_at = time.time()
        self.backoff.reset()
        self._start_timer(TimerCategory.HEARTBEAT, self._heartbeat())
        logger.info("Connected to %s", session.url)
        self._set_state(ConnectionState.CONNECTED)
        self.send_message(HEARTBEAT_MESSAGE)

    def _handle_close(self, session: Session):
        if self._intentional or self.session is not session:
            return
        delay = self.backoff.next_delay()
        if delay is None:
            self._set_state(ConnectionState.ERROR)
            return
        self._set_state(ConnectionState.DISCONNECTED)
        logger.info(
            "Reconnecting to caller %s in %.1fs (attempt %d/%d)",
            session.caller_id,
            delay,
            self.backoff.attempt,
            self.backoff.max_attempts,
        )
        self._start_timer(TimerCategory.RECONNECT_BACKOFF, self._reconnect_after(delay, session))

    async def _reconnect_after(self, delay: float, session: Session):
        await asyncio.sleep(delay)
        self._timers.pop(TimerCategory.RECONNECT_BACKOFF, None)
        if self._intentional or self.session is not session:
            return
        self._open(session.agent_id, session.caller_id, session.port)

    async def _heartbeat(self):
        while True:
            await asyncio.sleep(self._settings.heartbeat_interval)
            self.send_message(HEARTBEAT_MESSAGE)

    async def _send(self, ws, data: str):
        try:
            await ws.send(data)
        except ConnectionClosed as exc:
            logger.warning("Send failed, socket closed: %s", exc)

    async def _close_socket(self, ws, previous: asyncio.Task | None):
        if previous is not None:
            await asyncio.gather(previous, return_exceptions=True)
        # Let in-flight sends (e.g. end_call) reach the socket before the close frame.
        if self._sends:
            await asyncio.gather(*list(self._sends), return_exceptions=True)
        try:
            await ws.close()
        except (OSError, ConnectionClosed) as exc:
            logger.debug("Error while closing socket: %s", exc)

    # ── Helpers ──

    def _start_timer(self, category: TimerCategory, coro):
        self._cancel_timer(category)
        self._timers[category] = asyncio.get_running_loop().create_task(coro, name=category.value)

    def _cancel_timer(self, category: TimerCategory):
        task = self._timers.pop(category, None)
        if task is not None and not task.done():
            task.cancel()

    def _cancel_reconnect(self):
        self._cancel_timer(TimerCategory.RECONNECT_BACKOFF)

    def _stop_heartbeat(self):
        self._cancel_timer(TimerCategory.HEARTBEAT)

    async def wait_closed(self) -> None:
        """Wait for the last disconnected socket to finish closing."""
        if self._closing is not None:
            await asyncio.wait([self._closing])

    def _set_state(self, state: ConnectionState):
        if self.state is state:
            return
        previous, self.state = self.state, state
        if state is ConnectionState.ERROR:
            logger.error(
                "Connection failed after %d attempts, not retrying until connect() is called",
                self.backoff.attempt,
            )
        else:
            logger.info("Connection %s -> %s", previous.value, state.value)
        if self._on_state_change:
            self._on_state_change(state)
