"""Sequencing of connection, insights and agent status around a call.

Accepting a call always runs disconnect -> clear -> connect, in that
order, so frames still in flight from the previous caller's socket cannot
repopulate insights that were just cleared.  Ending a call runs
end_call message -> disconnect -> status reset.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Callable

from agentlink.ai_service import AIServiceClient
from agentlink.config import AppConfig
from agentlink.connection import ConnectionManager
from agentlink.insights import CallInsights
from agentlink.router import MessageRouter
from agentlink.session import CallerInfo
from agentlink.states import AgentStatus, CallState, ConnectionState, TimerCategory
from agentlink.status_machine import AgentStatusMachine
from agentlink.timers import Countdown

logger = logging.getLogger(__name__)


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class CallSessionCoordinator:
    def __init__(
        self,
        config: AppConfig,
        *,
        machine: AgentStatusMachine | None = None,
        insights: CallInsights | None = None,
        ai_service: AIServiceClient | None = None,
        connector: Callable | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.agent_id = config.calls.agent_id
        self.auto_accept = config.calls.auto_accept
        self.machine = machine or AgentStatusMachine(
            clock=clock,
            tick_seconds=config.calls.tick_seconds,
        )
        self.insights = insights or CallInsights()
        self.router = MessageRouter(self.insights, clock=clock)
        self.connection = ConnectionManager(
            config,
            self.router.handle_frame,
            on_state_change=self._on_connection_state,
            connector=connector,
        )
        self.ai_service = ai_service

        self._auto_accept_timer: Countdown | None = None
        self._pending_accept: dict | None = None
        self._background: set[asyncio.Task] = set()

    @property
    def auto_accept_pending(self) -> bool:
        return self._auto_accept_timer is not None

    def set_auto_accept(self, enabled: bool) -> None:
        self.auto_accept = bool(enabled)
        if not self.auto_accept:
            self._cancel_auto_accept()

    # ── Call lifecycle ──

    def offer_call(self, caller_id: str, info: CallerInfo) -> bool:
        """Present an incoming call; schedules auto-accept when allowed."""
        if not self.machine.start_call(caller_id, info):
            return False
        state = self.machine.state
        if (
            self.auto_accept
            and state.call_state is CallState.INCOMING
            and state.status is AgentStatus.AVAILABLE
        ):
            self._schedule_auto_accept(caller_id)
        return True

    def accept_call(self) -> bool:
        self._cancel_auto_accept()
        caller_id = self.machine.current_caller_id
        info = self.machine.caller_info
        if not self.machine.accept_call():
            return False

        # Strict order: old session down, per-call state cleared, new session up.
        self.connection.disconnect()
        self.insights.clear_call_data()
        self._pending_accept = {
            "type": "accept_call",
            "callerId": caller_id,
            "agentId": self.agent_id,
            "callerName": info.name,
        }
        self.connection.connect(self.agent_id, caller_id, self.config.websocket.default_port)

        if self.ai_service is not None:
            self._spawn(self.ai_service.restart_call(
                caller_id,
                self.agent_id,
                caller_name=info.name,
                caller_number=info.number,
                caller_location=info.location,
            ))
        logger.info("Accepted call from %s (%s)", info.name, caller_id)
        return True

    def reject_call(self) -> bool:
        self._cancel_auto_accept()
        return self.machine.reject_call()

    def end_call(self) -> int:
        """Tear down the current call and return its duration in seconds."""
        self._cancel_auto_accept()
        state = self.machine.state
        if not state.call_state.is_live:
            logger.warning("end_call() ignored: no call in progress")
            return 0

        caller_id = state.current_caller_id
        answered = state.call_start_time is not None
        self._pending_accept = None
        self.connection.send_message({
            "type": "end_call",
            "callerId": caller_id,
            "agentId": self.agent_id,
            "duration": self.machine.call_duration(),
            "timestamp": _utc_timestamp(),
        })
        self.connection.disconnect()
        duration = self.machine.end_call()
        self.insights.clear_call_data()

        if self.ai_service is not None:
            self._spawn(self.ai_service.stop_call(caller_id, self.agent_id))

        wrap_up = self.config.calls.after_call_work_seconds
        if answered and wrap_up > 0:
            self.machine.start_after_call_work(wrap_up)
        return duration

    def clear_insight(self, kind: str) -> bool:
        return self.insights.clear(kind)

    def shutdown(self) -> None:
        """Cancel every timer and drop the connection."""
        self._cancel_auto_accept()
        self._pending_accept = None
        self.machine.shutdown()
        self.connection.disconnect()

    async def aclose(self) -> None:
        self.shutdown()
        await self.connection.wait_closed()
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
        if self.ai_service is not None:
            await self.ai_service.close()

    # ── Internals ──

    def _schedule_auto_accept(self, caller_id: str):
        self._cancel_auto_accept()
        ticks = max(1, round(self.config.calls.auto_accept_delay))
        logger.info("Auto-accepting call from %s in %ds", caller_id, ticks)
        self._auto_accept_timer = Countdown(
            TimerCategory.AUTO_ACCEPT,
            ticks,
            marker=caller_id,
            on_expire=self._auto_accept_expired,
            tick=self.config.calls.tick_seconds,
        ).start()

    def _cancel_auto_accept(self):
        if self._auto_accept_timer is not None:
            self._auto_accept_timer.cancel()
            self._auto_accept_timer = None

    def _auto_accept_expired(self, timer: Countdown):
        if self._auto_accept_timer is not timer:
            return
        self._auto_accept_timer = None
        state = self.machine.state
        if not (
            self.auto_accept
            and state.call_state.is_ringing
            and state.current_caller_id == timer.marker
            and state.status is AgentStatus.AVAILABLE
        ):
            logger.info("Auto-accept for %s skipped: call already resolved", timer.marker)
            return
        self.accept_call()

    def _on_connection_state(self, state: ConnectionState):
        if state is ConnectionState.CONNECTED and self._pending_accept is not None:
            message, self._pending_accept = self._pending_accept, None
            message["timestamp"] = _utc_timestamp()
            self.connection.send_message(message)

    def _spawn(self, coro):
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
