import logging
import time
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Callable, Mapping

from agentlink.session import CallerInfo
from agentlink.states import AgentStatus, CallState, TimerCategory
from agentlink.timers import Countdown

logger = logging.getLogger(__name__)


def _zeroed_time_in_status() -> Mapping[AgentStatus, float]:
    return MappingProxyType({status: 0.0 for status in AgentStatus})


@dataclass(frozen=True)
class AgentState:
    """Immutable view of the agent.  AgentStatusMachine swaps in a new one per transition."""

    status: AgentStatus = AgentStatus.OFFLINE
    status_since: float = 0.0
    last_status_change: float = 0.0
    time_in_status: Mapping[AgentStatus, float] = field(default_factory=_zeroed_time_in_status)

    call_state: CallState = CallState.IDLE
    current_caller_id: str = ""
    caller_info: CallerInfo | None = None
    call_start_time: float | None = None
    is_muted: bool = False
    is_on_hold: bool = False

    calls_handled_today: int = 0
    total_handle_time: int = 0
    last_call_end_time: float | None = None
    calls_in_queue: int = 0
    auto_call_enabled: bool = True

    dnd_original_status: AgentStatus | None = None


class AgentStatusMachine:
    """Agent availability plus the state of the call currently offered to them.

    Every change goes through a named operation.  The two timed statuses
    (after-call work, do-not-disturb) run a 1 Hz Countdown whose marker is
    the status it was started for; on expiry the machine only transitions
    if the agent is still in that status.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.time,
        tick_seconds: float = 1.0,
        auto_call_enabled: bool = True,
    ):
        self.clock = clock
        self.tick_seconds = tick_seconds
        now = clock()
        self._state = AgentState(
            status_since=now,
            last_status_change=now,
            auto_call_enabled=auto_call_enabled,
        )
        self._online_since = now
        self._timers: dict[TimerCategory, Countdown] = {}
        self._listeners: list[Callable[[str], None]] = []

    # ── Read access ──

    @property
    def state(self) -> AgentState:
        return self._state

    @property
    def status(self) -> AgentStatus:
        return self._state.status

    @property
    def call_state(self) -> CallState:
        return self._state.call_state

    @property
    def caller_info(self) -> CallerInfo | None:
        return self._state.caller_info

    @property
    def current_caller_id(self) -> str:
        return self._state.current_caller_id

    @property
    def calls_handled_today(self) -> int:
        return self._state.calls_handled_today

    @property
    def total_handle_time(self) -> int:
        return self._state.total_handle_time

    @property
    def time_in_status(self) -> dict[AgentStatus, float]:
        return dict(self._state.time_in_status)

    @property
    def average_handle_time(self) -> int:
        handled = self._state.calls_handled_today
        return round(self._state.total_handle_time / handled) if handled else 0

    @property
    def after_call_work_remaining(self) -> int:
        return self._remaining(TimerCategory.AFTER_CALL_WORK)

    @property
    def do_not_disturb_remaining(self) -> int:
        return self._remaining(TimerCategory.DO_NOT_DISTURB)

    def elapsed_in_status(self) -> float:
        return max(0.0, self.clock() - self._state.status_since)

    def total_online_seconds(self) -> float:
        return self.clock() - self._online_since

    def call_duration(self) -> int:
        if self._state.call_start_time is None:
            return 0
        return max(0, int(self.clock() - self._state.call_start_time))

    def can_accept_calls(self) -> bool:
        return self._state.status is AgentStatus.AVAILABLE and self._state.auto_call_enabled

    def subscribe(self, callback: Callable[[str], None]) -> None:
        """callback(event) with event in {"status", "call_state", "timer", "metrics"}."""
        self._listeners.append(callback)

    # ── Status transitions ──

    def set_status(self, status: AgentStatus | str) -> None:
        """Manual override, always permitted.  Cancels any running status timer."""
        status = AgentStatus(status)
        self._cancel_status_timers()
        queue = self._state.calls_in_queue if status is AgentStatus.AVAILABLE else 0
        self._enter(status, calls_in_queue=queue, dnd_original_status=None)

    def start_after_call_work(self, duration_seconds: int) -> None:
        self._cancel_status_timers()
        self._enter(AgentStatus.AFTER_CALL_WORK, dnd_original_status=None)
        self._start_timer(
            TimerCategory.AFTER_CALL_WORK,
            duration_seconds,
            marker=AgentStatus.AFTER_CALL_WORK,
            on_expire=self._after_call_work_expired,
        )

    def cancel_after_call_work(self) -> bool:
        had_timer = self._cancel_timer(TimerCategory.AFTER_CALL_WORK)
        if self._state.status is AgentStatus.AFTER_CALL_WORK:
            self._enter(AgentStatus.AVAILABLE)
            return True
        return had_timer

    def start_do_not_disturb(
        self,
        duration_minutes: float,
        original_status: AgentStatus | str = AgentStatus.AVAILABLE,
    ) -> None:
        original_status = AgentStatus(original_status)
        if original_status is AgentStatus.DO_NOT_DISTURB:
            original_status = AgentStatus.AVAILABLE
        self._cancel_status_timers()
        self._enter(AgentStatus.DO_NOT_DISTURB, dnd_original_status=original_status)
        self._start_timer(
            TimerCategory.DO_NOT_DISTURB,
            int(duration_minutes * 60),
            marker=AgentStatus.DO_NOT_DISTURB,
            on_expire=self._do_not_disturb_expired,
        )

    def cancel_do_not_disturb(self) -> bool:
        had_timer = self._cancel_timer(TimerCategory.DO_NOT_DISTURB)
        if self._state.status is AgentStatus.DO_NOT_DISTURB:
            restore = self._state.dnd_original_status or AgentStatus.AVAILABLE
            self._enter(restore, dnd_original_status=None)
            return True
        self._update(dnd_original_status=None)
        return had_timer

    # ── Call transitions ──

    def start_call(self, caller_id: str, info: CallerInfo) -> bool:
        if self._state.call_state is not CallState.IDLE:
            logger.warning(
                "start_call(%s) ignored: call already %s",
                caller_id,
                self._state.call_state.value,
            )
            return False
        self._update(
            call_state=CallState.INCOMING,
            current_caller_id=caller_id,
            caller_info=info,
            call_start_time=None,
            is_muted=False,
            is_on_hold=False,
        )
        logger.info("Incoming call from %s (%s)", info.name, caller_id)
        self._notify("call_state")
        return True

    def mark_ringing(self) -> bool:
        if self._state.call_state is not CallState.INCOMING:
            return False
        self._update(call_state=CallState.RINGING)
        self._notify("call_state")
        return True

    def accept_call(self) -> bool:
        state = self._state
        if state.caller_info is None or not state.call_state.is_ringing:
            logger.warning("accept_call() ignored: no call waiting (state=%s)", state.call_state.value)
            return False
        self._cancel_status_timers()
        self._update(call_state=CallState.ACTIVE, call_start_time=self.clock())
        self._enter(AgentStatus.ON_CALL, dnd_original_status=None)
        self._notify("call_state")
        return True

    def reject_call(self) -> bool:
        state = self._state
        if not state.call_state.is_ringing:
            logger.warning("reject_call() ignored: no call waiting (state=%s)", state.call_state.value)
            return False
        logger.info("Call from %s declined", state.current_caller_id)
        self._clear_call()
        self._notify("call_state")
        return True

    def end_call(self) -> int:
        """Finish the current call and return its duration in seconds."""
        state = self._state
        now = self.clock()
        answered = state.call_start_time is not None
        duration = max(0, int(now - state.call_start_time)) if answered else 0

        if answered:
            self._cancel_status_timers()
        self._update(call_state=CallState.ENDED)
        self._notify("call_state")
        self._clear_call()

        if duration > 0:
            self._update(
                calls_handled_today=state.calls_handled_today + 1,
                total_handle_time=state.total_handle_time + duration,
                last_call_end_time=now,
                calls_in_queue=max(0, state.calls_in_queue - 1),
            )
        # An unanswered call leaves the agent status untouched
        if answered:
            self._enter(AgentStatus.AVAILABLE, dnd_original_status=None)
        self._notify("call_state")
        if duration > 0:
            logger.info("Call ended after %ds (%d handled today)", duration, self._state.calls_handled_today)
            self._notify("metrics")
        return duration

    def set_muted(self, muted: bool) -> bool:
        if self._state.call_state is not CallState.ACTIVE:
            return False
        self._update(is_muted=bool(muted))
        return True

    def set_on_hold(self, on_hold: bool) -> bool:
        if self._state.call_state is not CallState.ACTIVE:
            return False
        self._update(is_on_hold=bool(on_hold))
        return True

    # ── Metrics ──

    def set_calls_in_queue(self, count: int) -> None:
        self._update(calls_in_queue=max(0, int(count)))

    def set_auto_call_enabled(self, enabled: bool) -> None:
        if self._state.auto_call_enabled == bool(enabled):
            return
        self._update(auto_call_enabled=bool(enabled))
        self._notify("metrics")

    def update_time_in_status(self) -> None:
        """Flush elapsed time into the current status without changing it."""
        now = self.clock()
        self._update(time_in_status=self._flushed(now), status_since=now)

    def reset_daily_metrics(self) -> None:
        now = self.clock()
        self._update(
            calls_handled_today=0,
            total_handle_time=0,
            time_in_status=_zeroed_time_in_status(),
            status_since=now,
        )
        self._online_since = now
        self._notify("metrics")

    # ── Persistence ──

    def persisted_state(self) -> dict:
        """Fields that survive a reload.  Flushes the current status first."""
        self.update_time_in_status()
        state = self._state
        return {
            "callsHandledToday": state.calls_handled_today,
            "totalHandleTime": state.total_handle_time,
            "timeInStatus": {status.value: seconds for status, seconds in state.time_in_status.items()},
            "autoCallEnabled": state.auto_call_enabled,
        }

    @classmethod
    def restore(cls, data: dict, **kwargs) -> "AgentStatusMachine":
        """Rebuild from persisted_state().  Live fields always start offline / idle / 0."""
        machine = cls(**kwargs)
        time_in_status = dict(machine._state.time_in_status)
        for key, seconds in (data.get("timeInStatus") or {}).items():
            try:
                time_in_status[AgentStatus(key)] = float(seconds)
            except (TypeError, ValueError):
                logger.warning("Ignoring persisted time for unknown status %r", key)
        machine._update(
            calls_handled_today=int(data.get("callsHandledToday") or 0),
            total_handle_time=int(data.get("totalHandleTime") or 0),
            time_in_status=MappingProxyType(time_in_status),
            auto_call_enabled=bool(data.get("autoCallEnabled", True)),
        )
        # Keep sum(time_in_status) + elapsed equal to tracked wall-clock time.
        machine._online_since -= sum(time_in_status.values())
        return machine

    def snapshot(self) -> dict:
        state = self._state
        return {
            "status": state.status.value,
            "statusSince": state.status_since,
            "callState": state.call_state.value,
            "currentCallerId": state.current_caller_id,
            "callerInfo": state.caller_info.to_payload() if state.caller_info else None,
            "callDuration": self.call_duration(),
            "isMuted": state.is_muted,
            "isOnHold": state.is_on_hold,
            "callsHandledToday": state.calls_handled_today,
            "totalHandleTime": state.total_handle_time,
            "averageHandleTime": self.average_handle_time,
            "callsInQueue": state.calls_in_queue,
            "autoCallEnabled": state.auto_call_enabled,
            "canAcceptCalls": self.can_accept_calls(),
            "timeInStatus": {status.value: seconds for status, seconds in state.time_in_status.items()},
            "afterCallWorkSecondsRemaining": self.after_call_work_remaining,
            "doNotDisturbSecondsRemaining": self.do_not_disturb_remaining,
            "doNotDisturbOriginalStatus": (
                state.dnd_original_status.value if state.dnd_original_status else None
            ),
        }

    def shutdown(self) -> None:
        self._cancel_status_timers()

    # ── Internals ──

    def _update(self, **changes) -> None:
        self._state = replace(self._state, **changes)

    def _flushed(self, now: float) -> Mapping[AgentStatus, float]:
        state = self._state
        totals = dict(state.time_in_status)
        totals[state.status] += max(0.0, now - state.status_since)
        return MappingProxyType(totals)

    def _enter(self, status: AgentStatus, **changes) -> None:
        now = self.clock()
        previous = self._state.status
        self._update(
            status=status,
            status_since=now,
            last_status_change=now,
            time_in_status=self._flushed(now),
            **changes,
        )
        logger.info("Agent status %s -> %s", previous.value, status.value)
        self._notify("status")

    def _clear_call(self) -> None:
        self._update(
            call_state=CallState.IDLE,
            current_caller_id="",
            caller_info=None,
            call_start_time=None,
            is_muted=False,
            is_on_hold=False,
        )

    def _start_timer(self, category: TimerCategory, seconds: int, marker, on_expire) -> None:
        self._cancel_timer(category)
        self._timers[category] = Countdown(
            category,
            seconds,
            marker,
            on_expire,
            tick=self.tick_seconds,
            on_tick=lambda _timer: self._notify("timer"),
        ).start()

    def _cancel_timer(self, category: TimerCategory) -> bool:
        timer = self._timers.pop(category, None)
        if timer is None:
            return False
        timer.cancel()
        return True

    def _cancel_status_timers(self) -> None:
        self._cancel_timer(TimerCategory.AFTER_CALL_WORK)
        self._cancel_timer(TimerCategory.DO_NOT_DISTURB)

    def _remaining(self, category: TimerCategory) -> int:
        timer = self._timers.get(category)
        return timer.remaining if timer is not None else 0

    def _claim_expired(self, timer: Countdown) -> bool:
        """Drop an expired timer; False if it was already superseded."""
        if self._timers.get(timer.category) is not timer:
            return False
        del self._timers[timer.category]
        return True

    def _after_call_work_expired(self, timer: Countdown) -> None:
        if not self._claim_expired(timer):
            return
        if self._state.status is not timer.marker:
            logger.info(
                "After-call work expired while %s, leaving status alone",
                self._state.status.value,
            )
            self._notify("timer")
            return
        self._enter(AgentStatus.AVAILABLE)

    def _do_not_disturb_expired(self, timer: Countdown) -> None:
        if not self._claim_expired(timer):
            return
        if self._state.status is not timer.marker:
            logger.info(
                "Do-not-disturb expired while %s, leaving status alone",
                self._state.status.value,
            )
            self._update(dnd_original_status=None)
            self._notify("timer")
            return
        restore = self._state.dnd_original_status or AgentStatus.AVAILABLE
        self._enter(restore, dnd_original_status=None)

    def _notify(self, event: str) -> None:
        for callback in self._listeners:
            callback(event)
