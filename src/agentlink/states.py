from enum import Enum

# Statuses in which the agent is signed in and may be routed work.
ONLINE_STATUSES = {"available", "on-call", "after-call-work", "do-not-disturb"}
LIVE_CALL_STATES = {"incoming", "ringing", "active"}


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class AgentStatus(Enum):
    AVAILABLE = "available"
    ON_CALL = "on-call"
    BREAK = "break"
    OFFLINE = "offline"
    AFTER_CALL_WORK = "after-call-work"
    DO_NOT_DISTURB = "do-not-disturb"

    @property
    def is_online(self) -> bool:
        return self.value in ONLINE_STATUSES


class CallState(Enum):
    IDLE = "idle"
    INCOMING = "incoming"
    RINGING = "ringing"
    ACTIVE = "active"
    ENDED = "ended"

    @property
    def is_live(self) -> bool:
        return self.value in LIVE_CALL_STATES

    @property
    def is_ringing(self) -> bool:
        return self in (CallState.INCOMING, CallState.RINGING)


class TimerCategory(Enum):
    AFTER_CALL_WORK = "after-call-work"
    DO_NOT_DISTURB = "do-not-disturb"
    AUTO_ACCEPT = "auto-accept"
    RECONNECT_BACKOFF = "reconnect-backoff"
    HEARTBEAT = "heartbeat"
