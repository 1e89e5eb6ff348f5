"""Environment-driven configuration.

Every setting has a default so a bare checkout runs against a local
gateway.  ``validate_config()`` is called from the app entry point so that
a nonsensical value causes a clear startup failure rather than a reconnect
loop that never backs off.
"""

import logging
import os
import sys
from dataclasses import dataclass, field
from typing import Mapping
from urllib.parse import urlencode

logger = logging.getLogger(__name__)

ENV_PREFIX = "AGENTLINK_"

OPTIONAL_VARS = [
    "AGENTLINK_WS_BASE_URL",
    "AGENTLINK_WS_CALL_CENTER_PATH",
    "AGENTLINK_WS_PORT",
    "AGENTLINK_AI_SERVICE_BASE_URL",
    "AGENTLINK_AGENT_ID",
    "AGENTLINK_METRICS_PATH",
    "LOG_LEVEL",
]


@dataclass
class WebSocketSettings:
    base_url: str = "ws://localhost"
    call_center_path: str = "/ws/call-center"
    default_port: int = 8080
    reconnect_interval: float = 3.0
    heartbeat_interval: float = 15.0
    max_reconnect_attempts: int = 10
    max_reconnect_delay: float = 30.0
    open_timeout: float = 10.0


@dataclass
class AIServiceSettings:
    base_url: str = "http://localhost:8000"
    start_call_path: str = "/api/calls/start"
    stop_call_path: str = "/api/calls/stop"
    timeout: float = 5.0


@dataclass
class CallSettings:
    agent_id: str = "agent-001"
    role: str = ""
    auto_accept: bool = False
    auto_accept_delay: float = 5.0
    after_call_work_seconds: int = 0
    # Seconds per countdown tick. Only tests shorten it.
    tick_seconds: float = 1.0


@dataclass
class AppConfig:
    websocket: WebSocketSettings = field(default_factory=WebSocketSettings)
    ai_service: AIServiceSettings = field(default_factory=AIServiceSettings)
    calls: CallSettings = field(default_factory=CallSettings)
    metrics_path: str = ""


def _get(env: Mapping[str, str], key: str, default: str) -> str:
    value = env.get(ENV_PREFIX + key)
    return value if value not in (None, "") else default


def _get_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = _get(env, key, str(default))
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s%s=%r, using %d", ENV_PREFIX, key, raw, default)
        return default


def _get_float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = _get(env, key, str(default))
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s%s=%r, using %s", ENV_PREFIX, key, raw, default)
        return default


def _get_bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    return _get(env, key, str(default)).strip().lower() in ("1", "true", "yes", "on")


def load_config(env: Mapping[str, str] | None = None) -> AppConfig:
    """Build an AppConfig from ``AGENTLINK_*`` variables (defaults to os.environ)."""
    env = os.environ if env is None else env
    return AppConfig(
        websocket=WebSocketSettings(
            base_url=_get(env, "WS_BASE_URL", "ws://localhost"),
            call_center_path=_get(env, "WS_CALL_CENTER_PATH", "/ws/call-center"),
            default_port=_get_int(env, "WS_PORT", 8080),
            reconnect_interval=_get_float(env, "WS_RECONNECT_INTERVAL", 3.0),
            heartbeat_interval=_get_float(env, "WS_HEARTBEAT_INTERVAL", 15.0),
            max_reconnect_attempts=_get_int(env, "WS_MAX_RECONNECT_ATTEMPTS", 10),
            max_reconnect_delay=_get_float(env, "WS_MAX_RECONNECT_DELAY", 30.0),
            open_timeout=_get_float(env, "WS_OPEN_TIMEOUT", 10.0),
        ),
        ai_service=AIServiceSettings(
            base_url=_get(env, "AI_SERVICE_BASE_URL", "http://localhost:8000"),
            timeout=_get_float(env, "AI_SERVICE_TIMEOUT", 5.0),
        ),
        calls=CallSettings(
            agent_id=_get(env, "AGENT_ID", "agent-001"),
            role=_get(env, "ROLE", ""),
            auto_accept=_get_bool(env, "AUTO_ACCEPT", False),
            auto_accept_delay=_get_float(env, "AUTO_ACCEPT_DELAY", 5.0),
            after_call_work_seconds=_get_int(env, "AFTER_CALL_WORK_SECONDS", 0),
        ),
        metrics_path=_get(env, "METRICS_PATH", ""),
    )


def config_errors(config: AppConfig) -> list[str]:
    ws = config.websocket
    errors = []
    if ws.reconnect_interval <= 0:
        errors.append("WS_RECONNECT_INTERVAL must be > 0")
    if ws.heartbeat_interval <= 0:
        errors.append("WS_HEARTBEAT_INTERVAL must be > 0")
    if ws.max_reconnect_delay < ws.reconnect_interval:
        errors.append("WS_MAX_RECONNECT_DELAY must be >= WS_RECONNECT_INTERVAL")
    if ws.max_reconnect_attempts < 0:
        errors.append("WS_MAX_RECONNECT_ATTEMPTS must be >= 0")
    if not 0 < ws.default_port < 65536:
        errors.append("WS_PORT must be a TCP port")
    if config.calls.auto_accept_delay < 0:
        errors.append("AUTO_ACCEPT_DELAY must be >= 0")
    if config.calls.after_call_work_seconds < 0:
        errors.append("AFTER_CALL_WORK_SECONDS must be >= 0")
    return errors


def validate_config(config: AppConfig) -> None:
    """Exit the process with a clear error if any setting is unusable.

    Logs a warning for optional variables that are unset.
    """
    errors = config_errors(config)
    if errors:
        print(
            f"\nFATAL: Invalid configuration:\n"
            + "".join(f"  {ENV_PREFIX}{e}\n" for e in errors)
            + "\nSet them in .env (local) or the process environment.\n",
            file=sys.stderr,
        )
        sys.exit(1)

    for var in OPTIONAL_VARS:
        if not os.getenv(var):
            logger.debug("Optional env var %s is not set, using default", var)


def websocket_url(
    config: AppConfig,
    *,
    caller_id: str = "",
    agent_id: str = "",
    role: str = "",
    port: int | None = None,
) -> str:
    """``{base_url}:{port}{call_center_path}?callerId=&agentId=&role=``"""
    ws = config.websocket
    base = f"{ws.base_url}:{port or ws.default_port}{ws.call_center_path}"
    params = {
        key: value
        for key, value in (("callerId", caller_id), ("agentId", agent_id), ("role", role))
        if value
    }
    if not params:
        return base
    return f"{base}?{urlencode(params)}"
