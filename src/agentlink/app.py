import json
import logging
import os
from contextlib import asynccontextmanager
from typing import Callable

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, ConfigDict, Field

from agentlink.ai_service import AIServiceClient
from agentlink.config import AppConfig, load_config, validate_config
from agentlink.coordinator import CallSessionCoordinator
from agentlink.session import CallerInfo
from agentlink.states import AgentStatus
from agentlink.status_machine import AgentStatusMachine

logger = logging.getLogger(__name__)

# Status machine events that change a persisted field
PERSISTED_EVENTS = frozenset({"status", "metrics"})


class StatusRequest(BaseModel):
    status: str


class AfterCallWorkRequest(BaseModel):
    seconds: int = Field(gt=0)


class DoNotDisturbRequest(BaseModel):
    minutes: float = Field(gt=0)
    original_status: str | None = Field(default=None, alias="originalStatus")


class ToggleRequest(BaseModel):
    enabled: bool


class MuteRequest(BaseModel):
    muted: bool


class HoldRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    on_hold: bool = Field(alias="onHold")


class QueueRequest(BaseModel):
    count: int = Field(ge=0)


class ActionCompletedRequest(BaseModel):
    completed: bool = True


class IncomingCallRequest(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    caller_id: str = Field(alias="callerId", min_length=1)
    name: str = "Unknown"
    number: str = ""
    priority: str = "MEDIUM"


def _parse_status(value: str) -> AgentStatus:
    try:
        return AgentStatus(value)
    except ValueError:
        raise HTTPException(status_code=422, detail=f"Unknown status {value!r}")


def load_metrics(path: str, **kwargs) -> AgentStatusMachine:
    """Restore the status machine from ``path``, or start fresh when it is missing or unreadable."""
    if path:
        try:
            with open(path) as f:
                data = json.load(f)
        except FileNotFoundError:
            logger.info("No metrics file at %s, starting fresh", path)
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable metrics file %s: %s", path, e)
        else:
            if isinstance(data, dict):
                logger.info("Restored agent metrics from %s", path)
                return AgentStatusMachine.restore(data, **kwargs)
            logger.warning("Ignoring metrics file %s: not a JSON object", path)
    return AgentStatusMachine(**kwargs)


def save_metrics(path: str, machine: AgentStatusMachine) -> None:
    if not path:
        return
    try:
        with open(path, "w") as f:
            json.dump(machine.persisted_state(), f, indent=2)
    except OSError as e:
        logger.error("Failed to write metrics file %s: %s", path, e)
        return
    logger.debug("Saved agent metrics to %s", path)


def create_app(
    config: AppConfig | None = None,
    connector: Callable | None = None,
) -> FastAPI:
    config = config or load_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        machine = load_metrics(config.metrics_path, tick_seconds=config.calls.tick_seconds)
        ai_service = AIServiceClient(config.ai_service) if config.ai_service.base_url else None
        coordinator = CallSessionCoordinator(
            config,
            machine=machine,
            ai_service=ai_service,
            connector=connector,
        )
        app.state.coordinator = coordinator

        if config.metrics_path:
            def persist(event: str):
                if event in PERSISTED_EVENTS:
                    save_metrics(config.metrics_path, machine)

            machine.subscribe(persist)

        try:
            yield
        finally:
            save_metrics(config.metrics_path, machine)
            await coordinator.aclose()

    app = FastAPI(title="AgentLink", lifespan=lifespan)

    def _coordinator(request: Request) -> CallSessionCoordinator:
        return request.app.state.coordinator

    def _agent_view(coordinator: CallSessionCoordinator) -> dict:
        view = coordinator.machine.snapshot()
        view["online"] = coordinator.machine.status.is_online
        view["connectionState"] = coordinator.connection.state.value
        view["autoAccept"] = coordinator.auto_accept
        view["autoAcceptPending"] = coordinator.auto_accept_pending
        return view

    @app.get("/health")
    async def health():
        return PlainTextResponse("ok")

    @app.get("/agent")
    async def get_agent(request: Request):
        return _agent_view(_coordinator(request))

    @app.post("/agent/status")
    async def set_status(body: StatusRequest, request: Request):
        coordinator = _coordinator(request)
        coordinator.machine.set_status(_parse_status(body.status))
        return {"ok": True, "agent": _agent_view(coordinator)}

    @app.post("/agent/after-call-work")
    async def start_after_call_work(body: AfterCallWorkRequest, request: Request):
        coordinator = _coordinator(request)
        coordinator.machine.start_after_call_work(body.seconds)
        return {"ok": True, "agent": _agent_view(coordinator)}

    @app.delete("/agent/after-call-work")
    async def cancel_after_call_work(request: Request):
        coordinator = _coordinator(request)
        ok = coordinator.machine.cancel_after_call_work()
        return {"ok": ok, "agent": _agent_view(coordinator)}

    @app.post("/agent/do-not-disturb")
    async def start_do_not_disturb(body: DoNotDisturbRequest, request: Request):
        coordinator = _coordinator(request)
        machine = coordinator.machine
        original = _parse_status(body.original_status) if body.original_status else machine.status
        machine.start_do_not_disturb(body.minutes, original_status=original)
        return {"ok": True, "agent": _agent_view(coordinator)}

    @app.delete("/agent/do-not-disturb")
    async def cancel_do_not_disturb(request: Request):
        coordinator = _coordinator(request)
        ok = coordinator.machine.cancel_do_not_disturb()
        return {"ok": ok, "agent": _agent_view(coordinator)}

    @app.post("/agent/auto-call")
    async def set_auto_call(body: ToggleRequest, request: Request):
        coordinator = _coordinator(request)
        coordinator.machine.set_auto_call_enabled(body.enabled)
        return {"ok": True, "agent": _agent_view(coordinator)}

    @app.post("/agent/queue")
    async def set_calls_in_queue(body: QueueRequest, request: Request):
        coordinator = _coordinator(request)
        coordinator.machine.set_calls_in_queue(body.count)
        return {"ok": True, "agent": _agent_view(coordinator)}

    @app.post("/agent/metrics/reset")
    async def reset_daily_metrics(request: Request):
        coordinator = _coordinator(request)
        coordinator.machine.reset_daily_metrics()
        return {"ok": True, "agent": _agent_view(coordinator)}

    @app.post("/calls/incoming")
    async def incoming_call(body: IncomingCallRequest, request: Request):
        coordinator = _coordinator(request)
        info = CallerInfo.from_payload(body.model_dump(by_alias=True))
        ok = coordinator.offer_call(body.caller_id, info)
        return {"ok": ok, "agent": _agent_view(coordinator)}

    @app.post("/calls/accept")
    async def accept_call(request: Request):
        coordinator = _coordinator(request)
        ok = coordinator.accept_call()
        return {"ok": ok, "agent": _agent_view(coordinator)}

    @app.post("/calls/reject")
    async def reject_call(request: Request):
        coordinator = _coordinator(request)
        ok = coordinator.reject_call()
        return {"ok": ok, "agent": _agent_view(coordinator)}

    @app.post("/calls/end")
    async def end_call(request: Request):
        coordinator = _coordinator(request)
        was_live = coordinator.machine.call_state.is_live
        duration = coordinator.end_call()
        return {"ok": was_live, "duration": duration, "agent": _agent_view(coordinator)}

    @app.post("/calls/ringing")
    async def mark_ringing(request: Request):
        coordinator = _coordinator(request)
        ok = coordinator.machine.mark_ringing()
        return {"ok": ok, "agent": _agent_view(coordinator)}

    @app.post("/calls/mute")
    async def set_muted(body: MuteRequest, request: Request):
        coordinator = _coordinator(request)
        ok = coordinator.machine.set_muted(body.muted)
        return {"ok": ok, "agent": _agent_view(coordinator)}

    @app.post("/calls/hold")
    async def set_on_hold(body: HoldRequest, request: Request):
        coordinator = _coordinator(request)
        ok = coordinator.machine.set_on_hold(body.on_hold)
        return {"ok": ok, "agent": _agent_view(coordinator)}

    @app.post("/calls/auto-accept")
    async def set_auto_accept(body: ToggleRequest, request: Request):
        coordinator = _coordinator(request)
        coordinator.set_auto_accept(body.enabled)
        return {"ok": True, "agent": _agent_view(coordinator)}

    @app.get("/insights")
    async def get_insights(request: Request):
        return _coordinator(request).insights.snapshot()

    @app.post("/insights/actions/{action_id}")
    async def set_action_completed(action_id: str, body: ActionCompletedRequest, request: Request):
        insights = _coordinator(request).insights
        changed = insights.set_action_completed(action_id, body.completed)
        return {"ok": changed, "actions": insights.actions}

    @app.delete("/insights/{kind}")
    async def clear_insight(kind: str, request: Request):
        if not _coordinator(request).clear_insight(kind):
            raise HTTPException(status_code=404, detail=f"Unknown insight {kind!r}")
        return {"ok": True}

    return app


def main():
    load_dotenv()
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    config = load_config()
    validate_config(config)
    port = int(os.getenv("PORT", "8765"))
    uvicorn.run(create_app(config), host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
