import json

import httpx
import pytest
import respx
from agentlink.ai_service import AIServiceClient
from agentlink.config import AIServiceSettings

BASE = "http://ai.example.com"


@pytest.fixture
def ai_service():
    return AIServiceClient(AIServiceSettings(base_url=BASE))


class TestStartCall:
    @respx.mock
    @pytest.mark.asyncio
    async def test_posts_caller_details(self, ai_service):
        route = respx.post(f"{BASE}/api/calls/start").mock(
            return_value=httpx.Response(200, json={"simulationId": "sim-1"})
        )
        result = await ai_service.start_call(
            "c-1", "agent-007", caller_name="Jane Doe", caller_number="+15125551234", caller_location="Austin, TX"
        )
        assert result == {"success": True, "simulationId": "sim-1"}
        assert json.loads(route.calls[0].request.content) == {
            "callerId": "c-1",
            "agentId": "agent-007",
            "callerName": "Jane Doe",
            "callerNumber": "+15125551234",
            "callerLocation": "Austin, TX",
        }

    @respx.mock
    @pytest.mark.asyncio
    async def test_fills_missing_number_and_location(self, ai_service):
        route = respx.post(f"{BASE}/api/calls/start").mock(return_value=httpx.Response(200))
        await ai_service.start_call("c-1", "agent-007")
        body = json.loads(route.calls[0].request.content)
        assert body["callerNumber"] == "c-1"
        assert body["callerLocation"] == "Location not available"

    @respx.mock
    @pytest.mark.asyncio
    async def test_handles_failure(self, ai_service):
        respx.post(f"{BASE}/api/calls/start").mock(return_value=httpx.Response(500))
        result = await ai_service.start_call("c-1", "agent-007")
        assert result == {"success": False, "error": "HTTP 500"}

    @respx.mock
    @pytest.mark.asyncio
    async def test_handles_network_error(self, ai_service):
        respx.post(f"{BASE}/api/calls/start").mock(side_effect=httpx.ConnectError("refused"))
        result = await ai_service.start_call("c-1", "agent-007")
        assert result["success"] is False
        assert "refused" in result["error"]


class TestStopCall:
    @respx.mock
    @pytest.mark.asyncio
    async def test_not_found_is_reported_not_raised(self, ai_service):
        respx.post(f"{BASE}/api/calls/stop").mock(return_value=httpx.Response(404))
        result = await ai_service.stop_call("c-1", "agent-007")
        assert result["success"] is False

    @respx.mock
    @pytest.mark.asyncio
    async def test_restart_stops_then_starts(self, ai_service):
        stop = respx.post(f"{BASE}/api/calls/stop").mock(return_value=httpx.Response(404))
        start = respx.post(f"{BASE}/api/calls/start").mock(return_value=httpx.Response(200, json={}))
        result = await ai_service.restart_call("c-1", "agent-007", caller_name="Jane Doe")
        assert result["success"] is True
        assert stop.called and start.called
        assert json.loads(stop.calls[0].request.content) == {"callerId": "c-1"}
