import httpx
import logging

from agentlink.config import AIServiceSettings

logger = logging.getLogger(__name__)


class AIServiceClient:
    """HTTP client for the AI call simulation service.

    Best effort only: every failure is logged and returned as
    ``{"success": False, "error": ...}``.  Nothing is retried and nothing
    here may affect the connection or the agent's status.
    """

    def __init__(
        self,
        settings: AIServiceSettings,
        client: httpx.AsyncClient | None = None,
    ):
        self.settings = settings
        self.base_url = settings.base_url.rstrip("/")
        if client is not None:
            self._client = client
        else:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={"Content-Type": "application/json"},
                timeout=settings.timeout,
            )

    async def close(self):
        await self._client.aclose()

    async def _post(self, path: str, payload: dict, label: str) -> dict:
        try:
            resp = await self._client.post(path, json=payload)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.info("%s returned %d: %s", label, e.response.status_code, e.response.text[:200])
            return {"success": False, "error": f"HTTP {e.response.status_code}"}
        except httpx.HTTPError as e:
            logger.warning("%s failed: %s", label, e)
            return {"success": False, "error": str(e)}
        try:
            body = resp.json()
        except ValueError:
            body = {}
        return {"success": True, **body} if isinstance(body, dict) else {"success": True}

    async def start_call(
        self,
        caller_id: str,
        agent_id: str,
        caller_name: str = "",
        caller_number: str = "",
        caller_location: str = "",
    ) -> dict:
        return await self._post(
            self.settings.start_call_path,
            {
                "callerId": caller_id,
                "agentId": agent_id,
                "callerName": caller_name,
                "callerNumber": caller_number or caller_id,
                "callerLocation": caller_location or "Location not available",
            },
            "AI simulation start",
        )

    async def stop_call(self, caller_id: str, agent_id: str = "") -> dict:
        payload = {"callerId": caller_id}
        if agent_id:
            payload["agentId"] = agent_id
        # 404 is expected when no simulation is running for this caller.
        return await self._post(self.settings.stop_call_path, payload, "AI simulation stop")

    async def restart_call(self, caller_id: str, agent_id: str, **caller) -> dict:
        """Stop any stale simulation for the caller, then start a fresh one."""
        await self.stop_call(caller_id)
        return await self.start_call(caller_id, agent_id, **caller)
