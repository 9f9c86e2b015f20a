"""Agent runtime client: native workflow runs and their per-turn event topic."""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Protocol

import httpx

from .agent.models import RuntimeEvent
from .config import get_config
from .errors import ServiceError
from .sse import ensure_ok, iter_sse

logger = logging.getLogger("cowork.runtime")

RUNTIME_EVENT_TYPES = ("status", "thought", "tool_call", "tool_result", "stream_chunk", "error")


class AgentRuntime(Protocol):
    def subscribe(self, turn_id: str) -> AsyncIterator[RuntimeEvent]: ...

    async def run_workflow(
        self,
        instruction: str,
        model: str,
        workspace_id: str,
        turn_id: str,
        agent_spec_id: str | None = None,
    ) -> str: ...


class RuntimeClient:
    """HTTP/SSE client for the agent runtime service."""

    def __init__(self, base_url: str | None = None) -> None:
        cfg = get_config()
        self.base_url = (base_url or cfg.runtime_url).rstrip("/")
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(cfg.request_timeout, read=None),
        )

    async def close(self) -> None:
        await self._http.aclose()

    async def subscribe(self, turn_id: str) -> AsyncIterator[RuntimeEvent]:
        """Events for one turn only; the stream closes when the caller stops iterating."""
        async with self._http.stream("GET", f"/api/turns/{turn_id}/events") as resp:
            await ensure_ok(resp, "runtime")
            async for name, payload in iter_sse(resp):
                if name not in RUNTIME_EVENT_TYPES:
                    logger.debug(f"Ignoring runtime event {name}")
                    continue
                yield RuntimeEvent(name, payload)

    async def run_workflow(
        self,
        instruction: str,
        model: str,
        workspace_id: str,
        turn_id: str,
        agent_spec_id: str | None = None,
    ) -> str:
        body: dict[str, Any] = {
            "prompt": instruction,
            "modelId": model,
            "workspaceId": workspace_id,
            "turnId": turn_id,
            "agentSpecId": agent_spec_id,
        }
        try:
            resp = await self._http.post("/api/workflows/run", json=body)
        except httpx.HTTPError as e:
            raise ServiceError("runtime", f"{type(e).__name__}: {e}") from e
        if not resp.is_success:
            raise ServiceError("runtime", f"HTTP {resp.status_code}: {resp.text[:500]}", resp.status_code)
        data = resp.json()
        if isinstance(data, dict):
            return str(data.get("result", ""))
        return str(data)
