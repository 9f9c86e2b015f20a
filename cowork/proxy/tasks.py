"""Task service client for the plan/task bridge."""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Protocol

import httpx

from .agent.models import TaskEvent
from .config import get_config
from .errors import ServiceError
from .sse import ensure_ok, iter_sse

logger = logging.getLogger("cowork.tasks")


class TaskService(Protocol):
    async def create_task(self, instruction: str, provider: str, model: str, workspace_path: str | None) -> str: ...

    def stream_task(self, task_id: str) -> AsyncIterator[TaskEvent]: ...

    async def plan_task(self, instruction: str, workspace_path: str | None) -> str: ...

    async def cancel_plan(self, plan_id: str) -> None: ...


def normalize_task_event(name: str, payload: Any) -> TaskEvent:
    data = dict(payload) if isinstance(payload, dict) else {}
    if name == "progress":
        # Older task services report the percentage as "progress"
        percent = data.get("percent", data.get("progress", 0))
        try:
            data["percent"] = float(percent)
        except (TypeError, ValueError):
            data["percent"] = 0.0
        data.pop("progress", None)
    return TaskEvent(name, data)


class TaskClient:
    """HTTP/SSE client for the external task service."""

    def __init__(self, base_url: str | None = None) -> None:
        cfg = get_config()
        self.base_url = (base_url or cfg.task_service_url).rstrip("/")
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(cfg.request_timeout, read=None),
        )

    async def close(self) -> None:
        await self._http.aclose()

    async def _post_json(self, path: str, body: dict[str, Any]) -> Any:
        try:
            resp = await self._http.post(path, json=body)
        except httpx.HTTPError as e:
            raise ServiceError("tasks", f"{type(e).__name__}: {e}") from e
        if not resp.is_success:
            raise ServiceError("tasks", f"HTTP {resp.status_code}: {resp.text[:500]}", resp.status_code)
        return resp.json() if resp.content else None

    async def create_task(self, instruction: str, provider: str, model: str, workspace_path: str | None) -> str:
        data = await self._post_json("/api/tasks", {
            "instruction": instruction,
            "provider": provider,
            "model": model,
            "workspacePath": workspace_path,
        })
        task_id = data.get("id") if isinstance(data, dict) else None
        if not task_id:
            raise ServiceError("tasks", f"task creation returned no id: {str(data)[:200]}")
        logger.info(f"Created task {task_id} ({provider}/{model})")
        return str(task_id)

    async def stream_task(self, task_id: str) -> AsyncIterator[TaskEvent]:
        async with self._http.stream("GET", f"/api/tasks/{task_id}/events") as resp:
            await ensure_ok(resp, "tasks")
            async for name, payload in iter_sse(resp):
                yield normalize_task_event(name, payload)

    async def plan_task(self, instruction: str, workspace_path: str | None) -> str:
        """Return the raw, machine-generated plan text."""
        try:
            resp = await self._http.post("/api/plans", json={
                "instruction": instruction,
                "workspacePath": workspace_path,
            })
        except httpx.HTTPError as e:
            raise ServiceError("tasks", f"{type(e).__name__}: {e}") from e
        if not resp.is_success:
            raise ServiceError("tasks", f"HTTP {resp.status_code}: {resp.text[:500]}", resp.status_code)
        return resp.text

    async def cancel_plan(self, plan_id: str) -> None:
        await self._post_json(f"/api/plans/{plan_id}/cancel", {})
