"""Model/routing service clients.

Every router yields StreamEvent objects: ``started``, ``chunk``, ``finished``
and ``error``, with snake_case payload keys.
"""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Protocol

import httpx

from .agent.models import StreamEvent
from .config import Config, get_config
from .sse import ensure_ok, iter_sse

logger = logging.getLogger("cowork.router")

# Wire names from the routing service → local payload keys
_KEY_MAP = {
    "isFinal": "is_final",
    "finishReason": "finish_reason",
    "totalChunks": "total_chunks",
    "providerId": "provider_id",
}


class ModelRouter(Protocol):
    def stream(self, messages: list[dict[str, Any]], model: str | None = None) -> AsyncIterator[StreamEvent]: ...

    async def health_check(self) -> bool: ...

    async def close(self) -> None: ...


def normalize_stream_event(name: str, payload: Any) -> StreamEvent:
    data = payload if isinstance(payload, dict) else {"content": payload}
    return StreamEvent(name, {_KEY_MAP.get(k, k): v for k, v in data.items()})


class RouterClient:
    """SSE client for the intelligent routing service."""

    def __init__(self, base_url: str | None = None, default_model: str | None = None) -> None:
        cfg = get_config()
        self.base_url = (base_url or cfg.router_url).rstrip("/")
        self.default_model = default_model or cfg.default_model
        # No read timeout: a long answer may stream for minutes
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(cfg.request_timeout, read=None),
        )

    async def health_check(self) -> bool:
        try:
            resp = await self._http.get("/api/health")
            return resp.is_success
        except httpx.HTTPError:
            return False

    async def close(self) -> None:
        await self._http.aclose()

    async def stream(
        self,
        messages: list[dict[str, Any]],
        model: str | None = None,
    ) -> AsyncIterator[StreamEvent]:
        body = {"messages": messages, "model": model or self.default_model}
        logger.debug(f"Routing {len(messages)} messages to {body['model']}")
        async with self._http.stream(
            "POST",
            "/api/stream",
            json=body,
            headers={"Accept": "text/event-stream"},
        ) as resp:
            await ensure_ok(resp, "router")
            async for name, payload in iter_sse(resp):
                yield normalize_stream_event(name, payload)


def create_router(cfg: Config | None = None) -> ModelRouter:
    cfg = cfg or get_config()
    if cfg.router_backend == "ollama":
        from .ollama import OllamaRouter
        return OllamaRouter()
    return RouterClient()
