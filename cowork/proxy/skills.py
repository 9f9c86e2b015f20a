"""Capability invocation client.

Filesystem, shell, browser and network skills live in an external capability
service. A request ``{scope, skill, method, params}`` returns
``{success, output?, error?}``.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from .config import get_config
from .errors import ServiceError

logger = logging.getLogger("cowork.skills")


class SkillInvoker(Protocol):
    async def invoke(self, scope: str, skill: str, method: str, params: dict[str, Any]) -> dict[str, Any]: ...


class SkillClient:
    """HTTP client for the capability service."""

    def __init__(self, base_url: str | None = None, timeout: float | None = None) -> None:
        cfg = get_config()
        self.base_url = (base_url or cfg.skills_url).rstrip("/")
        # Per-call bounds are applied by the execution pipeline
        self._http = httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    async def health_check(self) -> bool:
        try:
            resp = await self._http.get("/api/health", timeout=5.0)
            return resp.is_success
        except httpx.HTTPError:
            return False

    async def close(self) -> None:
        await self._http.aclose()

    async def invoke(self, scope: str, skill: str, method: str, params: dict[str, Any]) -> dict[str, Any]:
        body = {"scope": scope, "skill": skill, "method": method, "params": params}
        logger.debug(f"Invoking {skill}.{method} in scope {scope}")
        try:
            resp = await self._http.post("/api/skills/execute", json=body)
        except httpx.HTTPError as e:
            raise ServiceError("skills", f"{type(e).__name__}: {e}") from e

        if not resp.is_success:
            raise ServiceError("skills", f"HTTP {resp.status_code}: {resp.text[:500]}", resp.status_code)

        try:
            data = resp.json()
        except ValueError as e:
            raise ServiceError("skills", f"invalid JSON response: {e}") from e
        if not isinstance(data, dict) or "success" not in data:
            raise ServiceError("skills", f"unexpected response shape: {str(data)[:200]}")
        return data
