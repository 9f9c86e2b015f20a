"""Server-sent event reading for the httpx-based service clients."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator

import httpx

from .errors import ServiceError

logger = logging.getLogger("cowork.sse")


async def iter_sse(resp: httpx.Response) -> AsyncIterator[tuple[str, Any]]:
    """Yield ``(event_name, payload)`` pairs from an SSE response.

    Payloads of the form ``{"event": ..., "data": ...}`` are unwrapped; other
    payloads are paired with the preceding ``event:`` line (or "message").
    """
    event_name = ""
    async for line in resp.aiter_lines():
        if not line:
            event_name = ""
            continue
        if line.startswith(":"):
            continue
        if line.startswith("event:"):
            event_name = line[6:].strip()
            continue
        if line.startswith("data: "):
            data_str = line[6:]
        elif line.startswith("data:"):
            data_str = line[5:]
        else:
            continue

        try:
            payload = json.loads(data_str)
        except json.JSONDecodeError as e:
            logger.warning(f"Failed to parse SSE JSON: {data_str[:100]} - {e}")
            continue

        if isinstance(payload, dict) and "event" in payload:
            yield str(payload["event"]), payload.get("data")
        elif isinstance(payload, dict) and "type" in payload and not event_name:
            yield str(payload["type"]), payload.get("data", payload)
        else:
            yield event_name or "message", payload


async def ensure_ok(resp: httpx.Response, service: str) -> None:
    """Raise ServiceError for a non-2xx response, including a body snippet."""
    if resp.is_success:
        return
    body = await resp.aread()
    raise ServiceError(
        service,
        f"HTTP {resp.status_code}: {body.decode(errors='replace')[:500]}",
        status_code=resp.status_code,
    )
