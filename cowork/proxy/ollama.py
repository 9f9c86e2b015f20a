"""Ollama adapter for the model/routing stream, using the official Python SDK."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator

import ollama

from .agent.models import StreamEvent
from .config import get_config

logger = logging.getLogger("cowork.ollama")


class OllamaRouter:
    """Streams chat completions from Ollama as routing-service events."""

    provider_id = "ollama"

    def __init__(self, base_url: str | None = None, default_model: str | None = None) -> None:
        cfg = get_config()
        host = (base_url or cfg.ollama_url).rstrip("/")
        self.default_model = default_model or cfg.default_model
        self._options = {
            "num_ctx": cfg.ollama_num_ctx,
            "temperature": cfg.ollama_temperature,
        }
        logger.info(f"Initializing Ollama SDK client for host: {host}, timeout: {cfg.ollama_timeout}s")
        self._client = ollama.AsyncClient(host=host, timeout=cfg.ollama_timeout)

    async def health_check(self) -> bool:
        try:
            await self._client.list()
            return True
        except Exception:
            return False

    async def close(self) -> None:
        """Nothing to release; the SDK client has no explicit close."""

    async def stream(
        self,
        messages: list[dict[str, Any]],
        model: str | None = None,
        max_retries: int = 2,
    ) -> AsyncIterator[StreamEvent]:
        """Yield started/chunk/finished events, or a single error event.

        Transient connection errors are retried only before the first chunk,
        so a retry never repeats content already delivered.
        """
        model = model or self.default_model
        total_chunks = 0

        for attempt in range(max_retries + 1):
            try:
                response = await self._client.chat(
                    model=model,
                    messages=messages,
                    stream=True,
                    options=self._options,
                )
                yield StreamEvent("started", {"model": model, "provider_id": self.provider_id})
                finish_reason = "stop"
                async for chunk in response:
                    data = chunk.model_dump() if hasattr(chunk, "model_dump") else dict(chunk)
                    content = (data.get("message") or {}).get("content") or ""
                    done = bool(data.get("done"))
                    if content or done:
                        total_chunks += 1
                        yield StreamEvent("chunk", {"content": content, "is_final": done})
                    if done:
                        finish_reason = data.get("done_reason") or finish_reason
                yield StreamEvent("finished", {"finish_reason": finish_reason, "total_chunks": total_chunks})
                return

            except ollama.ResponseError as e:
                logger.error(f"Ollama ResponseError: {e.error}")
                yield StreamEvent("error", {"message": _friendly_error(str(e.error), model)})
                return

            except Exception as e:
                err_str = str(e).lower()
                is_transient = any(k in err_str for k in (
                    "connection reset", "connection refused", "eof", "broken pipe",
                    "timeout", "timed out", "network", "connection error",
                ))
                if is_transient and total_chunks == 0 and attempt < max_retries:
                    wait = 1.5 * (attempt + 1)
                    logger.warning(
                        f"Transient Ollama error (attempt {attempt + 1}/{max_retries + 1}), "
                        f"retrying in {wait:.1f}s: {e}"
                    )
                    await asyncio.sleep(wait)
                    continue
                logger.error(f"Ollama stream error: {e}")
                yield StreamEvent("error", {"message": _friendly_error(str(e), model)})
                return


def _friendly_error(err_str: str, model: str) -> str:
    err_lower = err_str.lower()
    if "invalid character '<'" in err_str or "failed to parse json" in err_lower:
        return "Ollama returned an HTML error page; the server crashed or ran out of memory."
    if "connection refused" in err_lower:
        return "Cannot connect to Ollama (connection refused)."
    if "not found" in err_lower or "pull" in err_lower:
        return f"Model not found: {model}"
    if "timeout" in err_lower or "timed out" in err_lower:
        return "Ollama request timed out."
    return f"Model connection error: {err_str}"
