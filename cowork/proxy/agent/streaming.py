from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, AsyncIterator

from .extractor import extract_tool_calls
from .models import AgentEvent, Message, StreamEvent

if TYPE_CHECKING:
    from ..router import ModelRouter
    from .models import ConversationStore

logger = logging.getLogger("cowork.agent.streaming")


@dataclass
class StreamTurn:
    """Bookkeeping for one in-flight streamed response."""
    message_id: str
    model: str
    provider_id: str | None = None
    accumulated: str = ""
    chunks: int = 0
    finish_reason: str | None = None
    cancelled: bool = False
    closed: bool = False
    subscription: Any = field(default=None, repr=False)


def build_prompt(instruction: str, hidden_context: str | None) -> str:
    if hidden_context:
        return f'{hidden_context}\n\nUser Query: "{instruction}"'
    return instruction


class _StreamingMixin:

    store: ConversationStore
    router: ModelRouter

    async def stream_chat(
        self,
        instruction: str,
        model: str | None = None,
        hidden_context: str | None = None,
    ) -> Message:
        """Run one streamed turn to completion and return the agent message."""
        message_id = None
        async for event in self.iter_chat(instruction, model, hidden_context):
            if event.type == "message" and event.data.get("type") == "agent":
                message_id = event.data["id"]
        return self.store.get(message_id)  # type: ignore[return-value]

    async def iter_chat(
        self,
        instruction: str,
        model: str | None = None,
        hidden_context: str | None = None,
    ) -> AsyncIterator[AgentEvent]:
        """Stream one turn, yielding message/update/error/done events as the store changes."""
        model = model or self.cfg.default_model  # type: ignore[attr-defined]

        # History is taken before this turn's own messages are appended
        history = self.store.history()
        user_msg = self.store.add_message("user", instruction)
        yield AgentEvent(type="message", data=user_msg.to_dict())

        agent_msg = self.store.add_message(
            "agent", "",
            is_loading=True,
            model_used={"name": model, "thinkingEnabled": False},
        )
        turn = StreamTurn(message_id=agent_msg.id, model=model)
        self._turns[agent_msg.id] = turn  # type: ignore[attr-defined]

        messages = history + [{"role": "user", "content": build_prompt(instruction, hidden_context)}]
        logger.info(f"Streaming turn {agent_msg.id} ({model}, {len(messages)} messages)")

        try:
            yield AgentEvent(type="message", data=agent_msg.to_dict())
            stream = self.router.stream(messages, model)
            turn.subscription = stream
            try:
                async for event in stream:
                    if turn.cancelled:
                        logger.info(f"Turn {agent_msg.id} cancelled, discarding remaining events")
                        break
                    update = self._apply_stream_event(turn, event)
                    if update is not None:
                        yield update
                    if turn.closed:
                        break
            finally:
                aclose = getattr(stream, "aclose", None)
                if aclose is not None:
                    await aclose()
        except (GeneratorExit, asyncio.CancelledError):
            # Consumer went away mid-turn; freeze what arrived so far
            if not turn.closed and not turn.cancelled:
                logger.warning(f"Turn {agent_msg.id} abandoned by its consumer")
                turn.cancelled = True
                self.store.update(agent_msg.id, is_loading=False, frozen=True)
            raise
        except Exception as e:
            # Transport failures are reported the same way as stream error events
            logger.error(f"Stream transport failed for turn {agent_msg.id}: {e}")
            if not turn.cancelled and not turn.closed:
                yield self._fail_turn(turn, str(e))
        finally:
            self._turns.pop(agent_msg.id, None)  # type: ignore[attr-defined]

        if not turn.closed and not turn.cancelled:
            # Stream ended without a finished event
            logger.warning(f"Stream for turn {agent_msg.id} ended without finishing")
            self._finish_turn(turn)
            yield AgentEvent(type="update", data={"message_id": agent_msg.id, "isLoading": False})

        yield AgentEvent(type="done", data={
            "message_id": agent_msg.id,
            "cancelled": turn.cancelled,
            "finish_reason": turn.finish_reason,
        })

    def stop_streaming(self, message_id: str | None = None) -> int:
        """Cancel one in-flight turn, or all of them. Returns how many were cancelled."""
        turns = self._turns  # type: ignore[attr-defined]
        targets = [turns[message_id]] if message_id in turns else ([] if message_id else list(turns.values()))
        for turn in targets:
            if turn.cancelled:
                continue
            turn.cancelled = True
            self.store.update(turn.message_id, is_loading=False, frozen=True)
            logger.warning(f"Stopped streaming turn {turn.message_id}")
        return len(targets)

    # ── Event application ───────────────────────────────────────────

    def _apply_stream_event(self, turn: StreamTurn, event: StreamEvent) -> AgentEvent | None:
        data = event.data or {}

        if event.type == "started":
            turn.model = data.get("model") or turn.model
            turn.provider_id = data.get("provider_id")
            model_used = {"name": turn.model, "thinkingEnabled": False}
            if turn.provider_id:
                model_used["provider"] = turn.provider_id
            self.store.update(turn.message_id, model_used=model_used)
            return AgentEvent(type="update", data={"message_id": turn.message_id, "modelUsed": model_used})

        if event.type == "chunk":
            return self._apply_chunk(turn, str(data.get("content") or ""), bool(data.get("is_final")))

        if event.type == "finished":
            turn.finish_reason = data.get("finish_reason")
            logger.info(
                f"Turn {turn.message_id} finished ({turn.finish_reason}, "
                f"{data.get('total_chunks', turn.chunks)} chunks)"
            )
            self._finish_turn(turn)
            return AgentEvent(type="update", data={
                "message_id": turn.message_id,
                "isLoading": False,
                "finishReason": turn.finish_reason,
            })

        if event.type == "error":
            return self._fail_turn(turn, str(data.get("message") or data.get("error") or "unknown error"))

        logger.debug(f"Ignoring stream event {event.type}")
        return None

    def _apply_chunk(self, turn: StreamTurn, content: str, is_final: bool) -> AgentEvent | None:
        msg = self.store.get(turn.message_id)
        if msg is None or msg.frozen:
            logger.debug(f"Dropping chunk for finished turn {turn.message_id}")
            return None

        turn.accumulated += content
        turn.chunks += 1
        changes: dict[str, Any] = {"content": turn.accumulated}
        if not msg.is_executed:
            changes["tool_calls"] = extract_tool_calls(turn.accumulated) or None
        if is_final:
            changes.update(is_loading=False, frozen=True)
        self.store.update(turn.message_id, **changes)

        calls = msg.tool_calls or []
        return AgentEvent(type="update", data={
            "message_id": turn.message_id,
            "delta": content,
            "toolCalls": [c.to_dict() for c in calls],
            "isLoading": msg.is_loading,
        })

    def _finish_turn(self, turn: StreamTurn) -> None:
        turn.closed = True
        self.store.update(turn.message_id, is_loading=False, frozen=True)

    def _fail_turn(self, turn: StreamTurn, message: str) -> AgentEvent:
        turn.closed = True
        msg = self.store.get(turn.message_id)
        if msg is not None and not msg.frozen:
            self.store.update(
                turn.message_id,
                content=f"{turn.accumulated}\n[Error: {message}]",
                is_loading=False,
                frozen=True,
            )
        else:
            self.store.update(turn.message_id, is_loading=False)
        return AgentEvent(type="error", data={"message_id": turn.message_id, "message": message})
