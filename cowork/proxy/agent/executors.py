from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING

from ..errors import CoworkError, SkillTimeoutError
from .extractor import extract_tool_calls
from .models import CallOutcome, ExecutionResult, ToolCall

if TYPE_CHECKING:
    from ..skills import SkillInvoker
    from .models import ConversationStore

logger = logging.getLogger("cowork.agent.executors")

NO_OPERATIONS_MESSAGE = (
    "❌ Could not find any executable operations in the plan. "
    "Please ask the AI to use write_file, read_file, or list_files commands."
)


class _ExecutorMixin:

    store: ConversationStore
    skills: SkillInvoker

    async def execute_tool_calls(
        self,
        message_id: str,
        tool_calls: list[ToolCall] | None = None,
        workspace_id: str | None = None,
    ) -> ExecutionResult | None:
        """Run a message's tool calls one at a time, stopping at the first failure.

        Returns None when nothing ran: unknown message, no calls, already
        executed, or a pipeline for the same message still running.
        """
        msg = self.store.get(message_id)
        if msg is None:
            logger.warning(f"execute_tool_calls: unknown message {message_id}")
            return None
        if msg.is_executed or message_id in self._running_pipelines:  # type: ignore[attr-defined]
            logger.info(f"Skipping execution for {message_id}: already executed or running")
            return None

        calls = list(tool_calls if tool_calls is not None else (msg.tool_calls or []))
        if not calls:
            logger.info(f"No tool calls to execute for {message_id}")
            return None

        scope = workspace_id or self.cfg.workspace_id  # type: ignore[attr-defined]
        self._running_pipelines.add(message_id)  # type: ignore[attr-defined]
        self._executing.add(message_id)  # type: ignore[attr-defined]
        self._stop_requested = False

        status = self.store.add_message("agent", f"Executing {len(calls)} operation(s)...", is_loading=True)
        result = ExecutionResult()
        logger.info(f"Executing {len(calls)} call(s) from {message_id} in scope {scope}")

        try:
            for call in calls:
                if self._stop_requested:
                    result.success = False
                    result.error = "Execution stopped by user."
                    break

                self.store.update(status.id, content=f"⏳ {call.label()}...")
                outcome = await self._invoke_call(scope, call)
                result.outcomes.append(outcome)

                if not outcome.success:
                    result.success = False
                    result.error = f"{call.method} failed: {outcome.error}"
                    logger.warning(f"Pipeline for {message_id} halted: {result.error}")
                    break
        except Exception as e:
            logger.exception("Execution pipeline crashed")
            result.success = False
            result.error = f"Unexpected error: {e}"
        finally:
            if result.success:
                self.store.update(message_id, is_executed=True, result=result)
                details = "\n".join(f"✅ {o.call.label()}" for o in result.outcomes)
                summary = f"**Execution Complete**\n\n{details}"
            else:
                # Failed attempts stay retryable; their result lives on the status message only
                summary = f"❌ {result.error}"
            self.store.update(status.id, content=summary, is_loading=False, frozen=True, result=result)
            self._running_pipelines.discard(message_id)  # type: ignore[attr-defined]
            self._executing.discard(message_id)  # type: ignore[attr-defined]

        logger.info(
            f"Pipeline for {message_id} done: {result.succeeded}/{len(calls)} succeeded"
        )
        return result

    async def execute_discussed_plan(self, workspace_id: str | None = None) -> ExecutionResult | None:
        """Execute the operations described in the most recent finished agent message."""
        msg = self.store.find_last_agent(finished_only=True)
        if msg is None:
            logger.info("No finished agent message to execute")
            return None

        calls = extract_tool_calls(msg.content)
        if not calls:
            self.store.add_message("agent", NO_OPERATIONS_MESSAGE)
            return None
        return await self.execute_tool_calls(msg.id, calls, workspace_id)

    async def _invoke_call(self, scope: str, call: ToolCall) -> CallOutcome:
        timeout = self.cfg.skill_timeout  # type: ignore[attr-defined]
        start_time = time.time()
        try:
            invocation = self.skills.invoke(scope, call.skill, call.method, dict(call.params))
            if timeout and timeout > 0:
                try:
                    response = await asyncio.wait_for(invocation, timeout)
                except asyncio.TimeoutError:
                    raise SkillTimeoutError(call.method, timeout) from None
            else:
                response = await invocation
        except CoworkError as e:
            logger.error(f"{call.label()} failed: {e}")
            return CallOutcome(call, False, str(e), duration=time.time() - start_time)
        except Exception as e:
            logger.error(f"{call.label()} raised {type(e).__name__}: {e}")
            return CallOutcome(call, False, str(e), duration=time.time() - start_time)

        duration = time.time() - start_time
        success = bool(response.get("success"))
        error = None if success else str(response.get("error") or "unknown error")
        return CallOutcome(call, success, error, response.get("output"), duration)
