"""Bridge to the external task service: fire-and-follow tasks and legacy plans."""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any, AsyncIterator

from ..errors import PlanParseError
from .extractor import try_parse_json
from .models import PLAN_STEP_TYPES, AgentEvent, ExecutionResult, Message, Plan, PlanStep

if TYPE_CHECKING:
    from ..tasks import TaskService
    from .models import ConversationStore

logger = logging.getLogger("cowork.agent.bridge")

_MODEL_PREFIX_RE = re.compile(r"^(rainy|cowork):")

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


def strip_model_prefix(model: str) -> str:
    """Routing prefixes like ``rainy:`` mean nothing to the task service."""
    return _MODEL_PREFIX_RE.sub("", model)


def parse_plan(text: str) -> Plan:
    """Parse machine-generated plan text into a Plan.

    Accepts bare JSON or JSON inside a fenced block. Raises PlanParseError
    when no well-formed plan object can be recovered.
    """
    raw = text.strip()
    fenced = _FENCE_RE.search(raw)
    if fenced:
        raw = fenced.group(1).strip()

    data = try_parse_json(raw)
    if data is None:
        raise PlanParseError(f"plan is not a JSON object: {text[:120]!r}")

    plan_id = data.get("id")
    if not plan_id:
        raise PlanParseError("plan has no id")

    raw_steps = data.get("steps") or []
    if not isinstance(raw_steps, list):
        raise PlanParseError("plan steps must be a list")

    steps: list[PlanStep] = []
    for i, raw_step in enumerate(raw_steps, 1):
        if not isinstance(raw_step, dict) or not raw_step.get("description"):
            raise PlanParseError(f"step {i} has no description")
        step_type = raw_step.get("type") or "default"
        if step_type not in PLAN_STEP_TYPES:
            step_type = "default"
        steps.append(PlanStep(step_type, str(raw_step["description"])))

    warnings = data.get("warnings") or []
    return Plan(
        id=str(plan_id),
        steps=steps,
        warnings=[str(w) for w in warnings] if isinstance(warnings, list) else [str(warnings)],
        requires_confirmation=bool(data.get("requiresConfirmation", data.get("requires_confirmation", False))),
        intent=str(data.get("intent") or "command"),
        answer=data.get("answer"),
    )


def summarize_plan(plan: Plan, instruction: str) -> str:
    if plan.intent == "question" and plan.answer:
        return plan.answer
    if not plan.steps:
        return (
            f'I understand you want to "{instruction}", but I couldn\'t find any '
            "specific operations to perform. Could you be more specific?"
        )
    lines = [f"I'll help you with that. Here's my plan ({len(plan.steps)} steps):", ""]
    lines += [f"{i}. {step.description}" for i, step in enumerate(plan.steps, 1)]
    if plan.warnings:
        lines += ["", "⚠️ Warnings:"]
        lines += [f"- {w}" for w in plan.warnings]
    return "\n".join(lines)


class _TaskBridgeMixin:

    store: ConversationStore
    tasks: TaskService | None
    current_plan: Plan | None

    async def send_instruction(
        self,
        instruction: str,
        model: str | None = None,
        workspace_path: str | None = None,
    ) -> Message | None:
        """Create a task and follow its progress to completion; returns the placeholder message."""
        placeholder_id = None
        async for event in self.iter_instruction(instruction, model, workspace_path):
            if event.type == "message" and event.data.get("type") == "agent":
                placeholder_id = event.data["id"]
        return self.store.get(placeholder_id) if placeholder_id else None

    async def iter_instruction(
        self,
        instruction: str,
        model: str | None = None,
        workspace_path: str | None = None,
    ) -> AsyncIterator[AgentEvent]:
        cfg = self.cfg  # type: ignore[attr-defined]
        user_msg = self.store.add_message("user", instruction)
        yield AgentEvent(type="message", data=user_msg.to_dict())

        if self.tasks is None:
            err = self.store.add_message("agent", "[Error: no task service configured]")
            yield AgentEvent(type="error", data={"message_id": err.id, "message": err.content})
            yield AgentEvent(type="done", data={})
            return

        model_id = strip_model_prefix(model or cfg.default_model)
        try:
            task_id = await self.tasks.create_task(instruction, cfg.default_provider, model_id, workspace_path)
        except Exception as e:
            logger.error(f"Task creation failed: {e}")
            err = self.store.add_message("agent", f"[Error: {e}]")
            yield AgentEvent(type="error", data={"message_id": err.id, "message": str(e)})
            yield AgentEvent(type="done", data={})
            return

        placeholder = self.store.add_message("agent", "Planning task...", is_loading=True)
        self._executing.add(placeholder.id)  # type: ignore[attr-defined]
        yield AgentEvent(type="message", data=placeholder.to_dict())

        stream = self.tasks.stream_task(task_id)
        try:
            async for event in stream:
                changes = self._task_event_changes(event.type, event.data)
                if changes is None:
                    logger.debug(f"Task {task_id}: ignoring {event.type}")
                    continue
                self.store.update(placeholder.id, **changes)
                yield AgentEvent(type="update", data={
                    "message_id": placeholder.id,
                    "content": placeholder.content,
                    "isLoading": placeholder.is_loading,
                })
                if not placeholder.is_loading:
                    break
        except Exception as e:
            logger.error(f"Task {task_id} event stream failed: {e}")
            if placeholder.is_loading:
                self.store.update(placeholder.id, content=f"Task failed: {e}", is_loading=False,
                                  frozen=True, result=ExecutionResult(success=False, error=str(e)))
                yield AgentEvent(type="error", data={"message_id": placeholder.id, "message": str(e)})
        finally:
            self._executing.discard(placeholder.id)  # type: ignore[attr-defined]
            await stream.aclose()

        if placeholder.is_loading:
            self.store.update(placeholder.id, content="Task ended without a final status.",
                              is_loading=False, frozen=True)
        yield AgentEvent(type="done", data={"message_id": placeholder.id, "task_id": task_id})

    @staticmethod
    def _task_event_changes(event_type: str, data: dict[str, Any]) -> dict[str, Any] | None:
        if event_type == "progress":
            percent = data.get("percent", 0.0)
            return {"content": f"Executing... {percent:g}%: {data.get('message') or ''}".rstrip()}
        if event_type == "completed":
            return {"content": "Task completed successfully.", "is_loading": False,
                    "frozen": True, "result": ExecutionResult()}
        if event_type == "failed":
            error = data.get("error") or "unknown error"
            return {"content": f"Task failed: {error}", "is_loading": False,
                    "frozen": True, "result": ExecutionResult(success=False, error=str(error))}
        return None

    async def plan_instruction(self, instruction: str, workspace_path: str | None = None) -> Plan | None:
        """Ask the task service for a plan and post its summary; None when no plan came back."""
        self.store.add_message("user", instruction)
        thinking = self.store.add_message("agent", "Thinking...", is_loading=True)

        if self.tasks is None:
            self.store.update(thinking.id, content="[Error: no task service configured]",
                              is_loading=False, frozen=True)
            return None

        try:
            plan = parse_plan(await self.tasks.plan_task(instruction, workspace_path))
        except PlanParseError as e:
            logger.warning(f"Unparseable plan: {e}")
            error = f"Could not parse the generated plan: {e}"
            self.store.update(thinking.id, content=f"❌ {error}", is_loading=False, frozen=True,
                              result=ExecutionResult(success=False, error=error))
            return None
        except Exception as e:
            logger.error(f"Plan request failed: {e}")
            self.store.update(thinking.id, content=f"[Error: {e}]", is_loading=False, frozen=True)
            return None

        self.current_plan = plan
        self.store.update(thinking.id, content=summarize_plan(plan, instruction),
                          plan=plan, is_loading=False, frozen=True)
        if plan.requires_confirmation and plan.steps:
            self.store.add_message("system", "This plan requires confirmation before execution.")
        logger.info(f"Plan {plan.id}: {len(plan.steps)} step(s), intent={plan.intent}")
        return plan

    async def cancel_plan(self, plan_id: str | None = None) -> bool:
        plan_id = plan_id or (self.current_plan.id if self.current_plan else None)
        if not plan_id or self.tasks is None:
            return False
        try:
            await self.tasks.cancel_plan(plan_id)
        except Exception as e:
            logger.error(f"Failed to cancel plan {plan_id}: {e}")
            self.store.add_message("system", f"Failed to cancel: {e}")
            return False
        self.current_plan = None
        self.store.add_message("system", "Plan cancelled.")
        return True
