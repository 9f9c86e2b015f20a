"""Tests for the plan/task bridge."""

import json
from unittest.mock import AsyncMock

import pytest

from cowork.proxy.agent.bridge import parse_plan, strip_model_prefix, summarize_plan
from cowork.proxy.agent.models import TaskEvent
from cowork.proxy.errors import PlanParseError, ServiceError


class FakeTasks:

    def __init__(self, events=(), plan_text="", task_id="task-1"):
        self.events = list(events)
        self.plan_text = plan_text
        self.task_id = task_id
        self.created = []
        self.cancelled = []
        self.closed_streams = 0
        self.create_task = AsyncMock(side_effect=self._create)

    async def _create(self, instruction, provider, model, workspace_path):
        self.created.append((instruction, provider, model, workspace_path))
        return self.task_id

    async def stream_task(self, task_id):
        try:
            for event in self.events:
                if isinstance(event, Exception):
                    raise event
                yield event
        finally:
            self.closed_streams += 1

    async def plan_task(self, instruction, workspace_path):
        return self.plan_text

    async def cancel_plan(self, plan_id):
        self.cancelled.append(plan_id)


def progress(percent, message=""):
    return TaskEvent("progress", {"percent": float(percent), "message": message})


# ═══════════════════════════════════════════════════════════════
# Task progress
# ═══════════════════════════════════════════════════════════════

class TestSendInstruction:

    @pytest.mark.asyncio
    async def test_progress_overwrites_single_placeholder(self, make_agent):
        tasks = FakeTasks([
            TaskEvent("started", {}),
            progress(10, "Scanning"),
            progress(55, "Organizing"),
            progress(100, "Finishing"),
            TaskEvent("completed", {}),
        ])
        agent = make_agent(tasks=tasks)
        contents = []
        async for event in agent.iter_instruction("organize my downloads", model="rainy:gemini-2.0-flash"):
            if event.type == "update":
                contents.append(event.data["content"])

        assert contents == [
            "Executing... 10%: Scanning",
            "Executing... 55%: Organizing",
            "Executing... 100%: Finishing",
            "Task completed successfully.",
        ]
        agent_messages = [m for m in agent.store if m.role == "agent"]
        assert len(agent_messages) == 1
        assert agent_messages[0].content == "Task completed successfully."
        assert agent_messages[0].is_loading is False
        assert agent_messages[0].result.success is True
        assert tasks.created == [("organize my downloads", "rainyapi", "gemini-2.0-flash", None)]

    @pytest.mark.asyncio
    async def test_failed_task(self, make_agent):
        tasks = FakeTasks([progress(30), TaskEvent("failed", {"error": "disk full"})])
        agent = make_agent(tasks=tasks)
        placeholder = await agent.send_instruction("copy everything")
        assert placeholder.content == "Task failed: disk full"
        assert placeholder.result.success is False
        assert agent.activity_for(placeholder.id) == "idle"

    @pytest.mark.asyncio
    async def test_create_failure_reports_error(self, make_agent):
        tasks = FakeTasks()
        tasks.create_task = AsyncMock(side_effect=ServiceError("tasks", "HTTP 503: down", 503))
        agent = make_agent(tasks=tasks)
        assert await agent.send_instruction("x") is None
        last = agent.store.messages[-1]
        assert last.is_error
        assert "HTTP 503" in last.content

    @pytest.mark.asyncio
    async def test_event_stream_breaks(self, make_agent):
        tasks = FakeTasks([progress(20), ConnectionError("reset")])
        agent = make_agent(tasks=tasks)
        placeholder = await agent.send_instruction("x")
        assert placeholder.content == "Task failed: reset"
        assert placeholder.is_loading is False

    @pytest.mark.asyncio
    async def test_stream_ends_without_terminal_event(self, make_agent):
        agent = make_agent(tasks=FakeTasks([progress(40)]))
        placeholder = await agent.send_instruction("x")
        assert placeholder.content == "Task ended without a final status."
        assert placeholder.is_loading is False

    @pytest.mark.asyncio
    async def test_event_stream_closed_after_terminal_event(self, make_agent):
        tasks = FakeTasks([TaskEvent("completed", {}), progress(99, "late")])
        agent = make_agent(tasks=tasks)
        placeholder = await agent.send_instruction("x")
        assert placeholder.content == "Task completed successfully."
        assert tasks.closed_streams == 1

    def test_strip_model_prefix(self):
        assert strip_model_prefix("rainy:gpt-4o") == "gpt-4o"
        assert strip_model_prefix("cowork:gemini") == "gemini"
        assert strip_model_prefix("llama3:8b") == "llama3:8b"


# ═══════════════════════════════════════════════════════════════
# Legacy plans
# ═══════════════════════════════════════════════════════════════

PLAN = {
    "id": "plan-7",
    "steps": [
        {"type": "createFile", "description": "Create report.md"},
        {"type": "renameEverything", "description": "Tidy folder"},
    ],
    "warnings": ["Overwrites report.md"],
    "requiresConfirmation": True,
}


class TestParsePlan:

    def test_parses_plan(self):
        plan = parse_plan(json.dumps(PLAN))
        assert plan.id == "plan-7"
        assert [s.type for s in plan.steps] == ["createFile", "default"]
        assert plan.requires_confirmation is True

    def test_fenced_json(self):
        plan = parse_plan(f"Here you go:\n```json\n{json.dumps(PLAN)}\n```")
        assert plan.id == "plan-7"

    @pytest.mark.parametrize("text", [
        "not a plan",
        json.dumps({"steps": []}),
        json.dumps({"id": "p", "steps": "oops"}),
        json.dumps({"id": "p", "steps": [{"type": "createFile"}]}),
    ])
    def test_malformed_plans_raise(self, text):
        with pytest.raises(PlanParseError):
            parse_plan(text)

    def test_summary_lists_steps_and_warnings(self):
        summary = summarize_plan(parse_plan(json.dumps(PLAN)), "write a report")
        assert "1. Create report.md" in summary
        assert "2. Tidy folder" in summary
        assert "- Overwrites report.md" in summary

    def test_question_intent_shows_answer(self):
        plan = parse_plan(json.dumps({"id": "q", "intent": "question", "answer": "42", "steps": []}))
        assert summarize_plan(plan, "meaning?") == "42"


class TestPlanInstruction:

    @pytest.mark.asyncio
    async def test_plan_attached_and_confirmation_requested(self, make_agent):
        agent = make_agent(tasks=FakeTasks(plan_text=json.dumps(PLAN)))
        plan = await agent.plan_instruction("write a report")

        assert plan.id == "plan-7"
        assert agent.current_plan is plan
        roles = [m.role for m in agent.store]
        assert roles == ["user", "agent", "system"]
        assert agent.store.messages[1].plan is plan

    @pytest.mark.asyncio
    async def test_unparseable_plan_is_execution_failure(self, make_agent):
        agent = make_agent(tasks=FakeTasks(plan_text="<html>502</html>"))
        assert await agent.plan_instruction("x") is None
        msg = agent.store.messages[-1]
        assert msg.content.startswith("❌ Could not parse the generated plan")
        assert msg.result.success is False
        assert msg.tool_calls is None

    @pytest.mark.asyncio
    async def test_cancel_plan(self, make_agent):
        tasks = FakeTasks(plan_text=json.dumps(PLAN))
        agent = make_agent(tasks=tasks)
        await agent.plan_instruction("x")
        assert await agent.cancel_plan() is True
        assert tasks.cancelled == ["plan-7"]
        assert agent.current_plan is None
        assert agent.store.messages[-1].content == "Plan cancelled."
