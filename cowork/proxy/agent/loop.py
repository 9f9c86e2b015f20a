from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from ..config import Config, get_config
from .activity import _ActivityMixin
from .bridge import _TaskBridgeMixin
from .executors import _ExecutorMixin
from .models import ConversationStore, Plan
from .streaming import StreamTurn, _StreamingMixin

if TYPE_CHECKING:
    from ..router import ModelRouter
    from ..runtime import AgentRuntime
    from ..skills import SkillInvoker
    from ..tasks import TaskService

logger = logging.getLogger("cowork.agent")


class CoworkAgent(_StreamingMixin, _ExecutorMixin, _TaskBridgeMixin, _ActivityMixin):
    """One conversation: streamed turns, tool execution, tasks and live activity.

    Service clients are injected so the orchestration never depends on
    how the router, capability, task or runtime services are reached.
    """

    def __init__(
        self,
        router: ModelRouter,
        skills: SkillInvoker,
        tasks: TaskService | None = None,
        runtime: AgentRuntime | None = None,
        store: ConversationStore | None = None,
        cfg: Config | None = None,
    ) -> None:
        self.router = router
        self.skills = skills
        self.tasks = tasks
        self.runtime = runtime
        self.store = store if store is not None else ConversationStore()
        self.cfg = cfg or get_config()
        self.current_plan: Plan | None = None
        self._turns: dict[str, StreamTurn] = {}
        self._running_pipelines: set[str] = set()
        # Messages with a pipeline, task or runtime run still in progress
        self._executing: set[str] = set()
        self._stop_requested: bool = False

    @property
    def is_streaming(self) -> bool:
        return any(not t.cancelled for t in self._turns.values())

    @property
    def is_executing(self) -> bool:
        return bool(self._executing)

    async def stop(self) -> None:
        logger.warning("Stopping agent...")
        self._stop_requested = True
        self.stop_streaming()

    def clear_messages(self) -> None:
        self.stop_streaming()
        self.store.clear()
        self.current_plan = None
        logger.info("Conversation cleared")

    def get_stats(self) -> dict[str, Any]:
        messages = self.store.messages
        return {
            "message_count": len(messages),
            "agent_messages": sum(1 for m in messages if m.role == "agent"),
            "pending_tool_calls": sum(
                len(m.tool_calls) for m in messages if m.tool_calls and not m.is_executed
            ),
            "executed_messages": sum(1 for m in messages if m.is_executed),
            "is_streaming": self.is_streaming,
            "is_executing": self.is_executing,
            "current_plan": self.current_plan.id if self.current_plan else None,
        }
