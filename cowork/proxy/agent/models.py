from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Literal, Mapping

logger = logging.getLogger("cowork.agent")

Role = Literal["user", "agent", "system"]
ThinkingLevel = Literal["minimal", "low", "medium", "high"]

ActivityState = Literal[
    "idle", "thinking", "planning", "executing", "creating",
    "reading", "observing", "browsing", "communicating", "pruning",
]
ACTIVITY_STATES: tuple[str, ...] = (
    "idle", "thinking", "planning", "executing", "creating",
    "reading", "observing", "browsing", "communicating", "pruning",
)

PLAN_STEP_TYPES = ("createFile", "modifyFile", "deleteFile", "moveFile", "organizeFolder", "default")

ERROR_PREFIX = "[Error"


# ── Tool calls ──────────────────────────────────────────────────────

@dataclass(frozen=True)
class MethodShape:
    """Argument layout of one callable method."""
    skill: str
    args: tuple[str, ...]
    required: int
    # Last argument may be unquoted text running up to the closing paren
    raw_tail: bool = False


METHOD_SHAPES: dict[str, MethodShape] = {
    "write_file": MethodShape("filesystem", ("path", "content"), 2, raw_tail=True),
    "append_file": MethodShape("filesystem", ("path", "content"), 2, raw_tail=True),
    "read_file": MethodShape("filesystem", ("path",), 1),
    "list_files": MethodShape("filesystem", ("path",), 1),
    "search_files": MethodShape("filesystem", ("query", "path"), 1),
    "delete_file": MethodShape("filesystem", ("path",), 1),
}


@dataclass(frozen=True)
class ToolCall:
    skill: str
    method: str
    params: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "params", MappingProxyType(dict(self.params)))

    @classmethod
    def from_args(cls, method: str, args: list[Any]) -> ToolCall | None:
        """Build a call from positional arguments using the method's shape."""
        shape = METHOD_SHAPES.get(method)
        if shape is None or not (shape.required <= len(args) <= len(shape.args)):
            return None
        return cls(skill=shape.skill, method=method, params=dict(zip(shape.args, args)))

    @classmethod
    def from_mapping(cls, method: str, arguments: Mapping[str, Any]) -> ToolCall | None:
        """Build a call from keyword arguments, dropping keys the shape doesn't know."""
        shape = METHOD_SHAPES.get(method)
        if shape is None:
            return None
        params = {k: arguments[k] for k in shape.args if arguments.get(k) is not None}
        if any(k not in params for k in shape.args[:shape.required]):
            return None
        return cls(skill=shape.skill, method=method, params=params)

    @property
    def target(self) -> str:
        return str(self.params.get("path") or self.params.get("query") or "unknown")

    def label(self) -> str:
        return f'{self.method}("{self.target}")'

    def to_dict(self) -> dict[str, Any]:
        return {"skill": self.skill, "method": self.method, "params": dict(self.params)}


# ── Execution results ───────────────────────────────────────────────

@dataclass
class CallOutcome:
    call: ToolCall
    success: bool
    error: str | None = None
    output: Any = None
    duration: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "call": self.call.to_dict(),
            "success": self.success,
            "error": self.error,
            "duration": round(self.duration, 3),
        }


@dataclass
class ExecutionResult:
    outcomes: list[CallOutcome] = field(default_factory=list)
    success: bool = True
    error: str | None = None

    @property
    def attempted(self) -> int:
        return len(self.outcomes)

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.success)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if not o.success)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "error": self.error,
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


# ── Legacy plans ────────────────────────────────────────────────────

@dataclass
class PlanStep:
    type: str
    description: str


@dataclass
class Plan:
    id: str
    steps: list[PlanStep] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    requires_confirmation: bool = False
    # "question" plans carry a direct answer instead of steps
    intent: str = "command"
    answer: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "steps": [{"type": s.type, "description": s.description} for s in self.steps],
            "warnings": list(self.warnings),
            "requiresConfirmation": self.requires_confirmation,
            "intent": self.intent,
            "answer": self.answer,
        }


# ── Events ──────────────────────────────────────────────────────────

@dataclass
class StreamEvent:
    type: str  # "started", "chunk", "finished", "error"
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class TaskEvent:
    type: str  # "started", "progress", "completed", "failed"
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class RuntimeEvent:
    type: str  # "status", "thought", "tool_call", "tool_result", "stream_chunk", "error"
    data: Any = None


@dataclass
class AgentEvent:
    type: str  # "message", "update", "error", "done"
    data: dict[str, Any] = field(default_factory=dict)


# ── Messages ────────────────────────────────────────────────────────

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Message:
    role: Role
    content: str = ""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=_utcnow)
    thought: str | None = None
    thinking_level: ThinkingLevel | None = None
    model_used: dict[str, Any] | None = None
    tool_calls: list[ToolCall] | None = None
    result: ExecutionResult | None = None
    plan: Plan | None = None
    activity: str | None = None
    active_tool: str | None = None
    is_loading: bool = False
    is_executed: bool = False
    frozen: bool = False

    @property
    def is_error(self) -> bool:
        return self.content.lstrip().startswith(ERROR_PREFIX)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.role,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
            "thought": self.thought,
            "thinkingLevel": self.thinking_level,
            "modelUsed": self.model_used,
            "toolCalls": [tc.to_dict() for tc in self.tool_calls] if self.tool_calls else None,
            "result": self.result.to_dict() if self.result else None,
            "plan": self.plan.to_dict() if self.plan else None,
            "activity": self.activity,
            "activeTool": self.active_tool,
            "isLoading": self.is_loading,
            "isExecuted": self.is_executed,
        }


class ConversationStore:
    """Ordered, append-only message list for one conversation.

    clear() is the only way messages leave the store.
    """

    def __init__(self) -> None:
        self._messages: list[Message] = []
        self._index: dict[str, Message] = {}

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self):
        return iter(list(self._messages))

    @property
    def messages(self) -> list[Message]:
        return list(self._messages)

    def add_message(self, role: Role, content: str = "", **fields: Any) -> Message:
        msg = Message(role=role, content=content, **fields)
        if msg.id in self._index:
            raise ValueError(f"Duplicate message id: {msg.id}")
        self._messages.append(msg)
        self._index[msg.id] = msg
        return msg

    def get(self, message_id: str) -> Message | None:
        return self._index.get(message_id)

    def update(self, message_id: str, **changes: Any) -> Message | None:
        """Apply field changes to a message.

        Content of a frozen message is never rewritten; an update that
        freezes the message may still set its final content.
        """
        msg = self._index.get(message_id)
        if msg is None:
            logger.warning(f"Update for unknown message {message_id}")
            return None
        if msg.frozen and "content" in changes:
            logger.warning(f"Ignoring content change on frozen message {message_id}")
            changes.pop("content")
        if msg.result is not None and changes.get("result") is not None:
            logger.warning(f"Execution result already recorded for {message_id}")
            changes.pop("result")
        for key, value in changes.items():
            if not hasattr(msg, key):
                raise AttributeError(f"Message has no field '{key}'")
            setattr(msg, key, value)
        return msg

    def find_last_agent(self, finished_only: bool = True) -> Message | None:
        for msg in reversed(self._messages):
            if msg.role == "agent" and not (finished_only and msg.is_loading):
                return msg
        return None

    def loading_messages(self) -> list[Message]:
        return [m for m in self._messages if m.is_loading]

    def history(self) -> list[dict[str, str]]:
        """Model-facing history: finished, non-error messages as role/content pairs."""
        return [
            {"role": "assistant" if m.role == "agent" else "user", "content": m.content}
            for m in self._messages
            if not m.is_loading and not m.is_error
        ]

    def to_dicts(self) -> list[dict[str, Any]]:
        return [m.to_dict() for m in self._messages]

    def clear(self) -> None:
        self._messages.clear()
        self._index.clear()
