"""Agent package.

Public API:
    from cowork.proxy.agent import CoworkAgent
    from cowork.proxy.agent import AgentEvent, ConversationStore, Message, ToolCall

Internal layout:
    models.py     — Message, ToolCall, ExecutionResult, Plan, events, ConversationStore
    extractor.py  — extract_tool_calls() for streamed model text
    streaming.py  — _StreamingMixin (iter_chat, stream_chat, stop_streaming)
    executors.py  — _ExecutorMixin (execute_tool_calls, execute_discussed_plan)
    bridge.py     — _TaskBridgeMixin (send_instruction, plan_instruction, cancel_plan)
    activity.py   — classify(), ACTIVITY_STYLES, _ActivityMixin (run_native_agent)
    loop.py       — CoworkAgent (combines all mixins)
"""

from .activity import ACTIVITY_STYLES, classify
from .extractor import extract_tool_calls
from .loop import CoworkAgent
from .models import AgentEvent, ConversationStore, ExecutionResult, Message, Plan, ToolCall

__all__ = [
    "ACTIVITY_STYLES",
    "AgentEvent",
    "ConversationStore",
    "CoworkAgent",
    "ExecutionResult",
    "Message",
    "Plan",
    "ToolCall",
    "classify",
    "extract_tool_calls",
]
