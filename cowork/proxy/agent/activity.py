"""Live activity classification for progress display.

The classifier only produces symbolic states. ACTIVITY_STYLES is the
separate lookup a renderer uses to turn a state into label, glyph and color.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .models import ACTIVITY_STATES, Message, RuntimeEvent

if TYPE_CHECKING:
    from ..runtime import AgentRuntime
    from .models import ConversationStore

logger = logging.getLogger("cowork.agent.activity")


TOOL_STATE_MAP: dict[str, str] = {
    # Web reading
    "web_search": "reading",
    "fetch_web_content": "reading",
    "read_url": "reading",
    "google_search": "reading",
    "brave_search": "reading",
    # Filesystem writes
    "write_file": "creating",
    "append_file": "creating",
    "mkdir": "creating",
    "move_file": "creating",
    # Filesystem deletes
    "delete_file": "pruning",
    # Filesystem reads
    "read_file": "observing",
    "read_many_files": "observing",
    "list_files": "observing",
    "search_files": "observing",
    "file_exists": "observing",
    "get_file_info": "observing",
    "ingest_document": "observing",
    # Browser interaction
    "browse_url": "browsing",
    "open_new_tab": "browsing",
    "click_element": "browsing",
    "wait_for_selector": "browsing",
    "type_text": "browsing",
    "submit_form": "browsing",
    "go_back": "browsing",
    "screenshot": "browsing",
    "get_page_content": "browsing",
    "get_page_snapshot": "browsing",
    "extract_links": "browsing",
    # Network APIs
    "http_get_json": "communicating",
    "http_post_json": "communicating",
    # Shell
    "execute_command": "executing",
    "git_status": "executing",
    "git_diff": "executing",
    "git_log": "executing",
}

TOOL_DISPLAY_NAMES: dict[str, str] = {
    "read_file": "Reading File",
    "read_many_files": "Reading Files",
    "write_file": "Writing File",
    "append_file": "Appending to File",
    "delete_file": "Deleting File",
    "list_files": "Listing Files",
    "search_files": "Searching Files",
    "file_exists": "Checking File",
    "get_file_info": "Inspecting File",
    "ingest_document": "Ingesting Document",
    "mkdir": "Creating Directory",
    "move_file": "Moving File",
    "web_search": "Searching the Web",
    "google_search": "Searching Google",
    "brave_search": "Searching the Web",
    "fetch_web_content": "Fetching URL",
    "read_url": "Reading URL",
    "browse_url": "Browsing URL",
    "execute_command": "Running Command",
    "git_status": "Checking Git Status",
    "git_diff": "Reading Git Diff",
    "git_log": "Reading Git Log",
    "http_get_json": "Fetching API",
    "http_post_json": "Calling API",
    "screenshot": "Taking Screenshot",
}


@dataclass(frozen=True)
class ActivityStyle:
    label: str
    glyph: str
    color: str


ACTIVITY_STYLES: dict[str, ActivityStyle] = {
    "idle": ActivityStyle("Idle", "○", "#484f58"),
    "thinking": ActivityStyle("Analyzing Neural Pathways...", "◇", "#a855f7"),
    "planning": ActivityStyle("Formulating Execution Strategy...", "⚡", "#f59e0b"),
    "executing": ActivityStyle("Executing Protocols...", "▶", "#06b6d4"),
    "creating": ActivityStyle("Generating Digital Assets...", "✦", "#ec4899"),
    "reading": ActivityStyle("Absorbing Global Knowledge...", "◎", "#3b82f6"),
    "observing": ActivityStyle("Scanning Local Environment...", "◉", "#10b981"),
    "browsing": ActivityStyle("Navigating Cyber-Space...", "➚", "#f97316"),
    "communicating": ActivityStyle("Establishing Uplink...", "⇄", "#6366f1"),
    "pruning": ActivityStyle("Pruning Obsolete Data...", "✕", "#ef4444"),
}


def get_tool_display_name(function_name: str) -> str:
    return TOOL_DISPLAY_NAMES.get(function_name) or function_name.replace("_", " ")


def resolve_tool_state(function_name: str) -> str:
    """State for a tool the runtime reports it is running; unmapped tools are 'executing'."""
    return TOOL_STATE_MAP.get(function_name, "executing")


def classify(message: Message, executing: bool = False) -> str:
    """Resolve the live activity state of one message. First matching rule wins."""
    if message.activity in ACTIVITY_STATES and message.is_loading:
        return message.activity  # type: ignore[return-value]

    if message.tool_calls and not message.is_executed:
        for call in message.tool_calls:
            state = TOOL_STATE_MAP.get(call.method)
            if state:
                return state
        return "planning"

    if executing:
        return "executing"
    if message.is_loading:
        return "thinking"
    return "idle"


def runtime_event_state(event: RuntimeEvent) -> tuple[str, str | None] | None:
    """Map a runtime event to (state, active tool label); None leaves the message as is."""
    if event.type == "tool_call":
        data: Any = event.data if isinstance(event.data, dict) else {}
        function = data.get("function") if isinstance(data.get("function"), dict) else {}
        name = function.get("name") or data.get("name") or ""
        return resolve_tool_state(name), get_tool_display_name(name)
    if event.type in ("tool_result", "thought", "stream_chunk"):
        return "thinking", None
    if event.type == "status":
        return "planning", None
    return None


class _ActivityMixin:
    """Activity lookups and the native runtime turn, mixed into CoworkAgent."""

    store: ConversationStore
    runtime: AgentRuntime | None

    def activity_for(self, message_id: str) -> str:
        msg = self.store.get(message_id)
        if msg is None:
            return "idle"
        return classify(msg, executing=message_id in self._executing)  # type: ignore[attr-defined]

    def _apply_runtime_event(self, message_id: str, event: RuntimeEvent) -> None:
        msg = self.store.get(message_id)
        if msg is None or not msg.is_loading:
            return
        resolved = runtime_event_state(event)
        if resolved is None:
            return
        state, label = resolved
        self.store.update(message_id, activity=state, active_tool=label)

    async def _consume_runtime_events(self, turn_id: str, message_id: str) -> None:
        if self.runtime is None:
            return
        try:
            async for event in self.runtime.subscribe(turn_id):
                self._apply_runtime_event(message_id, event)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # Progress display only; the workflow result still lands
            logger.warning(f"Runtime event subscription for {turn_id} ended: {e}")

    async def run_native_agent(
        self,
        instruction: str,
        model: str | None = None,
        workspace_id: str | None = None,
        agent_spec_id: str | None = None,
    ) -> Message:
        """Run a server-side agent workflow, tracking its live activity per turn."""
        cfg = self.cfg  # type: ignore[attr-defined]
        model = model or cfg.default_model
        self.store.add_message("user", instruction)
        msg = self.store.add_message(
            "agent", "",
            is_loading=True,
            activity="thinking",
            model_used={"name": model, "thinkingEnabled": True},
        )
        if self.runtime is None:
            self.store.update(msg.id, content="❌ Agent Runtime Error: no runtime configured",
                              is_loading=False, activity=None, frozen=True)
            return msg

        self._executing.add(msg.id)  # type: ignore[attr-defined]
        listener = asyncio.create_task(self._consume_runtime_events(msg.id, msg.id))
        await asyncio.sleep(0)
        try:
            result = await self.runtime.run_workflow(
                instruction, model, workspace_id or cfg.workspace_id, msg.id, agent_spec_id,
            )
            self.store.update(msg.id, content=result, is_loading=False,
                              activity=None, active_tool=None, frozen=True)
        except Exception as e:
            logger.exception("Native agent run failed")
            self.store.update(msg.id, content=f"❌ Agent Runtime Error: {e}", is_loading=False,
                              activity=None, active_tool=None, frozen=True)
        finally:
            listener.cancel()
            try:
                await listener
            except asyncio.CancelledError:
                pass
            self._executing.discard(msg.id)  # type: ignore[attr-defined]
        return msg
