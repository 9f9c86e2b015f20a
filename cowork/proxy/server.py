"""FastAPI server: exposes the conversation orchestrator over HTTP and SSE."""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sse_starlette.sse import EventSourceResponse

from .agent import ACTIVITY_STYLES, AgentEvent, CoworkAgent
from .config import get_config
from .router import ModelRouter, create_router
from .runtime import RuntimeClient
from .skills import SkillClient
from .tasks import TaskClient

logger = logging.getLogger("cowork.server")

# Global instances
router: ModelRouter | None = None
agent: CoworkAgent | None = None
_clients: list[Any] = []
_chat_lock: asyncio.Lock | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle."""
    global router, agent, _clients, _chat_lock

    cfg = get_config()
    logger.info(f"Starting Cowork server on {cfg.server_host}:{cfg.server_port}")
    logger.info(f"  Router: {cfg.router_backend} (model: {cfg.default_model})")
    logger.info(f"  Skills: {cfg.skills_url} (workspace: {cfg.workspace_id})")

    router = create_router(cfg)
    skills = SkillClient()
    tasks = TaskClient()
    runtime = RuntimeClient()
    _clients = [router, skills, tasks, runtime]
    agent = CoworkAgent(router=router, skills=skills, tasks=tasks, runtime=runtime, cfg=cfg)

    router_ok = await router.health_check()
    logger.info(f"  Router status: {'✓ connected' if router_ok else '✗ unavailable'}")

    _chat_lock = asyncio.Lock()

    yield

    # Shutdown
    if agent:
        await agent.stop()
    for client in _clients:
        try:
            await client.close()
        except Exception as e:
            logger.warning(f"Error closing {type(client).__name__}: {e}")
    logger.info("Cowork server shutdown complete")


app = FastAPI(
    title="Cowork Agent",
    version="0.2.0",
    description="Agent conversation orchestration core",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


# ─── Request Models ──────────────────────────────────────────────────

class ChatRequest(BaseModel):
    message: str
    model: str | None = None
    hidden_context: str | None = None
    stream: bool = True


class ExecuteRequest(BaseModel):
    message_id: str
    workspace_id: str | None = None


class ExecutePlanRequest(BaseModel):
    workspace_id: str | None = None


class TaskRequest(BaseModel):
    instruction: str
    model: str | None = None
    workspace_path: str | None = None
    stream: bool = True


class PlanRequest(BaseModel):
    instruction: str
    workspace_path: str | None = None


class NativeAgentRequest(BaseModel):
    instruction: str
    model: str | None = None
    workspace_id: str | None = None
    agent_spec_id: str | None = None


def _not_ready() -> JSONResponse:
    return JSONResponse({"error": "Agent not initialized"}, status_code=503)


def _wire(event: AgentEvent) -> dict[str, Any]:
    return {"type": event.type, "data": event.data}


def _sse(event: AgentEvent) -> dict[str, str]:
    return {"event": event.type, "data": json.dumps(_wire(event), default=str)}


async def _serialized(events: AsyncIterator[AgentEvent]) -> AsyncIterator[AgentEvent]:
    """One streamed turn at a time."""
    if _chat_lock:
        async with _chat_lock:
            async for event in events:
                yield event
    else:
        async for event in events:
            yield event


async def _sse_stream(events: AsyncIterator[AgentEvent]) -> AsyncIterator[dict]:
    async for event in _serialized(events):
        yield _sse(event)


async def _collect(events: AsyncIterator[AgentEvent]) -> JSONResponse:
    collected = [_wire(e) async for e in _serialized(events)]
    return JSONResponse({"events": collected})


# ─── Routes ──────────────────────────────────────────────────────────

@app.get("/api/status")
async def get_status() -> JSONResponse:
    """Health check and connection status."""
    router_ok = await router.health_check() if router else False
    cfg = get_config()
    return JSONResponse({
        "status": "ok" if router_ok else "degraded",
        "router": {
            "connected": router_ok,
            "backend": cfg.router_backend,
            "model": cfg.default_model,
        },
        "agent": agent.get_stats() if agent else {},
    })


@app.post("/api/chat", response_model=None)
async def chat(request: ChatRequest) -> EventSourceResponse | JSONResponse:
    """Send a message and stream the agent's response."""
    if not agent:
        return _not_ready()
    events = agent.iter_chat(request.message, request.model, request.hidden_context)
    if request.stream:
        return EventSourceResponse(_sse_stream(events), media_type="text/event-stream")
    return await _collect(events)


@app.post("/api/execute")
async def execute(request: ExecuteRequest) -> JSONResponse:
    """Execute the tool calls extracted from an agent message."""
    if not agent:
        return _not_ready()
    if agent.store.get(request.message_id) is None:
        return JSONResponse({"error": f"Unknown message {request.message_id}"}, status_code=404)
    result = await agent.execute_tool_calls(request.message_id, workspace_id=request.workspace_id)
    if result is None:
        return JSONResponse(
            {"status": "skipped", "message": "Nothing to execute, already executed, or still running"},
            status_code=409,
        )
    return JSONResponse({"status": "ok" if result.success else "failed", "result": result.to_dict()})


@app.post("/api/execute-plan")
async def execute_plan(request: ExecutePlanRequest) -> JSONResponse:
    """Execute the operations described in the last finished agent message."""
    if not agent:
        return _not_ready()
    result = await agent.execute_discussed_plan(request.workspace_id)
    if result is None:
        return JSONResponse({"status": "skipped", "messages": agent.store.to_dicts()[-1:]})
    return JSONResponse({"status": "ok" if result.success else "failed", "result": result.to_dict()})


@app.post("/api/task", response_model=None)
async def task(request: TaskRequest) -> EventSourceResponse | JSONResponse:
    """Hand an instruction to the task service and follow its progress."""
    if not agent:
        return _not_ready()
    events = agent.iter_instruction(request.instruction, request.model, request.workspace_path)
    if request.stream:
        return EventSourceResponse(_sse_stream(events), media_type="text/event-stream")
    return await _collect(events)


@app.post("/api/plan")
async def plan(request: PlanRequest) -> JSONResponse:
    if not agent:
        return _not_ready()
    result = await agent.plan_instruction(request.instruction, request.workspace_path)
    return JSONResponse({
        "plan": result.to_dict() if result else None,
        "message": agent.store.to_dicts()[-1] if len(agent.store) else None,
    }, status_code=200 if result else 422)


@app.post("/api/plan/{plan_id}/cancel")
async def cancel_plan(plan_id: str) -> JSONResponse:
    if not agent:
        return _not_ready()
    ok = await agent.cancel_plan(plan_id)
    return JSONResponse({"status": "ok" if ok else "error"}, status_code=200 if ok else 502)


@app.post("/api/agent")
async def native_agent(request: NativeAgentRequest) -> JSONResponse:
    """Run a server-side agent workflow for one turn."""
    if not agent:
        return _not_ready()
    msg = await agent.run_native_agent(
        request.instruction, request.model, request.workspace_id, request.agent_spec_id,
    )
    return JSONResponse({"message": msg.to_dict()})


@app.post("/api/stop")
async def stop_agent() -> JSONResponse:
    """Cancel in-flight streams and halt running pipelines before their next call."""
    if agent:
        await agent.stop()
        return JSONResponse({"status": "ok", "message": "Agent stopped"})
    return JSONResponse({"status": "error", "message": "Agent not initialized"}, status_code=503)


@app.post("/api/reset")
async def reset_conversation() -> JSONResponse:
    """Reset conversation history."""
    if agent:
        agent.clear_messages()
    return JSONResponse({"status": "ok", "message": "Conversation reset"})


@app.get("/api/history")
async def get_history() -> JSONResponse:
    if not agent:
        return JSONResponse({"messages": []})
    return JSONResponse({"messages": agent.store.to_dicts()})


@app.get("/api/activity/{message_id}")
async def get_activity(message_id: str) -> JSONResponse:
    """Live activity state of one message, with its display style."""
    if not agent:
        return _not_ready()
    msg = agent.store.get(message_id)
    if msg is None:
        return JSONResponse({"error": f"Unknown message {message_id}"}, status_code=404)
    state = agent.activity_for(message_id)
    style = ACTIVITY_STYLES[state]
    return JSONResponse({
        "message_id": message_id,
        "state": state,
        "label": style.label,
        "glyph": style.glyph,
        "color": style.color,
        "active_tool": msg.active_tool,
    })


def create_app() -> FastAPI:
    """Factory function for creating the app."""
    return app


def run_server() -> None:
    """Run the HTTP server."""
    import uvicorn

    cfg = get_config()
    uvicorn.run(
        "cowork.proxy.server:app",
        host=cfg.server_host,
        port=cfg.server_port,
        log_level="warning",
        log_config=None,  # keep the logging set up by cowork.logger
        reload=False,
    )
