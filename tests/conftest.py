"""Shared fixtures: scripted router, mocked skill service, agent wiring."""

from unittest.mock import AsyncMock

import pytest

from cowork.proxy.agent import CoworkAgent
from cowork.proxy.agent.models import StreamEvent
from cowork.proxy.config import DEFAULT_CONFIG, Config


def started(model="rainy:test-model", provider_id="rainyapi"):
    return StreamEvent("started", {"model": model, "provider_id": provider_id})


def chunk(content, final=False):
    return StreamEvent("chunk", {"content": content, "is_final": final})


def finished(reason="stop", total=0):
    return StreamEvent("finished", {"finish_reason": reason, "total_chunks": total})


def stream_error(message):
    return StreamEvent("error", {"message": message})


class ScriptedRouter:
    """Router double that replays a fixed event script per turn.

    An Exception instance in the script is raised at that point, standing in
    for a transport failure.
    """

    def __init__(self, *scripts):
        self.scripts = list(scripts)
        self.requests = []
        self.pulled = 0
        self.closed_streams = 0

    async def stream(self, messages, model=None):
        self.requests.append({"messages": messages, "model": model})
        script = self.scripts.pop(0) if self.scripts else []
        try:
            for event in script:
                self.pulled += 1
                if isinstance(event, Exception):
                    raise event
                yield event
        finally:
            self.closed_streams += 1

    async def health_check(self):
        return True

    async def close(self):
        pass


@pytest.fixture
def cfg():
    return Config(**{**DEFAULT_CONFIG, "skill_timeout": 2.0, "workspace_id": "ws-test"})


@pytest.fixture
def skills():
    """Capability service double; every call succeeds unless reconfigured."""
    mock = AsyncMock()
    mock.invoke = AsyncMock(return_value={"success": True, "output": "ok"})
    return mock


@pytest.fixture
def make_agent(cfg, skills):
    def _make(*scripts, tasks=None, runtime=None):
        return CoworkAgent(
            router=ScriptedRouter(*scripts),
            skills=skills,
            tasks=tasks,
            runtime=runtime,
            cfg=cfg,
        )
    return _make


async def drain(events):
    return [event async for event in events]
