"""Tests for the HTTP/SSE service clients."""

import json
from unittest.mock import patch

import httpx
import pytest

from cowork.proxy.errors import ServiceError
from cowork.proxy.router import RouterClient, normalize_stream_event
from cowork.proxy.skills import SkillClient
from cowork.proxy.tasks import TaskClient, normalize_task_event


def _sse_body(*events):
    lines = []
    for name, payload in events:
        lines.append(f"event: {name}")
        lines.append(f"data: {json.dumps(payload)}")
        lines.append("")
    return "\n".join(lines) + "\n"


def _mock_http(handler, base_url):
    return httpx.AsyncClient(base_url=base_url, transport=httpx.MockTransport(handler))


@pytest.fixture(autouse=True)
def _config(cfg):
    with patch("cowork.proxy.router.get_config", return_value=cfg), \
         patch("cowork.proxy.skills.get_config", return_value=cfg), \
         patch("cowork.proxy.tasks.get_config", return_value=cfg):
        yield


# ═══════════════════════════════════════════════════════════════
# Router
# ═══════════════════════════════════════════════════════════════

class TestRouterClient:

    def test_normalize_wire_keys(self):
        event = normalize_stream_event("chunk", {"content": "a", "isFinal": True})
        assert event.data == {"content": "a", "is_final": True}

    @pytest.mark.asyncio
    async def test_stream_parses_sse(self):
        body = _sse_body(
            ("started", {"model": "m", "providerId": "rainyapi"}),
            ("chunk", {"content": "Hel", "isFinal": False}),
            ("chunk", {"content": "lo", "isFinal": True}),
            ("finished", {"finishReason": "stop", "totalChunks": 2}),
        )
        requests = []

        def handler(request):
            requests.append(json.loads(request.content))
            return httpx.Response(200, text=body, headers={"content-type": "text/event-stream"})

        client = RouterClient(base_url="http://router")
        client._http = _mock_http(handler, "http://router")
        events = [e async for e in client.stream([{"role": "user", "content": "hi"}], "m")]

        assert [e.type for e in events] == ["started", "chunk", "chunk", "finished"]
        assert events[0].data["provider_id"] == "rainyapi"
        assert events[2].data["is_final"] is True
        assert requests[0] == {"messages": [{"role": "user", "content": "hi"}], "model": "m"}

    @pytest.mark.asyncio
    async def test_http_error_raises_service_error(self):
        client = RouterClient(base_url="http://router")
        client._http = _mock_http(lambda r: httpx.Response(502, text="bad gateway"), "http://router")
        with pytest.raises(ServiceError) as exc:
            _ = [e async for e in client.stream([], "m")]
        assert exc.value.status_code == 502


# ═══════════════════════════════════════════════════════════════
# Skills
# ═══════════════════════════════════════════════════════════════

class TestSkillClient:

    @pytest.mark.asyncio
    async def test_invoke_posts_request(self):
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            return httpx.Response(200, json={"success": True, "output": "file body"})

        client = SkillClient(base_url="http://skills")
        client._http = _mock_http(handler, "http://skills")
        result = await client.invoke("ws", "filesystem", "read_file", {"path": "a.txt"})

        assert result == {"success": True, "output": "file body"}
        assert seen == [{"scope": "ws", "skill": "filesystem", "method": "read_file", "params": {"path": "a.txt"}}]

    @pytest.mark.asyncio
    async def test_unexpected_shape(self):
        client = SkillClient(base_url="http://skills")
        client._http = _mock_http(lambda r: httpx.Response(200, json={"ok": 1}), "http://skills")
        with pytest.raises(ServiceError):
            await client.invoke("ws", "filesystem", "read_file", {"path": "a"})


# ═══════════════════════════════════════════════════════════════
# Tasks
# ═══════════════════════════════════════════════════════════════

class TestTaskClient:

    def test_legacy_progress_key(self):
        event = normalize_task_event("progress", {"progress": 42, "message": "x"})
        assert event.data == {"percent": 42.0, "message": "x"}

    @pytest.mark.asyncio
    async def test_create_and_stream(self):
        def handler(request):
            if request.method == "POST":
                return httpx.Response(200, json={"id": "t-1"})
            body = _sse_body(
                ("progress", {"percent": 50, "message": "half"}),
                ("completed", {}),
            )
            return httpx.Response(200, text=body, headers={"content-type": "text/event-stream"})

        client = TaskClient(base_url="http://tasks")
        client._http = _mock_http(handler, "http://tasks")
        task_id = await client.create_task("do it", "rainyapi", "gpt-4o", None)
        events = [e async for e in client.stream_task(task_id)]

        assert task_id == "t-1"
        assert [e.type for e in events] == ["progress", "completed"]
        assert events[0].data["percent"] == 50.0

    @pytest.mark.asyncio
    async def test_create_without_id(self):
        client = TaskClient(base_url="http://tasks")
        client._http = _mock_http(lambda r: httpx.Response(200, json={}), "http://tasks")
        with pytest.raises(ServiceError):
            await client.create_task("x", "rainyapi", "m", None)


# ═══════════════════════════════════════════════════════════════
# Runtime
# ═══════════════════════════════════════════════════════════════

class TestRuntimeClient:

    @pytest.mark.asyncio
    async def test_subscribe_filters_unknown_events(self, cfg):
        from cowork.proxy.runtime import RuntimeClient

        body = _sse_body(
            ("status", "Planning"),
            ("heartbeat", {}),
            ("tool_call", {"function": {"name": "read_file"}}),
        )
        paths = []

        def handler(request):
            paths.append(request.url.path)
            return httpx.Response(200, text=body, headers={"content-type": "text/event-stream"})

        with patch("cowork.proxy.runtime.get_config", return_value=cfg):
            client = RuntimeClient(base_url="http://runtime")
        client._http = _mock_http(handler, "http://runtime")
        events = [e async for e in client.subscribe("turn-9")]

        assert paths == ["/api/turns/turn-9/events"]
        assert [e.type for e in events] == ["status", "tool_call"]

    @pytest.mark.asyncio
    async def test_run_workflow_returns_result(self, cfg):
        from cowork.proxy.runtime import RuntimeClient

        def handler(request):
            body = json.loads(request.content)
            assert body["turnId"] == "turn-1"
            return httpx.Response(200, json={"result": "done"})

        with patch("cowork.proxy.runtime.get_config", return_value=cfg):
            client = RuntimeClient(base_url="http://runtime")
        client._http = _mock_http(handler, "http://runtime")
        assert await client.run_workflow("go", "m", "ws", "turn-1") == "done"


# ═══════════════════════════════════════════════════════════════
# Ollama adapter
# ═══════════════════════════════════════════════════════════════

class TestOllamaRouter:

    @staticmethod
    def _router(cfg, chat):
        from cowork.proxy.ollama import OllamaRouter

        with patch("cowork.proxy.ollama.get_config", return_value=cfg), \
             patch("cowork.proxy.ollama.ollama.AsyncClient") as client_cls:
            client_cls.return_value.chat = chat
            return OllamaRouter()

    @pytest.mark.asyncio
    async def test_stream_maps_chunks(self, cfg):
        async def parts():
            yield {"message": {"content": "Hel"}, "done": False}
            yield {"message": {"content": "lo"}, "done": True, "done_reason": "stop"}

        async def chat(**kwargs):
            return parts()

        router = self._router(cfg, chat)
        events = [e async for e in router.stream([{"role": "user", "content": "hi"}], "llama3")]

        assert [e.type for e in events] == ["started", "chunk", "chunk", "finished"]
        assert events[0].data == {"model": "llama3", "provider_id": "ollama"}
        assert events[2].data == {"content": "lo", "is_final": True}
        assert events[3].data == {"finish_reason": "stop", "total_chunks": 2}

    @pytest.mark.asyncio
    async def test_response_error_becomes_error_event(self, cfg):
        import ollama

        async def chat(**kwargs):
            raise ollama.ResponseError("model 'nope' not found")

        router = self._router(cfg, chat)
        events = [e async for e in router.stream([], "nope")]

        assert [e.type for e in events] == ["error"]
        assert events[0].data["message"] == "Model not found: nope"
