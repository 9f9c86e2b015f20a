"""Cowork CLI entry point."""

from __future__ import annotations

import argparse
import logging
import os
import sys


def main() -> None:

    import importlib.metadata

    try:
        version = importlib.metadata.version("cowork-agent")
    except importlib.metadata.PackageNotFoundError:
        version = "0.2.0"

    parser = argparse.ArgumentParser(
        prog="cowork",
        description="Cowork: agent conversation orchestration core",
    )
    parser.add_argument("--version", "-v", action="version", version=f"%(prog)s {version}")
    parser.add_argument("--config", default=None, help="Path to custom configuration file (default: ~/.cowork/config.json)")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP server")
    serve_parser.add_argument("--host", default=None, help="Host to bind to")
    serve_parser.add_argument("--port", type=int, default=None, help="Port to bind to")

    chat_parser = subparsers.add_parser("chat", help="Run one streamed turn in the terminal")
    chat_parser.add_argument("message", help="Instruction to send")
    chat_parser.add_argument("--model", default=None, help="Model id (default: from config)")
    chat_parser.add_argument("--context", default=None, help="Hidden context prepended to the prompt")
    chat_parser.add_argument("--execute", action="store_true", help="Execute extracted tool calls after the turn")
    chat_parser.add_argument("--workspace", default=None, help="Workspace id for executed calls")

    subparsers.add_parser("status", help="Check status of external services")

    args = parser.parse_args()

    from cowork.logger import setup_logging
    setup_logging(quiet=args.command in ("chat", "status"))

    # Initialize config globally so later get_config() calls see the same path
    from cowork.proxy.config import get_config
    get_config(args.config)

    if args.command == "serve":
        _run_serve(args)
    elif args.command == "chat":
        _run_chat(args)
    elif args.command == "status":
        _run_status(args)
    else:
        parser.print_help()
        sys.exit(1)


def _run_serve(args) -> None:
    """Start the HTTP server."""
    import cowork.proxy.config as _cfg_module

    # Set env vars BEFORE resetting the singleton so they are picked up
    if args.host:
        os.environ["COWORK_SERVER_HOST"] = args.host
    if args.port:
        os.environ["COWORK_SERVER_PORT"] = str(args.port)

    if args.host or args.port:
        _cfg_module.reset_config()
        _cfg_module.get_config(args.config)

    from cowork.proxy.server import run_server
    run_server()


def _run_chat(args) -> None:
    """Stream one turn to the terminal, optionally executing its tool calls."""
    import asyncio

    from rich.console import Console
    from rich.text import Text

    from cowork.proxy.agent import ACTIVITY_STYLES, CoworkAgent
    from cowork.proxy.router import create_router
    from cowork.proxy.skills import SkillClient

    console = Console()

    async def run() -> int:
        router = create_router()
        skills = SkillClient()
        agent = CoworkAgent(router=router, skills=skills)
        agent_id = None
        try:
            async for event in agent.iter_chat(args.message, args.model, args.context):
                if event.type == "message" and event.data.get("type") == "agent":
                    agent_id = event.data["id"]
                    style = ACTIVITY_STYLES["thinking"]
                    console.print(Text(f"{style.glyph} {style.label}", style=style.color))
                elif event.type == "update" and event.data.get("delta"):
                    console.print(event.data["delta"], end="", markup=False, highlight=False)
                elif event.type == "error":
                    console.print()
                    console.print(Text(f"[Error: {event.data.get('message')}]", style="bold red"))
            console.print()

            msg = agent.store.get(agent_id) if agent_id else None
            if msg is None or msg.is_error:
                return 1

            calls = msg.tool_calls or []
            if calls:
                state = agent.activity_for(msg.id)
                style = ACTIVITY_STYLES[state]
                console.print(Text(f"{style.glyph} {len(calls)} pending operation(s)", style=style.color))
                for call in calls:
                    console.print(Text(f"  • {call.label()}", style="dim"))

            if args.execute and calls:
                result = await agent.execute_tool_calls(msg.id, workspace_id=args.workspace)
                status = agent.store.find_last_agent()
                if status is not None:
                    console.print(status.content, markup=False)
                return 0 if result is None or result.success else 1
            return 0
        finally:
            await router.close()
            await skills.close()

    sys.exit(asyncio.run(run()))


def _run_status(args) -> None:
    """Check status of the external services."""
    import asyncio

    import httpx
    from rich.console import Console
    from rich.text import Text

    from cowork.proxy.config import get_config

    console = Console()
    cfg = get_config()

    async def probe(client: httpx.AsyncClient, url: str) -> bool:
        try:
            resp = await client.get(url)
            return resp.is_success
        except httpx.HTTPError:
            return False

    async def check() -> None:
        router_url = f"{cfg.ollama_url}/api/tags" if cfg.router_backend == "ollama" else f"{cfg.router_url}/api/health"
        services = [
            ("Router", router_url),
            ("Skills", f"{cfg.skills_url}/api/health"),
            ("Tasks", f"{cfg.task_service_url}/api/health"),
            ("Runtime", f"{cfg.runtime_url}/api/health"),
            ("Server", f"http://{cfg.server_host}:{cfg.server_port}/api/status"),
        ]
        async with httpx.AsyncClient(timeout=5.0) as client:
            results = await asyncio.gather(*(probe(client, url) for _, url in services))

        console.print()
        console.print(Text("Cowork services", style="bold cyan"))
        for (name, url), ok in zip(services, results):
            line = Text(f"  {name:<9}")
            line.append("● online" if ok else "● offline", style="green" if ok else "red")
            line.append(f"  {url}", style="dim")
            console.print(line)
        console.print(Text(f"  Model     {cfg.default_model} ({cfg.default_provider})", style="yellow"))
        console.print()

    asyncio.run(check())


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        logging.getLogger("cowork").info("Interrupted")
        sys.exit(0)
