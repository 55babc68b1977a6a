"""MCP server bridge for the CUA test harness.

This exposes a small tool surface for a remote client to:
- list the emulated devices
- start a test session (queued in the background, returns a session id)
- poll a session for status and recent progress messages, optionally waiting for a verdict
- send a chat message to the model driving a session
- set the session verdict from the client side, or cancel it

Transport: stdio (local-first), or HTTP SSE with --http host:port.
"""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

import anyio
import mcp.types as types
import uvicorn
from mcp.server import InitializationOptions, Server
from mcp.server.sse import SseServerTransport
from mcp.server.stdio import stdio_server
from starlette.applications import Starlette
from starlette.responses import Response
from starlette.routing import Route

from config import HarnessConfig, load_config
from session_context import MessageInbox
from session_runner import SessionRunner
from session_types import SessionRequest, SessionResult
from status import SessionStatus, StatusArbiter
from task_loader import parse_request
from transport import MOBILE_DEVICES, TEST_CASES, HistoryEmitter

logger = logging.getLogger("cua_mcp")
logger.propagate = False
LOG_FILE = Path(__file__).with_name("mcp_server.log")

SERVER_NAME = "cua-harness-mcp"


def _now_iso() -> str:
    return datetime.utcnow().isoformat()


@dataclass
class SessionRecord:
    session_id: str
    request: SessionRequest
    arbiter: StatusArbiter
    emitter: HistoryEmitter
    inbox: MessageInbox = field(default_factory=MessageInbox)
    state: str = "queued"  # queued|running|finished|cancelled|error
    queued_at: str = field(default_factory=_now_iso)
    finished_at: Optional[str] = None
    result: Optional[SessionResult] = None
    error: Optional[str] = None

    def summary(self, message_limit: int = 20) -> dict[str, Any]:
        test_cases = self.emitter.history(TEST_CASES, limit=1)
        return {
            "session_id": self.session_id,
            "device": self.request.device_name,
            "url": self.request.url,
            "state": self.state,
            "status": self.arbiter.status.value,
            "reason": self.arbiter.reason or self.error,
            "queued_at": self.queued_at,
            "finished_at": self.finished_at,
            "test_cases": test_cases[0]["payload"] if test_cases else None,
            "messages": self.emitter.messages(limit=message_limit),
        }


class HarnessMCPServer:
    """Glue layer between MCP and the session runner."""

    def __init__(self, config: Optional[HarnessConfig] = None, runner: Optional[SessionRunner] = None) -> None:
        self.server = Server(SERVER_NAME, instructions="Run computer-use UI test sessions on emulated devices")
        self.config = config or load_config()
        self.runner = runner or SessionRunner(config=self.config, logger=logging.getLogger("cua_runner"))
        self.sessions: dict[str, SessionRecord] = {}
        self._active_tasks: dict[str, asyncio.Task] = {}
        self._semaphore = asyncio.Semaphore(1)  # one Playwright session at a time
        self._counter = 0
        self._register_handlers()

    def _register_handlers(self) -> None:
        @self.server.list_tools()
        async def list_tools() -> list[types.Tool]:
            return [
                types.Tool(
                    name="list_devices",
                    description="List emulated device profiles",
                    inputSchema={"type": "object", "properties": {}},
                ),
                types.Tool(
                    name="start_session",
                    description="Queue a test session; poll get_session for progress",
                    inputSchema={
                        "type": "object",
                        "properties": {
                            "test_case": {"type": "string"},
                            "url": {"type": "string"},
                            "device": {"type": "string"},
                            "user_info": {"type": "string"},
                            "login_required": {"type": "boolean"},
                            "user_name": {"type": "string"},
                            "password": {"type": "string"},
                        },
                        "required": ["test_case", "url", "device"],
                    },
                ),
                types.Tool(
                    name="list_sessions",
                    description="List known sessions",
                    inputSchema={"type": "object", "properties": {}},
                ),
                types.Tool(
                    name="get_session",
                    description="Get status, reason and recent messages for a session_id; wait_seconds blocks until a verdict or the timeout",
                    inputSchema={
                        "type": "object",
                        "properties": {
                            "session_id": {"type": "string"},
                            "message_limit": {"type": "integer"},
                            "wait_seconds": {"type": "number"},
                        },
                        "required": ["session_id"],
                    },
                ),
                types.Tool(
                    name="update_session_status",
                    description="Set the verdict of a running session (pass or fail)",
                    inputSchema={
                        "type": "object",
                        "properties": {
                            "session_id": {"type": "string"},
                            "status": {"type": "string", "enum": ["pass", "fail"]},
                            "reason": {"type": "string"},
                        },
                        "required": ["session_id", "status"],
                    },
                ),
                types.Tool(
                    name="send_message",
                    description="Send a chat message to the model driving a session; it rides along with the next turn",
                    inputSchema={
                        "type": "object",
                        "properties": {
                            "session_id": {"type": "string"},
                            "message": {"type": "string"},
                        },
                        "required": ["session_id", "message"],
                    },
                ),
                types.Tool(
                    name="cancel_session",
                    description="Stop a session and release its browser",
                    inputSchema={"type": "object", "properties": {"session_id": {"type": "string"}}, "required": ["session_id"]},
                ),
            ]

        @self.server.call_tool()
        async def call_tool(name: str, arguments: dict[str, Any]) -> list[types.TextContent]:
            payload = await self.handle_tool(name, arguments or {})
            return [types.TextContent(type="text", text=json.dumps(payload, indent=2, default=str))]

    async def handle_tool(self, name: str, arguments: dict[str, Any]) -> Any:
        """Dispatch one tool call; errors become {"error": ...} payloads."""
        logger.info("call_tool start: %s args=%s", name, arguments)
        try:
            if name == "list_devices":
                payload: Any = {MOBILE_DEVICES: self.runner.catalog.describe()}
            elif name == "start_session":
                payload = await self._start_session(arguments)
            elif name == "list_sessions":
                payload = [r.summary(message_limit=0) for r in self.sessions.values()]
            elif name == "get_session":
                payload = await self._get_session(arguments)
            elif name == "update_session_status":
                payload = self._update_status(arguments)
            elif name == "send_message":
                payload = self._send_message(arguments)
            elif name == "cancel_session":
                payload = await self._cancel_session(arguments.get("session_id"))
            else:
                payload = {"error": f"Unknown tool: {name}"}
        except Exception as exc:
            logger.exception("Tool call failed: %s", name)
            payload = {"error": str(exc), "tool": name}

        logger.info("call_tool done: %s", name)
        return payload

    def _get_record(self, session_id: Optional[str]) -> SessionRecord:
        if not session_id:
            raise ValueError("session_id is required")
        record = self.sessions.get(session_id)
        if not record:
            raise KeyError(f"Session not found: {session_id}")
        return record

    def _next_session_id(self) -> str:
        self._counter += 1
        return f"session-{datetime.utcnow().strftime('%Y%m%d-%H%M%S')}-{self._counter}"

    async def _start_session(self, args: dict[str, Any]) -> dict[str, Any]:
        session_id = self._next_session_id()
        request = parse_request(args, fallback_id=session_id)
        record = SessionRecord(
            session_id=session_id,
            request=request,
            arbiter=StatusArbiter(),
            emitter=HistoryEmitter(),
        )
        self.sessions[session_id] = record
        logger.info("start_session enqueue: %s", request.describe())

        async def worker() -> None:
            logger.info("session worker start: %s", session_id)
            record.state = "running"
            try:
                record.result = await self.runner.run(
                    request,
                    emitter=record.emitter,
                    arbiter=record.arbiter,
                    session_id=session_id,
                    inbox=record.inbox,
                )
                record.state = "finished"
            except asyncio.CancelledError:
                record.state = "cancelled"
                raise
            except Exception as exc:
                logger.exception("session worker failed")
                record.state = "error"
                record.error = str(exc)
                record.arbiter.set(SessionStatus.FAIL, source="mcp", reason=str(exc))
            finally:
                record.finished_at = _now_iso()
                logger.info("session worker finished: %s", session_id)

        async def wrapped_worker() -> None:
            async with self._semaphore:
                await worker()

        task = asyncio.create_task(wrapped_worker(), name=f"session-{session_id}")
        self._active_tasks[session_id] = task
        task.add_done_callback(lambda t: self._active_tasks.pop(session_id, None))

        # Respond immediately; clients poll get_session
        return {
            "session_id": session_id,
            "device": request.device_name,
            "state": record.state,
            "queued_at": record.queued_at,
        }

    async def _get_session(self, args: dict[str, Any]) -> dict[str, Any]:
        record = self._get_record(args.get("session_id"))
        wait_seconds = args.get("wait_seconds")
        if wait_seconds and not record.arbiter.is_terminal:
            try:
                await record.arbiter.wait_terminal(timeout=float(wait_seconds))
            except asyncio.TimeoutError:
                logger.info("get_session wait timed out: %s", record.session_id)
        return record.summary(message_limit=int(args.get("message_limit") or 20))

    def _send_message(self, args: dict[str, Any]) -> dict[str, Any]:
        record = self._get_record(args.get("session_id"))
        text = str(args.get("message") or "").strip()
        if not text:
            raise ValueError("message is required")
        if record.state not in ("queued", "running") or record.arbiter.is_terminal:
            raise ValueError(f"Session {record.session_id} is not running (state: {record.state})")
        record.inbox.post(text)
        logger.info("send_message queued for %s", record.session_id)
        return {"session_id": record.session_id, "queued_messages": len(record.inbox)}

    def _update_status(self, args: dict[str, Any]) -> dict[str, Any]:
        record = self._get_record(args.get("session_id"))
        status = SessionStatus(str(args.get("status", "")).lower())
        if status is SessionStatus.PENDING:
            raise ValueError("status must be pass or fail")
        honored = record.arbiter.set(status, source="client", reason=args.get("reason"))
        return {
            "session_id": record.session_id,
            "status": record.arbiter.status.value,
            "accepted": honored,
        }

    async def _cancel_session(self, session_id: Optional[str]) -> dict[str, Any]:
        record = self._get_record(session_id)
        task = self._active_tasks.get(record.session_id)
        if not task:
            return {"session_id": record.session_id, "state": record.state, "message": "Not running"}
        record.arbiter.set(SessionStatus.FAIL, source="client", reason="Cancelled")
        task.cancel()
        # The runner's finally block releases the browser
        await asyncio.gather(task, return_exceptions=True)
        if record.state == "queued":
            # Cancelled while waiting for the semaphore; worker() never ran
            record.state = "cancelled"
            record.finished_at = _now_iso()
        return {"session_id": record.session_id, "state": "cancelled"}

    def init_options(self) -> InitializationOptions:
        return InitializationOptions(
            server_name=SERVER_NAME,
            server_version="0.1.0",
            capabilities=self.server.get_capabilities(
                notification_options=self.server.notification_options,
                experimental_capabilities={},
            ),
            instructions=self.server.instructions,
        )


def _setup_logging() -> None:
    try:
        LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(LOG_FILE, maxBytes=1_000_000, backupCount=3, encoding="utf-8")
        handler.setFormatter(logging.Formatter("[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"))
        # Replace any existing handlers to avoid writing to stdout/stderr (which breaks MCP stdio)
        logging.basicConfig(level=logging.INFO, handlers=[handler], force=True)
        logger.handlers = [handler]
        logging.getLogger("mcp").setLevel(logging.DEBUG)
        logging.getLogger("anyio").setLevel(logging.WARNING)
        logger.info("MCP server logging to %s", LOG_FILE)
    except Exception:
        logger.exception("Failed to set up file logging")


def main() -> None:
    import argparse

    parser = argparse.ArgumentParser(description="CUA harness MCP server (stdio or HTTP SSE)")
    parser.add_argument("--http", help="Run HTTP SSE server on host:port (e.g., 127.0.0.1:8765)")
    parser.add_argument("--config", help="Path to config file (default: config.json if exists)")
    args = parser.parse_args()

    _setup_logging()
    config = load_config(Path(args.config) if args.config else None)

    async def run_stdio():
        srv = HarnessMCPServer(config)
        async with stdio_server() as (read_stream, write_stream):
            await srv.server.run(
                read_stream,
                write_stream,
                initialization_options=srv.init_options(),
            )

    async def run_http(bind: str):
        host, port = bind.split(":")
        srv = HarnessMCPServer(config)
        transport = SseServerTransport("/messages")

        async def handle_sse(request):
            async with transport.connect_sse(request.scope, request.receive, request._send) as streams:
                await srv.server.run(
                    streams[0],
                    streams[1],
                    initialization_options=srv.init_options(),
                    stateless=True,
                )
            return Response()

        async def handle_root(request):
            return Response("cua-harness MCP server", media_type="text/plain")

        async def post_message(request):
            session_id = request.query_params.get("session_id")
            if not session_id:
                return Response("Accepted", status_code=202)
            await transport.handle_post_message(request.scope, request.receive, request._send)
            return Response("Accepted", status_code=202)

        routes = [
            Route("/", endpoint=handle_root, methods=["GET"]),
            Route("/sse", endpoint=handle_sse, methods=["GET"]),
            Route("/messages", endpoint=post_message, methods=["POST"]),
        ]

        app = Starlette(routes=routes)
        logger.info("HTTP SSE server listening on http://%s:%s", host, port)
        server = uvicorn.Server(uvicorn.Config(app, host=host, port=int(port), log_level="info"))
        await server.serve()

    try:
        if args.http:
            anyio.run(run_http, args.http)
        else:
            anyio.run(run_stdio)
    except Exception:
        logger.exception("MCP server crashed")
        raise


if __name__ == "__main__":
    main()
