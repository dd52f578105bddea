"""Embedded HTTP server: inbound activities, the notify trigger, health checks.

    POST /api/messages   run one turn for a Bot-Framework-style activity
    GET  /api/notify     broadcast the greeting now and arm the next cycle
    GET  /health         liveness + registered conversation count
"""

from __future__ import annotations

import time
from typing import Protocol

from aiohttp import web

from parley.logger import logger
from parley.scheduler import BroadcastReport
from parley.types import Activity

NOTIFY_HTML = "<html><body><h1>We just delivered your message!</h1></body></html>"

_start_time = time.monotonic()


class HttpDeps(Protocol):
    """Dependencies injected by app.py."""

    async def handle_activity(self, activity: Activity) -> list[str]: ...

    async def notify_now(self) -> BroadcastReport: ...

    def conversation_count(self) -> int: ...


deps_key = web.AppKey("deps", HttpDeps)


async def _handle_messages(request: web.Request) -> web.Response:
    deps = request.app[deps_key]
    try:
        body = await request.json()
    except ValueError:
        # JSONDecodeError and UnicodeDecodeError (body not UTF-8)
        return web.json_response({"error": "request body must be JSON"}, status=400)
    if not isinstance(body, dict):
        return web.json_response({"error": "activity must be a JSON object"}, status=400)
    try:
        activity = Activity.from_dict(body)
    except ValueError as exc:
        return web.json_response({"error": str(exc)}, status=400)

    replies = await deps.handle_activity(activity)
    return web.json_response({"replies": replies})


async def _handle_notify(request: web.Request) -> web.Response:
    deps = request.app[deps_key]
    report = await deps.notify_now()
    logger.info(
        "Manual notification triggered",
        delivered=len(report.delivered),
        failed=len(report.failed),
    )
    return web.Response(text=NOTIFY_HTML, content_type="text/html")


async def _handle_health(request: web.Request) -> web.Response:
    deps = request.app[deps_key]
    return web.json_response(
        {
            "status": "ok",
            "uptime_seconds": round(time.monotonic() - _start_time),
            "conversations": deps.conversation_count(),
        }
    )


def create_app(deps: HttpDeps) -> web.Application:
    app = web.Application()
    app[deps_key] = deps
    app.router.add_post("/api/messages", _handle_messages)
    app.router.add_get("/api/notify", _handle_notify)
    app.router.add_get("/health", _handle_health)
    return app


async def start_http_server(deps: HttpDeps, *, host: str, port: int) -> web.AppRunner:
    """Create, start, and return the HTTP server runner."""
    runner = web.AppRunner(create_app(deps))
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info("HTTP server listening", host=host, port=port)
    return runner
