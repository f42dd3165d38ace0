"""aiohttp app for the HTTP functions and host link, plus a small CLI."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Iterable, TextIO

from aiohttp import web

from .config import FunctionsConfig, HarnessConfig
from .functions import _with_no_store, add_function_routes
from .functions_client import FunctionsClientError, send_push
from .harness import Harness
from .host_link import HostLink, bridge_socket_handler
from .naver_flow import NaverBlogFlow
from .storage import JsonFileStorage
from .timers import LoopTimers
from .transport import Transport

logger = logging.getLogger(__name__)

NAVER_CALLBACK_PATH = "/auth/naver/cb2/"


async def handle_health(_: web.Request) -> web.Response:
    return web.Response(text="ok")


async def handle_naver_callback(request: web.Request) -> web.Response:
    """Naver redirect target: first visit redirects to authorize, the callback visit posts the draft."""

    flow: NaverBlogFlow = request.app["naver_flow"]
    # The flow calls the functions through blocking urllib.
    outcome = await asyncio.to_thread(flow.handle_callback, dict(request.query), report=False)
    if outcome.is_redirect:
        raise web.HTTPFound(outcome.redirect_url)
    flow.report(outcome)
    body = {
        "success": outcome.success,
        "error_code": outcome.error_code,
        "message": outcome.message,
        "result": outcome.result,
    }
    return _with_no_store(web.json_response(body, status=200 if outcome.success else 400))


def create_app(
    config: FunctionsConfig | None = None,
    *,
    transport: Transport | None = None,
    harness_config: HarnessConfig | None = None,
    storage=None,
    push_sender: Any = None,
    sleep=asyncio.sleep,
    ping_interval_s: int = 30,
    ping_miss_limit: int = 2,
    max_msg_size: int = 1_048_576,
    start_harness: bool = True,
) -> web.Application:
    config = config or FunctionsConfig()
    transport = transport or Transport()
    harness = Harness(harness_config, transport=transport, storage=storage)
    link = HostLink(transport, handshake=harness.handshake)

    app = web.Application()
    app["harness"] = harness
    app["host_link"] = link
    app["ws_config"] = {
        "ping_interval_s": ping_interval_s,
        "ping_miss_limit": ping_miss_limit,
        "max_msg_size": max_msg_size,
    }
    app.router.add_get("/healthz", handle_health)
    app.router.add_get("/v1/bridge", bridge_socket_handler)
    app["naver_flow"] = NaverBlogFlow(
        harness.storage,
        client_id=config.naver_client_id,
        redirect_uri=config.naver_redirect_uri,
        functions_base_url=config.functions_base_url,
        transport=transport,
    )
    app.router.add_get(NAVER_CALLBACK_PATH, handle_naver_callback)
    add_function_routes(app, config, push_sender=push_sender, sleep=sleep)

    async def start(_: web.Application) -> None:
        if start_harness:
            harness.start()

    async def stop(_: web.Application) -> None:
        harness.close()
        link.detach()

    app.on_startup.append(start)
    app.on_cleanup.append(stop)
    return app


def simulate(frames: Iterable[Any], output: TextIO, *, poll: bool = False) -> Harness:
    """Replay inbound frames through a fresh harness and write outbound messages as NDJSON."""

    async def run() -> Harness:
        transport = Transport()
        transport.react_native.attach(lambda data: output.write(data + "\n"))
        harness = Harness(transport=transport, timers=LoopTimers())
        harness.start(poll=poll)
        try:
            for frame in frames:
                data = frame if isinstance(frame, str) else json.dumps(frame, ensure_ascii=False)
                transport.document.deliver(data)
        finally:
            harness.close()
        return harness

    return asyncio.run(run())


def _load_frames(handle: TextIO) -> Iterable[Any]:
    content = handle.read()
    if not content.strip():
        return []

    try:
        parsed = json.loads(content)
    except json.JSONDecodeError:
        parsed = None

    if parsed is None:
        frames: list[Any] = []
        for line in content.splitlines():
            if line.strip():
                frames.append(json.loads(line))
        return frames

    if isinstance(parsed, list):
        return parsed
    return [parsed]


def _run_simulation(args: argparse.Namespace, output: TextIO) -> int:
    frames = _load_frames(args.file or sys.stdin)
    simulate(frames, output, poll=args.poll)
    return 0


def _run_serve(args: argparse.Namespace) -> int:
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        config = FunctionsConfig.from_env()
    except ValueError as exc:
        logger.error("%s", exc)
        return 2
    storage = JsonFileStorage(args.state_file) if args.state_file else None
    app = create_app(config, storage=storage, ping_interval_s=args.ping_interval)
    web.run_app(app, host=args.host, port=args.port)
    return 0


def _run_push(args: argparse.Namespace, output: TextIO) -> int:
    try:
        response = send_push(
            args.base_url,
            args.token,
            args.title,
            args.body,
            args.image,
            secret=args.secret,
        )
    except FunctionsClientError as exc:
        output.write(json.dumps({"status": exc.status, "error": exc.message}, ensure_ascii=False) + "\n")
        return 1
    output.write(json.dumps(response, ensure_ascii=False) + "\n")
    return 0


def main(argv: list[str] | None = None, output: TextIO | None = None) -> int:
    """Entry point for CLI commands."""

    if argv is None:
        argv = sys.argv[1:]

    parser = argparse.ArgumentParser(description="WebView bridge harness")
    subparsers = parser.add_subparsers(dest="command", required=True)

    simulate_parser = subparsers.add_parser("simulate", help="Replay inbound bridge frames")
    simulate_parser.add_argument(
        "-f",
        "--file",
        type=argparse.FileType("r"),
        default=None,
        help="Path to JSON frames file; defaults to stdin",
    )
    simulate_parser.add_argument(
        "--poll",
        action="store_true",
        help="Also run the initial permission check",
    )

    serve_parser = subparsers.add_parser("serve", help="Run the aiohttp functions and host link server")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Host to bind")
    serve_parser.add_argument("--port", type=int, default=8080, help="Port to bind")
    serve_parser.add_argument(
        "--ping-interval",
        type=int,
        default=30,
        help="Seconds between host link heartbeat pings",
    )
    serve_parser.add_argument("--log-level", default="info", help="Logging level")
    serve_parser.add_argument(
        "--state-file",
        default=None,
        help="JSON file keeping harness storage (OAuth state, drafts, session) across restarts",
    )

    push_parser = subparsers.add_parser("push", help="Ask a running server to send a delayed test push")
    push_parser.add_argument("--base-url", default="http://127.0.0.1:8080", help="Functions base URL")
    push_parser.add_argument("--token", required=True, help="FCM device token")
    push_parser.add_argument("--title", default="Test push")
    push_parser.add_argument("--body", default="Body")
    push_parser.add_argument("--image", default=None)
    push_parser.add_argument("--secret", default=None, help="Value for the x-webpush-secret header")

    args = parser.parse_args(argv)

    if args.command == "simulate":
        return _run_simulation(args, output or sys.stdout)
    if args.command == "push":
        return _run_push(args, output or sys.stdout)
    return _run_serve(args)


if __name__ == "__main__":  # pragma: no cover - convenience execution
    raise SystemExit(main())
