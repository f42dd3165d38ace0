"""WebSocket link through which a remote native host plays the app side.

Text frames from the host land on the transport's document or window path,
exactly as a WebView host would dispatch them. Everything the harness sends
is fanned out to every connected host. ``{"t": "ping"}`` / ``{"t": "pong"}``
are link control frames and never reach the bridge.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable, Dict, List, Optional

from aiohttp import WSMsgType, web

from .envelope import Message, encode
from .transport import OutboundChannel, Transport

logger = logging.getLogger(__name__)

PATHS = ("document", "window")
CONTROL_FRAMES = ("ping", "pong")


def _control_type(data: str) -> Optional[str]:
    if '"t"' not in data:
        return None
    try:
        frame = json.loads(data)
    except ValueError:
        return None
    if isinstance(frame, dict) and "type" not in frame and frame.get("t") in CONTROL_FRAMES:
        return frame["t"]
    return None


class HostLink(OutboundChannel):
    """Outbound channel backed by the connected host sockets."""

    name = "host_link"

    def __init__(
        self,
        transport: Transport,
        *,
        handshake: Callable[[], List[Message]] | None = None,
        max_queue: int = 1000,
    ) -> None:
        self.transport = transport
        self.handshake = handshake
        self.max_queue = max_queue
        self._queues: List["asyncio.Queue[Optional[str]]"] = []
        transport.add_channel(self)

    @property
    def connected(self) -> int:
        return len(self._queues)

    def available(self) -> bool:
        return bool(self._queues)

    def post(self, data: str) -> None:
        for queue in list(self._queues):
            try:
                queue.put_nowait(data)
            except asyncio.QueueFull:
                logger.warning("host link backlog full, dropping frame")

    def open_queue(self) -> "asyncio.Queue[Optional[str]]":
        queue: "asyncio.Queue[Optional[str]]" = asyncio.Queue(maxsize=self.max_queue)
        # A late host starts from the same handshake an attached one saw.
        if self.handshake is not None:
            for message in self.handshake():
                queue.put_nowait(encode(message))
        self._queues.append(queue)
        return queue

    def close_queue(self, queue: "asyncio.Queue[Optional[str]]") -> None:
        if queue in self._queues:
            self._queues.remove(queue)

    def deliver(self, path: str, data: str) -> None:
        target = self.transport.document if path == "document" else self.transport.window
        target.deliver(data)

    def detach(self) -> None:
        self.transport.remove_channel(self)


async def bridge_socket_handler(request: web.Request) -> web.WebSocketResponse:
    link: HostLink = request.app["host_link"]
    ws_config: Dict[str, Any] = request.app["ws_config"]

    path = request.query.get("path", "window")
    if path not in PATHS:
        return web.json_response(
            {"code": "invalid_request", "message": "path must be document or window"}, status=400
        )

    ws = web.WebSocketResponse(max_msg_size=ws_config["max_msg_size"])
    await ws.prepare(request)

    loop = asyncio.get_running_loop()
    last_activity = loop.time()
    missed_heartbeats = 0
    outbound = link.open_queue()
    logger.info("host connected path=%s hosts=%d", path, link.connected)

    def mark_activity() -> None:
        nonlocal last_activity, missed_heartbeats
        last_activity = loop.time()
        missed_heartbeats = 0

    async def writer() -> None:
        try:
            while True:
                data = await outbound.get()
                if data is None:
                    break
                await ws.send_str(data)
        except asyncio.CancelledError:
            return

    async def heartbeat() -> None:
        nonlocal missed_heartbeats
        try:
            while True:
                await asyncio.sleep(ws_config["ping_interval_s"])
                if ws.closed:
                    return
                if loop.time() - last_activity >= ws_config["ping_interval_s"]:
                    await ws.send_json({"v": 1, "t": "ping"})
                    missed_heartbeats += 1
                    if missed_heartbeats > ws_config["ping_miss_limit"]:
                        await ws.close(code=1001, message=b"heartbeat timeout")
                        return
        except asyncio.CancelledError:
            return

    writer_task = asyncio.create_task(writer())
    heartbeat_task = asyncio.create_task(heartbeat())

    try:
        async for msg in ws:
            if msg.type == WSMsgType.TEXT:
                mark_activity()
                control = _control_type(msg.data)
                if control == "ping":
                    await ws.send_json({"v": 1, "t": "pong"})
                elif control is None:
                    link.deliver(path, msg.data)
            elif msg.type in {WSMsgType.CLOSE, WSMsgType.CLOSED, WSMsgType.ERROR}:
                break
            else:
                await ws.close(code=1003, message=b"unsupported frame type")
                break
    finally:
        link.close_queue(outbound)
        heartbeat_task.cancel()
        writer_task.cancel()
        try:
            outbound.put_nowait(None)
        except asyncio.QueueFull:
            pass
        await asyncio.gather(heartbeat_task, writer_task, return_exceptions=True)
        logger.info("host disconnected path=%s hosts=%d", path, link.connected)

    return ws
