from __future__ import annotations

from collections import deque
from typing import Any, Deque, Dict, Optional

from .envelope import Message, MessageType
from .timers import Timers
from .transport import Binding, RawEvent, Transport

COMMANDS = ("WEB_READY", "WEB_ERROR")


def web_ready(at_ms: int, ver: str) -> Message:
    return Message.of(MessageType.WEB_READY, {"at": at_ms, "ver": ver})


def web_error(stage: str, message: str, at_ms: int) -> Message:
    return Message.of(MessageType.WEB_ERROR, {"stage": stage, "message": message, "at": at_ms})


class BootConsole:
    """Manual WEB_READY / WEB_ERROR composer for the boot and splash section."""

    def __init__(self, transport: Transport, timers: Timers) -> None:
        self.transport = transport
        self.timers = timers
        self.cmd = "WEB_READY"
        self.ver = "1.0.0"
        self.stage = "boot"
        self.message = "bundle load fail"
        self.at: Optional[int] = None

    def set_cmd(self, cmd: str) -> None:
        if cmd not in COMMANDS:
            raise ValueError(f"unknown boot command: {cmd}")
        self.cmd = cmd

    def preview(self) -> Message:
        at_ms = self.at or self.timers.now_ms()
        if self.cmd == "WEB_ERROR":
            return web_error(self.stage, self.message, at_ms)
        return web_ready(at_ms, str(self.ver or "1.0.0"))

    def send(self) -> Message:
        message = self.preview()
        self.transport.send(message)
        return message


class BootMonitor:
    """Tracks the host's boot-phase signals: acks, splash, offline fallback, retry."""

    TYPES = frozenset(
        t.value
        for t in (
            MessageType.WEB_READY_ACK,
            MessageType.WEB_ERROR_ACK,
            MessageType.SPLASH_STATE,
            MessageType.OFFLINE_FALLBACK,
            MessageType.RETRY_TRIGGER,
        )
    )

    def __init__(self, max_acks: int = 200) -> None:
        self.acks: Deque[Dict[str, Any]] = deque(maxlen=max_acks)
        self.splash_on: Optional[bool] = None
        self.offline_reason: Optional[str] = None
        self.retries = 0
        self.retry_at: Optional[int] = None
        self._binding: Optional[Binding] = None

    def bind(self, dispatcher) -> Binding:
        if self._binding is not None:
            self._binding()
        self._binding = dispatcher.add_listener(self._on_message)
        return self._binding

    def close(self) -> None:
        if self._binding is not None:
            self._binding()
            self._binding = None

    def _on_message(self, message: Message, _: RawEvent) -> None:
        if message.type not in self.TYPES:
            return
        payload = message.payload_or_empty()
        if message.type in (MessageType.WEB_READY_ACK.value, MessageType.WEB_ERROR_ACK.value):
            self.acks.append({"type": message.type, "payload": payload})
        elif message.type == MessageType.SPLASH_STATE.value:
            self.splash_on = bool(payload.get("on"))
        elif message.type == MessageType.OFFLINE_FALLBACK.value:
            reason = payload.get("reason")
            self.offline_reason = reason if isinstance(reason, str) else None
        else:
            self.retries += 1
            self.retry_at = payload.get("at")
            self.offline_reason = None
