"""Web-driven permission polling over the bridge.

``CHECK_PERMISSION`` has no correlation id, so the reply is matched by type
alone: the first ``PERMISSION_STATUS`` after a check resolves it, and a timer
racing it turns silence into a ``"timeout"`` error followed by one retry on a
fixed backoff schedule.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .config import PollingConfig
from .envelope import Message, MessageType
from .timers import TimerHandle, Timers
from .transport import Binding, RawEvent, Transport

logger = logging.getLogger(__name__)

CHECK_NAMES = ("all", "camera", "push")
REQUEST_NAMES = ("camera", "push")

TIMEOUT = "timeout"
BRIDGE_POST_ERROR = "bridge_post_error"


@dataclass
class PermissionState:
    granted: Optional[bool] = None
    blocked: Optional[bool] = None

    def merge(self, update: Any) -> None:
        if not isinstance(update, dict):
            return
        if update.get("granted") is not None:
            self.granted = bool(update["granted"])
        if update.get("blocked") is not None:
            self.blocked = bool(update["blocked"])

    def to_dict(self) -> Dict[str, Optional[bool]]:
        return {"granted": self.granted, "blocked": self.blocked}


class PermissionPoller:
    def __init__(self, transport: Transport, timers: Timers, config: PollingConfig | None = None) -> None:
        self.transport = transport
        self.timers = timers
        self.config = config or PollingConfig()
        if not self.config.backoff_seconds:
            raise ValueError("backoff_seconds must not be empty")
        self.status: Dict[str, PermissionState] = {"camera": PermissionState(), "push": PermissionState()}
        self.last_updated_at: Optional[int] = None
        self.checking = False
        self.error: Optional[str] = None
        self._in_flight = False
        self._backoff_index = 0
        self._timeout_timer: Optional[TimerHandle] = None
        self._retry_timer: Optional[TimerHandle] = None
        self._poll_timer: Optional[TimerHandle] = None
        self._last_focus_ms: Optional[int] = None
        self._binding: Optional[Binding] = None

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def next_backoff_seconds(self) -> float:
        plan = self.config.backoff_seconds
        return plan[min(self._backoff_index, len(plan) - 1)]

    def snapshot(self) -> Dict[str, Dict[str, Optional[bool]]]:
        return {name: state.to_dict() for name, state in self.status.items()}

    def bind(self, dispatcher) -> Binding:
        if self._binding is not None:
            self._binding()
        self._binding = dispatcher.add_listener(self._on_message)
        return self._binding

    def start(self) -> None:
        """Initial check plus the periodic poll."""

        self.check(self.config.initial_name)
        self._schedule_poll()

    def close(self) -> None:
        for attr in ("_timeout_timer", "_retry_timer", "_poll_timer"):
            timer = getattr(self, attr)
            if timer is not None:
                timer.cancel()
                setattr(self, attr, None)
        if self._binding is not None:
            self._binding()
            self._binding = None

    def check(self, name: str = "all") -> bool:
        """Send CHECK_PERMISSION unless one is already in flight."""

        if name not in CHECK_NAMES:
            raise ValueError(f"unknown permission name: {name}")
        if self._in_flight:
            logger.debug("permission check already in flight, skipping %s", name)
            return False
        self._in_flight = True
        self.checking = True
        if not self.transport.send(Message.of(MessageType.CHECK_PERMISSION, {"name": name})):
            logger.warning("CHECK_PERMISSION reached no native bridge")
            self._fail(BRIDGE_POST_ERROR)
            return False
        self._timeout_timer = self.timers.call_later(self.config.timeout_seconds, self._on_timeout)
        return True

    def request_permission(self, name: str) -> bool:
        """Ask the host to show its permission prompt; the outcome arrives as PERMISSION_STATUS."""

        if name not in REQUEST_NAMES:
            raise ValueError(f"cannot request permission: {name}")
        if not self.transport.send(Message.of(MessageType.REQUEST_PERMISSION, {"name": name})):
            self.error = BRIDGE_POST_ERROR
            return False
        return True

    def notify_focus(self) -> bool:
        """Page became visible or focused: re-check, at most once per debounce window."""

        now_ms = self.timers.now_ms()
        window_ms = self.config.focus_debounce_seconds * 1000
        if self._last_focus_ms is not None and now_ms - self._last_focus_ms < window_ms:
            return False
        self._last_focus_ms = now_ms
        return self.check("all")

    def _schedule_poll(self) -> None:
        self._poll_timer = self.timers.call_later(self.config.interval_seconds, self._on_poll)

    def _on_poll(self) -> None:
        self._schedule_poll()
        self.check("all")

    def _on_message(self, message: Message, _: RawEvent) -> None:
        if message.type == MessageType.PERMISSION_STATUS.value:
            self._succeed(message.payload_or_empty())

    def _succeed(self, payload: Dict[str, Any]) -> None:
        self._in_flight = False
        self.checking = False
        self._backoff_index = 0
        for attr in ("_timeout_timer", "_retry_timer"):
            timer = getattr(self, attr)
            if timer is not None:
                timer.cancel()
                setattr(self, attr, None)
        for name, state in self.status.items():
            state.merge(payload.get(name))
        self.last_updated_at = self.timers.now_ms()
        self.error = None

    def _on_timeout(self) -> None:
        self._timeout_timer = None
        logger.warning("no PERMISSION_STATUS within %.1fs", self.config.timeout_seconds)
        self._fail(TIMEOUT)

    def _fail(self, reason: str) -> None:
        self._in_flight = False
        self.checking = False
        self.error = reason

        plan = self.config.backoff_seconds
        index = min(self._backoff_index, len(plan) - 1)
        wait = plan[index]
        self._backoff_index = min(index + 1, len(plan))

        if self._retry_timer is not None:
            self._retry_timer.cancel()
        self._retry_timer = self.timers.call_later(wait, self._retry)

    def _retry(self) -> None:
        self._retry_timer = None
        self.check("all")
