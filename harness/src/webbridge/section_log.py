from __future__ import annotations

import json
from collections import deque
from datetime import datetime
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional

from .envelope import Message, MessageType
from .transport import Binding, RawEvent

INBOUND_MARK = "⇦"
OUTBOUND_MARK = "⇨"


def _clock() -> str:
    return datetime.now().strftime("%H:%M:%S")


def _render(obj: Any) -> str:
    if obj is None:
        return ""
    if isinstance(obj, str):
        return obj
    return json.dumps(obj, ensure_ascii=False, default=str)


class RingLog:
    """Bounded list of rendered log lines; the oldest lines fall off first."""

    def __init__(self, max_len: int, clock: Callable[[], str] = _clock) -> None:
        if max_len < 1:
            raise ValueError("max_len must be positive")
        self.max_len = max_len
        self._clock = clock
        self._lines: Deque[str] = deque(maxlen=max_len)
        self._binding: Optional[Binding] = None

    @property
    def lines(self) -> List[str]:
        return list(self._lines)

    def __len__(self) -> int:
        return len(self._lines)

    def append(self, title: str, obj: Any = None) -> str:
        line = f"[{self._clock()}] {title} {_render(obj)}"
        self._lines.append(line)
        return line

    def clear(self) -> None:
        self._lines.clear()

    def bind(self, dispatcher) -> Binding:
        self.close()
        self._binding = dispatcher.add_listener(self.on_message)
        return self._binding

    def close(self) -> None:
        if self._binding is not None:
            self._binding()
            self._binding = None

    def on_message(self, message: Message, event: RawEvent) -> None:
        raise NotImplementedError


class SectionLog(RingLog):
    """Per-section view over the inbound stream, limited to ``types``."""

    def __init__(self, types: Iterable[MessageType | str], max_len: int = 200, **kwargs) -> None:
        super().__init__(max_len, **kwargs)
        self.types = {t.value if isinstance(t, MessageType) else t for t in types}

    def push_local(self, title: str, obj: Any = None) -> str:
        return self.append(title, obj)

    def push_outbound(self, message: Message) -> str:
        return self.append(f"{OUTBOUND_MARK} {message.type}", message.payload)

    def on_message(self, message: Message, event: RawEvent) -> None:
        if message.type not in self.types:
            return
        self.append(f"{INBOUND_MARK} {message.type}", message.payload)


def _tail(token: Any) -> str:
    return f"…{str(token)[-8:]}" if token else ""


def summarize(message: Message) -> Any:
    """Condense an app-to-web payload for the aggregate log."""

    p = message.payload_or_empty()
    t = message.type
    if t == MessageType.PUSH_EVENT:
        return {"event": p.get("event"), "deeplink": p.get("deeplink"), "id": p.get("messageId")}
    if t == MessageType.PUSH_TOKEN:
        return {"tail": _tail(p.get("token")), "platform": p.get("platform"), "ver": p.get("app_version")}
    if t == MessageType.BACK_REQUEST:
        nav = p.get("nav")
        hint = nav.get("hint") if isinstance(nav, dict) else None
        return {"nav": hint or nav or {}}
    if t == MessageType.SUBSCRIPTION_RESULT:
        if p.get("success"):
            return {"ok": True, "product": p.get("product_id"), "tx": p.get("transaction_id")}
        return {"ok": False, "code": p.get("error_code")}
    if t == MessageType.RESTORE_RESULT:
        return {"active": p.get("active"), "product": p.get("product_id"), "tx": p.get("transaction_id")}
    if t == MessageType.PERMISSION_STATUS:
        return {"cam": p.get("camera"), "push": p.get("push")}
    if t == MessageType.SIGNIN_RESULT:
        if p.get("success"):
            user = p.get("user") if isinstance(p.get("user"), dict) else {}
            return {"ok": True, "provider": p.get("provider"), "user": user.get("id") or user.get("nickname")}
        return {"ok": False, "code": p.get("error_code")}
    if t == MessageType.SIGNOUT_RESULT:
        return {"ok": p.get("success")}
    if t == MessageType.SPLASH_STATE:
        return {"on": bool(p.get("on"))}
    if t == MessageType.OFFLINE_FALLBACK:
        return {"reason": p.get("reason"), "at": p.get("at")}
    if t == MessageType.RETRY_TRIGGER:
        return {"at": p.get("at")}
    if t == MessageType.SHARE_RESULT:
        if p.get("success"):
            return {"ok": True, "platform": p.get("platform"), "post": p.get("post_id")}
        return {"ok": False, "code": p.get("error_code")}
    return p


AGGREGATE_TYPES = frozenset(
    t.value
    for t in (
        MessageType.PUSH_EVENT,
        MessageType.PUSH_TOKEN,
        MessageType.BACK_REQUEST,
        MessageType.SUBSCRIPTION_RESULT,
        MessageType.RESTORE_RESULT,
        MessageType.PERMISSION_STATUS,
        MessageType.SIGNIN_RESULT,
        MessageType.SIGNOUT_RESULT,
        MessageType.SPLASH_STATE,
        MessageType.OFFLINE_FALLBACK,
        MessageType.RETRY_TRIGGER,
        MessageType.WEB_READY_ACK,
        MessageType.WEB_ERROR_ACK,
        MessageType.SHARE_RESULT,
        MessageType.DOWNLOAD_RESULT,
    )
)


class AggregateLog(RingLog):
    """Summary log of every recognised app-to-web message; others are ignored."""

    def __init__(self, max_len: int = 500, **kwargs) -> None:
        super().__init__(max_len, **kwargs)
        self.ignored: Dict[str, int] = {}

    def on_message(self, message: Message, event: RawEvent) -> None:
        if message.type not in AGGREGATE_TYPES:
            self.ignored[message.type] = self.ignored.get(message.type, 0) + 1
            return
        self.append(f"{INBOUND_MARK} {message.type}", summarize(message))
