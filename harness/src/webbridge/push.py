from __future__ import annotations

from typing import Any, Dict, List, Optional

from .envelope import Message, MessageType
from .transport import Binding, RawEvent


class PushInbox:
    """Collects PUSH_TOKEN and PUSH_EVENT from the host."""

    def __init__(self, max_events: int = 100) -> None:
        self.max_events = max_events
        self.token: Optional[Dict[str, Any]] = None
        self.events: List[Dict[str, Any]] = []
        self._binding: Optional[Binding] = None

    @property
    def device_token(self) -> Optional[str]:
        if not self.token:
            return None
        token = self.token.get("token")
        return token if isinstance(token, str) and token else None

    def bind(self, dispatcher) -> Binding:
        if self._binding is not None:
            self._binding()
        self._binding = dispatcher.add_listener(self._on_message)
        return self._binding

    def close(self) -> None:
        if self._binding is not None:
            self._binding()
            self._binding = None

    def clicked(self) -> List[Dict[str, Any]]:
        return [event for event in self.events if event.get("event") == "clicked"]

    def _on_message(self, message: Message, _: RawEvent) -> None:
        if message.type == MessageType.PUSH_TOKEN.value:
            self.token = message.payload_or_empty()
        elif message.type == MessageType.PUSH_EVENT.value:
            self.events.append(message.payload_or_empty())
            del self.events[: -self.max_events]
