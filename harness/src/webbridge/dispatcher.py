from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from .envelope import Message, decode
from .transport import Binding, RawEvent, Transport

logger = logging.getLogger(__name__)

DEVTOOLS_SOURCE = "react-devtools-content-script"

Handler = Callable[[Message, RawEvent], None]


@dataclass(eq=False)
class Listener:
    handler: Handler
    active: bool = True

    def deliver(self, message: Message, event: RawEvent) -> None:
        self.handler(message, event)


def is_devtools_frame(event: RawEvent) -> bool:
    if event.source == DEVTOOLS_SOURCE:
        return True
    data = event.data
    return isinstance(data, dict) and data.get("source") == DEVTOOLS_SOURCE


class Dispatcher:
    """Single chokepoint for inbound native messages.

    Binds to every inbound path of a transport, drops devtools injections and
    malformed frames, and fans the parsed message out to listeners in
    registration order. A failing listener never blocks the ones after it.
    """

    def __init__(self, transport: Transport | None = None) -> None:
        self._listeners: List[Listener] = []
        self._transport_binding: Optional[Binding] = None
        self.dropped = 0
        if transport is not None:
            self.attach(transport)

    def attach(self, transport: Transport) -> None:
        self.detach()
        self._transport_binding = transport.subscribe(self.dispatch)

    def detach(self) -> None:
        if self._transport_binding is not None:
            self._transport_binding()
            self._transport_binding = None

    def add_listener(self, handler: Handler) -> Binding:
        listener = Listener(handler=handler)
        self._listeners.append(listener)

        def release() -> None:
            listener.active = False
            try:
                self._listeners.remove(listener)
            except ValueError:
                return

        return Binding(release)

    def listener_count(self) -> int:
        return len(self._listeners)

    def parse(self, event: RawEvent) -> Message | None:
        if is_devtools_frame(event):
            return None
        return decode(event.data)

    def dispatch(self, event: RawEvent) -> None:
        try:
            message = self.parse(event)
        except Exception:
            logger.exception("inbound frame on %s could not be parsed", event.path)
            message = None
        if message is None:
            self.dropped += 1
            logger.debug("dropped inbound frame on %s", event.path)
            return

        for listener in list(self._listeners):
            if not listener.active:
                continue
            try:
                listener.deliver(message, event)
            except Exception:
                logger.exception("listener failed on %s", message.type)

    def deliver(self, data: Any, *, path: str = "direct", source: Any = None) -> None:
        """Dispatch a frame without going through a transport path."""

        self.dispatch(RawEvent(data=data, path=path, source=source))
