"""Native channel adapter: one send call, one subscribe call.

Outbound frames go to whichever native channels are attached (a real host
attaches exactly one, a bare browser none). Inbound frames arrive on any of
three event paths: the document path used by React Native on Android, the
window path used by WKWebView and plain browsers, and a direct path for
same-process testing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Optional

from .envelope import Message, encode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RawEvent:
    """An inbound event as a host delivers it, before any parsing."""

    data: Any
    path: str
    source: Any = None


RawHandler = Callable[[RawEvent], None]


class Binding:
    """Unsubscribe handle. Calling it releases exactly once; it never raises."""

    def __init__(self, release: Callable[[], None]) -> None:
        self._release: Optional[Callable[[], None]] = release

    @property
    def active(self) -> bool:
        return self._release is not None

    def __call__(self) -> None:
        release, self._release = self._release, None
        if release is None:
            return
        try:
            release()
        except Exception:
            logger.exception("unbind failed")


def composite(bindings: Iterable[Binding]) -> Binding:
    collected = list(bindings)

    def release_all() -> None:
        for binding in collected:
            binding()

    return Binding(release_all)


class InboundPath:
    """Event target on which the host delivers raw frames."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._listeners: List[RawHandler] = []

    def add_listener(self, listener: RawHandler) -> Binding:
        self._listeners.append(listener)
        return Binding(lambda: self.remove_listener(listener))

    def remove_listener(self, listener: RawHandler) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            return

    def listener_count(self) -> int:
        return len(self._listeners)

    def deliver(self, data: Any, *, source: Any = None) -> None:
        event = RawEvent(data=data, path=self.name, source=source)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("%s listener failed", self.name)


class OutboundChannel:
    """A web-to-native channel. Subclasses decide availability and delivery."""

    name = "channel"

    def available(self) -> bool:
        raise NotImplementedError

    def post(self, data: str) -> None:
        raise NotImplementedError


class CallableChannel(OutboundChannel):
    """A channel backed by a host-injected callable, e.g. ``ReactNativeWebView.postMessage``."""

    def __init__(self, name: str, post_func: Optional[Callable[[str], None]] = None) -> None:
        self.name = name
        self._post = post_func

    def attach(self, post_func: Callable[[str], None]) -> None:
        self._post = post_func

    def detach(self) -> None:
        self._post = None

    def available(self) -> bool:
        return self._post is not None

    def post(self, data: str) -> None:
        if self._post is None:
            raise RuntimeError(f"{self.name} is not attached")
        self._post(data)


class Transport:
    """Merges the native channels behind ``send`` and ``subscribe``."""

    def __init__(self, extra_channels: Iterable[OutboundChannel] = ()) -> None:
        # Priority order: iOS handler, React Native, legacy Android interface.
        self.webkit = CallableChannel("webkit.messageHandlers.appBridge")
        self.react_native = CallableChannel("ReactNativeWebView")
        self.android = CallableChannel("Android")
        self.channels: List[OutboundChannel] = [self.webkit, self.react_native, self.android]
        self.channels.extend(extra_channels)

        self.document = InboundPath("document")
        self.window = InboundPath("window")
        self.direct = InboundPath("direct")
        self.last_delivery = 0

    @property
    def paths(self) -> List[InboundPath]:
        return [self.document, self.window, self.direct]

    def add_channel(self, channel: OutboundChannel) -> None:
        if channel not in self.channels:
            self.channels.append(channel)

    def remove_channel(self, channel: OutboundChannel) -> None:
        if channel in self.channels:
            self.channels.remove(channel)

    def send(self, message: Message) -> int:
        """Post ``message`` to every available channel. Returns how many accepted it."""

        try:
            data = encode(message)
        except (TypeError, ValueError):
            logger.exception("could not encode %s", message.type)
            self.last_delivery = 0
            return 0
        delivered = 0
        for channel in list(self.channels):
            try:
                if not channel.available():
                    continue
                channel.post(data)
            except Exception:
                logger.exception("post to %s failed for %s", channel.name, message.type)
                continue
            delivered += 1
        if delivered == 0:
            logger.warning("no native bridge available, dropped %s", message.type)
        self.last_delivery = delivered
        return delivered

    def subscribe(self, handler: RawHandler) -> Binding:
        """Register ``handler`` on every inbound path; the returned handle removes all of them."""

        return composite(path.add_listener(handler) for path in self.paths)

    def inject(self, frame: Any) -> None:
        """Deliver a frame on the direct path, as a console test hook would."""

        self.direct.deliver(frame)
