from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from .envelope import Message, MessageType
from .transport import Binding, RawEvent, Transport

PLATFORMS = ("instagram", "facebook", "system")


@dataclass
class ShareForm:
    image: str = ""
    caption: str = ""
    platform: str = "instagram"

    def errors(self) -> Dict[str, str]:
        errors: Dict[str, str] = {}
        if not (self.image or "").strip():
            errors["image"] = "image path or URL is required"
        if self.platform not in PLATFORMS:
            errors["platform"] = "platform must be one of " + ", ".join(PLATFORMS)
        return errors

    def build_payload(self) -> Dict[str, Any]:
        return {"image": self.image.strip(), "caption": self.caption or "", "platform": self.platform}


class ShareSession:
    """START_SHARE composer; SHARE_RESULT lands in ``result``."""

    def __init__(self, transport: Transport) -> None:
        self.transport = transport
        self.form = ShareForm()
        self.is_open = False
        self.result: Optional[Dict[str, Any]] = None
        self._binding: Optional[Binding] = None

    def bind(self, dispatcher) -> Binding:
        if self._binding is not None:
            self._binding()
        self._binding = dispatcher.add_listener(self._on_message)
        return self._binding

    def close_binding(self) -> None:
        if self._binding is not None:
            self._binding()
            self._binding = None

    def open(self) -> None:
        self.is_open = True
        self.result = None

    def close(self) -> None:
        self.is_open = False

    def dismiss(self) -> None:
        self.close()

    def set_field(self, key: str, value: Any) -> None:
        if not hasattr(self.form, key):
            raise AttributeError(f"unknown form field: {key}")
        setattr(self.form, key, value)

    @property
    def errors(self) -> Dict[str, str]:
        return self.form.errors()

    def preview(self) -> Message:
        return Message.of(MessageType.START_SHARE, self.form.build_payload())

    def start(self) -> bool:
        if self.errors:
            return False
        self.transport.send(self.preview())
        return True

    def _on_message(self, message: Message, _: RawEvent) -> None:
        if message.type == MessageType.SHARE_RESULT.value:
            self.result = message.payload_or_empty()


class DownloadSession:
    """Asks the host to save an image to the gallery, from a URL or a data URL."""

    def __init__(self, transport: Transport) -> None:
        self.transport = transport
        self.result: Optional[Dict[str, Any]] = None
        self._binding: Optional[Binding] = None

    def bind(self, dispatcher) -> Binding:
        if self._binding is not None:
            self._binding()
        self._binding = dispatcher.add_listener(self._on_message)
        return self._binding

    def close_binding(self) -> None:
        if self._binding is not None:
            self._binding()
            self._binding = None

    def download(self, filename: str, *, url: str | None = None, data_url: str | None = None) -> bool:
        if not filename or (url is None) == (data_url is None):
            raise ValueError("filename and exactly one of url or data_url are required")
        payload: Dict[str, Any] = {"filename": filename}
        if url is not None:
            payload["url"] = url
        else:
            payload["dataUrl"] = data_url
        return self.transport.send(Message.of(MessageType.DOWNLOAD_IMAGE, payload)) > 0

    def _on_message(self, message: Message, _: RawEvent) -> None:
        if message.type == MessageType.DOWNLOAD_RESULT.value:
            self.result = message.payload_or_empty()
