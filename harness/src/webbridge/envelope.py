from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict


class Direction(str, Enum):
    WEB_TO_APP = "web_to_app"
    APP_TO_WEB = "app_to_web"


class MessageType(str, Enum):
    """The closed catalog of bridge message types."""

    # web -> app
    WEB_READY = "WEB_READY"
    WEB_ERROR = "WEB_ERROR"
    NAV_STATE = "NAV_STATE"
    START_SIGNIN = "START_SIGNIN"
    START_SIGNOUT = "START_SIGNOUT"
    START_SUBSCRIPTION = "START_SUBSCRIPTION"
    CANCEL_SUBSCRIPTION = "CANCEL_SUBSCRIPTION"
    CHECK_PERMISSION = "CHECK_PERMISSION"
    REQUEST_PERMISSION = "REQUEST_PERMISSION"
    START_SHARE = "START_SHARE"
    DOWNLOAD_IMAGE = "DOWNLOAD_IMAGE"

    # app -> web
    PUSH_EVENT = "PUSH_EVENT"
    PUSH_TOKEN = "PUSH_TOKEN"
    BACK_REQUEST = "BACK_REQUEST"
    SUBSCRIPTION_RESULT = "SUBSCRIPTION_RESULT"
    RESTORE_RESULT = "RESTORE_RESULT"
    PERMISSION_STATUS = "PERMISSION_STATUS"
    SIGNIN_RESULT = "SIGNIN_RESULT"
    SIGNOUT_RESULT = "SIGNOUT_RESULT"
    SPLASH_STATE = "SPLASH_STATE"
    OFFLINE_FALLBACK = "OFFLINE_FALLBACK"
    RETRY_TRIGGER = "RETRY_TRIGGER"
    WEB_READY_ACK = "WEB_READY_ACK"
    WEB_ERROR_ACK = "WEB_ERROR_ACK"
    SHARE_RESULT = "SHARE_RESULT"
    DOWNLOAD_RESULT = "DOWNLOAD_RESULT"

    @property
    def direction(self) -> Direction:
        return DIRECTIONS[self]


WEB_TO_APP_TYPES = frozenset(
    {
        MessageType.WEB_READY,
        MessageType.WEB_ERROR,
        MessageType.NAV_STATE,
        MessageType.START_SIGNIN,
        MessageType.START_SIGNOUT,
        MessageType.START_SUBSCRIPTION,
        MessageType.CANCEL_SUBSCRIPTION,
        MessageType.CHECK_PERMISSION,
        MessageType.REQUEST_PERMISSION,
        MessageType.START_SHARE,
        MessageType.DOWNLOAD_IMAGE,
    }
)

APP_TO_WEB_TYPES = frozenset(t for t in MessageType if t not in WEB_TO_APP_TYPES)

DIRECTIONS: Dict[MessageType, Direction] = {
    t: Direction.WEB_TO_APP if t in WEB_TO_APP_TYPES else Direction.APP_TO_WEB for t in MessageType
}


def is_known_type(type_name: str) -> bool:
    return type_name in MessageType.__members__


@dataclass(frozen=True)
class Message:
    """A bridge envelope.

    ``type`` stays a plain string so that frames outside the catalog still
    reach raw listeners; ``payload`` is opaque to the bridge.
    """

    type: str
    payload: Dict[str, Any] | None = None

    @classmethod
    def of(cls, message_type: MessageType | str, payload: Dict[str, Any] | None = None) -> "Message":
        type_name = message_type.value if isinstance(message_type, MessageType) else message_type
        return cls(type=type_name, payload=payload)

    @property
    def known(self) -> bool:
        return is_known_type(self.type)

    def payload_or_empty(self) -> Dict[str, Any]:
        return self.payload if isinstance(self.payload, dict) else {}

    def to_dict(self) -> Dict[str, Any]:
        frame: Dict[str, Any] = {"type": self.type}
        if self.payload is not None:
            frame["payload"] = self.payload
        return frame


def encode(message: Message) -> str:
    return json.dumps(message.to_dict(), ensure_ascii=False)


def from_frame(frame: Any) -> Message | None:
    """Build a message from an already-parsed frame, or None if it has no string ``type``."""

    if not isinstance(frame, dict):
        return None
    type_name = frame.get("type")
    if not isinstance(type_name, str):
        return None
    payload = frame.get("payload")
    return Message(type=type_name, payload=payload if isinstance(payload, dict) else None)


def decode(raw: Any) -> Message | None:
    """Parse a raw inbound frame. Strings are JSON-decoded; malformed input yields None."""

    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError:
            return None
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            return None
    return from_frame(raw)
