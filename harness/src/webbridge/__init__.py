"""Web-to-native message bridge harness and its HTTP collaborators."""

from .dispatcher import Dispatcher
from .envelope import Message, MessageType, decode, encode
from .harness import Harness
from .navstate import BackAction, NavRegister, NavState, decide
from .server import create_app, main, simulate
from .transport import Binding, RawEvent, Transport

__all__ = [
    "BackAction",
    "Binding",
    "Dispatcher",
    "Harness",
    "Message",
    "MessageType",
    "NavRegister",
    "NavState",
    "RawEvent",
    "Transport",
    "create_app",
    "decide",
    "decode",
    "encode",
    "main",
    "simulate",
]
