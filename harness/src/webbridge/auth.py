"""Native sign-in over the bridge with a locally cached session.

Tokens are cached in web storage for the harness only; a production build
keeps them in the host's secure storage.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Callable, Dict, Optional

from .envelope import Message, MessageType
from .storage import load_json, save_json
from .timers import TimerHandle, Timers
from .transport import Binding, RawEvent, Transport

logger = logging.getLogger(__name__)

SESSION_KEY = "auth.session.v1"
NAVER_STATE_KEY = "naver_oauth_state"


class AuthSession:
    def __init__(
        self,
        transport: Transport,
        storage,
        timers: Timers,
        *,
        redirect_uri: str = "/",
        state_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ) -> None:
        self.transport = transport
        self.storage = storage
        self.timers = timers
        self.redirect_uri = redirect_uri
        self._state_factory = state_factory
        loaded = load_json(storage, SESSION_KEY)
        self.session: Optional[Dict[str, Any]] = loaded if isinstance(loaded, dict) else None
        self.loading = False
        self.error: Optional[str] = None
        self._expire_timer: Optional[TimerHandle] = None
        self._binding: Optional[Binding] = None

    @property
    def is_authed(self) -> bool:
        return bool(self.session and self.session.get("user"))

    def bind(self, dispatcher) -> Binding:
        if self._binding is not None:
            self._binding()
        self._binding = dispatcher.add_listener(self._on_message)
        self._arm_expiry()
        return self._binding

    def close(self) -> None:
        self._cancel_expiry()
        if self._binding is not None:
            self._binding()
            self._binding = None

    def start_signin(self, provider: str) -> None:
        self.loading = True
        self.error = None
        payload: Dict[str, Any] = {"provider": provider}
        if provider == "naver":
            # Naver calls back to redirectUri; the state is checked there.
            state = self._state_factory()
            self.storage.set_item(NAVER_STATE_KEY, state)
            payload.update(redirectUri=self.redirect_uri, state=state)
        self.transport.send(Message.of(MessageType.START_SIGNIN, payload))

    def start_signout(self) -> None:
        self.loading = True
        self.error = None
        self.transport.send(Message.of(MessageType.START_SIGNOUT, {}))

    def save_session(self, session: Dict[str, Any]) -> None:
        self.session = session
        save_json(self.storage, SESSION_KEY, session)
        self._arm_expiry()

    def clear_session(self) -> None:
        self.session = None
        self.storage.remove_item(SESSION_KEY)
        self._cancel_expiry()

    def _cancel_expiry(self) -> None:
        timer, self._expire_timer = self._expire_timer, None
        if timer is not None:
            timer.cancel()

    def _arm_expiry(self) -> None:
        self._cancel_expiry()
        expires_at = (self.session or {}).get("expires_at")
        if not isinstance(expires_at, (int, float)) or isinstance(expires_at, bool):
            return
        remaining_ms = expires_at - self.timers.now_ms()
        if remaining_ms > 0:
            self._expire_timer = self.timers.call_later(remaining_ms / 1000, self._expire)
        else:
            self.clear_session()

    def _expire(self) -> None:
        self._expire_timer = None
        logger.info("session expired")
        self.clear_session()

    def _on_message(self, message: Message, _: RawEvent) -> None:
        payload = message.payload_or_empty()
        if message.type == MessageType.SIGNIN_RESULT.value:
            self.loading = False
            if payload.get("success"):
                self.save_session(
                    {
                        "provider": payload.get("provider"),
                        "user": payload.get("user"),
                        "access_token": payload.get("access_token"),
                        "id_token": payload.get("id_token"),
                        "refresh_token": payload.get("refresh_token"),
                        "expires_at": payload.get("expires_at"),
                        "scopes": payload.get("scopes") or [],
                        "at": self.timers.now_ms(),
                    }
                )
                self.error = None
            else:
                self.error = payload.get("message") or payload.get("error_code") or "signin_failed"
        elif message.type == MessageType.SIGNOUT_RESULT.value:
            self.loading = False
            self.clear_session()
