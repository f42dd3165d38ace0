"""Naver blog posting through the OAuth redirect callback.

First visit (no ``code``): persist a random ``state`` and redirect to the
authorize page. Callback visit: the returned ``state`` must equal the
persisted one, otherwise the flow stops before any token exchange. Then the
code is exchanged through ``/naverExchange`` and the saved draft is posted
through ``/naverBlogPost``. The outcome is reported as a ``SHARE_RESULT`` on
the opener's window path.
"""

from __future__ import annotations

import logging
import secrets
import urllib.parse
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Union

from . import functions_client
from .envelope import Message, MessageType, encode
from .functions_client import FunctionsClientError
from .storage import load_json, save_json
from .transport import Transport

logger = logging.getLogger(__name__)

AUTHORIZE_URL = "https://nid.naver.com/oauth2.0/authorize"
STATE_KEY = "naver_state"
DRAFT_KEY = "naver_draft"
PLATFORM = "BLOG"


@dataclass(frozen=True)
class FlowResult:
    success: bool
    error_code: Optional[str] = None
    message: str = ""
    redirect_url: Optional[str] = None
    result: Optional[Dict[str, Any]] = None

    @property
    def is_redirect(self) -> bool:
        return self.redirect_url is not None


def _query_params(query: Union[str, Mapping[str, str]]) -> Dict[str, str]:
    if isinstance(query, str):
        raw = urllib.parse.urlsplit(query).query if "?" in query or "://" in query else query
        return {key: values[0] for key, values in urllib.parse.parse_qs(raw).items() if values}
    return {str(key): str(value) for key, value in query.items()}


class NaverBlogFlow:
    def __init__(
        self,
        storage,
        *,
        client_id: str,
        redirect_uri: str,
        functions_base_url: str,
        transport: Transport | None = None,
        exchange: Callable[..., Dict[str, Any]] = functions_client.naver_exchange,
        post: Callable[..., Dict[str, Any]] = functions_client.naver_blog_post,
        state_factory: Callable[[], str] = lambda: secrets.token_urlsafe(12),
    ) -> None:
        self.storage = storage
        self.client_id = client_id
        self.redirect_uri = redirect_uri
        self.functions_base_url = functions_base_url
        self.transport = transport
        self._exchange = exchange
        self._post = post
        self._state_factory = state_factory

    def save_draft(self, draft: Dict[str, Any]) -> None:
        save_json(self.storage, DRAFT_KEY, draft)

    def authorize_url(self, state: str) -> str:
        query = urllib.parse.urlencode(
            {
                "response_type": "code",
                "client_id": self.client_id,
                "redirect_uri": self.redirect_uri,
                "state": state,
            }
        )
        return f"{AUTHORIZE_URL}?{query}"

    def begin(self) -> FlowResult:
        state = self.storage.get_item(STATE_KEY) or self._state_factory()
        self.storage.set_item(STATE_KEY, state)
        return FlowResult(success=True, redirect_url=self.authorize_url(state))

    def handle_callback(self, query: Union[str, Mapping[str, str]], *, report: bool = True) -> FlowResult:
        """Run one visit of the callback page.

        With ``report=False`` the outcome is only returned, so a caller running
        this off the event loop can hand it to ``report`` on the loop.
        """

        outcome = self._callback(_query_params(query))
        if report and not outcome.is_redirect:
            self.report(outcome)
        return outcome

    def _callback(self, params: Dict[str, str]) -> FlowResult:
        code = params.get("code")
        if not code:
            return self.begin()

        state = params.get("state", "")
        saved_state = self.storage.get_item(STATE_KEY) or ""
        if not saved_state or state != saved_state:
            logger.error("naver state mismatch: saved=%r returned=%r", saved_state, state)
            return FlowResult(success=False, error_code="state_mismatch", message="state_mismatch")

        try:
            exchanged = self._exchange(self.functions_base_url, code, state, self.redirect_uri)
        except FunctionsClientError as exc:
            return self._failure("exchange_failed", exc.status, exc.message)
        token = exchanged.get("token") if isinstance(exchanged.get("token"), dict) else {}
        access_token = token.get("access_token")
        if not exchanged.get("success") or not access_token:
            return self._failure("exchange_failed", 200, _message(exchanged))

        draft = load_json(self.storage, DRAFT_KEY)
        draft = draft if isinstance(draft, dict) else {}
        tags = draft.get("tags")
        if isinstance(tags, list):
            tags = ",".join(str(tag) for tag in tags)
        try:
            posted = self._post(
                self.functions_base_url,
                access_token,
                draft.get("title") or draft.get("caption") or "Untitled",
                draft.get("content") or draft.get("caption") or "",
                category_no=draft.get("categoryNo"),
                tags=tags or None,
                image=draft.get("imageUrl") or draft.get("image") or None,
            )
        except FunctionsClientError as exc:
            return self._failure("post_failed", exc.status, exc.message)
        if not posted.get("success"):
            return self._failure("post_failed", 200, _message(posted))

        self.storage.remove_item(STATE_KEY)
        result = posted.get("result") if isinstance(posted.get("result"), dict) else {}
        return FlowResult(success=True, result=result)

    @staticmethod
    def _failure(stage: str, status: int, message: str) -> FlowResult:
        logger.error("naver %s: status=%s message=%s", stage, status, message)
        return FlowResult(success=False, error_code=stage, message=f"{stage}_{status}_{message}")

    def report(self, outcome: FlowResult) -> FlowResult:
        if self.transport is None:
            return outcome
        if outcome.success:
            payload: Dict[str, Any] = {"success": True, "platform": PLATFORM, "post_id": None}
        else:
            payload = {
                "success": False,
                "platform": PLATFORM,
                "error_code": "naver_flow_failed",
                "message": outcome.message,
            }
        self.transport.window.deliver(encode(Message.of(MessageType.SHARE_RESULT, payload)))
        return outcome


def _message(body: Dict[str, Any]) -> str:
    message = body.get("message")
    return message if isinstance(message, str) else ""
