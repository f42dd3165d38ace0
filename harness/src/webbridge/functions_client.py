"""Minimal stdlib client for the collaborator HTTP functions."""

from __future__ import annotations

import json
import urllib.error
import urllib.request
from typing import Any, Dict, List, Optional, Union


class FunctionsClientError(Exception):
    def __init__(self, status: int, message: str, body: Any = None):
        self.status = status
        self.message = message
        self.body = body
        super().__init__(f"{status}: {message}")


def _build_url(base_url: str, path: str) -> str:
    return f"{base_url.rstrip('/')}{path}"


def _message_from(body: Any, fallback: str) -> str:
    if isinstance(body, dict):
        for key in ("message", "error"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    return fallback


def _parse(raw: str, status: int) -> Any:
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except ValueError:
        raise FunctionsClientError(status, "malformed_json", raw[:500]) from None


def _post_json(
    url: str,
    payload: Dict[str, object],
    headers: Optional[Dict[str, str]] = None,
    timeout: float = 30.0,
) -> Dict[str, Any]:
    body = json.dumps(payload).encode("utf-8")
    request_headers = {"Content-Type": "application/json"}
    if headers:
        request_headers.update(headers)
    request = urllib.request.Request(url, data=body, headers=request_headers, method="POST")
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            status = getattr(response, "status", 200)
            raw = response.read().decode("utf-8")
    except urllib.error.HTTPError as exc:
        try:
            raw = exc.read().decode("utf-8")
        except Exception:
            raw = ""
        try:
            error_body: Any = json.loads(raw) if raw else {}
        except ValueError:
            error_body = raw[:500]
        raise FunctionsClientError(exc.code, _message_from(error_body, f"http_{exc.code}"), error_body) from None
    except urllib.error.URLError as exc:
        raise FunctionsClientError(0, f"unreachable: {exc.reason}") from None

    parsed = _parse(raw, status)
    if not isinstance(parsed, dict):
        raise FunctionsClientError(status, "malformed_json", parsed)
    return parsed


def naver_exchange(base_url: str, code: str, state: str, redirect_uri: str) -> Dict[str, Any]:
    payload = {"code": code, "state": state, "redirect_uri": redirect_uri}
    return _post_json(_build_url(base_url, "/naverExchange"), payload)


def naver_blog_post(
    base_url: str,
    access_token: str,
    title: str,
    content: str,
    *,
    category_no: Optional[Union[int, str]] = None,
    tags: Optional[Union[str, List[str]]] = None,
    image: Optional[str] = None,
) -> Dict[str, Any]:
    payload: Dict[str, object] = {"access_token": access_token, "title": title, "content": content}
    if category_no is not None and category_no != "":
        payload["categoryNo"] = category_no
    if tags:
        payload["tags"] = tags
    if image:
        payload["image"] = image
    return _post_json(_build_url(base_url, "/naverBlogPost"), payload)


def send_push(
    base_url: str,
    token: str,
    title: str,
    body: str,
    image: Optional[str] = None,
    *,
    secret: Optional[str] = None,
    timeout: float = 120.0,
) -> Dict[str, Any]:
    payload: Dict[str, object] = {"token": token, "title": title, "body": body}
    if image:
        payload["image"] = image
    headers = {"x-webpush-secret": secret} if secret else None
    return _post_json(_build_url(base_url, "/sendPush"), payload, headers=headers, timeout=timeout)
