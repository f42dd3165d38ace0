"""HTTP functions that proxy Naver OAuth/blog and FCM push for the harness."""

from __future__ import annotations

import asyncio
import json
import logging
import re
import secrets
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

import firebase_admin
from aiohttp import ClientSession, ClientTimeout, web
from firebase_admin import credentials, messaging
from firebase_admin import exceptions as firebase_exceptions

from .config import FunctionsConfig

logger = logging.getLogger(__name__)

HTTPS_IMAGE = re.compile(r"^https://", re.IGNORECASE)
METHOD_NOT_ALLOWED: Dict[str, Any] = {"success": False, "message": "method_not_allowed"}


class PushNotConfigured(Exception):
    pass


class PushSendFailed(Exception):
    pass


def _request_id() -> str:
    return f"{int(time.time() * 1000):x}_{secrets.token_hex(3)}"


def _with_cors(request: web.Request, response: web.StreamResponse) -> web.StreamResponse:
    origin = request.headers.get("Origin")
    if origin:
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Vary"] = "Origin"
    return response


def _with_no_store(response: web.Response) -> web.Response:
    response.headers["Cache-Control"] = "no-store"
    return response


def _preflight(request: web.Request) -> web.StreamResponse:
    response = web.Response(status=204)
    response.headers["Access-Control-Allow-Credentials"] = "true"
    response.headers["Access-Control-Allow-Methods"] = "POST, OPTIONS"
    requested = request.headers.get("Access-Control-Request-Headers")
    if requested:
        response.headers["Access-Control-Allow-Headers"] = requested
    return _with_cors(request, response)


async def _read_body(request: web.Request) -> Optional[Dict[str, Any]]:
    try:
        body = await request.json()
    except Exception:
        return None
    return body if isinstance(body, dict) else None


async def _read_upstream(response) -> Tuple[Optional[Any], str]:
    text = await response.text()
    try:
        return json.loads(text), text
    except ValueError:
        return None, text


def _http(request: web.Request) -> ClientSession:
    return request.app["http"]


def _config(request: web.Request) -> FunctionsConfig:
    return request.app["functions_config"]


def cors_function(
    handler: Callable[[web.Request], Awaitable[web.Response]],
    *,
    not_allowed: Dict[str, Any] = METHOD_NOT_ALLOWED,
):
    """POST-only function with CORS: OPTIONS answers 204, other methods 405 with ``not_allowed``."""

    async def wrapped(request: web.Request) -> web.StreamResponse:
        if request.method == "OPTIONS":
            return _preflight(request)
        if request.method != "POST":
            return _with_cors(request, web.json_response(not_allowed, status=405))
        return _with_cors(request, await handler(request))

    wrapped.__name__ = handler.__name__
    return wrapped


def _failure(message: str, status: int = 400, **extra: Any) -> web.Response:
    body: Dict[str, Any] = {"success": False, "message": message}
    body.update(extra)
    return web.json_response(body, status=status)


async def handle_naver_exchange(request: web.Request) -> web.Response:
    config = _config(request)
    body = await _read_body(request)
    if body is None:
        return _failure("bad_request")
    code = body.get("code")
    state = body.get("state") or ""
    redirect_uri = body.get("redirect_uri")
    if not code or not redirect_uri:
        return _failure("bad_request")

    try:
        form = {
            "grant_type": "authorization_code",
            "client_id": config.naver_client_id,
            "client_secret": config.naver_client_secret,
            "code": str(code),
            "state": str(state),
            "redirect_uri": str(redirect_uri),
        }
        async with _http(request).post(config.naver_token_url, data=form) as resp:
            token_json, _ = await _read_upstream(resp)
            token_status = resp.status
        token_json = token_json if isinstance(token_json, dict) else {}
        if token_status >= 400 or not token_json.get("access_token"):
            logger.error("naver token_fail status=%s body=%s", token_status, token_json)
            return _failure(f"token_fail_{token_status}:{token_json.get('error') or ''}")

        headers = {"Authorization": f"Bearer {token_json['access_token']}"}
        async with _http(request).get(config.naver_profile_url, headers=headers) as resp:
            me_json, _ = await _read_upstream(resp)
            me_status = resp.status
        me_json = me_json if isinstance(me_json, dict) else {}
        if me_status >= 400 or me_json.get("resultcode") != "00":
            logger.error("naver me_fail status=%s body=%s", me_status, me_json)
            return _failure(f"me_fail_{me_status}:{me_json.get('message') or ''}")
    except Exception as exc:
        logger.exception("naver exchange error")
        return _failure(str(exc), status=500)

    profile = me_json.get("response")
    logger.info("naver exchange ok id=%s", (profile or {}).get("id") if isinstance(profile, dict) else None)
    token = {
        key: token_json[key]
        for key in ("access_token", "refresh_token", "token_type", "expires_in")
        if key in token_json
    }
    return _with_no_store(web.json_response({"success": True, "profile": profile, "token": token}))


def build_blog_html(content: str, image: Any) -> str:
    image_tag = ""
    if isinstance(image, str) and HTTPS_IMAGE.match(image):
        src = image.replace('"', "&quot;")
        image_tag = f'<p style="margin:0 0 16px"><img src="{src}" alt="" style="max-width:100%;height:auto" /></p>'
    return f'{image_tag}<div style="font-size:16px;line-height:1.7;word-break:break-word">{content}</div>'


def join_tags(tags: Any) -> str:
    if isinstance(tags, list):
        return ",".join(str(tag) for tag in tags)
    if isinstance(tags, str):
        return tags
    return ""


async def handle_naver_blog_post(request: web.Request) -> web.Response:
    config = _config(request)
    req_id = _request_id()
    body = await _read_body(request) or {}
    access_token = body.get("access_token")
    title = body.get("title")
    content = body.get("content")
    category_no = body.get("categoryNo")
    logger.info(
        "[POST %s] start has_token=%s title_len=%d content_len=%d has_image=%s",
        req_id,
        bool(access_token),
        len(str(title)) if title else 0,
        len(str(content)) if content else 0,
        bool(body.get("image")),
    )
    if not access_token or not title or not content:
        logger.error("[POST %s] missing_params", req_id)
        return _failure("missing_params")

    form = {
        "title": str(title)[: config.max_title_len],
        "contents": build_blog_html(str(content)[: config.max_content_len], body.get("image")),
    }
    if category_no == 0 or category_no:
        form["categoryNo"] = str(category_no)
    tags = join_tags(body.get("tags"))
    if tags:
        form["tags"] = tags

    try:
        headers = {"Authorization": f"Bearer {access_token}"}
        async with _http(request).post(config.naver_blog_url, data=form, headers=headers) as resp:
            parsed, text = await _read_upstream(resp)
            status = resp.status
    except Exception as exc:
        logger.exception("[POST %s] exception", req_id)
        return _failure(str(exc), status=500, _reqId=req_id)

    logger.info("[POST %s] resp status=%s body=%s", req_id, status, text[:500])
    upstream_error = isinstance(parsed, dict) and (parsed.get("error") or parsed.get("errorCode"))
    if status >= 400 or upstream_error:
        logger.error("[POST %s] blog_post_fail status=%s", req_id, status)
        return _failure(f"blog_post_fail_{status}", debug=parsed if parsed is not None else text, _reqId=req_id)

    result = parsed if parsed is not None else {}
    return _with_no_store(web.json_response({"success": True, "result": result, "_reqId": req_id}))


class FcmSender:
    """Sends one notification through the Firebase Admin SDK.

    The SDK owns the service-account credential and refreshes its access
    token, so a long-running ``serve`` keeps delivering.
    """

    APP_NAME = "webbridge"

    def __init__(self, config: FunctionsConfig, *, firebase_app: Any = None) -> None:
        self.config = config
        self._app = firebase_app

    def _firebase_app(self) -> Any:
        if self._app is not None:
            return self._app
        try:
            self._app = firebase_admin.get_app(self.APP_NAME)
        except ValueError:
            if self.config.fcm_credentials_file:
                credential = credentials.Certificate(self.config.fcm_credentials_file)
            else:
                credential = credentials.ApplicationDefault()
            options = {"projectId": self.config.fcm_project_id} if self.config.fcm_project_id else None
            self._app = firebase_admin.initialize_app(credential, options, name=self.APP_NAME)
        return self._app

    def build_message(self, token: str, title: str, body: str, image: Optional[str] = None) -> messaging.Message:
        return messaging.Message(
            token=token,
            notification=messaging.Notification(title=title, body=body, image=image or None),
            android=messaging.AndroidConfig(
                notification=messaging.AndroidNotification(
                    channel_id=self.config.push_channel_id,
                    sound="alarm_sound",
                )
            ),
        )

    async def send(self, token: str, title: str, body: str, image: Optional[str] = None) -> str:
        try:
            app = self._firebase_app()
        except (ValueError, OSError) as exc:
            raise PushNotConfigured(f"firebase credentials unavailable: {exc}") from exc
        message = self.build_message(token, title, body, image)
        # messaging.send blocks on HTTP.
        try:
            return await asyncio.to_thread(messaging.send, message, app=app)
        except firebase_exceptions.FirebaseError as exc:
            raise PushSendFailed(f"fcm_{exc.code}: {exc}") from exc


async def handle_send_push(request: web.Request) -> web.Response:
    config = _config(request)
    if config.webpush_secret and request.headers.get("x-webpush-secret") != config.webpush_secret:
        return web.json_response({"error": "unauthorized"}, status=401)

    body = await _read_body(request) or {}
    token = body.get("token")
    if not token:
        return web.json_response({"error": "token required"}, status=400)
    title = body.get("title") or "Test push"
    text = body.get("body") or "Body"
    image = body.get("image") or None

    # Gives the tester time to background the app before delivery.
    delay = config.push_delay_seconds
    try:
        await request.app["sleep"](delay)
        message_id = await request.app["push_sender"].send(str(token).strip(), title, text, image)
    except Exception as exc:
        logger.exception("sendPush failed")
        return web.json_response({"error": str(exc)}, status=500)

    logger.info("sendPush ok message_id=%s", message_id)
    return web.json_response({"messageId": message_id, "delayed": True, "delaySec": delay})


def add_function_routes(
    app: web.Application,
    config: FunctionsConfig | None = None,
    *,
    push_sender: Any = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> None:
    config = config or FunctionsConfig()
    app["functions_config"] = config
    app["push_sender"] = push_sender or FcmSender(config)
    app["sleep"] = sleep

    app.router.add_route("*", "/naverExchange", cors_function(handle_naver_exchange))
    app.router.add_route("*", "/naverBlogPost", cors_function(handle_naver_blog_post))
    app.router.add_route(
        "*", "/sendPush", cors_function(handle_send_push, not_allowed={"error": "Method Not Allowed"})
    )

    async def open_http(app: web.Application) -> None:
        app["http"] = ClientSession(timeout=ClientTimeout(total=config.upstream_timeout_seconds))

    async def close_http(app: web.Application) -> None:
        http = app.get("http")
        if http is not None:
            await http.close()

    app.on_startup.append(open_http)
    app.on_cleanup.append(close_http)
