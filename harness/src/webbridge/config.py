from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping, Tuple


@dataclass
class PollingConfig:
    interval_seconds: float = 10 * 60
    timeout_seconds: float = 3.0
    backoff_seconds: Tuple[float, ...] = (5.0, 15.0, 60.0)
    focus_debounce_seconds: float = 1.0
    initial_name: str = "all"


@dataclass
class FunctionsConfig:
    naver_client_id: str = ""
    naver_client_secret: str = ""
    naver_token_url: str = "https://nid.naver.com/oauth2.0/token"
    naver_profile_url: str = "https://openapi.naver.com/v1/nid/me"
    naver_blog_url: str = "https://openapi.naver.com/blog/writePost.json"
    naver_redirect_uri: str = "http://127.0.0.1:8080/auth/naver/cb2/"
    functions_base_url: str = "http://127.0.0.1:8080"
    webpush_secret: str = ""
    push_delay_seconds: float = 15.0
    push_channel_id: str = "custom_channel_id_v2"
    fcm_project_id: str = ""
    fcm_credentials_file: str = ""
    upstream_timeout_seconds: float = 30.0
    max_title_len: int = 80
    max_content_len: int = 20000

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "FunctionsConfig":
        env = os.environ if environ is None else environ
        config = cls(
            naver_client_id=env.get("NAVER_CLIENT_ID", ""),
            naver_client_secret=env.get("NAVER_CLIENT_SECRET", ""),
            webpush_secret=env.get("WEBPUSH_SECRET", ""),
            fcm_project_id=env.get("FCM_PROJECT_ID", ""),
            fcm_credentials_file=env.get("GOOGLE_APPLICATION_CREDENTIALS", ""),
        )
        for attr, key in (("naver_redirect_uri", "NAVER_REDIRECT_URI"), ("functions_base_url", "FUNCTIONS_BASE_URL")):
            if env.get(key):
                setattr(config, attr, env[key])
        delay = env.get("PUSH_DELAY_SECONDS")
        if delay:
            try:
                config.push_delay_seconds = max(0.0, float(delay))
            except ValueError:
                raise ValueError(f"PUSH_DELAY_SECONDS must be a number, got {delay!r}") from None
        return config


@dataclass
class HarnessConfig:
    version: str = "webbridge@0.1.0"
    is_root: bool = True
    signin_redirect_uri: str = "/"
    run_duration_seconds: float = 1.5
    section_log_len: int = 200
    aggregate_log_len: int = 500
    polling: PollingConfig = field(default_factory=PollingConfig)
