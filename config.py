import os
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from typing import Optional

import requests
from dotenv import load_dotenv

load_dotenv()

# Bearer token embedded in the public x.com web client
TWITTER_WEB_BEARER = (
    "AAAAAAAAAAAAAAAAAAAAANRILgAAAAAAnNwIzUejRCOuH5E6I8xnZz4puTs"
    "%3D1Zv7ttfk8LF81IUq16cHjhLTvJu4FA33AGWWjCpTnA"
)
INSTAGRAM_WEB_APP_ID = "936619743392459"

UA_DESKTOP = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
UA_MOBILE = "Mozilla/5.0 (iPhone; CPU iPhone OS 17_5 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.5 Mobile/15E148 Safari/604.1"


def _env_bool(name, default="false"):
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class FetchConfig:
    """Network settings handed to every extraction strategy and security check."""

    timeout: float = 10.0
    ua_desktop: str = UA_DESKTOP
    ua_mobile: str = UA_MOBILE
    twitter_bearer: str = TWITTER_WEB_BEARER
    instagram_cookie: str = ""
    instagram_app_id: str = INSTAGRAM_WEB_APP_ID
    twitter_mirror_host: str = "api.fxtwitter.com"
    instagram_mirror_host: str = "www.ddinstagram.com"
    demo_mode: bool = False
    # Left empty, request_scope() opens a fresh session (and cookie jar) per call
    session: Optional[requests.Session] = field(default=None, repr=False)

    @classmethod
    def from_env(cls) -> "FetchConfig":
        return cls(
            timeout=float(os.getenv("FETCH_TIMEOUT", "10")),
            twitter_bearer=os.getenv("TWITTER_BEARER", TWITTER_WEB_BEARER),
            instagram_cookie=os.getenv("INSTAGRAM_COOKIE", ""),
            instagram_app_id=os.getenv("INSTAGRAM_APP_ID", INSTAGRAM_WEB_APP_ID),
            twitter_mirror_host=os.getenv("TWITTER_MIRROR_HOST", "api.fxtwitter.com"),
            instagram_mirror_host=os.getenv("INSTAGRAM_MIRROR_HOST", "www.ddinstagram.com"),
            demo_mode=_env_bool("DEMO_MODE"),
        )

    @contextmanager
    def request_scope(self):
        """Yield a config bound to a session that lives only for this scope.

        An injected session is used as-is and left open.
        """
        if self.session is not None:
            yield self
            return
        with requests.Session() as session:
            yield replace(self, session=session)

    def headers(self, type="desktop"):
        return {
            "User-Agent": self.ua_mobile if type == "mobile" else self.ua_desktop,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,image/apng,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.9",
            "Sec-Fetch-Dest": "document",
            "Sec-Fetch-Mode": "navigate",
            "Upgrade-Insecure-Requests": "1",
        }


@dataclass
class AppConfig:
    db_path: str = "analysis_logs.db"
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 5000
    debug: bool = False

    @classmethod
    def from_env(cls) -> "AppConfig":
        return cls(
            db_path=os.getenv("LOG_DB_PATH", "analysis_logs.db"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "5000")),
            debug=_env_bool("FLASK_DEBUG"),
        )
