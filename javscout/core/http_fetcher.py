"""
Requests Fetcher
Lightweight HTTP/1.1 fallback with a Chrome-like header set and rotating user agents
"""
from typing import Dict, List, Optional
import logging
import re
import threading

import requests

from ..models.fetch_result import FetchResult

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/144.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/144.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/144.0.0.0 Safari/537.36",
]


def user_agent_candidates(configured: Optional[str] = None) -> List[str]:
    out: List[str] = []
    for ua in [str(configured or "").strip()] + DEFAULT_USER_AGENTS:
        if ua and ua not in out:
            out.append(ua)
    return out


def _chrome_major(user_agent: str) -> str:
    match = re.search(r"Chrome/(\d+)", user_agent or "")
    return match.group(1) if match else "144"


def _platform_of(user_agent: str) -> str:
    ua = (user_agent or "").lower()
    if "windows" in ua:
        return "Windows"
    if "mac os x" in ua or "macintosh" in ua:
        return "macOS"
    if "linux" in ua:
        return "Linux"
    return "Windows"


def build_chrome_headers(user_agent: str, referer: Optional[str] = None) -> Dict[str, str]:
    major = _chrome_major(user_agent)
    headers = {
        "Connection": "keep-alive",
        "Cache-Control": "max-age=0",
        "sec-ch-ua": f'"Google Chrome";v="{major}", "Chromium";v="{major}", "Not_A Brand";v="24"',
        "sec-ch-ua-mobile": "?1" if "mobile" in user_agent.lower() else "?0",
        "sec-ch-ua-platform": f'"{_platform_of(user_agent)}"',
        "DNT": "1",
        "Upgrade-Insecure-Requests": "1",
        "User-Agent": user_agent,
        "Accept": (
            "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,"
            "image/apng,*/*;q=0.8,application/signed-exchange;v=b3;q=0.7"
        ),
        "Sec-Fetch-Site": "same-origin" if referer else "none",
        "Sec-Fetch-Mode": "navigate",
        "Sec-Fetch-User": "?1",
        "Sec-Fetch-Dest": "document",
        "Accept-Encoding": "gzip, deflate",
        "Accept-Language": "zh-CN,zh;q=0.9,en;q=0.8,ja;q=0.7",
    }
    if referer:
        headers["Referer"] = referer
    return headers


def parse_cookie_header(cookie_header: Optional[str]) -> Dict[str, str]:
    """"a=1; b=2" -> {"a": "1", "b": "2"}"""
    cookies: Dict[str, str] = {}
    for part in (cookie_header or "").split(";"):
        name, sep, value = part.strip().partition("=")
        if sep and name:
            cookies[name.strip()] = value.strip()
    return cookies


class RequestsFetcher:
    """Plain requests session; no TLS fingerprinting, HTTP/1.1 only"""

    name = "requests"

    def __init__(self, settings=None, session: Optional[requests.Session] = None):
        self.settings = settings
        self.session = session or requests.Session()
        self._lock = threading.RLock()
        self._ua_index = 0
        self.user_agents = user_agent_candidates()
        self.reload_from_settings()

    def reload_from_settings(self):
        configured = ""
        if self.settings is not None:
            configured = str(self.settings.get("javdb_user_agent", "") or "")
        with self._lock:
            self.user_agents = user_agent_candidates(configured)
            self._ua_index = 0

    def is_available(self) -> bool:
        return True

    def current_user_agent(self) -> str:
        with self._lock:
            return self.user_agents[self._ua_index % len(self.user_agents)]

    def rotate_user_agent(self) -> str:
        with self._lock:
            self._ua_index = (self._ua_index + 1) % len(self.user_agents)
            return self.user_agents[self._ua_index]

    def get(
        self,
        url: str,
        referer: Optional[str] = None,
        cookie_header: Optional[str] = None,
        timeout_ms: int = 30000,
    ) -> FetchResult:
        user_agent = self.current_user_agent()
        try:
            response = self.session.get(
                url,
                headers=build_chrome_headers(user_agent, referer),
                cookies=parse_cookie_header(cookie_header),
                timeout=max(1.0, float(timeout_ms or 0) / 1000.0),
                allow_redirects=True,
            )
        except requests.RequestException as exc:
            self.rotate_user_agent()
            return FetchResult.failure(str(exc))

        result = FetchResult(
            status_code=response.status_code,
            body=response.text,
            headers={k.lower(): v for k, v in response.headers.items()},
        )
        if not result.ok:
            result.error = f"HTTP {response.status_code}"
            # A rejected fingerprint is retried with the next user agent.
            self.rotate_user_agent()
            logger.debug("requests GET %s -> %s (ua rotated)", url, response.status_code)
        return result
