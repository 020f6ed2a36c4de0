"""
JavDB Search Source
Multi-endpoint failover across the primary site and its mirrors
"""
from typing import Dict, List, Optional, Sequence, Tuple
from urllib.parse import parse_qsl, quote, urlencode, urlparse, urlunparse
import logging
import random
import time

from ..core.curl_impersonate import CurlImpersonateFetcher
from ..core.errors import ConfigurationError, DetailFetchError
from ..core.event_bus import Events
from ..core.health import HealthCheckResult
from ..core.http_fetcher import RequestsFetcher
from ..models.fetch_result import FetchResult
from ..models.media_record import MediaRecord, SearchCandidate
from ..utils.jav_id import extract_jav_id, normalize_jav_id
from .base import BaseSource
from .javdb_parser import JavDbHtmlParser

logger = logging.getLogger(__name__)

PREFERRED_LOCALE = "zh"
SEED_COOKIES = (("over18", "1"), ("locale", PREFERRED_LOCALE))
RETRYABLE_STATUSES = frozenset({0, 403, 408, 425, 429, 500, 502, 503, 520, 522, 524})
RETRY_BASE_DELAY_MS = 1000
HEALTH_ATTEMPTS = 2
HEALTH_TIMEOUT_MS = 3000
# Fraction of health_check_timeout_seconds the health probe may spend
HEALTH_BUDGET_SHARE = 0.8

_CHALLENGE_MARKERS = ("Just a moment", "cf-chl", "Attention Required")


class SearchOutcome:
    OK = "ok"
    NO_RESULTS = "no_results"
    ZERO_PARSED = "zero_parsed"
    BLOCKED = "blocked"
    FAILED = "failed"


def outcome_message(kind: str, jav_id: str, detail: str = "") -> str:
    if kind == SearchOutcome.BLOCKED:
        return "JavDB blocked every endpoint (bot-mitigation challenge)"
    if kind == SearchOutcome.NO_RESULTS:
        return f"No results for {jav_id}"
    if kind == SearchOutcome.ZERO_PARSED:
        return f"Search page returned no recognizable entries for {jav_id}; the page layout may have changed"
    if kind == SearchOutcome.FAILED:
        return f"All JavDB endpoints failed: {detail or 'unknown error'}"
    return ""


def build_endpoints(base_url: str, mirror_urls: Optional[Sequence[str]] = None) -> List[str]:
    """Primary first, then mirrors; trimmed, no trailing slash, no case-insensitive duplicates."""
    out: List[str] = []
    seen = set()
    for url in [base_url] + list(mirror_urls or []):
        text = str(url or "").strip().rstrip("/")
        if text and text.lower() not in seen:
            seen.add(text.lower())
            out.append(text)
    return out


def with_locale(url: str, locale: str = PREFERRED_LOCALE) -> str:
    parts = urlparse(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    if any(key == "locale" for key, _ in query):
        return url
    query.append(("locale", locale))
    return urlunparse(parts._replace(query=urlencode(query, quote_via=quote)))


def retry_delay_ms(attempt: int, rng=random) -> int:
    """Backoff before retry ``attempt`` (1-based): 1000 * 1.5^n with jitter, never below 500 ms."""
    base = RETRY_BASE_DELAY_MS * (1.5 ** attempt)
    jitter = rng.randint(-300, 499)
    return int(max(500, base + jitter))


def is_block(result: FetchResult) -> bool:
    """403, or a 503 fingerprinted as a Cloudflare challenge."""
    if result.status_code == 403:
        return True
    if result.status_code != 503:
        return False
    headers = {k.lower(): str(v) for k, v in (result.headers or {}).items()}
    if "cf-ray" in headers or "cf-mitigated" in headers:
        return True
    if "cloudflare" in headers.get("server", "").lower():
        return True
    return any(marker in (result.body or "") for marker in _CHALLENGE_MARKERS)


def dedupe_candidates(candidates: List[SearchCandidate]) -> List[SearchCandidate]:
    out: List[SearchCandidate] = []
    seen = set()
    for candidate in candidates:
        key = candidate.detail_url or f"{candidate.title}|{candidate.jav_id}"
        if key in seen:
            continue
        seen.add(key)
        out.append(candidate)
    return out


def choose_best_candidate(candidates: List[SearchCandidate], jav_id: str) -> Optional[SearchCandidate]:
    if not candidates:
        return None
    wanted = normalize_jav_id(jav_id)
    for candidate in candidates:
        if candidate.jav_id and normalize_jav_id(candidate.jav_id) == wanted:
            return candidate
        from_title = extract_jav_id(candidate.title)
        if from_title and normalize_jav_id(from_title) == wanted:
            return candidate
    query = (jav_id or "").strip().lower()
    if query:
        for candidate in candidates:
            if query in (candidate.title or "").lower():
                return candidate
    return candidates[0]


class JavDbSource(BaseSource):
    """JavDB catalog source with curl-impersonate first and requests as fallback"""

    name = "JavDB"

    def __init__(self, settings=None, fetchers=None, parser: Optional[JavDbHtmlParser] = None, event_bus=None):
        self.settings = settings
        self.parser = parser or JavDbHtmlParser()
        self.event_bus = event_bus
        if fetchers is None:
            fetchers = [CurlImpersonateFetcher(settings), RequestsFetcher(settings)]
        self.fetchers = list(fetchers)
        self.last_error = ""
        self.last_outcome = ""
        self._cookies: Dict[str, Dict[str, str]] = {}
        self._sleep = time.sleep
        self._rng = random.Random()
        self.base_url = ""
        self.mirror_urls: List[str] = []
        self.timeout_ms = 30000
        self.max_attempts_per_url = 4
        self.max_url_cycles = 2
        self.health_budget_ms = int(5000 * HEALTH_BUDGET_SHARE)
        self.reload_from_settings()

    def reload_from_settings(self):
        if self.settings is None:
            return
        self.base_url = str(self.settings.get("javdb_base_url", "") or "").strip()
        self.mirror_urls = list(self.settings.get("javdb_mirror_urls", []) or [])
        self.timeout_ms = int(self.settings.get("javdb_request_timeout_ms", 30000) or 30000)
        self.max_attempts_per_url = max(1, int(self.settings.get("javdb_max_attempts_per_url", 4) or 4))
        self.max_url_cycles = max(1, int(self.settings.get("javdb_max_url_cycles", 2) or 2))
        health_seconds = float(self.settings.get("health_check_timeout_seconds", 5.0) or 5.0)
        self.health_budget_ms = max(1, int(health_seconds * 1000 * HEALTH_BUDGET_SHARE))
        for fetcher in self.fetchers:
            reload = getattr(fetcher, "reload_from_settings", None)
            if callable(reload):
                reload()

    def endpoints(self) -> List[str]:
        if not (self.base_url or "").strip():
            raise ConfigurationError("javdb_base_url")
        return build_endpoints(self.base_url, self.mirror_urls)

    def search(self, jav_id: str) -> MediaRecord:
        """Candidates, best match, then its detail page. Empty record when nothing matched."""
        candidates = self.search_candidates(jav_id)
        selected = choose_best_candidate(candidates, jav_id)
        if selected is None:
            return MediaRecord.empty(normalize_jav_id(jav_id))
        detail = self.get_detail(selected.detail_url)
        if not detail.jav_id:
            detail.jav_id = selected.jav_id or normalize_jav_id(jav_id)
        if not detail.cover_url:
            detail.cover_url = selected.cover_url
        return detail

    def search_candidates(self, jav_id: str) -> List[SearchCandidate]:
        self.last_error = ""
        self.last_outcome = ""
        endpoints = self.endpoints()
        failures: List[Tuple[str, bool, str]] = []

        for cycle in range(self.max_url_cycles):
            for endpoint in endpoints:
                kind, candidates, error = self._search_on_endpoint(endpoint, jav_id)
                if kind == SearchOutcome.OK:
                    self.last_outcome = kind
                    return candidates
                if kind in (SearchOutcome.NO_RESULTS, SearchOutcome.ZERO_PARSED):
                    self.last_outcome = kind
                    self.last_error = outcome_message(kind, jav_id)
                    logger.info("JavDB %s for %s at %s", kind, jav_id, endpoint)
                    return []

                blocked = kind == SearchOutcome.BLOCKED
                failures.append((endpoint, blocked, error))
                if blocked:
                    logger.warning("JavDB endpoint blocked (cycle %d): %s (%s)", cycle + 1, endpoint, error)
                else:
                    logger.warning("JavDB endpoint failed (cycle %d): %s (%s)", cycle + 1, endpoint, error)
                if self.event_bus is not None:
                    self.event_bus.emit(Events.ENDPOINT_FAILED, {
                        "endpoint": endpoint,
                        "blocked": blocked,
                        "error": error,
                    })

        if failures and all(blocked for _, blocked, _ in failures):
            self.last_outcome = SearchOutcome.BLOCKED
            self.last_error = outcome_message(SearchOutcome.BLOCKED, jav_id)
        else:
            self.last_outcome = SearchOutcome.FAILED
            detail = failures[-1][2] if failures else ""
            self.last_error = outcome_message(SearchOutcome.FAILED, jav_id, detail)
        return []

    def _search_on_endpoint(self, endpoint: str, jav_id: str) -> Tuple[str, List[SearchCandidate], str]:
        """One endpoint: home page for cookies, then the search page with the home page as referer."""
        self._seed_cookies(endpoint)
        home_url = with_locale(endpoint)
        home = self._get_with_retry(home_url, None, self.max_attempts_per_url)
        if not home.ok:
            return self._failure_kind(home), [], home.describe()

        search_url = with_locale(f"{endpoint}/search?q={quote(jav_id.strip(), safe='')}&f=all")
        page = self._get_with_retry(search_url, home_url, self.max_attempts_per_url)
        if not page.ok:
            return self._failure_kind(page), [], page.describe()

        candidates = self.parser.parse_search_results(page.body)
        for candidate in candidates:
            if candidate.detail_url and not candidate.detail_url.lower().startswith(("http://", "https://")):
                prefix = "" if candidate.detail_url.startswith("/") else "/"
                candidate.detail_url = f"{endpoint}{prefix}{candidate.detail_url}"
        candidates = dedupe_candidates(candidates)
        if candidates:
            logger.info("JavDB returned %d candidate(s) for %s from %s", len(candidates), jav_id, endpoint)
            return SearchOutcome.OK, candidates, ""
        if self.parser.is_empty_result_page(page.body):
            return SearchOutcome.NO_RESULTS, [], ""
        return SearchOutcome.ZERO_PARSED, [], ""

    @staticmethod
    def _failure_kind(result: FetchResult) -> str:
        return SearchOutcome.BLOCKED if is_block(result) else SearchOutcome.FAILED

    def get_detail(self, detail_url: str) -> MediaRecord:
        """Detail URLs are endpoint specific; they are not retried against mirrors."""
        base = (self.base_url or "").strip().rstrip("/")
        url = (detail_url or "").strip()
        if not url:
            raise DetailFetchError(detail_url, "empty detail URL")
        if not url.lower().startswith(("http://", "https://")):
            if not base:
                raise ConfigurationError("javdb_base_url")
            url = f"{base}{'' if url.startswith('/') else '/'}{url}"
        url = with_locale(url)

        if base and url.startswith(base):
            referer = with_locale(base)
        else:
            parts = urlparse(url)
            referer = with_locale(f"{parts.scheme}://{parts.netloc}")
        self._seed_cookies(referer)

        result = self._get_with_retry(url, referer, self.max_attempts_per_url)
        if not result.ok:
            raise DetailFetchError(url, result.describe())

        record = self.parser.parse_detail_page(result.body)
        record.detail_url = url
        record.torrents = self.parser.parse_torrent_links(result.body)
        logger.info("JavDB detail %s: %d torrent(s)", record.jav_id or url, len(record.torrents))
        return record

    def check_health(self) -> HealthCheckResult:
        """
        Probe the endpoints within ``health_budget_ms``; healthy at the first 2xx.

        Attempts go round-robin over the endpoints with no jitter or backoff.
        Each probe gets the unspent budget split evenly over the endpoints
        still due in the current round, so a primary that hangs until its
        timeout leaves time for the mirrors behind it.
        """
        started = time.perf_counter()
        try:
            endpoints = self.endpoints()
        except ConfigurationError:
            return HealthCheckResult(service_name=self.name, is_healthy=False,
                                     message="No JavDB base URL configured")

        deadline = started + self.health_budget_ms / 1000.0
        retired = set()
        last: Optional[FetchResult] = None
        for attempt in range(HEALTH_ATTEMPTS):
            for index, endpoint in enumerate(endpoints):
                if endpoint in retired:
                    continue
                remaining_ms = (deadline - time.perf_counter()) * 1000.0
                due = sum(1 for e in endpoints[index:] if e not in retired)
                if remaining_ms <= 0:
                    break
                self._seed_cookies(endpoint)
                result = self._probe(endpoint, min(HEALTH_TIMEOUT_MS, remaining_ms / due))
                if result.ok:
                    return HealthCheckResult(
                        service_name=self.name,
                        is_healthy=True,
                        message="OK",
                        url=endpoint,
                        latency_ms=(time.perf_counter() - started) * 1000.0,
                    )
                logger.debug("JavDB health %s attempt %d: %s", endpoint, attempt + 1, result.describe())
                last = result
                if result.status_code not in RETRYABLE_STATUSES:
                    retired.add(endpoint)

        message = "JavDB unreachable"
        if last is not None:
            message = f"{message}: {last.describe()}"
        return HealthCheckResult(
            service_name=self.name,
            is_healthy=False,
            message=message,
            url=self.base_url,
            latency_ms=(time.perf_counter() - started) * 1000.0,
        )

    def _probe(self, url: str, budget_ms: float) -> FetchResult:
        """One pass of the fetcher chain that never runs past ``budget_ms``."""
        fetchers = [fetcher for fetcher in self.fetchers if fetcher.is_available()]
        cookie_header = self._cookie_header(url)
        slot_deadline = time.perf_counter() + budget_ms / 1000.0
        last: Optional[FetchResult] = None
        for position, fetcher in enumerate(fetchers):
            remaining_ms = (slot_deadline - time.perf_counter()) * 1000.0
            share = int(remaining_ms / (len(fetchers) - position))
            if share < max(1, getattr(fetcher, "min_timeout_ms", 0)):
                continue
            result = fetcher.get(url, referer=None, cookie_header=cookie_header, timeout_ms=share)
            if result.ok:
                return result
            last = result
        return last or FetchResult.failure("No HTTP fetcher fits the health-check budget")

    def _seed_cookies(self, url: str):
        host = urlparse(url).netloc
        if not host:
            return
        jar = self._cookies.setdefault(host, {})
        for name, value in SEED_COOKIES:
            jar[name] = value

    def _cookie_header(self, url: str) -> Optional[str]:
        jar = self._cookies.get(urlparse(url).netloc)
        if not jar:
            return None
        return "; ".join(f"{k}={v}" for k, v in jar.items())

    def _get_with_retry(self, url: str, referer: Optional[str], max_attempts: int) -> FetchResult:
        last = FetchResult.failure("no attempts made")
        for attempt in range(max(1, max_attempts)):
            if attempt == 0:
                self._sleep(self._rng.randint(100, 399) / 1000.0)
            else:
                self._sleep(retry_delay_ms(attempt, self._rng) / 1000.0)

            last = self._send(url, referer, self.timeout_ms)
            if last.ok:
                return last
            logger.debug("GET %s attempt %d/%d: %s", url, attempt + 1, max_attempts, last.describe())
            if last.status_code not in RETRYABLE_STATUSES:
                return last
        return last

    def _send(self, url: str, referer: Optional[str], timeout_ms: int) -> FetchResult:
        """Run the fetcher chain; the first 2xx wins."""
        cookie_header = self._cookie_header(url)
        last: Optional[FetchResult] = None
        blocked: Optional[FetchResult] = None
        for fetcher in self.fetchers:
            if not fetcher.is_available():
                continue
            result = fetcher.get(url, referer=referer, cookie_header=cookie_header, timeout_ms=timeout_ms)
            if result.ok:
                return result
            logger.debug("%s failed for %s: %s", getattr(fetcher, "name", type(fetcher).__name__), url, result.describe())
            if blocked is None and is_block(result):
                blocked = result
            last = result
        # A block seen anywhere in the chain outranks a later transport error.
        return blocked or last or FetchResult.failure("No HTTP fetcher available")
