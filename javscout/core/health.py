"""
Health Checks
Concurrent probing of external collaborators and the availability snapshot built from it
"""
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Iterable, List, Optional
import logging
import time

from .event_bus import Events

logger = logging.getLogger(__name__)


@dataclass
class HealthCheckResult:
    service_name: str
    is_healthy: bool
    message: str = ""
    url: str = ""
    attempts: int = 1
    latency_ms: float = 0.0


def _checker_name(checker) -> str:
    return str(getattr(checker, "service_name", "") or getattr(checker, "name", "") or type(checker).__name__)


@dataclass(frozen=True)
class ServiceAvailability:
    """
    Snapshot of which optional services answered their health check.

    ``None`` means the service was not checked; unknown services are treated
    as available so a missing health checker never disables a feature.
    """
    local_dedup_healthy: Optional[bool] = None
    download_queue_healthy: Optional[bool] = None
    remote_search_healthy: Optional[bool] = None

    LOCAL_FILE_NAMES = ("everything", "local")
    DOWNLOAD_QUEUE_NAMES = ("qbittorrent", "download")
    REMOTE_SEARCH_NAMES = ("javdb",)

    @property
    def local_dedup_available(self) -> bool:
        return self.local_dedup_healthy is not False

    @property
    def download_queue_available(self) -> bool:
        return self.download_queue_healthy is not False

    @property
    def remote_search_available(self) -> bool:
        return self.remote_search_healthy is not False

    @classmethod
    def all_available(cls) -> "ServiceAvailability":
        return cls()

    @classmethod
    def from_results(cls, results: Iterable[HealthCheckResult]) -> "ServiceAvailability":
        local = queue = remote = None
        for result in results or []:
            name = (result.service_name or "").lower()
            if any(token in name for token in cls.LOCAL_FILE_NAMES):
                local = bool(result.is_healthy)
            elif any(token in name for token in cls.DOWNLOAD_QUEUE_NAMES):
                queue = bool(result.is_healthy)
            elif any(token in name for token in cls.REMOTE_SEARCH_NAMES):
                remote = bool(result.is_healthy)
        return cls(local_dedup_healthy=local, download_queue_healthy=queue, remote_search_healthy=remote)


class HealthCheckService:
    """Runs every registered checker in parallel with bounded retries"""

    def __init__(self, checkers=None, settings=None, event_bus=None, attempts: int = 3, timeout_seconds: float = 5.0):
        self.checkers = list(checkers or [])
        self.event_bus = event_bus
        self.attempts = max(1, int(attempts))
        self.timeout_seconds = max(0.1, float(timeout_seconds))
        if settings is not None:
            self.attempts = max(1, int(settings.get("health_check_attempts", self.attempts) or self.attempts))
            self.timeout_seconds = max(
                0.1, float(settings.get("health_check_timeout_seconds", self.timeout_seconds) or self.timeout_seconds)
            )
        self._sleep = time.sleep
        self.retry_delay_seconds = 0.2

    def register(self, checker):
        if not callable(getattr(checker, "check_health", None)):
            raise ValueError("Health checker must implement callable check_health().")
        self.checkers.append(checker)

    def check_all(self) -> List[HealthCheckResult]:
        """One result per checker, in registration order."""
        if not self.checkers:
            return []
        workers = len(self.checkers)
        # Attempts run on their own pool so a hung probe cannot starve the next attempt.
        attempt_pool = ThreadPoolExecutor(max_workers=workers * self.attempts, thread_name_prefix="health-attempt")
        try:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="health") as pool:
                futures = [pool.submit(self._check_with_retry, checker, attempt_pool) for checker in self.checkers]
                results = [future.result() for future in futures]
        finally:
            attempt_pool.shutdown(wait=False)

        for result in results:
            level = logging.INFO if result.is_healthy else logging.WARNING
            logger.log(level, "Health check %s: %s (%s, %d attempt(s))",
                       result.service_name, "healthy" if result.is_healthy else "unhealthy",
                       result.message, result.attempts)
        if self.event_bus is not None:
            self.event_bus.emit(Events.HEALTH_CHECK_COMPLETED, {"results": results})
        return results

    def check_availability(self) -> ServiceAvailability:
        return ServiceAvailability.from_results(self.check_all())

    def _check_with_retry(self, checker, attempt_pool: ThreadPoolExecutor) -> HealthCheckResult:
        name = _checker_name(checker)
        last: Optional[HealthCheckResult] = None
        for attempt in range(1, self.attempts + 1):
            started = time.perf_counter()
            future = attempt_pool.submit(checker.check_health)
            try:
                result = future.result(timeout=self.timeout_seconds)
            except FutureTimeoutError:
                future.cancel()
                result = HealthCheckResult(
                    service_name=name,
                    is_healthy=False,
                    message=f"Timed out after {self.timeout_seconds:g}s",
                )
            except Exception as e:
                result = HealthCheckResult(service_name=name, is_healthy=False, message=str(e) or type(e).__name__)

            result.attempts = attempt
            if not result.latency_ms:
                result.latency_ms = (time.perf_counter() - started) * 1000.0
            if not result.service_name:
                result.service_name = name
            last = result
            if result.is_healthy:
                return result
            logger.debug("Health check %s attempt %d/%d failed: %s", name, attempt, self.attempts, result.message)
            if attempt < self.attempts and self.retry_delay_seconds > 0:
                self._sleep(self.retry_delay_seconds)
        return last
