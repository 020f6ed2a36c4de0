"""
Source SDK
Base interface for javscout catalog sources.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List

from ..core.health import HealthCheckResult
from ..models.media_record import MediaRecord, SearchCandidate


class BaseSource(ABC):
    """
    Stable catalog source contract.

    ``search_candidates`` never raises for recoverable failures; it returns an
    empty list and leaves a human-readable reason in ``last_error``.
    """
    name = "UnnamedSource"
    last_error = ""

    @abstractmethod
    def search_candidates(self, jav_id: str) -> List[SearchCandidate]:
        """Return listing candidates for a catalog id."""
        raise NotImplementedError

    @abstractmethod
    def get_detail(self, detail_url: str) -> MediaRecord:
        """Fetch and parse one detail page into a full record."""
        raise NotImplementedError

    @abstractmethod
    def search(self, jav_id: str) -> MediaRecord:
        """Best candidate's full record; an empty record when nothing matched."""
        raise NotImplementedError

    @abstractmethod
    def check_health(self) -> HealthCheckResult:
        raise NotImplementedError

    def reload_from_settings(self) -> None:
        """Optional hook called when source settings are reloaded."""
        return None
