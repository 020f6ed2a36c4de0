"""
Local catalog cache.

Shared contract for both backends (lazy expiry on every read path, ids keyed
in canonical ``PREFIX-NUMBER`` form), the JSON document backend, and the
factory that picks a backend from settings.
"""
from __future__ import annotations

import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional

from ..models.media_record import DataSource, MediaRecord, TorrentRecord, parse_iso_datetime
from ..utils.jav_id import normalize_cache_id
from ..utils.resources import resolve_data_path
from .errors import CacheError

logger = logging.getLogger(__name__)

SQLITE_DEFAULT_NAME = "jav_cache.db"
JSON_DEFAULT_NAME = "jav_cache.json"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive timestamps are taken to be UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_expired(fetched_at: Optional[datetime], expiration_days: int, now: Optional[datetime] = None) -> bool:
    if not expiration_days or expiration_days <= 0:
        return False
    stamp = as_utc(fetched_at)
    if stamp is None:
        return False
    return (as_utc(now) or utc_now()) - stamp > timedelta(days=expiration_days)


@dataclass
class CacheStatistics:
    total_count: int = 0
    total_torrent_count: int = 0
    storage_size_bytes: int = 0
    last_updated: Optional[datetime] = None


class LocalCacheStore(ABC):
    """Contract shared by the JSON and SQLite backends"""

    backend_name = "base"

    def __init__(self, path: Path, expiration_days: int = 0):
        self.path = Path(path)
        self.expiration_days = max(0, int(expiration_days or 0))
        self._lock = threading.RLock()

    def _require_id(self, jav_id: str) -> str:
        key = normalize_cache_id(jav_id)
        if not key:
            raise CacheError("Cannot cache a record without a catalog id.")
        return key

    def _expired(self, fetched_at: Optional[datetime]) -> bool:
        return is_expired(fetched_at, self.expiration_days)

    @abstractmethod
    def get(self, jav_id: str) -> Optional[MediaRecord]:
        """Cached record with ``data_source = Local``, or None when absent or expired."""

    @abstractmethod
    def save(self, record: MediaRecord) -> None:
        """Upsert by normalized id and stamp ``fetched_at``."""

    @abstractmethod
    def update_torrents(self, jav_id: str, torrents: List[TorrentRecord]) -> None:
        """Replace the torrent list of an existing entry; no-op when absent."""

    @abstractmethod
    def exists(self, jav_id: str) -> bool:
        ...

    @abstractmethod
    def delete(self, jav_id: str) -> bool:
        ...

    @abstractmethod
    def get_statistics(self) -> CacheStatistics:
        ...

    def close(self) -> None:
        return None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class JsonCacheStore(LocalCacheStore):
    """
    Whole-document JSON cache: ``{"items": {id: record}}``.

    Every write replaces the file atomically through a temp file in the same
    directory.
    """

    backend_name = "json"

    def __init__(self, path: Path, expiration_days: int = 0):
        path = Path(path)
        if path.suffix.lower() == ".db":
            path = path.with_suffix(".json")
        super().__init__(path, expiration_days)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._items: Dict[str, Dict] = {}
        self._load()

    def _load(self):
        with self._lock:
            if not self.path.exists():
                self._items = {}
                return
            try:
                with open(self.path, "r", encoding="utf-8") as f:
                    doc = json.load(f)
            except (OSError, ValueError) as e:
                raise CacheError(f"Could not read cache file {self.path}: {e}") from e
            items = doc.get("items") if isinstance(doc, dict) else None
            self._items = dict(items) if isinstance(items, dict) else {}

    def _persist(self, items: Dict[str, Dict]):
        """Write ``items`` atomically; they replace the in-memory state only once on disk."""
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump({"items": items}, f, ensure_ascii=False, indent=2)
            os.replace(tmp, self.path)
        except OSError as e:
            raise CacheError(f"Could not write cache file {self.path}: {e}") from e
        self._items = items

    def _without_expired(self) -> Dict[str, Dict]:
        return {
            key: data for key, data in self._items.items()
            if not self._expired(parse_iso_datetime((data or {}).get("fetched_at")))
        }

    def get(self, jav_id: str) -> Optional[MediaRecord]:
        key = normalize_cache_id(jav_id)
        if not key:
            return None
        with self._lock:
            data = self._items.get(key)
            if data is None:
                return None
            record = MediaRecord.from_dict(data)
            if self._expired(record.fetched_at):
                staged = dict(self._items)
                del staged[key]
                self._persist(staged)
                logger.debug("Evicted expired cache entry %s", key)
                return None
        record.data_source = DataSource.LOCAL
        return record

    def save(self, record: MediaRecord) -> None:
        key = self._require_id(record.jav_id)
        record.fetched_at = utc_now()
        data = record.to_dict()
        data["jav_id"] = key
        data["data_source"] = DataSource.LOCAL.value
        with self._lock:
            staged = dict(self._items)
            staged[key] = data
            self._persist(staged)

    def update_torrents(self, jav_id: str, torrents: List[TorrentRecord]) -> None:
        key = normalize_cache_id(jav_id)
        with self._lock:
            data = self._items.get(key)
            if data is None:
                return
            staged = dict(self._items)
            staged[key] = {
                **data,
                "torrents": [t.to_dict() for t in torrents or []],
                "fetched_at": utc_now().isoformat(),
            }
            self._persist(staged)

    def exists(self, jav_id: str) -> bool:
        return self.get(jav_id) is not None

    def delete(self, jav_id: str) -> bool:
        key = normalize_cache_id(jav_id)
        with self._lock:
            if key not in self._items:
                return False
            staged = dict(self._items)
            del staged[key]
            self._persist(staged)
            return True

    def get_statistics(self) -> CacheStatistics:
        with self._lock:
            live = self._without_expired()
            if len(live) != len(self._items):
                self._persist(live)
            records = [MediaRecord.from_dict(d) for d in self._items.values()]
        stamps = [as_utc(r.fetched_at) for r in records if r.fetched_at is not None]
        size = self.path.stat().st_size if self.path.exists() else 0
        return CacheStatistics(
            total_count=len(records),
            total_torrent_count=sum(len(r.torrents) for r in records),
            storage_size_bytes=size,
            last_updated=max(stamps) if stamps else None,
        )


def resolve_cache_path(settings, backend: str, data_dir: Optional[Path] = None) -> Path:
    default_name = JSON_DEFAULT_NAME if backend == "json" else SQLITE_DEFAULT_NAME
    configured = str(settings.get("cache_path", "") or "") if settings is not None else ""
    return resolve_data_path(configured, default_name, data_dir)


def create_cache_store(settings, data_dir: Optional[Path] = None) -> Optional[LocalCacheStore]:
    """Backend chosen by ``cache_backend``; None when caching is disabled."""
    if settings is not None and not bool(settings.get("cache_enabled", True)):
        return None
    backend = str(settings.get("cache_backend", "sqlite") if settings is not None else "sqlite").strip().lower()
    days = int(settings.get("cache_expiration_days", 0) or 0) if settings is not None else 0
    path = resolve_cache_path(settings, backend, data_dir)
    logger.info("Local cache: %s backend at %s", backend, path)
    if backend == "json":
        return JsonCacheStore(path, expiration_days=days)
    from .sqlite_cache import SqliteCacheStore
    return SqliteCacheStore(path, expiration_days=days)
