"""
Jav Search Service
Cache-first lookup, torrent selection, local dedup and download queueing
"""
from dataclasses import dataclass, field
from typing import List, Optional
import logging

from ..core.cache_store import LocalCacheStore
from ..core.errors import CacheError
from ..core.event_bus import EventBus, Events
from ..core.health import ServiceAvailability
from ..models.local_file import LocalFileInfo
from ..models.media_record import MediaRecord, TorrentRecord
from ..utils.jav_id import normalize_jav_id
from .downloads import DownloadService
from .local_files import LocalFileCheckService
from .torrent_selection import TorrentSelectionService

logger = logging.getLogger(__name__)


@dataclass
class SearchProcessResult:
    jav_id: str
    success: bool = False
    messages: List[str] = field(default_factory=list)
    record: Optional[MediaRecord] = None
    selected_torrent: Optional[TorrentRecord] = None
    available_torrents: List[TorrentRecord] = field(default_factory=list)
    local_files_found: bool = False
    local_files: List[LocalFileInfo] = field(default_factory=list)
    local_dedup_skipped: bool = False
    download_queue_skipped: bool = False
    downloaded: bool = False
    magnet_link: str = ""

    @property
    def message(self) -> str:
        return "\n".join(self.messages)


class JavSearchService:
    """
    End-to-end workflow for one catalog id.

    Optional collaborators degrade instead of failing: with local dedup
    unavailable the check is skipped, and with the download queue unavailable
    (or refusing the torrent) the magnet link is handed back for manual use.
    """

    def __init__(
        self,
        source,
        selection: TorrentSelectionService,
        local_files: LocalFileCheckService,
        downloads: DownloadService,
        availability: Optional[ServiceAvailability] = None,
        cache: Optional[LocalCacheStore] = None,
        event_bus: Optional[EventBus] = None,
    ):
        self.source = source
        self.selection = selection
        self.local_files = local_files
        self.downloads = downloads
        self.availability = availability or ServiceAvailability.all_available()
        self.cache = cache
        self.event_bus = event_bus

    def _emit(self, event_type: str, data=None):
        if self.event_bus is not None:
            self.event_bus.emit(event_type, data)

    @staticmethod
    def _note(result: SearchProcessResult, level: int, text: str):
        logger.log(level, "%s: %s", result.jav_id, text)
        result.messages.append(text)

    def process(self, jav_id: str, force_download: bool = False, force_remote: bool = False) -> SearchProcessResult:
        result = SearchProcessResult(jav_id=normalize_jav_id(jav_id))
        self._emit(Events.SEARCH_STARTED, {"jav_id": result.jav_id, "force_remote": force_remote})
        try:
            record = self._lookup(result, force_remote)
            if record is None:
                return self._finish(result)

            selected = self.selection.select_best(record.torrents)
            if selected is None:
                result.success = False
                self._note(result, logging.ERROR, "No torrent passed the selection filter.")
                return self._finish(result)

            self._describe_selection(result, selected)
            self._dedup_and_download(result, selected, force_download)
        except Exception as e:
            result.success = False
            logger.exception("Processing %s failed", result.jav_id)
            result.messages.append(f"Processing failed: {e}")
            self._emit(Events.SEARCH_ERROR, {"jav_id": result.jav_id, "error": str(e)})
        return self._finish(result)

    def process_selected_torrent(
        self,
        jav_id: str,
        torrent: TorrentRecord,
        force_download: bool = False,
    ) -> SearchProcessResult:
        result = SearchProcessResult(jav_id=normalize_jav_id(jav_id))
        try:
            self._describe_selection(result, torrent)
            self._dedup_and_download(result, torrent, force_download)
        except Exception as e:
            result.success = False
            logger.exception("Processing selected torrent for %s failed", result.jav_id)
            result.messages.append(f"Processing failed: {e}")
            self._emit(Events.SEARCH_ERROR, {"jav_id": result.jav_id, "error": str(e)})
        return self._finish(result)

    def search_only(self, jav_id: str, force_remote: bool = False) -> SearchProcessResult:
        """Ranked torrents and the record, without dedup or queueing."""
        result = SearchProcessResult(jav_id=normalize_jav_id(jav_id))
        self._emit(Events.SEARCH_STARTED, {"jav_id": result.jav_id, "force_remote": force_remote})
        try:
            record = self._lookup(result, force_remote)
            if record is not None:
                result.record = record
                result.available_torrents = self.selection.get_sorted(record.torrents)
                result.success = bool(result.available_torrents)
                if not result.success:
                    self._note(result, logging.WARNING, "No torrent passed the selection filter.")
        except Exception as e:
            result.success = False
            logger.exception("Search for %s failed", result.jav_id)
            result.messages.append(f"Search failed: {e}")
            self._emit(Events.SEARCH_ERROR, {"jav_id": result.jav_id, "error": str(e)})
        return self._finish(result)

    def _finish(self, result: SearchProcessResult) -> SearchProcessResult:
        self._emit(Events.SEARCH_COMPLETED, result)
        return result

    def _lookup(self, result: SearchProcessResult, force_remote: bool) -> Optional[MediaRecord]:
        """Cached record with torrents, else a remote search saved back to the cache."""
        jav_id = result.jav_id
        if not force_remote and self.cache is not None:
            self._note(result, logging.INFO, f"Searching local cache for {jav_id}")
            cached = self.cache.get(jav_id)
            if cached is not None and cached.has_torrents:
                stamp = cached.fetched_at.strftime("%Y-%m-%d %H:%M") if cached.fetched_at else "-"
                self._note(result, logging.INFO, f"Cache hit ({len(cached.torrents)} torrent(s), cached {stamp})")
                self._emit(Events.CACHE_HIT, {"jav_id": jav_id})
                result.record = cached
                return cached

        if not self.availability.remote_search_available:
            result.success = False
            self._note(result, logging.ERROR, "JavDB is unavailable; remote search skipped.")
            return None

        self._note(result, logging.INFO, f"Searching JavDB for {jav_id}")
        record = self.source.search(jav_id)
        if not record.has_torrents:
            result.success = False
            reason = getattr(self.source, "last_error", "") or f"No torrents found for {jav_id}"
            self._note(result, logging.ERROR, reason)
            result.record = record
            return None

        self._note(result, logging.INFO, f"JavDB returned {len(record.torrents)} torrent(s)")
        if self.cache is not None:
            try:
                self.cache.save(record)
                self._note(result, logging.INFO, "Saved to local cache")
                self._emit(Events.CACHE_SAVED, {"jav_id": record.jav_id})
            except CacheError as e:
                self._note(result, logging.WARNING, f"Could not save to local cache: {e}")
        result.record = record
        return record

    def _describe_selection(self, result: SearchProcessResult, torrent: TorrentRecord):
        result.selected_torrent = torrent
        labels = ", ".join(torrent.marker_labels) or "none"
        self._note(result, logging.INFO, f"Selected: {torrent.title}")
        self._note(result, logging.INFO, f"Markers: {labels} (weight {torrent.weight_score:g})")

    def _dedup_and_download(self, result: SearchProcessResult, torrent: TorrentRecord, force_download: bool):
        if not force_download:
            if not self.availability.local_dedup_available:
                result.local_dedup_skipped = True
                self._note(result, logging.WARNING, "Local file search is unavailable; duplicate check skipped.")
            else:
                try:
                    found = self.local_files.check_local_files(result.jav_id)
                    if found:
                        result.local_files_found = True
                        result.local_files = found
                        result.success = True
                        self._note(result, logging.INFO, f"{len(found)} local file(s) already present; not downloading.")
                        self._emit(Events.DOWNLOAD_SKIPPED, {"jav_id": result.jav_id, "reason": "local_files"})
                        return
                except Exception as e:
                    result.local_dedup_skipped = True
                    self._note(result, logging.WARNING, f"Local file check failed, continuing: {e}")

        if not self.availability.download_queue_available:
            self._fallback_to_magnet(result, torrent, "Download queue is unavailable; queueing skipped.")
            return

        try:
            queued = self.downloads.add_download(torrent)
        except Exception as e:
            self._fallback_to_magnet(result, torrent, f"Download queue error: {e}")
            return

        if queued:
            result.success = True
            result.downloaded = True
            self._note(result, logging.INFO, f"Download queued: {torrent.title}")
            self._emit(Events.DOWNLOAD_QUEUED, {"jav_id": result.jav_id, "torrent": torrent})
        else:
            self._fallback_to_magnet(result, torrent, "Download queue refused the torrent.")

    def _fallback_to_magnet(self, result: SearchProcessResult, torrent: TorrentRecord, reason: str):
        result.success = True
        result.download_queue_skipped = True
        result.magnet_link = torrent.magnet_link
        self._note(result, logging.WARNING, reason)
        result.messages.append("Add the magnet link manually:")
        result.messages.append(torrent.magnet_link)
        self._emit(Events.DOWNLOAD_SKIPPED, {"jav_id": result.jav_id, "reason": "queue_unavailable"})
