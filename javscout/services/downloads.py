"""
Download Service
Queues a selected torrent with configured defaults
"""
from typing import Optional
import os
import logging

from ..core.errors import JavScoutError
from ..models.media_record import TorrentRecord
from .providers import DownloadQueueProvider

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "jav"
DEFAULT_TAGS = "jav-manager"


def existing_directory(path: Optional[str]) -> Optional[str]:
    """Absolute, existing directory after env/user expansion; None otherwise."""
    text = str(path or "").strip()
    if not text:
        return None
    expanded = os.path.expanduser(os.path.expandvars(text))
    if not os.path.isabs(expanded):
        return None
    full = os.path.abspath(expanded)
    return full if os.path.isdir(full) else None


class DownloadService:
    def __init__(self, provider: DownloadQueueProvider, settings=None):
        self.provider = provider
        self.settings = settings

    def _setting(self, key: str, default: str) -> str:
        if self.settings is None:
            return default
        value = self.settings.get(key, default)
        return default if value is None else str(value)

    def add_download(
        self,
        torrent: TorrentRecord,
        save_path: Optional[str] = None,
        category: Optional[str] = None,
        tags: Optional[str] = None,
    ) -> bool:
        candidate = save_path if save_path is not None else self._setting("download_save_path", "")
        resolved_path = existing_directory(candidate)
        if candidate and resolved_path is None:
            logger.warning("Ignoring download save path %r (not an existing absolute directory)", candidate)
        if category is None:
            category = self._setting("download_category", DEFAULT_CATEGORY)
        if tags is None:
            tags = self._setting("download_tags", DEFAULT_TAGS)

        try:
            return bool(self.provider.add_torrent(torrent.magnet_link, resolved_path, category, tags))
        except Exception as e:
            raise JavScoutError(f"Failed to add download: {e}") from e
