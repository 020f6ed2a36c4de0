"""
Collaborator contracts
Local-file search and download-queue clients are supplied by the host application.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional

from ..models.local_file import LocalFileInfo


class LocalFileSearchProvider(ABC):
    """Finds files on disk that already match a catalog id."""

    service_name = "Local files"

    @abstractmethod
    def search(self, normalized_id: str) -> List[LocalFileInfo]:
        raise NotImplementedError


class DownloadQueueProvider(ABC):
    """Accepts magnet links into a torrent client's queue."""

    service_name = "Download queue"

    @abstractmethod
    def add_torrent(
        self,
        magnet_link: str,
        save_path: Optional[str] = None,
        category: Optional[str] = None,
        tags: Optional[str] = None,
    ) -> bool:
        raise NotImplementedError
