"""
Local File Check Service
Looks for video files already on disk for a catalog id
"""
from typing import List
import logging

from ..core.errors import JavScoutError
from ..models.local_file import FileType, LocalFileInfo
from ..models.media_record import TorrentRecord
from ..utils.jav_id import normalize_jav_id
from .providers import LocalFileSearchProvider

logger = logging.getLogger(__name__)


class LocalFileCheckService:
    def __init__(self, provider: LocalFileSearchProvider):
        self.provider = provider

    def check_local_files(self, jav_id: str) -> List[LocalFileInfo]:
        normalized = normalize_jav_id(jav_id)
        try:
            found = self.provider.search(normalized)
        except Exception as e:
            raise JavScoutError(f"Local file check failed: {e}") from e
        videos = [f for f in found or [] if f.file_type == FileType.VIDEO]
        logger.debug("Local files for %s: %d match(es), %d video(s)", normalized, len(found or []), len(videos))
        return videos

    def file_exists(self, jav_id: str) -> bool:
        return bool(self.check_local_files(jav_id))

    @staticmethod
    def format_local_files(files: List[LocalFileInfo]) -> str:
        if not files:
            return "No local files found."
        lines = [f"Found {len(files)} local file(s):"]
        for i, info in enumerate(files, 1):
            modified = info.modified_date.strftime("%Y-%m-%d %H:%M") if info.modified_date else "-"
            lines.append(f"  {i}. {info.file_name}")
            lines.append(f"     {info.full_path} ({TorrentRecord.format_size(info.size)}, modified {modified})")
        return "\n".join(lines)
