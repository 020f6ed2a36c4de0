"""
Local File Model
Entries returned by the local file search provider
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class FileType(Enum):
    VIDEO = "Video"
    FOLDER = "Folder"
    TORRENT = "Torrent"


@dataclass
class LocalFileInfo:
    file_name: str
    full_path: str
    size: int = 0
    modified_date: Optional[datetime] = None
    file_type: FileType = FileType.VIDEO
