"""
Catalog Record Models
Listing candidates, full media records and their torrent entries
"""
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional
import re


class MarkerType(Enum):
    """Uncensored marker found on a torrent"""
    NONE = "None"
    UC = "UC"
    U = "U"
    C = "C"

    @classmethod
    def parse(cls, value) -> "MarkerType":
        if isinstance(value, MarkerType):
            return value
        if isinstance(value, int):
            # Legacy integer column: None=0, UC=1, U=2, C=3
            ordered = [cls.NONE, cls.UC, cls.U, cls.C]
            return ordered[value] if 0 <= value < len(ordered) else cls.NONE
        text = str(value or "").strip()
        for member in cls:
            if member.value.lower() == text.lower():
                return member
        return cls.NONE


class DataSource(Enum):
    REMOTE = "Remote"
    LOCAL = "Local"


@dataclass
class TorrentRecord:
    """One downloadable torrent attached to a catalog entry"""
    title: str
    magnet_link: str
    size: int = 0  # bytes
    torrent_url: str = ""
    has_uncensored_marker: bool = False
    uncensored_marker_type: MarkerType = MarkerType.NONE
    has_subtitle: bool = False
    has_hd: bool = False
    seeders: int = 0
    leechers: int = 0
    source_site: str = ""
    # Assigned by TorrentScorer only.
    weight_score: float = field(default=0.0, init=False)

    @staticmethod
    def extract_infohash(magnet: str) -> str:
        match = re.search(r"btih:([a-fA-F0-9]+)", magnet or "")
        if match:
            return match.group(1).lower()
        return ""

    @staticmethod
    def format_size(bytes_size: int) -> str:
        """Format bytes to human readable size"""
        value = float(bytes_size or 0)
        for unit in ["B", "KB", "MB", "GB", "TB"]:
            if value < 1024.0:
                return f"{value:.2f} {unit}"
            value /= 1024.0
        return f"{value:.2f} PB"

    @property
    def infohash(self) -> str:
        return self.extract_infohash(self.magnet_link)

    @property
    def size_formatted(self) -> str:
        return self.format_size(self.size)

    @property
    def marker_labels(self) -> List[str]:
        labels = []
        if self.has_hd:
            labels.append("HD")
        if self.has_uncensored_marker:
            labels.append("Uncensored")
        if self.has_subtitle:
            labels.append("Subtitle")
        return labels

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "magnet_link": self.magnet_link,
            "torrent_url": self.torrent_url,
            "size": int(self.size or 0),
            "has_uncensored_marker": bool(self.has_uncensored_marker),
            "uncensored_marker_type": self.uncensored_marker_type.value,
            "has_subtitle": bool(self.has_subtitle),
            "has_hd": bool(self.has_hd),
            "seeders": int(self.seeders or 0),
            "leechers": int(self.leechers or 0),
            "source_site": self.source_site,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TorrentRecord":
        data = data or {}
        return cls(
            title=str(data.get("title") or ""),
            magnet_link=str(data.get("magnet_link") or ""),
            torrent_url=str(data.get("torrent_url") or ""),
            size=int(data.get("size") or 0),
            has_uncensored_marker=bool(data.get("has_uncensored_marker", False)),
            uncensored_marker_type=MarkerType.parse(data.get("uncensored_marker_type")),
            has_subtitle=bool(data.get("has_subtitle", False)),
            has_hd=bool(data.get("has_hd", False)),
            seeders=int(data.get("seeders") or 0),
            leechers=int(data.get("leechers") or 0),
            source_site=str(data.get("source_site") or ""),
        )


@dataclass
class SearchCandidate:
    """One entry of a search listing page"""
    jav_id: str
    title: str
    detail_url: str
    cover_url: str = ""


@dataclass
class MediaRecord:
    """Full catalog entry assembled from a detail page or the local cache"""
    jav_id: str
    title: str = ""
    title_zh: str = ""
    cover_url: str = ""
    release_date: Optional[date] = None
    duration: int = 0  # minutes
    director: str = ""
    maker: str = ""
    publisher: str = ""
    series: str = ""
    actors: List[str] = field(default_factory=list)
    categories: List[str] = field(default_factory=list)
    torrents: List[TorrentRecord] = field(default_factory=list)
    detail_url: str = ""
    data_source: DataSource = DataSource.REMOTE
    fetched_at: Optional[datetime] = None

    @classmethod
    def empty(cls, jav_id: str) -> "MediaRecord":
        return cls(jav_id=jav_id)

    @property
    def has_torrents(self) -> bool:
        return bool(self.torrents)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "jav_id": self.jav_id,
            "title": self.title,
            "title_zh": self.title_zh,
            "cover_url": self.cover_url,
            "release_date": self.release_date.isoformat() if self.release_date else None,
            "duration": int(self.duration or 0),
            "director": self.director,
            "maker": self.maker,
            "publisher": self.publisher,
            "series": self.series,
            "actors": list(self.actors),
            "categories": list(self.categories),
            "torrents": [t.to_dict() for t in self.torrents],
            "detail_url": self.detail_url,
            "data_source": self.data_source.value,
            "fetched_at": self.fetched_at.isoformat() if self.fetched_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MediaRecord":
        data = data or {}
        source = data.get("data_source")
        return cls(
            jav_id=str(data.get("jav_id") or ""),
            title=str(data.get("title") or ""),
            title_zh=str(data.get("title_zh") or ""),
            cover_url=str(data.get("cover_url") or ""),
            release_date=parse_iso_date(data.get("release_date")),
            duration=int(data.get("duration") or 0),
            director=str(data.get("director") or ""),
            maker=str(data.get("maker") or ""),
            publisher=str(data.get("publisher") or ""),
            series=str(data.get("series") or ""),
            actors=[str(a) for a in (data.get("actors") or [])],
            categories=[str(c) for c in (data.get("categories") or [])],
            torrents=[TorrentRecord.from_dict(t) for t in (data.get("torrents") or [])],
            detail_url=str(data.get("detail_url") or ""),
            data_source=DataSource.LOCAL if source == DataSource.LOCAL.value else DataSource.REMOTE,
            fetched_at=parse_iso_datetime(data.get("fetched_at")),
        )


def parse_iso_date(value) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value or "").strip()
    if not text:
        return None
    for fmt in ("%Y-%m-%d", "%Y/%m/%d", "%Y.%m.%d"):
        try:
            return datetime.strptime(text[:10], fmt).date()
        except ValueError:
            continue
    return None


def parse_iso_datetime(value) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    text = str(value or "").strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None
