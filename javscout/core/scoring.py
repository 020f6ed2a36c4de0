"""
Torrent scoring and selection.

Every torrent gets a weight from its three quality markers under a named
scheme, then the list is ranked uncensored > subtitle > HD > weight > size.
"""
from typing import Dict, Iterable, List, Optional

from ..models.media_record import TorrentRecord

WEIGHT_SCHEMES: Dict[str, Dict[str, float]] = {
    "simple": {"uncensored": 1.0, "subtitle": 1.0, "hd": 1.0},
    "tiered": {"uncensored": 1000.0, "subtitle": 100.0, "hd": 10.0},
}
DEFAULT_SCHEME = "simple"


class TorrentScorer:
    def __init__(self, scheme: str = DEFAULT_SCHEME):
        key = (scheme or DEFAULT_SCHEME).strip().lower()
        if key not in WEIGHT_SCHEMES:
            raise ValueError(f"Unknown torrent weight scheme: {scheme!r}")
        self.scheme = key
        self.weights = WEIGHT_SCHEMES[key]

    def weight_of(self, torrent: TorrentRecord) -> float:
        score = 0.0
        if torrent.has_hd:
            score += self.weights["hd"]
        if torrent.has_uncensored_marker:
            score += self.weights["uncensored"]
        if torrent.has_subtitle:
            score += self.weights["subtitle"]
        return score

    def score(self, torrents: Iterable[TorrentRecord]) -> List[TorrentRecord]:
        out = list(torrents or [])
        for torrent in out:
            torrent.weight_score = self.weight_of(torrent)
        return out


def has_any_marker(torrent: TorrentRecord) -> bool:
    return bool(torrent.has_uncensored_marker or torrent.has_subtitle or torrent.has_hd)


def _rank_key(torrent: TorrentRecord):
    return (
        torrent.has_uncensored_marker,
        torrent.has_subtitle,
        torrent.has_hd,
        torrent.weight_score,
        int(torrent.size or 0),
    )


class TorrentSelector:
    def __init__(self, scorer: Optional[TorrentScorer] = None, hide_other_torrents: bool = False):
        self.scorer = scorer or TorrentScorer()
        self.hide_other_torrents = bool(hide_other_torrents)

    def get_sorted(self, torrents: Iterable[TorrentRecord]) -> List[TorrentRecord]:
        """Best first. With ``hide_other_torrents`` unmarked torrents are dropped first."""
        items = list(torrents or [])
        if self.hide_other_torrents:
            items = [t for t in items if has_any_marker(t)]
        self.scorer.score(items)
        # sorted() is stable, so equal keys keep page order.
        return sorted(items, key=_rank_key, reverse=True)

    def select_best(self, torrents: Iterable[TorrentRecord]) -> Optional[TorrentRecord]:
        ranked = self.get_sorted(torrents)
        return ranked[0] if ranked else None


def format_torrent_summary(torrents: List[TorrentRecord]) -> str:
    """Plain-text ranking, one numbered line per torrent."""
    if not torrents:
        return "No torrents available."
    lines = []
    for i, torrent in enumerate(torrents, 1):
        labels = ", ".join(torrent.marker_labels) or "-"
        lines.append(
            f"{i:>2}. {torrent.title or torrent.infohash or '(untitled)'}"
            f"  [{labels}]  {torrent.size_formatted}  weight={torrent.weight_score:g}"
        )
    return "\n".join(lines)
