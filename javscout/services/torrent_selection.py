"""
Torrent Selection Service
Applies the configured weight scheme and marker filter
"""
from typing import List, Optional

from ..core.scoring import DEFAULT_SCHEME, TorrentScorer, TorrentSelector, format_torrent_summary
from ..models.media_record import TorrentRecord


class TorrentSelectionService:
    def __init__(self, settings=None, scheme: Optional[str] = None, hide_other_torrents: Optional[bool] = None):
        self.settings = settings
        self._scheme = scheme
        self._hide = hide_other_torrents

    def _selector(self) -> TorrentSelector:
        # Settings are read per call so runtime changes apply to the next search.
        scheme = self._scheme
        hide = self._hide
        if self.settings is not None:
            if scheme is None:
                scheme = str(self.settings.get("torrent_weight_scheme", DEFAULT_SCHEME) or DEFAULT_SCHEME)
            if hide is None:
                hide = bool(self.settings.get("hide_other_torrents", True))
        return TorrentSelector(TorrentScorer(scheme or DEFAULT_SCHEME), hide_other_torrents=bool(hide))

    def select_best(self, torrents: List[TorrentRecord]) -> Optional[TorrentRecord]:
        return self._selector().select_best(torrents)

    def get_sorted(self, torrents: List[TorrentRecord]) -> List[TorrentRecord]:
        return self._selector().get_sorted(torrents)

    def format_torrent_info(self, torrents: List[TorrentRecord]) -> str:
        ranked = self.get_sorted(torrents)
        summary = format_torrent_summary(ranked)
        if ranked:
            summary += f"\nRecommended: {ranked[0].title}"
        return summary
