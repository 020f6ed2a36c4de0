"""Uncensored marker grammar for torrent names."""
from __future__ import annotations

import re

from ..models.media_record import MarkerType

# "-U" / "-UC" as a whole trailing token; "-UHD" and "-CH" do not qualify.
_UNCENSORED_MARKER_RE = re.compile(r"-(UC|U)(?=$|[^A-Za-z0-9])", re.IGNORECASE)
UNCENSORED_TOKENS = ("无码", "無碼", "uncensored")


def parse_uncensored_marker(torrent_name: str) -> MarkerType:
    name = torrent_name or ""
    match = _UNCENSORED_MARKER_RE.search(name)
    if match:
        return MarkerType.UC if match.group(1).upper() == "UC" else MarkerType.U
    lowered = name.lower()
    if any(token in lowered for token in UNCENSORED_TOKENS):
        return MarkerType.U
    return MarkerType.NONE
