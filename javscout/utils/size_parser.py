"""
Size text parsing.
JavDB and the download queue report sizes with binary multipliers (1 GB = 1024^3).
"""
from __future__ import annotations

import re
from typing import Optional

_MULTIPLIERS = {
    "B": 1,
    "K": 1024, "KB": 1024, "KIB": 1024,
    "M": 1024 ** 2, "MB": 1024 ** 2, "MIB": 1024 ** 2,
    "G": 1024 ** 3, "GB": 1024 ** 3, "GIB": 1024 ** 3,
    "T": 1024 ** 4, "TB": 1024 ** 4, "TIB": 1024 ** 4,
}

_EXACT_SIZE_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(B|KB|MB|GB|TB|KIB|MIB|GIB|TIB|K|M|G|T)\s*$", re.IGNORECASE)
_EMBEDDED_SIZE_RE = re.compile(r"(\d+(?:\.\d+)?)\s*(KiB|MiB|GiB|TiB|KB|MB|GB|TB|B)\b", re.IGNORECASE)
_MAGNET_XL_RE = re.compile(r"[?&]xl=(\d+)", re.IGNORECASE)


def parse_size(text: str) -> Optional[int]:
    """Parse "1.5GB", "100 MB", "1G" or a plain byte count. None when unparseable."""
    if text is None:
        return None
    raw = str(text).strip()
    if not raw:
        return None
    if raw.isdigit():
        return int(raw)
    match = _EXACT_SIZE_RE.match(raw)
    if not match:
        return None
    return int(float(match.group(1)) * _MULTIPLIERS[match.group(2).upper()])


def find_size_in_text(text: str) -> Optional[int]:
    """Find the first size token inside free text such as "1.23GB, 3 files"."""
    if not text:
        return None
    match = _EMBEDDED_SIZE_RE.search(text)
    if not match:
        return None
    size = int(float(match.group(1)) * _MULTIPLIERS[match.group(2).upper()])
    return size if size > 0 else None


def size_from_magnet(magnet_link: str) -> Optional[int]:
    """Exact length from a magnet's ``xl`` parameter."""
    match = _MAGNET_XL_RE.search(magnet_link or "")
    if not match:
        return None
    value = int(match.group(1))
    return value if value > 0 else None
