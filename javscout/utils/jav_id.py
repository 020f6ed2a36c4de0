"""Catalog id helpers: extraction from noisy text, normalization, validation."""
from __future__ import annotations

import re
from typing import Optional

# Whole-token ALPHA+-DIGITS or FC2-DIGITS.
_ID_TOKEN_RE = re.compile(r"(?<![A-Za-z0-9])(FC2-\d+|[A-Za-z]+-\d+)(?![A-Za-z0-9])", re.IGNORECASE)
_VALID_ID_RE = re.compile(r"^[A-Z0-9]+-\d+$", re.IGNORECASE)
_COMPACT_ID_RE = re.compile(r"^([A-Z]+)(\d+)$")


def extract_jav_id(text: str) -> Optional[str]:
    """Return the first catalog id token found in ``text`` (uppercased), or None."""
    if not text:
        return None
    match = _ID_TOKEN_RE.search(text)
    return match.group(1).upper() if match else None


def is_valid_jav_id(value: str) -> bool:
    return bool(value) and bool(_VALID_ID_RE.match(value))


def normalize_jav_id(value: str) -> str:
    """
    Normalize a user query or torrent/listing title for id comparison.

    "ipzz_408" -> "IPZZ-408", "IPZZ-408-UC.torrent 无码" -> "IPZZ-408".
    Text without a recognizable id comes back uppercased with spaces removed.
    """
    normalized = str(value or "").strip().replace("_", "-").upper()
    no_spaces = normalized.replace(" ", "")
    if _VALID_ID_RE.match(no_spaces):
        return no_spaces
    extractable = re.sub(r"[^A-Z0-9-]+", " ", normalized)
    match = re.search(r"\b[A-Z0-9]+-\d+\b", extractable)
    if match:
        return match.group(0)
    return no_spaces


def normalize_cache_id(value: str) -> str:
    """
    Canonical cache key: trimmed, uppercased, "ABC123" -> "ABC-123".

    Idempotent: ids that already contain a hyphen are left as they are.
    """
    normalized = str(value or "").strip().upper()
    if not normalized or "-" in normalized:
        return normalized
    match = _COMPACT_ID_RE.match(normalized)
    if match:
        return f"{match.group(1)}-{match.group(2)}"
    return normalized
