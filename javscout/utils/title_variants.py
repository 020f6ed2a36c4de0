"""
Title variant splitting.

With the zh locale JavDB renders the translated title, a "show original
title" toggle, and the original (usually Japanese) title in one heading.
"""
from __future__ import annotations

import re
from typing import Tuple

ORIGINAL_TITLE_MARKERS = (
    "顯示原標題",
    "显示原标题",
    "Show original title",
    "Show Original Title",
)


def _contains_kana(text: str) -> bool:
    for ch in text:
        cp = ord(ch)
        # Hiragana, Katakana, halfwidth Katakana
        if 0x3040 <= cp <= 0x309F or 0x30A0 <= cp <= 0x30FF or 0xFF65 <= cp <= 0xFF9F:
            return True
    return False


def split_title_variants(raw_title: str) -> Tuple[str, str]:
    """Return ``(original_title, translated_title)``; the second is "" when absent."""
    normalized = re.sub(r"\s+", " ", raw_title or "").strip()
    if not normalized:
        return "", ""

    for marker in ORIGINAL_TITLE_MARKERS:
        idx = normalized.find(marker)
        if idx < 0:
            continue
        left = normalized[:idx].strip()
        right = normalized[idx + len(marker):].strip()
        if not left or not right:
            return (left or right), ""

        left_kana = _contains_kana(left)
        right_kana = _contains_kana(right)
        if left_kana and not right_kana:
            return left, right
        # Translated title comes first, original after the marker.
        return right, left

    return normalized, ""
