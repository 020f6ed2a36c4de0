"""
JavDB HTML parser
Listing pages, detail pages and the magnet table, turned into typed records
"""
from typing import Dict, List, Optional, Sequence
import re

from bs4 import BeautifulSoup

from ..models.media_record import MarkerType, MediaRecord, SearchCandidate, TorrentRecord, parse_iso_date
from ..utils.jav_id import extract_jav_id
from ..utils.size_parser import find_size_in_text, parse_size, size_from_magnet
from ..utils.title_variants import split_title_variants
from ..utils.torrent_name import parse_uncensored_marker

SOURCE_SITE = "JavDB"

FIELD_LABELS: Dict[str, Sequence[str]] = {
    "release_date": ("發行日期", "发行日期", "發布日期", "発売日", "Released Date", "Release Date", "日期"),
    "duration": ("時長", "时长", "片長", "片长", "収録時間", "Duration"),
    "director": ("導演", "导演", "監督", "Director"),
    "maker": ("片商", "製作商", "制作商", "メーカー", "Maker", "Studio"),
    "publisher": ("發行", "发行", "レーベル", "Publisher", "Label"),
    "series": ("系列", "シリーズ", "Series"),
    "actors": ("演員", "演员", "出演者", "Actor(s)", "Actors", "Actor"),
    "categories": ("類別", "类别", "ジャンル", "Tags"),
}

EMPTY_PAGE_TEXTS = ("暫無內容", "暂无内容", "No content", "沒有找到", "没有找到")
_PLACEHOLDER_VALUES = {"n/a", "-", "--"}
_ID_SELECTORS = ".uid, .video-id, .video-uid, .video_id"
_DURATION_RE = re.compile(r"(\d+)\s*(?:分鐘|分钟|min)", re.IGNORECASE)
_HD_RE = re.compile(r"HD|1080|720|4K", re.IGNORECASE)


def _inline(text: Optional[str]) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


def _clean_label(text: str) -> str:
    return _inline(text).rstrip(":：").strip()


def _visible_title(link) -> str:
    """Anchor text without the id-bearing child nodes."""
    skipped = {id(node) for node in link.select(_ID_SELECTORS)}
    parts = [
        str(text) for text in link.find_all(string=True)
        if not any(id(parent) in skipped for parent in text.parents)
    ]
    return _inline(" ".join(parts))


def _cover_of(node) -> str:
    img = node.select_one("img.video-cover")
    if img is None:
        return ""
    return str(img.get("src") or img.get("data-src") or "").strip()


def parse_duration(text: str) -> int:
    if not text:
        return 0
    match = _DURATION_RE.search(text)
    if match:
        return int(match.group(1))
    stripped = text.strip()
    return int(stripped) if stripped.isdigit() else 0


class JavDbHtmlParser:
    """Stateless parser; one instance can be shared between threads"""

    parser_backend = "html.parser"

    def _soup(self, html: str) -> BeautifulSoup:
        return BeautifulSoup(html or "", self.parser_backend)

    def parse_search_results(self, html: str) -> List[SearchCandidate]:
        soup = self._soup(html)
        results: List[SearchCandidate] = []
        for item in soup.select("div.item"):
            link = item.select_one("a.box")
            if link is None:
                continue
            title = str(link.get("title") or "").strip() or _visible_title(link)
            detail_url = str(link.get("href") or "").strip()

            id_node = item.select_one(_ID_SELECTORS)
            jav_id = (
                (extract_jav_id(_inline(id_node.get_text(" "))) if id_node is not None else None)
                or extract_jav_id(_inline(item.get_text(" ")))
                or extract_jav_id(title)
                or ""
            )
            results.append(SearchCandidate(
                jav_id=jav_id,
                title=title,
                detail_url=detail_url,
                cover_url=_cover_of(item),
            ))
        return results

    def is_empty_result_page(self, html: str) -> bool:
        """True when the page explicitly says the search found nothing."""
        soup = self._soup(html)
        if soup.select_one(".empty-message") is not None:
            return True
        if soup.select_one("div.item a.box") is not None:
            return False
        text = _inline(soup.get_text(" "))
        return any(marker in text for marker in EMPTY_PAGE_TEXTS)

    def _meta_labels(self, soup: BeautifulSoup) -> Dict[str, object]:
        """Map each cleaned metadata label to its ``strong`` node; first occurrence wins."""
        found: Dict[str, object] = {}
        for label_node in soup.select("div.video-meta-panel strong, div.panel-block strong"):
            label = _clean_label(label_node.get_text(" "))
            if label and label not in found:
                found[label] = label_node
        return found

    @staticmethod
    def _value_nodes(label_node) -> List[object]:
        """``strong ~ span`` when present, else the run of ``strong ~ a`` siblings."""
        span = label_node.find_next_sibling("span")
        if span is not None:
            return [span]
        return list(label_node.find_next_siblings("a"))

    def _field_text(self, meta: Dict[str, object], field_name: str) -> str:
        for label in FIELD_LABELS[field_name]:
            node = meta.get(label)
            if node is None:
                continue
            for value in self._value_nodes(node):
                text = _inline(value.get_text(" "))
                if text and text.lower() not in _PLACEHOLDER_VALUES:
                    return text
        return ""

    def _field_list(self, meta: Dict[str, object], field_name: str) -> List[str]:
        for label in FIELD_LABELS[field_name]:
            node = meta.get(label)
            if node is None:
                continue
            values: List[str] = []
            for value in self._value_nodes(node):
                anchors = [value] if value.name == "a" else value.find_all("a")
                values.extend(_inline(a.get_text(" ")) for a in anchors)
            values = [v for v in values if v]
            if values:
                return values
        return []

    def parse_detail_page(self, html: str) -> MediaRecord:
        soup = self._soup(html)
        title_node = soup.select_one("h2.title")
        raw_title = _inline(title_node.get_text(" ")) if title_node is not None else ""
        title, title_zh = split_title_variants(raw_title)

        id_node = soup.select_one("span.current-title")
        jav_id = _inline(id_node.get_text(" ")) if id_node is not None else ""
        if not jav_id:
            jav_id = extract_jav_id(raw_title) or ""

        meta = self._meta_labels(soup)
        return MediaRecord(
            jav_id=jav_id,
            title=title,
            title_zh=title_zh,
            cover_url=_cover_of(soup),
            release_date=parse_iso_date(self._field_text(meta, "release_date")),
            duration=parse_duration(self._field_text(meta, "duration")),
            director=self._field_text(meta, "director"),
            maker=self._field_text(meta, "maker"),
            publisher=self._field_text(meta, "publisher"),
            series=self._field_text(meta, "series"),
            actors=self._field_list(meta, "actors"),
            categories=self._field_list(meta, "categories"),
        )

    def parse_torrent_links(self, html: str) -> List[TorrentRecord]:
        soup = self._soup(html)
        torrents: List[TorrentRecord] = []
        seen = set()
        for row in soup.select("div.magnet-name"):
            anchor = row.select_one("a[href^='magnet:']")
            if anchor is None:
                continue
            magnet = str(anchor.get("href") or "").strip()
            infohash = TorrentRecord.extract_infohash(magnet)
            if infohash:
                if infohash in seen:
                    continue
                seen.add(infohash)

            name_node = row.select_one("span.name")
            meta_node = row.select_one("span.meta")
            title = _inline(name_node.get_text(" ")) if name_node is not None else ""
            meta_text = _inline(meta_node.get_text(" ")) if meta_node is not None else ""
            size = size_from_magnet(magnet) or parse_size(meta_text) or find_size_in_text(meta_text) or 0

            has_subtitle = has_uncensored = has_hd = False
            for tag in row.select("span.tag"):
                text = _inline(tag.get_text(" "))
                if not text:
                    continue
                if "字幕" in text or "中文" in text:
                    has_subtitle = True
                if "無碼" in text or "无码" in text or "破解" in text:
                    has_uncensored = True
                if "高清" in text or _HD_RE.search(text):
                    has_hd = True
            if not has_hd and _HD_RE.search(title):
                has_hd = True

            has_uncensored = has_uncensored or parse_uncensored_marker(title) != MarkerType.NONE
            if has_uncensored:
                marker = MarkerType.UC if has_subtitle else MarkerType.U
            else:
                marker = MarkerType.NONE

            torrents.append(TorrentRecord(
                title=title,
                magnet_link=magnet,
                size=size,
                has_uncensored_marker=has_uncensored,
                uncensored_marker_type=marker,
                has_subtitle=has_subtitle,
                has_hd=has_hd,
                source_site=SOURCE_SITE,
            ))
        return torrents
