"""
SQLite-backed catalog cache.

Design goals:
- One row per catalog id in ``JavInfo``; actors, categories and torrents are
  JSON blobs on that row.
- Every category also gets an ``INTEGER`` flag column (``Cat_<name>``) so
  category lookups are plain column filters.
- Databases written by the old multi-table layout (schema version 1) are
  folded into the single-table layout once, on open.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
import sqlite3
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set

from ..models.media_record import (
    DataSource,
    MarkerType,
    MediaRecord,
    TorrentRecord,
    parse_iso_date,
    parse_iso_datetime,
)
from ..utils.jav_id import normalize_cache_id
from .cache_store import CacheStatistics, LocalCacheStore, as_utc, utc_now
from .errors import CacheError

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2
JAV_INFO_TABLE = "JavInfo"
LEGACY_TABLES = ("JavActors", "JavCategories", "Torrents")
CATEGORY_PREFIX = "Cat_"
MAX_CATEGORY_NAME = 40

# Columns an older JavInfo table may lack.
_JSON_COLUMNS = {
    "ActorsJson": "TEXT NOT NULL DEFAULT '[]'",
    "CategoriesJson": "TEXT NOT NULL DEFAULT '[]'",
    "TorrentsJson": "TEXT NOT NULL DEFAULT '[]'",
    "TorrentCount": "INTEGER NOT NULL DEFAULT 0",
}


def _quote(identifier: str) -> str:
    return "[" + identifier.replace("]", "]]") + "]"


def category_column_name(category: str) -> str:
    """``"Big Tits"`` -> ``Cat_Big_Tits``; long names are cut and suffixed with a SHA-1 prefix."""
    text = (category or "").strip()
    safe = re.sub(r"[\s\W]+", "_", text).strip("_")
    if not safe:
        return f"{CATEGORY_PREFIX}Unknown"
    if len(safe) > MAX_CATEGORY_NAME:
        digest = hashlib.sha1(text.encode("utf-8")).hexdigest()[:8]
        safe = f"{safe[:MAX_CATEGORY_NAME]}_{digest}"
    return f"{CATEGORY_PREFIX}{safe}"


def _is_blank_json_list(value: Any) -> bool:
    text = str(value or "").strip()
    return text in ("", "[]", "null")


def _dump(items: Iterable[Any]) -> str:
    return json.dumps(list(items), ensure_ascii=False)


def _legacy_torrent(row: Dict[str, Any]) -> TorrentRecord:
    return TorrentRecord(
        title=str(row.get("Title") or ""),
        magnet_link=str(row.get("MagnetLink") or ""),
        torrent_url=str(row.get("TorrentUrl") or ""),
        size=int(row.get("Size") or 0),
        has_uncensored_marker=bool(row.get("HasUncensoredMarker")),
        uncensored_marker_type=MarkerType.parse(int(row.get("UncensoredMarkerType") or 0)),
        has_subtitle=bool(row.get("HasSubtitle")),
        has_hd=bool(row.get("HasHd")),
        seeders=int(row.get("Seeders") or 0),
        leechers=int(row.get("Leechers") or 0),
        source_site=str(row.get("SourceSite") or ""),
    )


def migrate_legacy_rows(legacy: Dict[str, List[Dict[str, Any]]]) -> Dict[int, Dict[str, Any]]:
    """
    Fold legacy child-table rows into per-entry JSON columns.

    ``legacy`` maps a legacy table name (``JavActors``, ``JavCategories``,
    ``Torrents``) to its rows as dicts. The result maps ``JavInfoId`` to
    ``{actors_json, categories_json, torrents_json, torrent_count}``; rows are
    kept in legacy ``Id`` order.
    """
    def ordered(table: str) -> List[Dict[str, Any]]:
        return sorted(legacy.get(table) or [], key=lambda r: int(r.get("Id") or 0))

    actors: Dict[int, List[str]] = {}
    for row in ordered("JavActors"):
        actors.setdefault(int(row["JavInfoId"]), []).append(str(row.get("Name") or ""))
    categories: Dict[int, List[str]] = {}
    for row in ordered("JavCategories"):
        categories.setdefault(int(row["JavInfoId"]), []).append(str(row.get("Name") or ""))
    torrents: Dict[int, List[TorrentRecord]] = {}
    for row in ordered("Torrents"):
        torrents.setdefault(int(row["JavInfoId"]), []).append(_legacy_torrent(row))

    out: Dict[int, Dict[str, Any]] = {}
    for info_id in set(actors) | set(categories) | set(torrents):
        entry_torrents = torrents.get(info_id, [])
        out[info_id] = {
            "actors_json": _dump(actors.get(info_id, [])),
            "categories_json": _dump(categories.get(info_id, [])),
            "torrents_json": _dump(t.to_dict() for t in entry_torrents),
            "torrent_count": len(entry_torrents),
        }
    return out


class SqliteCacheStore(LocalCacheStore):
    backend_name = "sqlite"

    def __init__(self, path: Path, expiration_days: int = 0):
        super().__init__(path, expiration_days)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._conn = sqlite3.connect(str(self.path), check_same_thread=False)
        except sqlite3.Error as e:
            raise CacheError(f"Could not open cache database {self.path}: {e}") from e
        self._conn.row_factory = sqlite3.Row
        with self._conn:
            self._conn.execute("PRAGMA journal_mode=WAL;")
            self._conn.execute("PRAGMA synchronous=NORMAL;")
        self._migrate()

    @property
    def db_path(self) -> Path:
        return self.path

    # ---- Schema ----
    def _table_names(self) -> Set[str]:
        rows = self._conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
        return {str(r["name"]) for r in rows}

    def _column_names(self) -> List[str]:
        rows = self._conn.execute(f"PRAGMA table_info('{JAV_INFO_TABLE}')").fetchall()
        return [str(r["name"]) for r in rows]

    def _category_columns(self) -> List[str]:
        return [c for c in self._column_names() if c.lower().startswith(CATEGORY_PREFIX.lower())]

    def schema_version(self) -> int:
        with self._lock:
            row = self._conn.execute("SELECT version FROM schema_version").fetchone()
            return int(row["version"]) if row else 0

    def _migrate(self) -> None:
        with self._lock, self._conn:
            tables = self._table_names()
            self._conn.execute("CREATE TABLE IF NOT EXISTS schema_version (version INTEGER NOT NULL)")
            row = self._conn.execute("SELECT version FROM schema_version").fetchone()
            if row:
                version = int(row["version"])
            else:
                # No version row: a table from the old layout means version 1.
                version = 1 if any(t in tables for t in LEGACY_TABLES) else SCHEMA_VERSION
                self._conn.execute("INSERT INTO schema_version(version) VALUES (?)", (version,))

            self._conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {JAV_INFO_TABLE} (
                  Id INTEGER PRIMARY KEY AUTOINCREMENT,
                  JavId TEXT NOT NULL UNIQUE,
                  Title TEXT NOT NULL DEFAULT '',
                  CoverUrl TEXT NOT NULL DEFAULT '',
                  ReleaseDate TEXT,
                  Duration INTEGER NOT NULL DEFAULT 0,
                  Director TEXT NOT NULL DEFAULT '',
                  Maker TEXT NOT NULL DEFAULT '',
                  Publisher TEXT NOT NULL DEFAULT '',
                  Series TEXT NOT NULL DEFAULT '',
                  DetailUrl TEXT NOT NULL DEFAULT '',
                  CreatedAt TEXT,
                  UpdatedAt TEXT,
                  ActorsJson TEXT NOT NULL DEFAULT '[]',
                  CategoriesJson TEXT NOT NULL DEFAULT '[]',
                  TorrentsJson TEXT NOT NULL DEFAULT '[]',
                  TorrentCount INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            existing = {c.lower() for c in self._column_names()}
            for column, definition in _JSON_COLUMNS.items():
                if column.lower() not in existing:
                    self._conn.execute(f"ALTER TABLE {JAV_INFO_TABLE} ADD COLUMN {_quote(column)} {definition}")
            if "titlezh" not in existing:
                self._conn.execute(f"ALTER TABLE {JAV_INFO_TABLE} ADD COLUMN TitleZh TEXT NOT NULL DEFAULT ''")
            self._conn.execute(
                f"CREATE UNIQUE INDEX IF NOT EXISTS IX_{JAV_INFO_TABLE}_JavId ON {JAV_INFO_TABLE}(JavId)"
            )

            if version < SCHEMA_VERSION:
                self._upgrade_legacy_tables()
                self._conn.execute("UPDATE schema_version SET version = ?", (SCHEMA_VERSION,))
                logger.info("Cache schema upgraded to version %d (%s)", SCHEMA_VERSION, self.path)

    def _upgrade_legacy_tables(self) -> None:
        """Caller holds the lock and an open transaction."""
        tables = self._table_names()
        present = [t for t in LEGACY_TABLES if t in tables]
        legacy: Dict[str, List[Dict[str, Any]]] = {}
        for table in present:
            rows = self._conn.execute(f"SELECT * FROM {table}").fetchall()
            legacy[table] = [dict(r) for r in rows]

        migrated = migrate_legacy_rows(legacy)
        for info_id, values in migrated.items():
            row = self._conn.execute(
                f"SELECT JavId, ActorsJson, CategoriesJson, TorrentsJson FROM {JAV_INFO_TABLE} WHERE Id = ?",
                (info_id,),
            ).fetchone()
            if row is None:
                continue
            sets, params = [], []
            if _is_blank_json_list(row["ActorsJson"]):
                sets.append("ActorsJson = ?")
                params.append(values["actors_json"])
            if _is_blank_json_list(row["CategoriesJson"]):
                sets.append("CategoriesJson = ?")
                params.append(values["categories_json"])
            if _is_blank_json_list(row["TorrentsJson"]):
                sets += ["TorrentsJson = ?", "TorrentCount = ?"]
                params += [values["torrents_json"], values["torrent_count"]]
            if sets:
                params.append(info_id)
                self._conn.execute(f"UPDATE {JAV_INFO_TABLE} SET {', '.join(sets)} WHERE Id = ?", tuple(params))
            if _is_blank_json_list(row["CategoriesJson"]):
                self._write_category_flags(str(row["JavId"]), json.loads(values["categories_json"]))

        for table in present:
            self._conn.execute(f"DROP TABLE IF EXISTS {table}")
        if present:
            logger.info("Migrated %d legacy cache entries; dropped %s", len(migrated), ", ".join(present))

    def _write_category_flags(self, jav_id: str, categories: Iterable[str]) -> None:
        """Zero every category flag on the row, then set the wanted ones (adding columns as needed)."""
        wanted: List[str] = []
        seen = set()
        for category in categories or []:
            text = str(category or "").strip()
            if not text:
                continue
            column = category_column_name(text)
            if column.lower() not in seen:
                seen.add(column.lower())
                wanted.append(column)

        existing = self._category_columns()
        existing_lower = {c.lower() for c in existing}
        for column in wanted:
            if column.lower() not in existing_lower:
                self._conn.execute(
                    f"ALTER TABLE {JAV_INFO_TABLE} ADD COLUMN {_quote(column)} INTEGER NOT NULL DEFAULT 0"
                )
                existing.append(column)
                existing_lower.add(column.lower())

        if existing:
            clear = ", ".join(f"{_quote(c)} = 0" for c in existing)
            self._conn.execute(f"UPDATE {JAV_INFO_TABLE} SET {clear} WHERE JavId = ?", (jav_id,))
        if wanted:
            enable = ", ".join(f"{_quote(c)} = 1" for c in wanted)
            self._conn.execute(f"UPDATE {JAV_INFO_TABLE} SET {enable} WHERE JavId = ?", (jav_id,))

    # ---- Rows ----
    def _row_to_record(self, row: sqlite3.Row) -> MediaRecord:
        def load_list(value) -> List[Any]:
            try:
                loaded = json.loads(value or "[]")
            except ValueError:
                return []
            return loaded if isinstance(loaded, list) else []

        return MediaRecord(
            jav_id=str(row["JavId"]),
            title=str(row["Title"] or ""),
            title_zh=str(row["TitleZh"] or ""),
            cover_url=str(row["CoverUrl"] or ""),
            release_date=parse_iso_date(row["ReleaseDate"]),
            duration=int(row["Duration"] or 0),
            director=str(row["Director"] or ""),
            maker=str(row["Maker"] or ""),
            publisher=str(row["Publisher"] or ""),
            series=str(row["Series"] or ""),
            actors=[str(a) for a in load_list(row["ActorsJson"])],
            categories=[str(c) for c in load_list(row["CategoriesJson"])],
            torrents=[TorrentRecord.from_dict(t) for t in load_list(row["TorrentsJson"]) if isinstance(t, dict)],
            detail_url=str(row["DetailUrl"] or ""),
            data_source=DataSource.LOCAL,
            fetched_at=parse_iso_datetime(row["UpdatedAt"]),
        )

    def _evict_if_expired(self, row: sqlite3.Row) -> bool:
        if not self._expired(parse_iso_datetime(row["UpdatedAt"])):
            return False
        with self._conn:
            self._conn.execute(f"DELETE FROM {JAV_INFO_TABLE} WHERE Id = ?", (int(row["Id"]),))
        logger.debug("Evicted expired cache entry %s", row["JavId"])
        return True

    def get(self, jav_id: str) -> Optional[MediaRecord]:
        key = normalize_cache_id(jav_id)
        if not key:
            return None
        with self._lock:
            row = self._conn.execute(f"SELECT * FROM {JAV_INFO_TABLE} WHERE JavId = ?", (key,)).fetchone()
            if row is None or self._evict_if_expired(row):
                return None
            return self._row_to_record(row)

    def save(self, record: MediaRecord) -> None:
        key = self._require_id(record.jav_id)
        now = utc_now()
        record.fetched_at = now
        stamp = now.isoformat()
        torrents = [t.to_dict() for t in record.torrents or []]
        try:
            with self._lock, self._conn:
                self._conn.execute(
                    f"""
                    INSERT INTO {JAV_INFO_TABLE}(
                      JavId, Title, TitleZh, CoverUrl, ReleaseDate, Duration, Director, Maker, Publisher,
                      Series, DetailUrl, CreatedAt, UpdatedAt, ActorsJson, CategoriesJson, TorrentsJson, TorrentCount
                    ) VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?)
                    ON CONFLICT(JavId) DO UPDATE SET
                      Title=excluded.Title, TitleZh=excluded.TitleZh, CoverUrl=excluded.CoverUrl,
                      ReleaseDate=excluded.ReleaseDate, Duration=excluded.Duration, Director=excluded.Director,
                      Maker=excluded.Maker, Publisher=excluded.Publisher, Series=excluded.Series,
                      DetailUrl=excluded.DetailUrl, UpdatedAt=excluded.UpdatedAt, ActorsJson=excluded.ActorsJson,
                      CategoriesJson=excluded.CategoriesJson, TorrentsJson=excluded.TorrentsJson,
                      TorrentCount=excluded.TorrentCount
                    """,
                    (
                        key,
                        record.title or "",
                        record.title_zh or "",
                        record.cover_url or "",
                        record.release_date.isoformat() if record.release_date else None,
                        int(record.duration or 0),
                        record.director or "",
                        record.maker or "",
                        record.publisher or "",
                        record.series or "",
                        record.detail_url or "",
                        stamp,
                        stamp,
                        _dump(record.actors or []),
                        _dump(record.categories or []),
                        _dump(torrents),
                        len(torrents),
                    ),
                )
                self._write_category_flags(key, record.categories or [])
        except sqlite3.Error as e:
            raise CacheError(f"Could not save {key} to {self.path}: {e}") from e

    def update_torrents(self, jav_id: str, torrents: List[TorrentRecord]) -> None:
        key = normalize_cache_id(jav_id)
        payload = [t.to_dict() for t in torrents or []]
        with self._lock, self._conn:
            self._conn.execute(
                f"UPDATE {JAV_INFO_TABLE} SET TorrentsJson = ?, TorrentCount = ?, UpdatedAt = ? WHERE JavId = ?",
                (_dump(payload), len(payload), utc_now().isoformat(), key),
            )

    def exists(self, jav_id: str) -> bool:
        return self.get(jav_id) is not None

    def delete(self, jav_id: str) -> bool:
        key = normalize_cache_id(jav_id)
        with self._lock, self._conn:
            cur = self._conn.execute(f"DELETE FROM {JAV_INFO_TABLE} WHERE JavId = ?", (key,))
            return cur.rowcount > 0

    def find_by_category(self, category: str) -> List[MediaRecord]:
        column = category_column_name(category)
        with self._lock:
            if column.lower() not in {c.lower() for c in self._category_columns()}:
                return []
            rows = self._conn.execute(
                f"SELECT * FROM {JAV_INFO_TABLE} WHERE {_quote(column)} = 1 ORDER BY JavId"
            ).fetchall()
            return [self._row_to_record(r) for r in rows if not self._evict_if_expired(r)]

    def _evict_all_expired(self) -> None:
        if self.expiration_days <= 0:
            return
        rows = self._conn.execute(f"SELECT Id, JavId, UpdatedAt FROM {JAV_INFO_TABLE}").fetchall()
        for row in rows:
            self._evict_if_expired(row)

    def get_statistics(self) -> CacheStatistics:
        with self._lock:
            self._evict_all_expired()
            totals = self._conn.execute(
                f"SELECT COUNT(1) AS n, COALESCE(SUM(TorrentCount), 0) AS t FROM {JAV_INFO_TABLE}"
            ).fetchone()
            latest = self._conn.execute(
                f"SELECT UpdatedAt FROM {JAV_INFO_TABLE} ORDER BY UpdatedAt DESC LIMIT 1"
            ).fetchone()
        size = 0
        for candidate in (self.path, Path(str(self.path) + "-wal")):
            if candidate.exists():
                size += candidate.stat().st_size
        return CacheStatistics(
            total_count=int(totals["n"]),
            total_torrent_count=int(totals["t"]),
            storage_size_bytes=size,
            last_updated=as_utc(parse_iso_datetime(latest["UpdatedAt"])) if latest else None,
        )

    def close(self) -> None:
        with self._lock:
            self._conn.close()
