import sqlite3
import tempfile
import unittest
from datetime import date, timedelta
from pathlib import Path

from javscout.core.cache_store import utc_now
from javscout.core.sqlite_cache import (
    SCHEMA_VERSION,
    SqliteCacheStore,
    category_column_name,
    migrate_legacy_rows,
)
from javscout.models.media_record import DataSource, MarkerType, MediaRecord, TorrentRecord


def _record(jav_id="ipzz-408", categories=("Drama", "Big Tits"), torrents=2):
    return MediaRecord(
        jav_id=jav_id,
        title="原題",
        title_zh="中文",
        release_date=date(2024, 5, 1),
        duration=120,
        maker="Maker",
        actors=["Actor One", "Actor Two"],
        categories=list(categories),
        torrents=[
            TorrentRecord(title=f"t{i}", magnet_link=f"magnet:?xt=urn:btih:{i:040d}", size=1024 * (i + 1))
            for i in range(torrents)
        ],
        detail_url="https://javdb.example/v/abc",
    )


def _create_legacy_db(path: Path, with_rows: bool = True):
    conn = sqlite3.connect(str(path))
    conn.executescript(
        """
        CREATE TABLE JavInfo (
          Id INTEGER PRIMARY KEY AUTOINCREMENT,
          JavId TEXT NOT NULL,
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
          UpdatedAt TEXT
        );
        CREATE TABLE JavActors (Id INTEGER PRIMARY KEY, JavInfoId INTEGER, Name TEXT);
        CREATE TABLE JavCategories (Id INTEGER PRIMARY KEY, JavInfoId INTEGER, Name TEXT);
        CREATE TABLE Torrents (
          Id INTEGER PRIMARY KEY, JavInfoId INTEGER, Title TEXT, MagnetLink TEXT, TorrentUrl TEXT,
          Size INTEGER, HasUncensoredMarker INTEGER, UncensoredMarkerType INTEGER, HasSubtitle INTEGER,
          HasHd INTEGER, Seeders INTEGER, Leechers INTEGER, SourceSite TEXT
        );
        """
    )
    if with_rows:
        stamp = utc_now().isoformat()
        conn.execute(
            "INSERT INTO JavInfo (Id, JavId, Title, ReleaseDate, CreatedAt, UpdatedAt) VALUES (1, 'ABC-123', 'Legacy', '2020-01-02', ?, ?)",
            (stamp, stamp),
        )
        conn.executemany("INSERT INTO JavActors VALUES (?, ?, ?)", [(2, 1, "Second"), (1, 1, "First")])
        conn.executemany("INSERT INTO JavCategories VALUES (?, ?, ?)", [(1, 1, "Drama")])
        conn.execute(
            "INSERT INTO Torrents VALUES (1, 1, 'ABC-123-UC', 'magnet:?xt=urn:btih:1111', '', 2048, 1, 1, 1, 0, 5, 1, 'JavDB')"
        )
    conn.commit()
    conn.close()


class TestCategoryColumns(unittest.TestCase):
    def test_sanitized_names(self):
        self.assertEqual(category_column_name("Big Tits"), "Cat_Big_Tits")
        self.assertEqual(category_column_name("  "), "Cat_Unknown")

    def test_long_names_get_hash_suffix(self):
        name = category_column_name("x" * 60)
        self.assertTrue(name.startswith("Cat_" + "x" * 40 + "_"))
        self.assertEqual(len(name), len("Cat_") + 40 + 1 + 8)
        self.assertNotEqual(name, category_column_name("x" * 61))


class TestLegacyRowFolding(unittest.TestCase):
    def test_rows_fold_in_id_order(self):
        migrated = migrate_legacy_rows({
            "JavActors": [{"Id": 2, "JavInfoId": 7, "Name": "B"}, {"Id": 1, "JavInfoId": 7, "Name": "A"}],
            "Torrents": [{"Id": 1, "JavInfoId": 8, "Title": "t", "MagnetLink": "magnet:?x", "UncensoredMarkerType": 2}],
        })
        self.assertEqual(migrated[7]["actors_json"], '["A", "B"]')
        self.assertEqual(migrated[7]["torrent_count"], 0)
        self.assertEqual(migrated[8]["torrent_count"], 1)
        self.assertIn('"uncensored_marker_type": "U"', migrated[8]["torrents_json"])

    def test_nothing_to_fold(self):
        self.assertEqual(migrate_legacy_rows({}), {})


class TestSqliteCacheStore(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.path = Path(self._tmp.name) / "jav_cache.db"

    def tearDown(self):
        self._tmp.cleanup()

    def test_save_and_get(self):
        with SqliteCacheStore(self.path) as store:
            self.assertEqual(store.schema_version(), SCHEMA_VERSION)
            store.save(_record())
            cached = store.get("IPZZ-408")
        self.assertEqual(cached.jav_id, "IPZZ-408")
        self.assertEqual(cached.title, "原題")
        self.assertEqual(cached.title_zh, "中文")
        self.assertEqual(cached.release_date, date(2024, 5, 1))
        self.assertEqual(cached.actors, ["Actor One", "Actor Two"])
        self.assertEqual([t.size for t in cached.torrents], [1024, 2048])
        self.assertEqual(cached.data_source, DataSource.LOCAL)

    def test_upsert_replaces_row_and_category_flags(self):
        with SqliteCacheStore(self.path) as store:
            store.save(_record(categories=["Drama", "Big Tits"]))
            self.assertEqual([r.jav_id for r in store.find_by_category("Big Tits")], ["IPZZ-408"])

            store.save(_record(categories=["Comedy"], torrents=1))
            self.assertEqual(store.find_by_category("Drama"), [])
            self.assertEqual(len(store.find_by_category("Comedy")), 1)
            self.assertEqual(len(store.get("ipzz-408").torrents), 1)
            self.assertEqual(store.get_statistics().total_count, 1)
            self.assertEqual(store.find_by_category("Never Seen"), [])

    def test_expired_rows_are_evicted(self):
        with SqliteCacheStore(self.path, expiration_days=2) as store:
            store.save(_record())
            old = (utc_now() - timedelta(days=5)).isoformat()
            with store._conn:
                store._conn.execute("UPDATE JavInfo SET UpdatedAt = ?", (old,))
            self.assertIsNone(store.get("IPZZ-408"))
            self.assertFalse(store.exists("IPZZ-408"))
            self.assertEqual(store.get_statistics().total_count, 0)

    def test_update_torrents_delete_and_statistics(self):
        with SqliteCacheStore(self.path) as store:
            store.save(_record("abc123", torrents=1))
            store.save(_record("xyz-1", torrents=2))
            store.update_torrents("ABC-123", _record(torrents=3).torrents)
            stats = store.get_statistics()
            self.assertEqual(stats.total_count, 2)
            self.assertEqual(stats.total_torrent_count, 5)
            self.assertGreater(stats.storage_size_bytes, 0)
            self.assertIsNotNone(stats.last_updated)

            self.assertTrue(store.delete("abc123"))
            self.assertFalse(store.delete("abc123"))
            self.assertIsNone(store.get("ABC-123"))

    def test_legacy_schema_is_migrated_once(self):
        _create_legacy_db(self.path)
        with SqliteCacheStore(self.path) as store:
            self.assertEqual(store.schema_version(), SCHEMA_VERSION)
            record = store.get("ABC-123")
            self.assertEqual(record.title, "Legacy")
            self.assertEqual(record.actors, ["First", "Second"])
            self.assertEqual(record.categories, ["Drama"])
            self.assertEqual(record.torrents[0].uncensored_marker_type, MarkerType.UC)
            self.assertTrue(record.torrents[0].has_subtitle)
            self.assertEqual(record.torrents[0].size, 2048)
            self.assertEqual(len(store.find_by_category("Drama")), 1)

        conn = sqlite3.connect(str(self.path))
        tables = {r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
        conn.close()
        self.assertFalse({"JavActors", "JavCategories", "Torrents"} & tables)

        with SqliteCacheStore(self.path) as reopened:
            self.assertEqual(reopened.get("ABC-123").actors, ["First", "Second"])

    def test_empty_legacy_tables_are_dropped(self):
        _create_legacy_db(self.path, with_rows=False)
        with SqliteCacheStore(self.path) as store:
            self.assertEqual(store.schema_version(), SCHEMA_VERSION)
            self.assertIsNone(store.get("ABC-123"))
        conn = sqlite3.connect(str(self.path))
        tables = {r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
        conn.close()
        self.assertNotIn("Torrents", tables)


if __name__ == "__main__":
    unittest.main()
