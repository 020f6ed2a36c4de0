import os
import tempfile
import unittest
from datetime import datetime
from pathlib import Path

from javscout.core.cache_store import JsonCacheStore
from javscout.core.errors import CacheError, JavScoutError
from javscout.core.event_bus import EventBus, Events
from javscout.core.health import ServiceAvailability
from javscout.models.local_file import FileType, LocalFileInfo
from javscout.models.media_record import MediaRecord, TorrentRecord
from javscout.services.downloads import DownloadService
from javscout.services.jav_search import JavSearchService
from javscout.services.local_files import LocalFileCheckService
from javscout.services.providers import DownloadQueueProvider, LocalFileSearchProvider
from javscout.services.torrent_selection import TorrentSelectionService


class _Settings:
    def __init__(self, **overrides):
        self.data = {
            "torrent_weight_scheme": "simple",
            "hide_other_torrents": True,
            "download_save_path": "",
            "download_category": "jav",
            "download_tags": "jav-manager",
        }
        self.data.update(overrides)

    def get(self, key, default=None):
        return self.data.get(key, default)


def _torrent(title, hd=False, subtitle=False, uncensored=False):
    return TorrentRecord(
        title=title,
        magnet_link=f"magnet:?xt=urn:btih:{title.encode().hex():0<40}",
        size=1024,
        has_hd=hd,
        has_subtitle=subtitle,
        has_uncensored_marker=uncensored,
    )


def _record(jav_id="IPZZ-408", torrents=None):
    if torrents is None:
        torrents = [_torrent("IPZZ-408-HD", hd=True), _torrent("IPZZ-408-C", hd=True, subtitle=True)]
    return MediaRecord(jav_id=jav_id, title="Title", torrents=torrents)


class FakeSource:
    name = "JavDB"

    def __init__(self, record=None, last_error="", error=None):
        self.record = record if record is not None else _record()
        self.last_error = last_error
        self.error = error
        self.calls = []

    def search(self, jav_id):
        self.calls.append(jav_id)
        if self.error is not None:
            raise self.error
        return self.record


class FakeLocalFiles(LocalFileSearchProvider):
    def __init__(self, files=None, error=None):
        self.files = files or []
        self.error = error
        self.queries = []

    def search(self, normalized_id):
        self.queries.append(normalized_id)
        if self.error is not None:
            raise self.error
        return self.files


class FakeQueue(DownloadQueueProvider):
    def __init__(self, accept=True, error=None):
        self.accept = accept
        self.error = error
        self.added = []

    def add_torrent(self, magnet_link, save_path=None, category=None, tags=None):
        if self.error is not None:
            raise self.error
        self.added.append({"magnet": magnet_link, "save_path": save_path, "category": category, "tags": tags})
        return self.accept


class FakeCache:
    def __init__(self, record=None, save_error=None):
        self.records = {}
        if record is not None:
            self.records[record.jav_id] = record
        self.save_error = save_error
        self.saved = []

    def get(self, jav_id):
        return self.records.get(jav_id)

    def save(self, record):
        if self.save_error is not None:
            raise self.save_error
        record.fetched_at = datetime(2026, 1, 1, 12, 0)
        self.saved.append(record)
        self.records[record.jav_id] = record


def _service(source=None, local=None, queue=None, cache=None, availability=None, event_bus=None, settings=None):
    settings = settings or _Settings()
    return JavSearchService(
        source or FakeSource(),
        TorrentSelectionService(settings),
        LocalFileCheckService(local or FakeLocalFiles()),
        DownloadService(queue or FakeQueue(), settings),
        availability=availability,
        cache=cache,
        event_bus=event_bus,
    )


class TestJavSearchService(unittest.TestCase):
    def test_remote_search_selects_best_and_queues(self):
        bus = EventBus()
        events = []
        for ev in [Events.SEARCH_STARTED, Events.CACHE_SAVED, Events.DOWNLOAD_QUEUED, Events.SEARCH_COMPLETED]:
            bus.subscribe(ev, lambda d, ev=ev: events.append(ev))
        queue = FakeQueue()
        cache = FakeCache()
        result = _service(queue=queue, cache=cache, event_bus=bus).process("ipzz_408")

        self.assertTrue(result.success)
        self.assertTrue(result.downloaded)
        self.assertEqual(result.jav_id, "IPZZ-408")
        self.assertEqual(result.selected_torrent.title, "IPZZ-408-C")
        self.assertEqual(queue.added[0]["magnet"], result.selected_torrent.magnet_link)
        self.assertEqual(queue.added[0]["category"], "jav")
        self.assertEqual(len(cache.saved), 1)
        self.assertEqual(events, [Events.SEARCH_STARTED, Events.CACHE_SAVED, Events.DOWNLOAD_QUEUED,
                                  Events.SEARCH_COMPLETED])

    def test_cache_hit_skips_remote_search(self):
        source = FakeSource()
        cached = _record()
        cached.fetched_at = datetime(2026, 1, 1)
        result = _service(source=source, cache=FakeCache(cached)).process("IPZZ-408")
        self.assertTrue(result.success)
        self.assertEqual(source.calls, [])
        self.assertTrue(any(m.startswith("Cache hit") for m in result.messages))

    def test_cached_record_without_torrents_is_refreshed(self):
        source = FakeSource()
        result = _service(source=source, cache=FakeCache(_record(torrents=[]))).process("IPZZ-408")
        self.assertTrue(result.success)
        self.assertEqual(source.calls, ["IPZZ-408"])

    def test_force_remote_bypasses_cache(self):
        source = FakeSource()
        _service(source=source, cache=FakeCache(_record())).process("IPZZ-408", force_remote=True)
        self.assertEqual(source.calls, ["IPZZ-408"])

    def test_local_files_prevent_download(self):
        local = FakeLocalFiles([LocalFileInfo("IPZZ-408.mp4", "/media/IPZZ-408.mp4", size=10)])
        queue = FakeQueue()
        result = _service(local=local, queue=queue).process("IPZZ-408")
        self.assertTrue(result.success)
        self.assertTrue(result.local_files_found)
        self.assertFalse(result.downloaded)
        self.assertEqual(queue.added, [])
        self.assertEqual(local.queries, ["IPZZ-408"])

    def test_force_download_skips_local_check(self):
        local = FakeLocalFiles([LocalFileInfo("IPZZ-408.mp4", "/media/IPZZ-408.mp4")])
        result = _service(local=local).process("IPZZ-408", force_download=True)
        self.assertTrue(result.downloaded)
        self.assertEqual(local.queries, [])

    def test_local_dedup_unavailable_or_failing_is_skipped(self):
        unavailable = ServiceAvailability(local_dedup_healthy=False)
        result = _service(availability=unavailable).process("IPZZ-408")
        self.assertTrue(result.local_dedup_skipped)
        self.assertTrue(result.downloaded)

        failing = FakeLocalFiles(error=OSError("index offline"))
        result = _service(local=failing).process("IPZZ-408")
        self.assertTrue(result.local_dedup_skipped)
        self.assertTrue(result.downloaded)
        self.assertTrue(any("index offline" in m for m in result.messages))

    def test_queue_unavailable_falls_back_to_magnet(self):
        queue = FakeQueue()
        availability = ServiceAvailability(download_queue_healthy=False)
        result = _service(queue=queue, availability=availability).process("IPZZ-408")
        self.assertTrue(result.success)
        self.assertTrue(result.download_queue_skipped)
        self.assertFalse(result.downloaded)
        self.assertEqual(result.magnet_link, result.selected_torrent.magnet_link)
        self.assertEqual(queue.added, [])
        self.assertIn(result.magnet_link, result.messages)

    def test_queue_refusal_or_error_falls_back_to_magnet(self):
        refused = _service(queue=FakeQueue(accept=False)).process("IPZZ-408")
        self.assertTrue(refused.download_queue_skipped)
        self.assertTrue(refused.magnet_link.startswith("magnet:"))

        broken = _service(queue=FakeQueue(error=ConnectionError("refused"))).process("IPZZ-408")
        self.assertTrue(broken.success)
        self.assertTrue(broken.download_queue_skipped)
        self.assertTrue(any("refused" in m for m in broken.messages))

    def test_remote_unavailable_fails(self):
        source = FakeSource()
        result = _service(source=source, availability=ServiceAvailability(remote_search_healthy=False)).process("X-1")
        self.assertFalse(result.success)
        self.assertEqual(source.calls, [])
        self.assertIn("JavDB is unavailable; remote search skipped.", result.messages)

    def test_no_torrents_reports_source_reason(self):
        source = FakeSource(record=_record(torrents=[]), last_error="JavDB blocked every endpoint (bot-mitigation challenge)")
        result = _service(source=source).process("IPZZ-408")
        self.assertFalse(result.success)
        self.assertIn("JavDB blocked every endpoint (bot-mitigation challenge)", result.messages)

        quiet = _service(source=FakeSource(record=_record(torrents=[]))).process("IPZZ-408")
        self.assertIn("No torrents found for IPZZ-408", quiet.messages)

    def test_unmarked_torrents_fail_selection(self):
        source = FakeSource(record=_record(torrents=[_torrent("plain")]))
        result = _service(source=source).process("IPZZ-408")
        self.assertFalse(result.success)
        self.assertIn("No torrent passed the selection filter.", result.messages)

    def test_cache_write_failure_is_a_warning(self):
        result = _service(cache=FakeCache(save_error=CacheError("disk full"))).process("IPZZ-408")
        self.assertTrue(result.success)
        self.assertTrue(any("disk full" in m for m in result.messages))

    def test_unexpected_error_is_reported(self):
        bus = EventBus()
        errors = []
        bus.subscribe(Events.SEARCH_ERROR, errors.append)
        source = FakeSource(error=RuntimeError("parser exploded"))
        result = _service(source=source, event_bus=bus).process("IPZZ-408")
        self.assertFalse(result.success)
        self.assertEqual(errors[0]["error"], "parser exploded")
        self.assertTrue(result.message.endswith("Processing failed: parser exploded"))

    def test_search_only_returns_ranked_torrents(self):
        queue = FakeQueue()
        result = _service(queue=queue).search_only("IPZZ-408")
        self.assertTrue(result.success)
        self.assertEqual([t.title for t in result.available_torrents], ["IPZZ-408-C", "IPZZ-408-HD"])
        self.assertEqual(queue.added, [])

    def test_process_selected_torrent(self):
        queue = FakeQueue()
        chosen = _torrent("IPZZ-408-HD", hd=True)
        result = _service(queue=queue).process_selected_torrent("ipzz-408", chosen)
        self.assertTrue(result.downloaded)
        self.assertIs(result.selected_torrent, chosen)
        self.assertEqual(queue.added[0]["magnet"], chosen.magnet_link)

    def test_round_trip_through_json_cache(self):
        with tempfile.TemporaryDirectory() as td:
            cache = JsonCacheStore(Path(td) / "cache.json")
            first_source = FakeSource()
            _service(source=first_source, cache=cache).process("IPZZ-408")
            second_source = FakeSource()
            result = _service(source=second_source, cache=cache).search_only("IPZZ-408")
        self.assertEqual(second_source.calls, [])
        self.assertEqual(len(result.available_torrents), 2)


class TestLocalFileCheckService(unittest.TestCase):
    def test_filters_to_videos_and_normalizes_id(self):
        provider = FakeLocalFiles([
            LocalFileInfo("IPZZ-408.mp4", "/m/IPZZ-408.mp4"),
            LocalFileInfo("IPZZ-408", "/m/IPZZ-408", file_type=FileType.FOLDER),
            LocalFileInfo("IPZZ-408.torrent", "/m/IPZZ-408.torrent", file_type=FileType.TORRENT),
        ])
        service = LocalFileCheckService(provider)
        found = service.check_local_files("ipzz_408")
        self.assertEqual([f.file_name for f in found], ["IPZZ-408.mp4"])
        self.assertEqual(provider.queries, ["IPZZ-408"])
        self.assertTrue(service.file_exists("IPZZ-408"))

    def test_provider_errors_are_wrapped(self):
        service = LocalFileCheckService(FakeLocalFiles(error=OSError("offline")))
        with self.assertRaises(JavScoutError):
            service.check_local_files("IPZZ-408")

    def test_format(self):
        self.assertEqual(LocalFileCheckService.format_local_files([]), "No local files found.")
        text = LocalFileCheckService.format_local_files([LocalFileInfo("a.mp4", "/m/a.mp4", size=2048)])
        self.assertIn("1. a.mp4", text)
        self.assertIn("2.00 KB", text)


class TestDownloadService(unittest.TestCase):
    def test_invalid_save_path_is_dropped(self):
        queue = FakeQueue()
        DownloadService(queue, _Settings(download_save_path="relative/dir")).add_download(_torrent("t", hd=True))
        self.assertIsNone(queue.added[0]["save_path"])
        self.assertEqual(queue.added[0]["tags"], "jav-manager")

    def test_existing_directory_and_overrides(self):
        queue = FakeQueue()
        with tempfile.TemporaryDirectory() as td:
            ok = DownloadService(queue, _Settings()).add_download(_torrent("t"), save_path=td, category="other")
            self.assertTrue(ok)
            self.assertEqual(queue.added[0]["save_path"], os.path.abspath(td))
            self.assertEqual(queue.added[0]["category"], "other")

    def test_provider_errors_are_wrapped(self):
        service = DownloadService(FakeQueue(error=ConnectionError("refused")), _Settings())
        with self.assertRaises(JavScoutError):
            service.add_download(_torrent("t"))


if __name__ == "__main__":
    unittest.main()
