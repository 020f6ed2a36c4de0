import json
import tempfile
import unittest
from pathlib import Path

from javscout.core.errors import ConfigurationError
from javscout.core.event_bus import EventBus, Events
from javscout.core.settings_manager import SettingsManager


class TestSettingsManager(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.dir = Path(self._tmp.name)

    def tearDown(self):
        self._tmp.cleanup()

    def test_defaults_without_file(self):
        settings = SettingsManager(self.dir)
        self.assertEqual(settings.get("javdb_base_url"), "https://javdb.com")
        self.assertEqual(settings.get("curl_impersonate_target"), "chrome116")
        self.assertEqual(settings.get("cache_backend"), "sqlite")
        self.assertFalse((self.dir / "settings.json").exists())

    def test_set_persists_and_reloads(self):
        settings = SettingsManager(self.dir)
        settings.set("javdb_mirror_urls", "https://a.example/; https://b.example, https://A.example")
        settings.update({"torrent_weight_scheme": "TIERED", "cache_expiration_days": "7"})

        reloaded = SettingsManager(self.dir)
        self.assertEqual(reloaded.get("javdb_mirror_urls"), ["https://a.example", "https://b.example"])
        self.assertEqual(reloaded.get("torrent_weight_scheme"), "tiered")
        self.assertEqual(reloaded.get("cache_expiration_days"), 7)

    def test_invalid_values_are_sanitized(self):
        (self.dir / "settings.json").write_text(json.dumps({
            "torrent_weight_scheme": "random",
            "cache_backend": "redis",
            "javdb_request_timeout_ms": 5,
            "health_check_attempts": "x",
        }), encoding="utf-8")
        settings = SettingsManager(self.dir)
        self.assertEqual(settings.get("torrent_weight_scheme"), "simple")
        self.assertEqual(settings.get("cache_backend"), "sqlite")
        self.assertEqual(settings.get("javdb_request_timeout_ms"), 1000)
        self.assertEqual(settings.get("health_check_attempts"), 3)
        with open(self.dir / "settings.json", "r", encoding="utf-8") as f:
            self.assertEqual(json.load(f)["cache_backend"], "sqlite")

    def test_corrupt_file_falls_back_to_defaults(self):
        (self.dir / "settings.json").write_text("{oops", encoding="utf-8")
        settings = SettingsManager(self.dir)
        self.assertEqual(settings.get("javdb_max_attempts_per_url"), 4)

    def test_require_rejects_blank_values(self):
        settings = SettingsManager(self.dir)
        settings.set("javdb_base_url", "   ")
        with self.assertRaises(ConfigurationError) as ctx:
            settings.require("javdb_base_url")
        self.assertEqual(ctx.exception.key, "javdb_base_url")
        self.assertEqual(settings.require("curl_impersonate_target"), "chrome116")

    def test_changes_are_announced_on_the_event_bus(self):
        bus = EventBus()
        seen = []
        bus.subscribe(Events.SETTINGS_CHANGED, seen.append)
        settings = SettingsManager(self.dir, event_bus=bus)

        settings.set("javdb_base_url", "https://mirror.example")
        settings.update({"cache_backend": "json", "cache_enabled": False})

        self.assertEqual([event["keys"] for event in seen], [["javdb_base_url"], ["cache_backend", "cache_enabled"]])
        self.assertEqual(seen[0]["settings"]["javdb_base_url"], "https://mirror.example")
        self.assertEqual(seen[1]["settings"]["cache_backend"], "json")

        settings.reset()
        self.assertEqual(len(seen), 3)
        self.assertEqual(seen[2]["settings"]["cache_backend"], "sqlite")

    def test_reset(self):
        settings = SettingsManager(self.dir)
        settings.set("cache_enabled", False)
        settings.reset()
        self.assertTrue(settings.get("cache_enabled"))
        self.assertEqual(settings.get_all()["javdb_max_url_cycles"], 2)


class TestEventBus(unittest.TestCase):
    def test_emit_reaches_subscribers_once(self):
        bus = EventBus()
        seen = []
        handler = seen.append
        bus.subscribe(Events.CACHE_HIT, handler)
        bus.subscribe(Events.CACHE_HIT, handler)
        bus.emit(Events.CACHE_HIT, {"jav_id": "ABC-1"})
        self.assertEqual(seen, [{"jav_id": "ABC-1"}])

    def test_failing_handler_does_not_stop_others(self):
        bus = EventBus()
        seen = []

        def broken(_data):
            raise RuntimeError("handler bug")

        bus.subscribe(Events.SEARCH_ERROR, broken)
        bus.subscribe(Events.SEARCH_ERROR, seen.append)
        bus.emit(Events.SEARCH_ERROR, "x")
        self.assertEqual(seen, ["x"])

    def test_unsubscribe_and_clear(self):
        bus = EventBus()
        seen = []
        bus.subscribe(Events.DOWNLOAD_QUEUED, seen.append)
        bus.unsubscribe(Events.DOWNLOAD_QUEUED, seen.append)
        bus.emit(Events.DOWNLOAD_QUEUED, 1)
        bus.subscribe(Events.DOWNLOAD_SKIPPED, seen.append)
        bus.clear()
        bus.emit(Events.DOWNLOAD_SKIPPED, 2)
        self.assertEqual(seen, [])


if __name__ == "__main__":
    unittest.main()
