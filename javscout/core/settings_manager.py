"""
Settings Manager
Handles persistent application settings in the javscout data directory
"""
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List
import threading

from .errors import ConfigurationError
from .event_bus import Events

logger = logging.getLogger(__name__)

WEIGHT_SCHEMES = ("simple", "tiered")
CACHE_BACKENDS = ("sqlite", "json")


class SettingsManager:
    """Manages application settings with persistence"""

    DEFAULT_SETTINGS = {
        # JavDB
        "javdb_base_url": "https://javdb.com",
        "javdb_mirror_urls": [],
        "javdb_request_timeout_ms": 30000,
        "javdb_user_agent": "",
        "javdb_max_attempts_per_url": 4,
        "javdb_max_url_cycles": 2,

        # curl-impersonate
        "curl_impersonate_enabled": True,
        "curl_impersonate_target": "chrome116",
        "curl_impersonate_binary_path": "",
        "curl_impersonate_ca_bundle_path": "",

        # Local cache
        "cache_enabled": True,
        "cache_backend": "sqlite",
        "cache_path": "",
        "cache_expiration_days": 0,

        # Torrent selection
        "torrent_weight_scheme": "simple",
        "hide_other_torrents": True,

        # Download queue
        "download_save_path": "",
        "download_category": "jav",
        "download_tags": "jav-manager",

        # Health checks
        "health_check_attempts": 3,
        "health_check_timeout_seconds": 5.0,
    }

    def __init__(self, data_dir=None, event_bus=None):
        self.event_bus = event_bus
        if data_dir is None:
            env_dir = str(os.environ.get("JAVSCOUT_DATA_DIR", "") or "").strip()
            data_dir = Path(env_dir).expanduser() if env_dir else (Path.home() / ".javscout")
        self.settings_dir = Path(data_dir)
        self.settings_dir.mkdir(parents=True, exist_ok=True)
        self.settings_file = self.settings_dir / "settings.json"

        self._lock = threading.RLock()
        self._settings: Dict[str, Any] = {}
        self._load()

    def _load(self):
        """Load settings from file"""
        with self._lock:
            if self.settings_file.exists():
                try:
                    with open(self.settings_file, "r", encoding="utf-8") as f:
                        loaded = json.load(f)
                    if not isinstance(loaded, dict):
                        loaded = {}
                    # Merge with defaults (adds new keys if they don't exist)
                    self._settings = {**self.DEFAULT_SETTINGS, **loaded}
                except (OSError, ValueError) as e:
                    logger.warning("Error loading settings from %s: %s", self.settings_file, e)
                    self._settings = dict(self.DEFAULT_SETTINGS)
            else:
                self._settings = dict(self.DEFAULT_SETTINGS)

            if self._sanitize(self._settings) and self.settings_file.exists():
                self._save()

    @staticmethod
    def _normalize_url_list(value: Any) -> List[str]:
        if isinstance(value, str):
            value = [part for part in value.replace(";", ",").split(",")]
        if not isinstance(value, (list, tuple)):
            return []
        normalized: List[str] = []
        seen = set()
        for item in value:
            text = str(item or "").strip().rstrip("/")
            if text and text.lower() not in seen:
                seen.add(text.lower())
                normalized.append(text)
        return normalized

    def _sanitize(self, settings_obj: Dict[str, Any]) -> bool:
        """Coerce known keys into their expected shapes. Returns True when anything changed."""
        before = dict(settings_obj)

        settings_obj["javdb_mirror_urls"] = self._normalize_url_list(settings_obj.get("javdb_mirror_urls"))
        settings_obj["javdb_base_url"] = str(settings_obj.get("javdb_base_url") or "").strip()

        scheme = str(settings_obj.get("torrent_weight_scheme") or "").strip().lower()
        settings_obj["torrent_weight_scheme"] = scheme if scheme in WEIGHT_SCHEMES else "simple"

        backend = str(settings_obj.get("cache_backend") or "").strip().lower()
        settings_obj["cache_backend"] = backend if backend in CACHE_BACKENDS else "sqlite"

        target = str(settings_obj.get("curl_impersonate_target") or "").strip()
        settings_obj["curl_impersonate_target"] = target or "chrome116"

        try:
            settings_obj["cache_expiration_days"] = max(0, int(settings_obj.get("cache_expiration_days") or 0))
        except (TypeError, ValueError):
            settings_obj["cache_expiration_days"] = 0
        try:
            settings_obj["javdb_request_timeout_ms"] = max(1000, int(settings_obj.get("javdb_request_timeout_ms") or 30000))
        except (TypeError, ValueError):
            settings_obj["javdb_request_timeout_ms"] = 30000
        try:
            settings_obj["health_check_attempts"] = max(1, int(settings_obj.get("health_check_attempts") or 3))
        except (TypeError, ValueError):
            settings_obj["health_check_attempts"] = 3

        return settings_obj != before

    def _save(self):
        """Save settings to file"""
        with self._lock:
            try:
                tmp = self.settings_file.with_suffix(".json.tmp")
                with open(tmp, "w", encoding="utf-8") as f:
                    json.dump(self._settings, f, indent=2, ensure_ascii=False)
                os.replace(tmp, self.settings_file)
            except OSError as e:
                logger.error("Error saving settings to %s: %s", self.settings_file, e)

    def get(self, key: str, default=None) -> Any:
        """Get a setting value"""
        with self._lock:
            return self._settings.get(key, default)

    def require(self, key: str) -> Any:
        """Get a setting that must not be blank; raises ConfigurationError otherwise."""
        value = self.get(key)
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ConfigurationError(key)
        return value

    def set(self, key: str, value: Any):
        """Set a setting value and save"""
        with self._lock:
            self._settings[str(key)] = value
            self._sanitize(self._settings)
            self._save()
        self._notify([str(key)])

    def update(self, settings_dict: Dict[str, Any]):
        """Update multiple settings at once"""
        with self._lock:
            self._settings.update(dict(settings_dict or {}))
            self._sanitize(self._settings)
            self._save()
        self._notify(list(settings_dict or {}))

    def get_all(self) -> Dict[str, Any]:
        """Get all settings"""
        with self._lock:
            return dict(self._settings)

    def reset(self):
        """Reset to default settings"""
        with self._lock:
            self._settings = dict(self.DEFAULT_SETTINGS)
            self._sanitize(self._settings)
            self._save()
        self._notify(list(self.DEFAULT_SETTINGS))

    def _notify(self, keys: List[str]):
        if self.event_bus is not None:
            self.event_bus.emit(Events.SETTINGS_CHANGED, {"keys": keys, "settings": self.get_all()})
