"""
curl-impersonate fetcher.

Runs one GET per call through a ``curl_<target>`` child process so the TLS and
HTTP/2 fingerprint match a real browser. The HTTP status is read from a
``--write-out`` sentinel printed after the body. ``get`` never raises.
"""
from __future__ import annotations

import logging
import re
import subprocess
import tempfile
import threading
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from urllib.parse import urlparse

from ..models.fetch_result import FetchResult
from .curl_binary import (
    DEFAULT_TARGET,
    CurlBinary,
    ExecutionEnvironment,
    resolve_ca_bundle,
    resolve_curl_binary,
    to_bridged_path,
)

logger = logging.getLogger(__name__)

WRITE_OUT_PREFIX = "__JAV_MANAGER_HTTP_CODE__:"
COOKIE_JAR_PREFIX = "jav-manager-curl-cookie-"
_STATUS_RE = re.compile(r"(\d{3})")
_UNSAFE_HOST_CHARS_RE = re.compile(r"[^a-zA-Z0-9.-]+")


def parse_write_out(stdout: str) -> Tuple[int, str]:
    """Split curl output into ``(status, body)`` using the last sentinel occurrence."""
    if not stdout:
        return 0, ""
    idx = stdout.rfind(WRITE_OUT_PREFIX)
    if idx < 0:
        return 0, stdout
    match = _STATUS_RE.search(stdout[idx + len(WRITE_OUT_PREFIX):])
    status = int(match.group(1)) if match else 0
    return status, stdout[:idx].rstrip()


def strip_cacert_args(args: List[str]) -> List[str]:
    """Drop ``--cacert <path>`` pairs; host paths mean nothing inside WSL."""
    out: List[str] = []
    skip_next = False
    for arg in args:
        if skip_next:
            skip_next = False
            continue
        if arg == "--cacert":
            skip_next = True
            continue
        out.append(arg)
    return out


class CurlImpersonateFetcher:
    """Browser-fingerprinted GET via a curl-impersonate child process"""

    name = "curl-impersonate"
    # curl --max-time takes whole seconds
    min_timeout_ms = 1000

    def __init__(
        self,
        settings=None,
        binary: Optional[CurlBinary] = None,
        cookie_dir: Optional[Path] = None,
    ):
        self.settings = settings
        self._lock = threading.RLock()
        self._binary: Optional[CurlBinary] = binary
        self._binary_injected = binary is not None
        self._available: Optional[bool] = None
        self._cookie_dir = Path(cookie_dir) if cookie_dir is not None else Path(tempfile.gettempdir())
        self._cookie_jars: Dict[str, str] = {}
        self.enabled = True
        self.target = DEFAULT_TARGET
        self.binary_path = ""
        self.ca_bundle_path = ""
        self.reload_from_settings()

    def reload_from_settings(self):
        if self.settings is not None:
            self.enabled = bool(self.settings.get("curl_impersonate_enabled", True))
            self.target = str(self.settings.get("curl_impersonate_target", DEFAULT_TARGET) or DEFAULT_TARGET).strip()
            self.binary_path = str(self.settings.get("curl_impersonate_binary_path", "") or "").strip()
            self.ca_bundle_path = str(self.settings.get("curl_impersonate_ca_bundle_path", "") or "").strip()
        with self._lock:
            self._available = None
            if not self._binary_injected:
                self._binary = None

    @property
    def binary(self) -> Optional[CurlBinary]:
        self.is_available()
        return self._binary

    def is_available(self) -> bool:
        """Probe for the binary once; the answer is memoized until settings reload."""
        with self._lock:
            if self._available is not None:
                return self._available
            if not self.enabled:
                self._available = False
                return False
            if self._binary is None or self._binary.target != self.target:
                self._binary = resolve_curl_binary(self.target, self.binary_path or None)
            self._available = bool(self._binary.exists)
            if self._available:
                logger.debug(
                    "curl-impersonate resolved: %s (%s)", self._binary.path, self._binary.environment.value
                )
            else:
                logger.info("curl-impersonate binary not found (target=%s)", self.target)
            return self._available

    def get(
        self,
        url: str,
        referer: Optional[str] = None,
        cookie_header: Optional[str] = None,
        timeout_ms: int = 30000,
    ) -> FetchResult:
        if not self.enabled:
            return FetchResult.failure("curl-impersonate disabled")
        if not self.is_available():
            return FetchResult.failure("curl-impersonate binary not found")

        args = self.build_args(url, referer, cookie_header, timeout_ms)
        command = self.build_command(args, self.cookie_jar_path(url))
        return self._run(command, max(1000, int(timeout_ms or 0)))

    def build_args(
        self,
        url: str,
        referer: Optional[str],
        cookie_header: Optional[str],
        timeout_ms: int,
    ) -> List[str]:
        timeout_sec = max(1, int(timeout_ms or 0) // 1000)
        args = [
            "--silent",
            "--show-error",
            "--location",
            "--compressed",
            # No backslash escapes: WSL can strip them when forwarding args.
            "--write-out", f"{WRITE_OUT_PREFIX}%{{http_code}}",
            "--max-time", str(timeout_sec),
            "--connect-timeout", str(min(timeout_sec, 10)),
        ]
        ca_bundle = resolve_ca_bundle(self.ca_bundle_path or None)
        if ca_bundle:
            args += ["--cacert", ca_bundle]
        args.append("--http2")
        if referer:
            args += ["--referer", referer]
        if cookie_header:
            args += ["--cookie", cookie_header]
        args.append(url)

        binary = self._binary
        if binary is not None and binary.use_impersonate_flag:
            args = ["--impersonate", self.target] + args
        return args

    def build_command(self, args: List[str], cookie_jar: Optional[str]) -> List[str]:
        """Final argv: cookie jar appended, WSL prefix and path rewriting when bridged."""
        binary = self._binary
        if binary is None:
            raise RuntimeError("curl-impersonate binary has not been resolved")

        bridged = binary.environment == ExecutionEnvironment.BRIDGED
        jar = to_bridged_path(cookie_jar) if (bridged and cookie_jar) else cookie_jar
        full_args = list(args)
        if jar:
            # Read and write the same jar so clearance cookies survive between calls.
            full_args += ["--cookie", jar, "--cookie-jar", jar]

        if bridged:
            return ["wsl", "--exec", to_bridged_path(binary.path)] + strip_cacert_args(full_args)
        return [binary.path] + full_args

    def cookie_jar_path(self, url: str) -> Optional[str]:
        """One jar file per host under the temp dir, created empty when missing."""
        try:
            host = urlparse(url).netloc
        except ValueError:
            return None
        if not host:
            return None
        with self._lock:
            existing = self._cookie_jars.get(host)
            if existing:
                return existing
            safe = _UNSAFE_HOST_CHARS_RE.sub("-", host)
            path = self._cookie_dir / f"{COOKIE_JAR_PREFIX}{safe}.txt"
            try:
                if not path.exists():
                    path.parent.mkdir(parents=True, exist_ok=True)
                    path.write_text("", encoding="utf-8")
            except OSError as e:
                logger.debug("Could not create cookie jar %s: %s", path, e)
            self._cookie_jars[host] = str(path)
            return str(path)

    def _run(self, command: List[str], timeout_ms: int) -> FetchResult:
        try:
            proc = subprocess.Popen(
                command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except (OSError, ValueError) as e:
            return FetchResult.failure(f"Failed to spawn curl: {e}")

        try:
            stdout, stderr = proc.communicate(timeout=timeout_ms / 1000.0)
        except subprocess.TimeoutExpired:
            proc.kill()
            try:
                proc.communicate(timeout=2)
            except subprocess.TimeoutExpired:
                logger.warning("curl child did not exit after kill (pid=%s)", getattr(proc, "pid", "?"))
            return FetchResult.failure(f"Request timeout after {timeout_ms}ms")

        out_text = (stdout or b"").decode("utf-8", errors="replace")
        err_text = (stderr or b"").decode("utf-8", errors="replace").strip()

        if proc.returncode != 0:
            return FetchResult.failure(err_text or f"curl exited with code {proc.returncode}")

        status, body = parse_write_out(out_text)
        result = FetchResult(status_code=status, body=body)
        if not result.ok:
            result.error = f"HTTP {status}"
        return result
