"""
curl-impersonate binary resolution.

Finds a ``curl_<target>`` build for the current platform and decides how to
run it: directly (native) or, for a Linux build found on Windows, through WSL
(bridged). Path rewriting for the bridged case is a pure function so it can be
tested without a Windows host.
"""
from __future__ import annotations

import os
import platform
import re
import shutil
import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, List, Optional

from ..utils.resources import candidate_base_dirs

DEFAULT_TARGET = "chrome116"
KNOWN_TARGETS = ["chrome116", "chrome120", "chrome131", "chrome136", "chrome144", "firefox133", "firefox135"]
MAIN_EXECUTABLE = "curl-impersonate"

_DRIVE_PATH_RE = re.compile(r"^([A-Za-z]):\\(.*)$")


class ExecutionEnvironment(Enum):
    NATIVE = "native"
    BRIDGED = "bridged"


@dataclass(frozen=True)
class CurlBinary:
    path: str
    exists: bool
    target: str
    environment: ExecutionEnvironment = ExecutionEnvironment.NATIVE
    # The generic `curl-impersonate` executable needs `--impersonate <target>`.
    use_impersonate_flag: bool = False


def _is_windows(platform_name: Optional[str] = None) -> bool:
    return (platform_name or sys.platform).startswith("win")


def to_bridged_path(windows_path: str) -> Optional[str]:
    """``C:\\tools\\curl`` -> ``/mnt/c/tools/curl``; None without a drive letter."""
    if not windows_path:
        return None
    normalized = windows_path.replace("/", "\\").strip()
    match = _DRIVE_PATH_RE.match(normalized)
    if not match:
        return None
    drive = match.group(1).lower()
    rest = match.group(2).replace("\\", "/")
    return f"/mnt/{drive}/{rest}"


def environment_for(binary_path: str, platform_name: Optional[str] = None) -> ExecutionEnvironment:
    """Linux builds on a Windows host run bridged; everything else runs natively."""
    if not _is_windows(platform_name):
        return ExecutionEnvironment.NATIVE
    if binary_path.lower().endswith(".exe"):
        return ExecutionEnvironment.NATIVE
    if to_bridged_path(binary_path) is None:
        return ExecutionEnvironment.NATIVE
    return ExecutionEnvironment.BRIDGED


def platform_rid(platform_name: Optional[str] = None, machine: Optional[str] = None) -> str:
    """Runtime id used by the vendored ``native/`` tree, e.g. ``linux-x64``."""
    name = platform_name or sys.platform
    if name.startswith("win"):
        os_part = "win"
    elif name == "darwin":
        os_part = "osx"
    else:
        os_part = "linux"
    arch = (machine or platform.machine() or "").lower()
    arch_part = "arm64" if arch in ("arm64", "aarch64") else "x64"
    return f"{os_part}-{arch_part}"


def binary_file_name(target: str, platform_name: Optional[str] = None) -> str:
    suffix = ".exe" if _is_windows(platform_name) else ""
    return f"curl_{target}{suffix}"


def _resolve_maybe_relative(path_text: str) -> Path:
    path = Path(path_text).expanduser()
    if path.is_absolute():
        return path
    return Path.cwd() / path


def resolve_curl_binary(
    target: str = DEFAULT_TARGET,
    configured_path: Optional[str] = None,
    platform_name: Optional[str] = None,
    base_dirs: Optional[Iterable[Path]] = None,
    search_path: Optional[str] = None,
) -> CurlBinary:
    """
    Locate a curl-impersonate binary.

    Order: configured path, vendored ``third_party/curl-impersonate/bin``,
    Linux build next to a missing Windows ``.exe`` (bridged), ``curl_<target>``
    on PATH, and finally the generic ``curl-impersonate`` executable on PATH.
    """
    target = (target or DEFAULT_TARGET).strip() or DEFAULT_TARGET

    configured = (configured_path or "").strip()
    if configured:
        resolved = _resolve_maybe_relative(configured)
        return CurlBinary(
            path=str(resolved),
            exists=resolved.is_file(),
            target=target,
            environment=environment_for(str(resolved), platform_name),
            use_impersonate_flag=resolved.stem.lower() == MAIN_EXECUTABLE,
        )

    dirs = list(base_dirs) if base_dirs is not None else candidate_base_dirs()
    file_name = binary_file_name(target, platform_name)
    vendored: List[Path] = [Path(d) / "third_party" / "curl-impersonate" / "bin" / file_name for d in dirs]

    for candidate in vendored:
        if candidate.is_file():
            return CurlBinary(
                path=str(candidate),
                exists=True,
                target=target,
                environment=environment_for(str(candidate), platform_name),
            )

    if _is_windows(platform_name):
        for candidate in vendored:
            alt = candidate.with_suffix("")
            if alt.is_file():
                return CurlBinary(
                    path=str(alt),
                    exists=True,
                    target=target,
                    environment=environment_for(str(alt), platform_name),
                )

    found = shutil.which(file_name, path=search_path)
    if found:
        return CurlBinary(path=found, exists=True, target=target,
                          environment=environment_for(found, platform_name))

    generic = shutil.which(MAIN_EXECUTABLE, path=search_path)
    if generic:
        return CurlBinary(path=generic, exists=True, target=target,
                          environment=environment_for(generic, platform_name),
                          use_impersonate_flag=True)

    fallback = str(vendored[0]) if vendored else file_name
    return CurlBinary(path=fallback, exists=False, target=target)


def resolve_ca_bundle(
    configured_path: Optional[str] = None,
    platform_name: Optional[str] = None,
    machine: Optional[str] = None,
    base_dirs: Optional[Iterable[Path]] = None,
) -> Optional[str]:
    """Configured CA bundle when it exists, else the vendored per-platform ``cacert.pem``."""
    configured = (configured_path or "").strip()
    if configured and os.path.exists(configured):
        return configured

    rid = platform_rid(platform_name, machine)
    dirs = list(base_dirs) if base_dirs is not None else candidate_base_dirs()
    for base in dirs:
        candidate = Path(base) / "native" / "curl-impersonate" / rid / "cacert.pem"
        if candidate.is_file():
            return str(candidate)
    return None


def available_targets(
    base_dirs: Optional[Iterable[Path]] = None,
    platform_name: Optional[str] = None,
    search_path: Optional[str] = None,
) -> List[str]:
    """Known targets that resolve to an existing binary, in preference order."""
    dirs = list(base_dirs) if base_dirs is not None else None
    return [
        t for t in KNOWN_TARGETS
        if resolve_curl_binary(t, platform_name=platform_name, base_dirs=dirs, search_path=search_path).exists
    ]
