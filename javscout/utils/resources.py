"""Resource and data path helpers.

Supports normal execution and bundled executables (e.g., PyInstaller via _MEIPASS).
"""
from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import List, Optional

DATA_DIR_ENV = "JAVSCOUT_DATA_DIR"


def resource_root() -> Path:
    # PyInstaller sets sys._MEIPASS to a temp folder containing bundled files
    meipass = getattr(sys, "_MEIPASS", None)
    if meipass:
        return Path(meipass)
    # package root: .../javscout
    return Path(__file__).resolve().parent.parent


def candidate_base_dirs() -> List[Path]:
    """Directories that may hold vendored ``third_party/`` and ``native/`` trees."""
    out: List[Path] = []
    for base in (Path.cwd(), resource_root().parent, resource_root()):
        try:
            resolved = base.resolve()
        except OSError:
            continue
        if resolved not in out:
            out.append(resolved)
    return out


def app_data_dir() -> Path:
    """Preferred writable application directory, created on first use."""
    override = str(os.environ.get(DATA_DIR_ENV, "") or "").strip()
    path = Path(override).expanduser() if override else (Path.home() / ".javscout")
    path.mkdir(parents=True, exist_ok=True)
    return path


def resolve_data_path(configured: Optional[str], default_name: str, base_dir: Optional[Path] = None) -> Path:
    """Absolute configured paths win; relative ones and the default live in the data dir."""
    base = Path(base_dir) if base_dir is not None else app_data_dir()
    text = str(configured or "").strip()
    if not text:
        return base / default_name
    path = Path(text).expanduser()
    if path.is_absolute():
        return path
    return base / path
