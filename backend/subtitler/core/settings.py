"""Runtime paths and static app settings."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class AppPaths:
    project_root: Path
    backend_root: Path
    runtime_root: Path
    uploads_root: Path
    temp_root: Path
    downloads_root: Path
    config_path: Path


def build_paths() -> AppPaths:
    backend_root = Path(__file__).resolve().parents[2]
    project_root = backend_root.parent
    override = os.environ.get("SUBTITLER_RUNTIME_DIR", "").strip()
    runtime_root = Path(override).expanduser().resolve() if override else project_root / "runtime"
    uploads_root = runtime_root / "uploads"
    temp_root = runtime_root / "temp"
    downloads_root = runtime_root / "downloads"
    config_path = runtime_root / "config.json"

    for directory in (runtime_root, uploads_root, temp_root, downloads_root):
        directory.mkdir(parents=True, exist_ok=True)

    return AppPaths(
        project_root=project_root,
        backend_root=backend_root,
        runtime_root=runtime_root,
        uploads_root=uploads_root,
        temp_root=temp_root,
        downloads_root=downloads_root,
        config_path=config_path,
    )


def configure_logging(level: str | None = None) -> None:
    resolved = (level or os.environ.get("SUBTITLER_LOG_LEVEL") or "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, resolved, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


APP_VERSION = "0.1.0"
PATHS = build_paths()
