"""Read/write persisted local configuration."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from subtitler.core.settings import PATHS
from subtitler.schemas.config import AppConfig

logger = logging.getLogger(__name__)


def load_config(path: Path = PATHS.config_path) -> AppConfig:
    if not path.exists():
        return AppConfig()
    data = json.loads(path.read_text(encoding="utf-8"))
    return AppConfig.model_validate(data)


def save_config(config: AppConfig, path: Path = PATHS.config_path) -> AppConfig:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps(config.model_dump(), ensure_ascii=False, indent=2),
        encoding="utf-8",
    )
    logger.info("Saved configuration to %s", path)
    return config
