"""Read/write persisted local configuration."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import ValidationError

from voxbook.core.settings import PATHS
from voxbook.schemas.config import AppConfig

logger = logging.getLogger(__name__)


def load_config(path: Path = PATHS.config_path) -> AppConfig:
    if not path.exists():
        return AppConfig()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return AppConfig.model_validate(data)
    except (json.JSONDecodeError, ValidationError):
        logger.warning("Config file %s is unreadable, falling back to defaults", path, exc_info=True)
        return AppConfig()


def save_config(config: AppConfig, path: Path = PATHS.config_path) -> AppConfig:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps(config.model_dump(mode="json"), ensure_ascii=False, indent=2),
        encoding="utf-8",
    )
    return config
