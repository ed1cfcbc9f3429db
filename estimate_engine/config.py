from __future__ import annotations

import os
from pathlib import Path

import yaml

from .models import Settings


BASE_DIR = Path(__file__).resolve().parents[1]
CONFIGS_DIR = Path(os.environ.get("ESTIMATE_ENGINE_CONFIGS", BASE_DIR / "configs"))
DATA_PATH = Path(os.environ.get("ESTIMATE_ENGINE_DATA", BASE_DIR / "data" / "library.yaml"))


def load_yaml(path: Path) -> dict:
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def save_yaml(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(data, f, sort_keys=False, allow_unicode=True)


def load_settings(configs_dir: Path | None = None) -> Settings:
    """Read ``settings.yaml`` from the configs folder; defaults when absent."""
    path = (configs_dir or CONFIGS_DIR) / "settings.yaml"
    if not path.exists():
        return Settings()
    return Settings(**load_yaml(path))
