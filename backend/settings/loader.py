from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

import yaml

from settings.types import ClusteringSettings


def _repo_root() -> Path:
    # .../backend/settings/loader.py -> repo root is 2 levels up
    return Path(__file__).resolve().parents[2]


def settings_path() -> Path:
    return Path(
        os.getenv("PULSEMAP_CLUSTERING_CONFIG")
        or (_repo_root() / "config" / "clustering.yaml")
    )


def _load_yaml(path: Path) -> dict:
    raw = path.read_text(encoding="utf-8")
    data = yaml.safe_load(raw) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid clustering config root: {path}")
    return data


@lru_cache(maxsize=1)
def get_settings() -> ClusteringSettings:
    """
    Clustering settings from YAML; built-in defaults when the file is absent.
    """
    path = settings_path()
    if not path.exists():
        return ClusteringSettings()
    return ClusteringSettings.model_validate(_load_yaml(path))


def clear_settings_cache() -> None:
    """
    Forget the cached settings so the next `get_settings()` re-reads the file.
    """
    get_settings.cache_clear()
