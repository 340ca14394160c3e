from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Iterable

import yaml

from cities.types import CityConfig
from geo.kernel import haversine_km
from regions.index import RegionIndex
from regions.loaders import load_regions_file
from settings.loader import get_settings
from settings.types import ClusteringSettings

logger = logging.getLogger(__name__)

DEFAULT_CITY_ID = "san_francisco"


def _repo_root() -> Path:
    # .../backend/cities/registry.py -> repo root is 2 levels up
    return Path(__file__).resolve().parents[2]


def _cities_root() -> Path:
    return _repo_root() / "data" / "cities"


@dataclass(frozen=True)
class CityEntry:
    config: CityConfig
    # Absolute path to city.yaml on disk (useful for debugging).
    path: Path


class UnknownCityError(KeyError):
    def __init__(self, city_id: str):
        super().__init__(city_id)
        self.city_id = city_id


def _iter_city_yaml_files() -> Iterable[Path]:
    root = _cities_root()
    if not root.exists():
        return []
    # Convention: data/cities/*/city.yaml
    return root.glob("*/city.yaml")


def _load_yaml(path: Path) -> dict:
    raw = path.read_text(encoding="utf-8")
    data = yaml.safe_load(raw) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid city yaml root: {path}")
    return data


@lru_cache(maxsize=1)
def get_registry() -> dict[str, CityEntry]:
    out: dict[str, CityEntry] = {}
    for p in sorted(_iter_city_yaml_files(), key=lambda x: str(x)):
        cfg = CityConfig.model_validate(_load_yaml(p))
        if cfg.id in out:
            raise ValueError(f"Duplicate city id {cfg.id!r}: {p}")
        out[cfg.id] = CityEntry(config=cfg, path=p)
    return out


def list_cities(*, include_disabled: bool = False) -> list[CityConfig]:
    reg = get_registry()
    return [e.config for e in reg.values() if include_disabled or e.config.enabled]


def default_city_id() -> str:
    reg = get_registry()
    if DEFAULT_CITY_ID in reg:
        return DEFAULT_CITY_ID
    # Fall back to stable ordering.
    return next(iter(reg.keys()), DEFAULT_CITY_ID)


def get_city(city_id: str | None) -> CityEntry:
    """
    Look up a city; an empty id means the default city.
    """
    reg = get_registry()
    if not reg:
        raise RuntimeError("No cities discovered under `data/cities/*/city.yaml`")
    cid = (city_id or "").strip() or default_city_id()
    if cid not in reg:
        raise UnknownCityError(cid)
    return reg[cid]


def detect_nearest_city(lat: float, lon: float) -> CityConfig:
    """
    Enabled city whose center is closest (great-circle) to the given location.

    Ties keep the first city in registry order.
    """
    nearest: CityConfig | None = None
    best = float("inf")
    for cfg in list_cities():
        d = haversine_km(lat, lon, cfg.center.lat, cfg.center.lon)
        if d < best:
            best = d
            nearest = cfg
    if nearest is None:
        raise RuntimeError("No enabled cities to choose from")
    return nearest


def resolve_repo_path(repo_relative: str) -> Path:
    # Allow both "data/..." and "/data/..." inputs (normalize to repo-relative).
    rel = (repo_relative or "").lstrip("/")
    return _repo_root() / rel


def load_city_regions(city_id: str | None) -> RegionIndex | None:
    """
    Region index for a city, or None when the city has no regions configured.

    Raises `DataError` when the configured file is malformed.
    """
    cfg = get_city(city_id).config
    if not cfg.regionsPath:
        return None
    path = resolve_repo_path(cfg.regionsPath)
    regions = load_regions_file(path, name_property=cfg.regionNameProperty)
    logger.info("Loaded %d region(s) for %s from %s", len(regions), cfg.id, path)
    return RegionIndex(regions)


def city_settings(city_id: str | None) -> ClusteringSettings:
    """
    Global clustering settings with the city's overrides applied.
    """
    cfg = get_city(city_id).config
    return get_settings().merged(cfg.clustering)


def clear_registry_cache() -> None:
    """
    Forget discovered cities so YAML edits are picked up without a restart.
    """
    get_registry.cache_clear()
