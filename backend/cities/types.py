from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class CityCenter(BaseModel):
    lat: float = Field(ge=-90.0, le=90.0)
    lon: float = Field(ge=-180.0, le=180.0)


class CityConfig(BaseModel):
    """
    A city the map can open on.

    Everything city-specific lives in YAML (`data/cities/*/city.yaml`), not in code.
    """

    id: str
    title: str
    center: CityCenter
    defaultZoom: float = Field(default=12.0, ge=0.0, le=24.0)
    enabled: bool = True

    # Repo-relative path to the neighborhood GeoJSON FeatureCollection.
    regionsPath: str | None = None
    # Feature property holding the region name.
    regionNameProperty: str = "name"

    # Optional per-city overrides merged over the global clustering settings.
    clustering: dict[str, Any] | None = None
