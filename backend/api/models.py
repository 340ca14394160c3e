from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from clustering.types import EventPoint
from geo.aoi import BBox


class ApiBBox(BaseModel):
    minLon: float
    minLat: float
    maxLon: float
    maxLat: float

    def to_bbox(self) -> BBox:
        return BBox(
            min_lon=self.minLon, min_lat=self.minLat, max_lon=self.maxLon, max_lat=self.maxLat
        )


class ApiViewportSize(BaseModel):
    width: int = Field(default=900, gt=0)
    height: int = Field(default=600, gt=0)


class ApiPoint(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    id: str
    lon: float
    lat: float
    category: str = ""
    popularity: float = 0.0
    props: dict[str, Any] = Field(default_factory=dict)

    def to_point(self) -> EventPoint:
        return EventPoint(
            id=self.id,
            lon=self.lon,
            lat=self.lat,
            category=self.category,
            popularity=self.popularity,
            props=dict(self.props),
        )


class ApiSessionCreate(BaseModel):
    cityId: str | None = None
    # When set, the city closest to this location is used instead of cityId.
    nearLat: float | None = None
    nearLon: float | None = None


class ApiPoints(BaseModel):
    points: list[ApiPoint]


class ApiViewport(BaseModel):
    bbox: ApiBBox
    zoom: float = Field(ge=0.0, le=24.0)
    # True: debounced (map is still moving); False: recompute now.
    debounce: bool = False


class ApiDecluster(BaseModel):
    viewport: ApiViewportSize | None = None
