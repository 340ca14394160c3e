from __future__ import annotations

import math

from geo.aoi import BBox, bbox_of
from geo.kernel import EARTH_RADIUS_KM


def fit_view_to_coords(
    coords: list[tuple[float, float]],
    *,
    viewport: dict[str, int] | None = None,
    max_zoom: float = 16.0,
) -> tuple[BBox, dict[str, float], float]:
    """
    Padded bbox, center and zoom that frame the given (lon, lat) pairs.
    """
    raw = bbox_of(coords)
    if raw is None:
        raise ValueError("fit_view_to_coords() needs at least one coordinate")

    # 20% padding each side; a single point still gets a small window.
    pad_lon = (raw.max_lon - raw.min_lon) * 0.2 or 0.002
    pad_lat = (raw.max_lat - raw.min_lat) * 0.2 or 0.002
    bbox = BBox(
        min_lon=raw.min_lon - pad_lon,
        min_lat=raw.min_lat - pad_lat,
        max_lon=raw.max_lon + pad_lon,
        max_lat=raw.max_lat + pad_lat,
    )

    center = {
        "lon": (bbox.min_lon + bbox.max_lon) / 2.0,
        "lat": (bbox.min_lat + bbox.max_lat) / 2.0,
    }

    width = int((viewport or {}).get("width") or 900)
    height = int((viewport or {}).get("height") or 600)
    zoom = bbox_to_zoom(
        bbox.min_lon, bbox.min_lat, bbox.max_lon, bbox.max_lat, width=width, height=height
    )
    return bbox, center, float(min(zoom, max_zoom))


def bbox_to_zoom(
    min_lon: float,
    min_lat: float,
    max_lon: float,
    max_lat: float,
    *,
    width: int,
    height: int,
) -> float:
    # WebMercator bbox -> zoom heuristic.

    def lat_to_rad(lat: float) -> float:
        s = math.sin(lat * math.pi / 180.0)
        return math.log((1 + s) / (1 - s)) / 2.0

    lat_rad_min = lat_to_rad(min_lat)
    lat_rad_max = lat_to_rad(max_lat)
    lon_delta = max_lon - min_lon
    lat_delta = (lat_rad_max - lat_rad_min) * 180.0 / math.pi

    # avoid division by zero
    lon_delta = max(lon_delta, 1e-6)
    lat_delta = max(lat_delta, 1e-6)

    # 256px tiles
    zoom_x = math.log2((width * 360.0) / (256.0 * lon_delta))
    zoom_y = math.log2((height * 170.0) / (256.0 * lat_delta))
    return float(min(zoom_x, zoom_y))


def km_per_pixel(zoom: float, lat: float) -> float:
    # WebMercator ground resolution, 256px tiles.
    circumference_km = 2.0 * math.pi * EARTH_RADIUS_KM
    return circumference_km * math.cos(math.radians(lat)) / (256.0 * 2.0**zoom)
