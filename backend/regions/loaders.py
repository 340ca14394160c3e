from __future__ import annotations

import json
import math
from pathlib import Path
from typing import Any

from clustering.errors import DataError
from geo.kernel import Ring
from regions.types import Region


def load_regions_file(path: Path, *, name_property: str = "name") -> list[Region]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise DataError(f"Region file is not valid JSON: {path}: {e}") from e
    return parse_region_collection(data, name_property=name_property)


def parse_region_collection(
    data: Any, *, name_property: str = "name"
) -> list[Region]:
    """
    Parse a GeoJSON FeatureCollection of Polygon / MultiPolygon features.

    Anything else raises `DataError`; there is no partial load.
    """
    if not isinstance(data, dict) or data.get("type") != "FeatureCollection":
        raise DataError("Region collection must be a GeoJSON FeatureCollection")
    features = data.get("features")
    if not isinstance(features, list):
        raise DataError("Region collection is missing a `features` list")

    out: list[Region] = []
    for i, feature in enumerate(features):
        if not isinstance(feature, dict):
            raise DataError(f"Feature #{i} is not an object")
        geom = feature.get("geometry") or {}
        props = feature.get("properties") or {}
        if not isinstance(geom, dict) or not isinstance(props, dict):
            raise DataError(f"Feature #{i} has malformed geometry/properties")

        name = props.get(name_property) or feature.get("id")
        if name is None or not str(name).strip():
            raise DataError(f"Feature #{i} has no `{name_property}` property")

        gtype = geom.get("type")
        coords = geom.get("coordinates")
        if gtype == "Polygon":
            polygons = [_to_polygon(coords, i)]
        elif gtype == "MultiPolygon":
            if not isinstance(coords, list) or not coords:
                raise DataError(f"Feature #{i} has an empty MultiPolygon")
            polygons = [_to_polygon(p, i) for p in coords]
        else:
            raise DataError(
                f"Feature #{i} has unsupported geometry type: {gtype!r}"
            )

        out.append(Region(name=str(name).strip(), polygons=polygons, props=props))

    return out


def _to_polygon(rings: Any, feature_idx: int) -> list[Ring]:
    if not isinstance(rings, list) or not rings:
        raise DataError(f"Feature #{feature_idx} has a polygon without rings")
    return [_to_ring(r, feature_idx) for r in rings]


def _to_ring(ring: Any, feature_idx: int) -> list[tuple[float, float]]:
    if not isinstance(ring, list) or len(ring) < 3:
        raise DataError(f"Feature #{feature_idx} has a ring with fewer than 3 positions")
    out: list[tuple[float, float]] = []
    for p in ring:
        if not isinstance(p, (list, tuple)) or len(p) < 2:
            raise DataError(f"Feature #{feature_idx} has a malformed position: {p!r}")
        try:
            lon, lat = float(p[0]), float(p[1])
        except (TypeError, ValueError) as e:
            raise DataError(
                f"Feature #{feature_idx} has a non-numeric position: {p!r}"
            ) from e
        if not (math.isfinite(lon) and math.isfinite(lat)):
            raise DataError(f"Feature #{feature_idx} has a non-finite position: {p!r}")
        out.append((lon, lat))
    return out
