from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from shapely.geometry import Point
from shapely.geometry import box as shapely_box
from shapely.strtree import STRtree

from clustering.errors import UnknownRegionError
from geo.aoi import BBox
from regions.loaders import parse_region_collection
from regions.types import Region

logger = logging.getLogger(__name__)


@dataclass
class RegionIndex:
    """
    Named regions with an STRtree over their bounding boxes.

    The tree only narrows the candidate list; exact containment is the ray-casting
    test in `geo.kernel`. Candidates are checked in collection order, so when regions
    overlap the earliest one wins.
    """

    regions: list[Region]

    _tree: STRtree = field(init=False, repr=False)
    _by_name: dict[str, Region] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self) -> None:
        boxes = [
            shapely_box(r.bbox.min_lon, r.bbox.min_lat, r.bbox.max_lon, r.bbox.max_lat)
            for r in self.regions
        ]
        self._tree = STRtree(boxes)
        for r in self.regions:
            # Duplicate names: the first definition answers name lookups.
            self._by_name.setdefault(r.name, r)

    def __len__(self) -> int:
        return len(self.regions)

    @property
    def names(self) -> list[str]:
        return list(self._by_name.keys())

    def get(self, name: str) -> Region | None:
        return self._by_name.get(name)

    def find_region(self, lon: float, lat: float) -> Region | None:
        if not self.regions:
            return None
        idxs = sorted(_to_int_list(self._tree.query(Point(float(lon), float(lat)))))
        for i in idxs:
            region = self.regions[i]
            if region.contains(lon, lat):
                return region
        return None

    def centroid_of(self, region: Region | str) -> tuple[float, float]:
        r = self._resolve(region)
        return r.centroid()

    def region_centroids(self) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        for r in self.regions:
            lon, lat = r.centroid()
            out.append({"name": r.name, "lon": lon, "lat": lat})
        return out

    def regions_in_bounds(self, bounds: BBox) -> list[Region]:
        b = bounds.normalized()
        idxs = sorted(
            _to_int_list(
                self._tree.query(shapely_box(b.min_lon, b.min_lat, b.max_lon, b.max_lat))
            )
        )
        return [self.regions[i] for i in idxs if self.regions[i].bbox.intersects(b)]

    def points_in_region(self, points: Iterable[Any], name: str) -> list[Any]:
        """
        Filter anything with `lon`/`lat` attributes down to those inside `name`.
        """
        r = self._resolve(name)
        return [p for p in points if r.contains(p.lon, p.lat)]

    def stats(self) -> dict[str, Any]:
        if not self.regions:
            return {"total": 0, "names": [], "bounds": None}
        bounds = BBox(
            min_lon=min(r.bbox.min_lon for r in self.regions),
            min_lat=min(r.bbox.min_lat for r in self.regions),
            max_lon=max(r.bbox.max_lon for r in self.regions),
            max_lat=max(r.bbox.max_lat for r in self.regions),
        )
        return {
            "total": len(self.regions),
            "names": sorted(r.name for r in self.regions),
            "bounds": bounds.as_dict(),
        }

    def _resolve(self, region: Region | str) -> Region:
        if isinstance(region, Region):
            return region
        r = self._by_name.get(region)
        if r is None:
            raise UnknownRegionError(region)
        return r


def load_regions(collection: Any) -> RegionIndex:
    """
    Build a `RegionIndex` from a GeoJSON FeatureCollection (raises `DataError`).
    """
    regions = parse_region_collection(collection)
    logger.info("Loaded %d regions", len(regions))
    return RegionIndex(regions=regions)


def _to_int_list(idxs: Any) -> list[int]:
    # Shapely STRtree returns numpy.ndarray of indices.
    if idxs is None:
        return []
    try:
        return [int(i) for i in idxs]
    except TypeError:
        return [int(i) for i in list(idxs)]
