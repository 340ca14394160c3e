from __future__ import annotations

from typing import Iterable

from clustering.types import EventPoint
from geo.aoi import BBox
from settings.types import ViewportSettings


def margin_for_zoom(zoom: float, viewport: ViewportSettings | None = None) -> float:
    # Wider margins when zoomed out so markers don't pop in at the edges while panning.
    v = viewport or ViewportSettings()
    z = float(zoom)
    if z < v.mediumFromZoom:
        return v.largeMarginDeg
    if z <= v.smallAboveZoom:
        return v.mediumMarginDeg
    return v.smallMarginDeg


def select_candidates(
    points: Iterable[EventPoint],
    bounds: BBox,
    zoom: float,
    viewport: ViewportSettings | None = None,
) -> list[EventPoint]:
    """
    Points inside `bounds` grown by the zoom-dependent margin, in input order.
    """
    expanded = bounds.normalized().expanded(margin_for_zoom(zoom, viewport))
    return [p for p in points if expanded.contains(p.lon, p.lat)]


def any_visible(points: Iterable[EventPoint], bounds: BBox) -> bool:
    """
    True when at least one point lies inside the unexpanded `bounds`.
    """
    b = bounds.normalized()
    return any(b.contains(p.lon, p.lat) for p in points)
