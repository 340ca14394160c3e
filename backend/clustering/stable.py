from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from typing import Sequence

from clustering.types import EventPoint, mean_center
from geo.kernel import haversine_km

logger = logging.getLogger(__name__)


def composition_fingerprint(members: Sequence[EventPoint]) -> str:
    """
    Order-independent key for a member set: count + truncated digest of sorted ids.
    """
    ids = sorted(p.id for p in members)
    digest = hashlib.sha1("\x1f".join(ids).encode("utf-8")).hexdigest()[:16]
    return f"{len(ids)}-{digest}"


def nearest_member(
    members: Sequence[EventPoint], lon: float, lat: float
) -> EventPoint:
    # Ties resolve to the earliest member, so the choice is input-order deterministic.
    best = members[0]
    best_d = float("inf")
    for p in members:
        d = haversine_km(lat, lon, p.lat, p.lon)
        if d < best_d:
            best_d = d
            best = p
    return best


@dataclass
class StableCenterCache:
    """
    Remembers where a cluster of a given composition was placed.

    The stored center is always a real member position (the member closest to the
    anchor), so markers never sit over empty space. Entries are only dropped by
    `clear()`, which the engine calls when the point set is replaced.
    """

    _centers: dict[str, tuple[float, float]] = field(default_factory=dict, repr=False)
    hits: int = 0
    misses: int = 0

    def __len__(self) -> int:
        return len(self._centers)

    def center_for(
        self,
        members: Sequence[EventPoint],
        *,
        anchor: tuple[float, float] | None = None,
    ) -> tuple[float, float]:
        """
        (lon, lat) for this member set; `anchor` defaults to the arithmetic mean.
        """
        if not members:
            raise ValueError("center_for() needs at least one member")
        key = composition_fingerprint(members)
        cached = self._centers.get(key)
        if cached is not None:
            self.hits += 1
            return cached

        self.misses += 1
        a_lon, a_lat = anchor if anchor is not None else mean_center(members)
        best = nearest_member(members, a_lon, a_lat)
        center = (best.lon, best.lat)
        self._centers[key] = center
        if len(members) >= 10:
            logger.debug("New stable center for %d members: %s", len(members), center)
        return center

    def clear(self) -> None:
        self._centers.clear()
        self.hits = 0
        self.misses = 0
