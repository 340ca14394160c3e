from __future__ import annotations

from clustering.types import ClusterTier
from settings.types import TierSettings


def select_tier(zoom: float, tiers: TierSettings | None = None) -> ClusterTier:
    """
    Map a view zoom onto a clustering tier. Pure function of zoom.
    """
    t = tiers or TierSettings()
    z = float(zoom)
    if z < t.regionMinZoom:
        return ClusterTier.heat
    if z < t.individualMinZoom:
        return ClusterTier.region
    return ClusterTier.individual
