"""
Clustering engine.

One `ClusteringEngine` per map session: it owns the points, the region index, the
declustered set and the stable-center cache, and turns viewport changes into
cluster lists through a debounced scheduler.
"""
from __future__ import annotations

from engine.engine import ClusteringEngine
from engine.scheduler import RecomputeScheduler
from engine.types import ClusterListener, ClusterUpdate, DeclusterView

__all__ = [
    "ClusterListener",
    "ClusterUpdate",
    "ClusteringEngine",
    "DeclusterView",
    "RecomputeScheduler",
]
