from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from clustering.by_region import region_clusters
from clustering.decluster import DeclusterSet, regions_to_release
from clustering.errors import DataError, UnknownRegionError
from clustering.heat import heat_clusters
from clustering.overlap import individual_clusters
from clustering.stable import StableCenterCache
from clustering.tiers import select_tier
from clustering.types import Cluster, ClusterTier, EventPoint
from clustering.viewport import select_candidates
from engine.scheduler import RecomputeScheduler
from engine.types import ClusterListener, ClusterUpdate, DeclusterView
from geo.aoi import BBox
from geo.kernel import haversine_km
from geo.view import fit_view_to_coords, km_per_pixel
from regions.index import RegionIndex, load_regions
from settings.loader import get_settings
from settings.types import ClusteringSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Computed:
    update: ClusterUpdate
    release: tuple[str, ...]


@dataclass
class ClusteringEngine:
    """
    Per-map-session clustering state and the recompute pipeline.

    Flow per recompute: viewport filter -> tier selection -> heat / region / individual
    strategy -> commit. Mutable session state (declustered regions, stable centers,
    the last cluster list) lives here and nowhere else; one engine per map session.

    Recomputes never overlap: a call made while another is running is dropped and
    the next viewport signal catches up.
    """

    settings: ClusteringSettings | None = None
    regions: RegionIndex | None = None

    _points: list[EventPoint] = field(default_factory=list, init=False, repr=False)
    _membership: dict[str, str | None] = field(default_factory=dict, init=False, repr=False)
    _declustered: DeclusterSet = field(default_factory=DeclusterSet, init=False, repr=False)
    _stable: StableCenterCache = field(default_factory=StableCenterCache, init=False, repr=False)
    _clusters: list[Cluster] = field(default_factory=list, init=False, repr=False)
    _last: ClusterUpdate | None = field(default=None, init=False, repr=False)
    _listeners: list[ClusterListener] = field(default_factory=list, init=False, repr=False)
    _lock: threading.RLock = field(default_factory=threading.RLock, init=False, repr=False)
    _busy: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _scheduler: RecomputeScheduler = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if self.settings is None:
            self.settings = get_settings()
        self._scheduler = RecomputeScheduler(
            self.recompute, delay_s=self.settings.scheduler.debounceMs / 1000.0
        )

    # ------------------------------------------------------------------ inputs

    def set_points(self, points: Iterable[EventPoint]) -> int:
        """
        Replace the working dataset; returns how many points were accepted.

        Points with non-finite coordinates or popularity, or a repeated id, are dropped
        and logged.
        """
        accepted: list[EventPoint] = []
        seen: set[str] = set()
        bad = 0
        dupes = 0
        for p in points:
            if not p.has_finite_coords():
                bad += 1
                logger.warning("Dropping point %s with non-finite coordinates (%r, %r)", p.id, p.lon, p.lat)
                continue
            if not p.has_finite_popularity():
                bad += 1
                logger.warning("Dropping point %s with non-finite popularity %r", p.id, p.popularity)
                continue
            if p.id in seen:
                dupes += 1
                continue
            seen.add(p.id)
            accepted.append(p)
        if dupes:
            logger.warning("Dropped %d point(s) with a repeated id", dupes)

        with self._lock:
            self._points = accepted
            self._membership = {}
            # New composition: previously pinned centers no longer apply.
            self._stable.clear()
        logger.info("Loaded %d point(s) (%d non-finite dropped)", len(accepted), bad)
        return len(accepted)

    def set_regions(self, collection: Any) -> RegionIndex:
        """
        Replace the region index from a GeoJSON FeatureCollection.

        On `DataError` the engine drops its regions (heat clustering at every zoom)
        and re-raises.
        """
        try:
            index = load_regions(collection)
        except DataError:
            with self._lock:
                self.regions = None
                self._membership = {}
            logger.warning("Invalid region collection; falling back to heat clustering")
            raise
        self.set_region_index(index)
        return index

    def set_region_index(self, index: RegionIndex | None) -> None:
        with self._lock:
            self.regions = index
            self._membership = {}

    def add_listener(self, listener: ClusterListener) -> Callable[[], None]:
        """
        Register a callback for every committed recompute; returns an unsubscribe.
        """
        with self._lock:
            self._listeners.append(listener)

        def _remove() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _remove

    # ---------------------------------------------------------------- viewport

    def on_viewport_change(self, bounds: BBox, zoom: float) -> None:
        """
        Debounced entry point for map movement.
        """
        _check_viewport(bounds, zoom)
        self._scheduler.signal(bounds.normalized(), float(zoom))

    def flush(self) -> ClusterUpdate | None:
        """
        Run a pending debounced recompute right away.
        """
        return self._scheduler.flush()

    def refresh(self) -> ClusterUpdate | None:
        """
        Recompute for the last committed viewport (e.g. after a decluster click).
        """
        last = self._last
        if last is None:
            return None
        return self._scheduler.run_now(last.bounds, last.zoom)

    def update_now(self, bounds: BBox, zoom: float) -> ClusterUpdate | None:
        """
        Immediate (non-debounced) recompute behind the same error boundary.
        """
        _check_viewport(bounds, zoom)
        return self._scheduler.run_now(bounds.normalized(), float(zoom))

    def recompute(
        self,
        bounds: BBox,
        zoom: float,
        *,
        is_current: Callable[[], bool] | None = None,
    ) -> ClusterUpdate | None:
        """
        Compute and commit clusters for a viewport.

        Returns None when dropped (another recompute in flight) or discarded (a newer
        viewport arrived while computing). Exceptions propagate; the scheduler is the
        boundary that catches them.
        """
        if not self._busy.acquire(blocking=False):
            logger.info("Recompute already in flight; dropping request at zoom %.2f", zoom)
            return None
        try:
            computed = self._compute(bounds.normalized(), float(zoom))
            if is_current is not None and not is_current():
                logger.debug("Discarding stale recompute at zoom %.2f", zoom)
                return None
            self._commit(computed)
            return computed.update
        finally:
            self._busy.release()

    # --------------------------------------------------------------- decluster

    def decluster_region(self, name: str, *, viewport: dict[str, int] | None = None) -> DeclusterView:
        """
        Expand a region into individual markers and return the view that fits it.
        """
        with self._lock:
            index = self.regions
            if index is None or index.get(name) is None:
                raise UnknownRegionError(name)
            members = self._members_of(name)
            self._declustered.add(name)

        if members:
            coords = [(p.lon, p.lat) for p in members]
        else:
            coords = list(index.get(name).polygons[0][0])
        bbox, center, zoom = fit_view_to_coords(coords, viewport=viewport, max_zoom=16.0)
        logger.info("Declustered region %s (%d members)", name, len(members))
        return DeclusterView(
            region_name=name,
            bbox=bbox,
            center=center,
            zoom=zoom,
            member_count=len(members),
        )

    def recluster_region(self, name: str) -> bool:
        with self._lock:
            return self._declustered.discard(name)

    def reset_declustered(self) -> None:
        with self._lock:
            self._declustered.clear()

    # ----------------------------------------------------------------- outputs

    @property
    def tier(self) -> ClusterTier | None:
        last = self._last
        return last.tier if last is not None else None

    @property
    def declustered(self) -> list[str]:
        with self._lock:
            return list(self._declustered)

    @property
    def points(self) -> list[EventPoint]:
        with self._lock:
            return list(self._points)

    @property
    def last_update(self) -> ClusterUpdate | None:
        return self._last

    def get_clusters(self) -> list[Cluster]:
        with self._lock:
            return list(self._clusters)

    def find_cluster(self, cluster_id: str) -> Cluster | None:
        with self._lock:
            for c in self._clusters:
                if c.id == cluster_id:
                    return c
        return None

    def find_cluster_at(
        self, lon: float, lat: float, *, tolerance_km: float | None = None
    ) -> list[EventPoint] | None:
        """
        Members of the marker nearest to (lon, lat) within the hit tolerance.

        Without an explicit `tolerance_km` the tolerance is the larger of
        `hitTest.toleranceKm` and `hitTest.tolerancePx` screen pixels at the last
        committed zoom.
        """
        if not (math.isfinite(lon) and math.isfinite(lat)):
            return None
        if tolerance_km is not None:
            tol = float(tolerance_km)
        else:
            hit = self.settings.hitTest
            tol = hit.toleranceKm
            last = self._last
            if last is not None:
                tol = max(tol, hit.tolerancePx * km_per_pixel(last.zoom, lat))
        best: Cluster | None = None
        best_d = float("inf")
        for c in self.get_clusters():
            d = haversine_km(lat, lon, c.lat, c.lon)
            if d <= tol and d < best_d:
                best = c
                best_d = d
        return list(best.members) if best is not None else None

    def close(self) -> None:
        self._scheduler.close()

    # ---------------------------------------------------------------- internals

    def _locate(self, p: EventPoint) -> str | None:
        # Region membership per point id; reset whenever points or regions change.
        if p.id in self._membership:
            return self._membership[p.id]
        index = self.regions
        region = index.find_region(p.lon, p.lat) if index is not None else None
        name = region.name if region is not None else None
        self._membership[p.id] = name
        return name

    def _members_of(self, name: str) -> list[EventPoint]:
        return [p for p in self._points if self._locate(p) == name]

    def _compute(self, bounds: BBox, zoom: float) -> _Computed:
        t0 = time.perf_counter()
        with self._lock:
            points = list(self._points)
            index = self.regions
            declustered = self._declustered.snapshot()

            zoom_tier = select_tier(zoom, self.settings.tiers)
            release_all = zoom_tier == ClusterTier.heat and bool(declustered)
            if release_all:
                logger.info(
                    "Zoom %.2f is below the region tier; reclustering %d region(s)",
                    zoom,
                    len(declustered),
                )
                release: list[str] = sorted(declustered)
            else:
                release = regions_to_release(
                    declustered, bounds=bounds, members_of=self._members_of
                )
            active = declustered.difference(release)

            candidates = select_candidates(points, bounds, zoom, self.settings.viewport)
            # Without regions there is no region tier; heat covers every zoom.
            tier = zoom_tier if index is not None else ClusterTier.heat

            unmatched = 0
            if tier == ClusterTier.heat:
                clusters = heat_clusters(
                    candidates,
                    zoom=zoom,
                    heat=self.settings.heat,
                    stable_cache=self._stable,
                )
            elif tier == ClusterTier.region:
                assert index is not None
                clusters, missing = region_clusters(
                    candidates,
                    index=index,
                    declustered=active,
                    overlap=self.settings.overlap,
                    locate=self._locate,
                )
                unmatched = len(missing)
            elif tier == ClusterTier.individual:
                clusters = individual_clusters(candidates, self.settings.overlap)
            else:
                raise ValueError(f"Unhandled cluster tier: {tier!r}")

        elapsed_ms = (time.perf_counter() - t0) * 1000.0
        logger.debug(
            "%s clustering: %d cluster(s) from %d candidate(s) at zoom %.2f",
            tier.value,
            len(clusters),
            len(candidates),
            zoom,
        )
        update = ClusterUpdate(
            tier=tier,
            zoom_tier=zoom_tier,
            clusters=clusters,
            bounds=bounds,
            zoom=zoom,
            declustered=sorted(active),
            stats={
                "points": len(points),
                "candidates": len(candidates),
                "clusters": len(clusters),
                "unmatched": unmatched,
                "declustered": len(active),
                "released": len(release),
                "stableCenters": len(self._stable),
                "computeMs": round(elapsed_ms, 3),
            },
        )
        return _Computed(update=update, release=tuple(release))

    def _commit(self, computed: _Computed) -> None:
        with self._lock:
            for name in computed.release:
                self._declustered.discard(name)
            self._clusters = list(computed.update.clusters)
            self._last = computed.update
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(computed.update)
            except Exception:
                logger.exception("Cluster listener %r failed", listener)


def _check_viewport(bounds: BBox, zoom: float) -> None:
    if not bounds.is_finite():
        raise ValueError(f"Viewport bounds must be finite: {bounds!r}")
    if not math.isfinite(float(zoom)):
        raise ValueError(f"Viewport zoom must be finite: {zoom!r}")
