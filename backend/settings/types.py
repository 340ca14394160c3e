from __future__ import annotations

from pydantic import BaseModel, Field, model_validator


class TierSettings(BaseModel):
    """
    Zoom thresholds of the tier state machine.

    heat: zoom < regionMinZoom; region: regionMinZoom <= zoom < individualMinZoom;
    individual: zoom >= individualMinZoom.
    """

    regionMinZoom: float = Field(default=11.0, ge=0.0, le=24.0)
    individualMinZoom: float = Field(default=15.0, ge=0.0, le=24.0)

    @model_validator(mode="after")
    def _ordered(self) -> "TierSettings":
        if self.individualMinZoom < self.regionMinZoom:
            raise ValueError("individualMinZoom must be >= regionMinZoom")
        return self


class ViewportSettings(BaseModel):
    # Margins (degrees) added around the visible bbox before selecting candidates.
    largeMarginDeg: float = Field(default=0.1, ge=0.0)
    mediumMarginDeg: float = Field(default=0.05, ge=0.0)
    smallMarginDeg: float = Field(default=0.02, ge=0.0)
    # large below mediumFromZoom, medium up to and including smallAboveZoom, small above.
    mediumFromZoom: float = 12.0
    smallAboveZoom: float = 14.0


class HeatSettings(BaseModel):
    popularityThreshold: float = Field(default=80.0, ge=0.0)
    # Relative popularity difference allowed within one popular cluster.
    maxPopularityDiffRatio: float = Field(default=0.5, gt=0.0)
    proximityKm: float = Field(default=6.0, gt=0.0)
    # Far-out zooms merge more aggressively.
    farProximityKm: float = Field(default=10.0, gt=0.0)
    farBelowZoom: float = 9.0
    regularRadiusFactor: float = Field(default=2.0, gt=0.0)
    minClusterSize: int = Field(default=2, ge=2)


class OverlapSettings(BaseModel):
    # ~11m grid cell; offsets grow by baseOffsetDeg per colliding point.
    gridDeg: float = Field(default=0.0001, gt=0.0)
    baseOffsetDeg: float = Field(default=0.0002, gt=0.0)
    goldenAngleDeg: float = 137.5


class SchedulerSettings(BaseModel):
    debounceMs: float = Field(default=150.0, ge=0.0)


class HitTestSettings(BaseModel):
    # Radius around a cluster marker that still counts as a hit; at low zooms the
    # on-screen tolerance (tolerancePx at the last committed zoom) wins when larger.
    toleranceKm: float = Field(default=0.05, gt=0.0)
    tolerancePx: float = Field(default=8.0, ge=0.0)


class ClusteringSettings(BaseModel):
    tiers: TierSettings = Field(default_factory=TierSettings)
    viewport: ViewportSettings = Field(default_factory=ViewportSettings)
    heat: HeatSettings = Field(default_factory=HeatSettings)
    overlap: OverlapSettings = Field(default_factory=OverlapSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    hitTest: HitTestSettings = Field(default_factory=HitTestSettings)

    def merged(self, overrides: dict | None) -> "ClusteringSettings":
        """
        Copy with a (possibly nested, partial) overrides dict applied on top.
        """
        if not overrides:
            return self
        return ClusteringSettings.model_validate(_deep_merge(self.model_dump(), overrides))


def _deep_merge(base: dict, extra: dict) -> dict:
    out = dict(base)
    for k, v in extra.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out
