from __future__ import annotations

import pytest
from pydantic import ValidationError

from settings.loader import clear_settings_cache, get_settings, settings_path
from settings.types import ClusteringSettings


@pytest.fixture(autouse=True)
def _fresh_settings():
    clear_settings_cache()
    yield
    clear_settings_cache()


def test_bundled_config_matches_defaults(monkeypatch):
    monkeypatch.delenv("PULSEMAP_CLUSTERING_CONFIG", raising=False)
    assert settings_path().name == "clustering.yaml"
    assert get_settings() == ClusteringSettings()


def test_yaml_overrides_via_env(tmp_path, monkeypatch):
    p = tmp_path / "clustering.yaml"
    p.write_text(
        "tiers:\n  regionMinZoom: 10\nheat:\n  proximityKm: 4.5\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("PULSEMAP_CLUSTERING_CONFIG", str(p))

    s = get_settings()
    assert s.tiers.regionMinZoom == 10.0
    assert s.tiers.individualMinZoom == 15.0
    assert s.heat.proximityKm == 4.5
    assert s.heat.farProximityKm == 10.0
    assert get_settings() is s


def test_missing_file_uses_defaults(tmp_path, monkeypatch):
    monkeypatch.setenv("PULSEMAP_CLUSTERING_CONFIG", str(tmp_path / "absent.yaml"))
    assert get_settings() == ClusteringSettings()


def test_invalid_yaml_values_are_rejected(tmp_path, monkeypatch):
    p = tmp_path / "clustering.yaml"
    p.write_text("tiers:\n  regionMinZoom: 16\n  individualMinZoom: 12\n", encoding="utf-8")
    monkeypatch.setenv("PULSEMAP_CLUSTERING_CONFIG", str(p))
    with pytest.raises(ValidationError):
        get_settings()

    p.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ValueError):
        get_settings()


def test_merged_applies_nested_overrides():
    base = ClusteringSettings()
    merged = base.merged({"heat": {"proximityKm": 8.0}, "scheduler": {"debounceMs": 0}})
    assert merged.heat.proximityKm == 8.0
    assert merged.heat.popularityThreshold == base.heat.popularityThreshold
    assert merged.scheduler.debounceMs == 0
    assert base.heat.proximityKm == 6.0
    assert base.merged(None) is base
