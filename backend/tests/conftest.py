import sys
from pathlib import Path

import pytest

# Ensure `backend/` is on sys.path so tests can import local modules
# like `clustering.*`, `geo.*`, and `main`.
BACKEND_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(BACKEND_ROOT))


def _square(min_lon: float, min_lat: float, max_lon: float, max_lat: float) -> list:
    return [
        [min_lon, min_lat],
        [max_lon, min_lat],
        [max_lon, max_lat],
        [min_lon, max_lat],
        [min_lon, min_lat],
    ]


def _feature(name: str, rings: list) -> dict:
    return {
        "type": "Feature",
        "properties": {"name": name},
        "geometry": {"type": "Polygon", "coordinates": rings},
    }


@pytest.fixture
def three_squares() -> dict:
    """
    Alpha | Bravo | Charlie: adjacent unit squares along lat 0..1.
    """
    return {
        "type": "FeatureCollection",
        "features": [
            _feature("Alpha", [_square(0.0, 0.0, 1.0, 1.0)]),
            _feature("Bravo", [_square(1.0, 0.0, 2.0, 1.0)]),
            _feature("Charlie", [_square(2.0, 0.0, 3.0, 1.0)]),
        ],
    }


@pytest.fixture
def square_with_hole() -> dict:
    return {
        "type": "FeatureCollection",
        "features": [
            _feature("Donut", [_square(0.0, 0.0, 10.0, 10.0), _square(4.0, 4.0, 6.0, 6.0)]),
        ],
    }
