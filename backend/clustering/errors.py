from __future__ import annotations


class ClusteringError(Exception):
    """Base class for errors raised by the clustering core."""


class DataError(ClusteringError, ValueError):
    """Input data (region collections, points) could not be interpreted."""


class UnknownRegionError(ClusteringError, KeyError):
    def __init__(self, name: str):
        super().__init__(name)
        self.name = name

    def __str__(self) -> str:
        return f"Unknown region: {self.name!r}"
