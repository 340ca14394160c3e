from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable

from clustering.types import EventPoint
from clustering.viewport import any_visible
from geo.aoi import BBox

logger = logging.getLogger(__name__)


@dataclass
class DeclusterSet:
    """
    Region names the user expanded into individual markers.

    A name stays until the view zooms out below the region tier, or until none of
    the region's members is inside the visible (unexpanded) bounds.
    """

    _names: set[str] = field(default_factory=set)

    def __contains__(self, name: object) -> bool:
        return name in self._names

    def __len__(self) -> int:
        return len(self._names)

    def __iter__(self):
        return iter(sorted(self._names))

    def add(self, name: str) -> None:
        self._names.add(name)

    def discard(self, name: str) -> bool:
        if name in self._names:
            self._names.discard(name)
            return True
        return False

    def clear(self) -> None:
        self._names.clear()

    def snapshot(self) -> frozenset[str]:
        return frozenset(self._names)


def regions_to_release(
    declustered: Iterable[str],
    *,
    bounds: BBox,
    members_of: Callable[[str], Iterable[EventPoint]],
) -> list[str]:
    """
    Declustered region names with no member inside `bounds`.
    """
    out: list[str] = []
    for name in sorted(declustered):
        if not any_visible(members_of(name), bounds):
            out.append(name)
    if out:
        logger.info("Reclustering %d region(s) out of view: %s", len(out), ", ".join(out))
    return out
