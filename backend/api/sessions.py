from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Callable

from cities.registry import city_settings, get_city, load_city_regions
from clustering.errors import DataError
from engine.engine import ClusteringEngine
from engine.types import ClusterUpdate
from telemetry.singleton import get_store

logger = logging.getLogger(__name__)


class UnknownSessionError(KeyError):
    def __init__(self, session_id: str):
        super().__init__(session_id)
        self.session_id = session_id


@dataclass
class MapSession:
    """
    One open map: its engine plus the city it was opened on.
    """

    id: str
    city_id: str
    engine: ClusteringEngine
    # Serializes HTTP calls for this map; the engine has its own locks for the timer thread.
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False)
    _unsubscribe: Callable[[], None] | None = field(default=None, repr=False)

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self.engine.close()


@dataclass
class SessionRegistry:
    _sessions: dict[str, MapSession] = field(default_factory=dict)
    _lock: threading.RLock = field(default_factory=threading.RLock, repr=False)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def open(self, city_id: str | None = None) -> MapSession:
        """
        New session on a city; a city whose regions file is broken still opens, with
        heat clustering only.
        """
        cfg = get_city(city_id).config
        engine = ClusteringEngine(settings=city_settings(cfg.id))
        try:
            engine.set_region_index(load_city_regions(cfg.id))
        except DataError:
            logger.exception("Regions for city %s are invalid; opening without regions", cfg.id)

        session = MapSession(id=uuid.uuid4().hex, city_id=cfg.id, engine=engine)
        session._unsubscribe = engine.add_listener(_telemetry_listener(session))
        with self._lock:
            self._sessions[session.id] = session
        logger.info("Opened map session %s on %s", session.id, cfg.id)
        return session

    def get(self, session_id: str) -> MapSession:
        with self._lock:
            s = self._sessions.get(session_id)
        if s is None:
            raise UnknownSessionError(session_id)
        return s

    def close(self, session_id: str) -> None:
        with self._lock:
            s = self._sessions.pop(session_id, None)
        if s is None:
            raise UnknownSessionError(session_id)
        s.close()
        logger.info("Closed map session %s", session_id)

    def close_all(self) -> None:
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for s in sessions:
            s.close()


def _telemetry_listener(session: MapSession) -> Callable[[ClusterUpdate], None]:
    def _record(update: ClusterUpdate) -> None:
        store = get_store()
        if store is None:
            return
        store.record_update(update, session_id=session.id, city_id=session.city_id)

    return _record
