from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Protocol

from geo.aoi import BBox

logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    daemon: bool

    def start(self) -> None: ...

    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[..., None], tuple], TimerHandle]
RecomputeCallback = Callable[..., Any]


def _thread_timer(delay_s: float, fn: Callable[..., None], args: tuple) -> TimerHandle:
    return threading.Timer(delay_s, fn, args=args)


class RecomputeScheduler:
    """
    Debounces viewport signals into a single recompute.

    Each `signal()` cancels the pending timer and re-arms it with the latest viewport,
    so a burst of pans/zooms yields one recompute after `delay_s` of quiet. The
    callback receives `is_current`, which turns False once a newer viewport arrives;
    it should discard its result in that case.

    Exceptions from the callback stop here: they are logged and the callback's
    previous output stays in place.
    """

    def __init__(
        self,
        callback: RecomputeCallback,
        *,
        delay_s: float = 0.15,
        timer_factory: TimerFactory = _thread_timer,
    ):
        self._callback = callback
        self._delay_s = max(0.0, float(delay_s))
        self._timer_factory = timer_factory
        self._lock = threading.RLock()
        self._timer: TimerHandle | None = None
        self._generation = 0
        self._latest: tuple[BBox, float, int] | None = None
        self._ran_generation = 0
        self._closed = False

    @property
    def delay_s(self) -> float:
        return self._delay_s

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._timer is not None

    def signal(self, bounds: BBox, zoom: float) -> None:
        with self._lock:
            if self._closed:
                return
            self._generation += 1
            gen = self._generation
            self._latest = (bounds, float(zoom), gen)
            self._cancel_timer()
            t = self._timer_factory(self._delay_s, self._fire, (gen,))
            t.daemon = True
            self._timer = t
            t.start()

    def cancel(self) -> None:
        with self._lock:
            self._cancel_timer()

    def flush(self) -> Any:
        """
        Run the pending recompute now (if any) in the calling thread.
        """
        with self._lock:
            if self._timer is None or self._latest is None:
                return None
            gen = self._latest[2]
            self._cancel_timer()
        return self._fire(gen)

    def run_now(self, bounds: BBox, zoom: float) -> Any:
        """
        Recompute immediately for this viewport, superseding anything pending.
        """
        with self._lock:
            self._generation += 1
            gen = self._generation
            self._latest = (bounds, float(zoom), gen)
            self._ran_generation = gen
            self._cancel_timer()
        return self._run(bounds, float(zoom), gen)

    def close(self) -> None:
        with self._lock:
            self._closed = True
            self._cancel_timer()

    def _fire(self, gen: int) -> Any:
        with self._lock:
            latest = self._latest
            if latest is None or latest[2] != gen or self._ran_generation >= gen:
                # Superseded by a newer signal (its own timer will run) or already run.
                return None
            self._ran_generation = gen
            self._timer = None
            bounds, zoom, _ = latest
        return self._run(bounds, zoom, gen)

    def _run(self, bounds: BBox, zoom: float, gen: int) -> Any:
        def is_current() -> bool:
            with self._lock:
                return self._generation == gen

        try:
            return self._callback(bounds, zoom, is_current=is_current)
        except Exception:
            logger.exception(
                "Recompute failed at zoom %.2f for %s; keeping previous clusters",
                zoom,
                bounds.as_dict(),
            )
            return None

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
