"""
Platform location capability.

`LocationProvider` is the seam to whatever the host platform offers (a GPS daemon,
a phone bridge, a browser relay). `SimulatedLocationProvider` drives the engine from
scripted positions; the CLI replay and the tests use it.
"""

from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

from couponradar.domain.models import Coordinate
from couponradar.errors import AcquisitionTimeout, PermissionDenied

logger = logging.getLogger(__name__)

SampleCallback = Callable[[Coordinate], None]
ErrorCallback = Callable[[Exception], None]


class LocationProvider(Protocol):
    def get_current_position(
        self, *, high_accuracy: bool, timeout_seconds: float, maximum_age_seconds: float
    ) -> Coordinate:
        """One-shot fix.

        Raises:
            PermissionDenied, AcquisitionTimeout, LocationUnavailable
        """
        ...

    def watch_position(
        self,
        on_sample: SampleCallback,
        on_error: ErrorCallback,
        *,
        high_accuracy: bool,
        maximum_age_seconds: float,
    ) -> Any:
        """Subscribe to continuous updates; returns a handle for `clear_watch`."""
        ...

    def clear_watch(self, handle: Any) -> None: ...


@dataclass
class _Watch:
    on_sample: SampleCallback
    on_error: ErrorCallback
    options: dict[str, Any] = field(default_factory=dict)


class SimulatedLocationProvider:
    """Scripted provider: positions are pushed by the caller and delivered synchronously."""

    def __init__(self, position: Coordinate | None = None, *, denied: bool = False):
        self._position = position
        self._denied = denied
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._watches: dict[int, _Watch] = {}
        self.one_shot_calls: list[dict[str, Any]] = []

    def deny(self, denied: bool = True) -> None:
        self._denied = denied

    def set_position(self, position: Coordinate | None) -> None:
        self._position = position

    @property
    def active_watches(self) -> int:
        with self._lock:
            return len(self._watches)

    def get_current_position(
        self, *, high_accuracy: bool, timeout_seconds: float, maximum_age_seconds: float
    ) -> Coordinate:
        self.one_shot_calls.append(
            {
                "high_accuracy": high_accuracy,
                "timeout_seconds": timeout_seconds,
                "maximum_age_seconds": maximum_age_seconds,
            }
        )
        if self._denied:
            raise PermissionDenied("user denied location access")
        if self._position is None:
            raise AcquisitionTimeout(f"no fix within {timeout_seconds:g}s")
        return self._position

    def watch_position(
        self,
        on_sample: SampleCallback,
        on_error: ErrorCallback,
        *,
        high_accuracy: bool,
        maximum_age_seconds: float,
    ) -> int:
        if self._denied:
            raise PermissionDenied("user denied location access")
        handle = next(self._ids)
        with self._lock:
            self._watches[handle] = _Watch(
                on_sample=on_sample,
                on_error=on_error,
                options={"high_accuracy": high_accuracy, "maximum_age_seconds": maximum_age_seconds},
            )
        return handle

    def clear_watch(self, handle: Any) -> None:
        with self._lock:
            self._watches.pop(handle, None)

    def push(self, position: Coordinate) -> int:
        """Deliver a new position to every active watch; returns how many received it."""
        self._position = position
        with self._lock:
            watches = list(self._watches.values())
        for w in watches:
            w.on_sample(position)
        return len(watches)

    def push_error(self, exc: Exception) -> int:
        with self._lock:
            watches = list(self._watches.values())
        for w in watches:
            w.on_error(exc)
        return len(watches)
