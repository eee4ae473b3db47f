"""
Location source: permission state machine + tracking lifecycle.

States:
- permission: requesting -> granted | denied (a denied source may request again)
- tracking: only possible while granted; `start_tracking()` registers the platform
  watch and the re-evaluation timer, `stop_tracking()` cancels both.

Every start bumps a generation counter and callbacks carry the generation they were
registered under, so a late sample from a cancelled watch is ignored instead of
triggering a matching pass after `stop_tracking()` returned.

Platform failures never escape this module; they end up in `subject.last_error`
and the log.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from functools import partial
from typing import Any, Callable

from couponradar.config.settings import LocationSettings
from couponradar.core.time import Clock
from couponradar.domain.models import Coordinate, TrackedSubject
from couponradar.errors import CouponRadarError, LocationError, PermissionDenied, SubscriptionError
from couponradar.location.provider import LocationProvider
from couponradar.location.timer import PeriodicTimer

logger = logging.getLogger(__name__)


def _stream_error(exc: Exception) -> CouponRadarError:
    """Classify a failure of the continuous watch; permission loss keeps its own type."""
    if isinstance(exc, (PermissionDenied, SubscriptionError)):
        return exc
    wrapped = SubscriptionError(f"location stream failed: {exc}")
    wrapped.__cause__ = exc
    return wrapped


def _describe(exc: Exception) -> str:
    return f"{type(exc).__name__}: {exc}"

SampleHandler = Callable[[Coordinate, datetime], None]
TickHandler = Callable[[], None]


class LocationSource:
    def __init__(
        self,
        provider: LocationProvider,
        settings: LocationSettings,
        *,
        clock: Clock,
        on_sample: SampleHandler | None = None,
        on_tick: TickHandler | None = None,
    ):
        self._provider = provider
        self._settings = settings
        self._clock = clock
        self._on_sample = on_sample
        self._on_tick = on_tick
        self._lock = threading.RLock()
        self._subject = TrackedSubject()
        self._generation = 0
        self._watch_handle: Any = None
        self._timer: PeriodicTimer | None = None

    @property
    def subject(self) -> TrackedSubject:
        """A consistent copy of the tracked subject."""
        with self._lock:
            return self._subject.model_copy()

    @property
    def is_tracking(self) -> bool:
        with self._lock:
            return self._subject.is_tracking

    def latest(self) -> tuple[Coordinate | None, bool]:
        """Current location and tracking flag, read together."""
        with self._lock:
            return self._subject.location, self._subject.is_tracking

    def request_permission(self) -> Coordinate | None:
        """One-shot high-accuracy fix; returns the coordinate, or None when denied."""
        with self._lock:
            self._subject.permission_state = "requesting"
        s = self._settings
        try:
            coord = self._provider.get_current_position(
                high_accuracy=s.high_accuracy,
                timeout_seconds=s.acquisition_timeout_seconds,
                maximum_age_seconds=s.maximum_age_seconds,
            )
        except LocationError as exc:
            logger.warning("Location request refused (%s): %s", type(exc).__name__, exc)
            self._deny(exc)
            return None
        except Exception as exc:
            logger.warning("Location acquisition failed: %s", exc)
            self._deny(exc)
            return None

        with self._lock:
            self._subject.permission_state = "granted"
            self._subject.last_error = None
        logger.info("Location permission granted")
        self._accept(coord)
        return coord

    def _deny(self, exc: Exception) -> None:
        with self._lock:
            self._subject.permission_state = "denied"
            self._subject.last_error = _describe(exc)
        # No location, no tracking.
        self.stop_tracking()

    def _accept(self, coord: Coordinate) -> None:
        with self._lock:
            self._subject.location = coord
            self._subject.located_at = self._clock()
            located_at = self._subject.located_at
        if self._on_sample is not None:
            self._on_sample(coord, located_at)

    def start_tracking(self) -> bool:
        """Begin continuous sampling plus periodic re-evaluation; no-op unless granted."""
        with self._lock:
            if self._subject.permission_state != "granted":
                logger.info("start_tracking ignored: permission is %s", self._subject.permission_state)
                return False
            if self._subject.is_tracking:
                return True

            self._generation += 1
            generation = self._generation
            s = self._settings
            try:
                handle = self._provider.watch_position(
                    partial(self._handle_sample, generation),
                    partial(self._handle_error, generation),
                    high_accuracy=s.high_accuracy,
                    maximum_age_seconds=s.watch_maximum_age_seconds,
                )
            except Exception as exc:
                error = _stream_error(exc)
                logger.warning("Could not start location tracking: %s", error)
                self._subject.last_error = _describe(error)
                if isinstance(error, PermissionDenied):
                    self._subject.permission_state = "denied"
                return False

            self._watch_handle = handle
            self._timer = PeriodicTimer(
                s.reevaluate_interval_seconds,
                partial(self._handle_tick, generation),
                name="couponradar-reevaluate",
            )
            self._subject.is_tracking = True
            timer = self._timer

        timer.start()
        logger.info("Location tracking started")
        return True

    def stop_tracking(self) -> None:
        """Cancel the platform watch and the timer. Idempotent."""
        with self._lock:
            was_tracking = self._subject.is_tracking
            self._generation += 1
            handle, self._watch_handle = self._watch_handle, None
            timer, self._timer = self._timer, None
            self._subject.is_tracking = False

        if handle is not None:
            try:
                self._provider.clear_watch(handle)
            except Exception as exc:
                logger.warning("Failed to clear location watch: %s", exc)
        if timer is not None:
            timer.cancel()
        if was_tracking:
            logger.info("Location tracking stopped")

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation and self._subject.is_tracking

    def _handle_sample(self, generation: int, coord: Coordinate) -> None:
        with self._lock:
            if not self._is_current(generation):
                return
        self._accept(coord)

    def _handle_tick(self, generation: int) -> None:
        with self._lock:
            if not self._is_current(generation):
                return
        if self._on_tick is not None:
            self._on_tick()

    def _handle_error(self, generation: int, exc: Exception) -> None:
        with self._lock:
            if not self._is_current(generation):
                return
            error = _stream_error(exc)
            logger.warning("Location tracking error: %s", _describe(error))
            self._subject.last_error = _describe(error)
            if isinstance(error, PermissionDenied):
                self._subject.permission_state = "denied"
        self.stop_tracking()
