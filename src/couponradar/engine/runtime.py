"""
Engine runtime: one object that owns the whole notification pipeline.

Three independent sources ask for matching passes:
- the platform location watch (new sample),
- the re-evaluation timer (clock-based reminders),
- the preference store (user changed a toggle).

Their callbacks never run a pass themselves. They drop a request on a queue that a
single worker thread consumes, so passes run one at a time and each one reads the
location that is current when it starts.

Lifecycle: construct -> request_permission() -> start_tracking() ... stop_tracking()
-> close(). `close()` is registered with `atexit` so the platform watch is released
even when the embedding process exits without calling it.
"""

from __future__ import annotations

import atexit
import logging
import queue
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from couponradar.catalog.loader import load_catalog
from couponradar.config.settings import Settings
from couponradar.core.time import Clock, system_clock
from couponradar.domain.models import (
    Catalog,
    Coordinate,
    CouponReminderConfig,
    NotificationEvent,
    PassReason,
    TrackedSubject,
)
from couponradar.engine.matching import MatchingEngine
from couponradar.location.provider import LocationProvider, SimulatedLocationProvider
from couponradar.location.source import LocationSource
from couponradar.notifications.dispatcher import build_dispatcher
from couponradar.notifications.presenters import NotificationPresenter
from couponradar.preferences.store import PreferenceStore, build_preference_store

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _PassRequest:
    reason: PassReason


class NotificationEngine:
    def __init__(
        self,
        *,
        settings: Settings,
        provider: LocationProvider,
        presenter: NotificationPresenter | None = None,
        preferences: PreferenceStore | None = None,
        catalog: Catalog | None = None,
        clock: Clock | None = None,
        register_atexit: bool = True,
    ):
        self._settings = settings
        self._clock = clock or system_clock(settings.app.timezone)
        self.preferences = preferences or build_preference_store(settings)
        self.dispatcher = build_dispatcher(settings, presenter)
        self.matcher = MatchingEngine(
            settings=settings, preferences=self.preferences, dispatcher=self.dispatcher
        )
        self.location = LocationSource(
            provider,
            settings.location,
            clock=self._clock,
            on_sample=self._on_sample,
            on_tick=self._on_tick,
        )

        self._queue: queue.Queue[_PassRequest | None] = queue.Queue()
        self._closed = threading.Event()
        self._worker = threading.Thread(target=self._run_worker, name="couponradar-matcher", daemon=True)
        self._atexit_registered = register_atexit

        self.preferences.add_listener(self._on_preferences_changed)
        if catalog is not None:
            self.matcher.set_catalog(catalog)
        self._worker.start()
        if register_atexit:
            atexit.register(self.close)

    def __enter__(self) -> "NotificationEngine":
        return self

    def __exit__(self, *_exc: Any) -> None:
        self.close()

    @property
    def subject(self) -> TrackedSubject:
        return self.location.subject

    def set_catalog(self, catalog: Catalog) -> None:
        self.matcher.set_catalog(catalog)

    def request_permission(self) -> Coordinate | None:
        return self.location.request_permission()

    def start_tracking(self) -> bool:
        started = self.location.start_tracking()
        if started:
            # Evaluate the fix we already have instead of waiting for the next sample.
            self._enqueue("location")
        return started

    def stop_tracking(self) -> None:
        self.location.stop_tracking()

    def update_preferences(self, coupon_id: str, partial: dict[str, Any]) -> CouponReminderConfig:
        return self.preferences.update(coupon_id, partial)

    def tick(self) -> None:
        """Request a clock-driven pass now instead of waiting for the timer."""
        self._enqueue("timer")

    def _on_sample(self, _coord: Coordinate, _located_at: datetime) -> None:
        self._enqueue("location")

    def _on_tick(self) -> None:
        self._enqueue("timer")

    def _on_preferences_changed(self, _config: CouponReminderConfig) -> None:
        self._enqueue("preferences")

    def _enqueue(self, reason: PassReason) -> None:
        if self._closed.is_set():
            return
        self._queue.put(_PassRequest(reason=reason))

    def run_pass(self, reason: PassReason = "location") -> list[NotificationEvent]:
        """Run one matching pass on the calling thread against the latest location."""
        location, is_tracking = self.location.latest()
        return self.matcher.run_pass(location, is_tracking=is_tracking, reason=reason, now=self._clock())

    def _run_worker(self) -> None:
        while True:
            request = self._queue.get()
            try:
                if request is None:
                    return
                self.run_pass(request.reason)
            except Exception:
                logger.exception("Matching pass failed")
            finally:
                self._queue.task_done()

    def wait_idle(self) -> None:
        """Block until every queued pass has run."""
        self._queue.join()

    def status(self) -> dict[str, Any]:
        subject = self.location.subject
        nearby: list[dict[str, Any]] = []
        if subject.location is not None:
            radius = self._settings.proximity.nearby_radius_miles
            for business, d in sorted(self.matcher.nearby(subject.location, radius), key=lambda p: p[1]):
                nearby.append({**business.model_dump(mode="json"), "distance_miles": round(d, 3)})
        return {
            "subject": subject.model_dump(mode="json"),
            "nearby_businesses": nearby,
            "inside_coupons": self.matcher.inside_coupons,
            "recent_events": [e.model_dump(mode="json") for e in self.matcher.recent_events],
        }

    def close(self) -> None:
        """Stop tracking and the worker. Idempotent."""
        if self._closed.is_set():
            return
        self.location.stop_tracking()
        self.preferences.remove_listener(self._on_preferences_changed)
        self._closed.set()
        self._queue.put(None)
        if threading.current_thread() is not self._worker:
            self._worker.join(timeout=5)
        if self._atexit_registered:
            atexit.unregister(self.close)
            self._atexit_registered = False
        logger.debug("Notification engine closed")


def build_engine(
    settings: Settings,
    *,
    provider: LocationProvider | None = None,
    presenter: NotificationPresenter | None = None,
    preferences: PreferenceStore | None = None,
    catalog: Catalog | None = None,
    clock: Clock | None = None,
    register_atexit: bool = True,
) -> NotificationEngine:
    """Wire an engine from settings; missing collaborators get the configured defaults."""
    if catalog is None:
        try:
            catalog = load_catalog(settings.catalog.path)
        except (OSError, ValueError) as exc:
            logger.warning("Catalog unavailable (%s); starting with an empty catalog", exc)
            catalog = Catalog()
    if provider is None:
        origin = settings.api.simulated_origin
        provider = SimulatedLocationProvider(Coordinate.model_validate(origin) if origin else None)
    return NotificationEngine(
        settings=settings,
        provider=provider,
        presenter=presenter,
        preferences=preferences,
        catalog=catalog,
        clock=clock,
        register_atexit=register_atexit,
    )
