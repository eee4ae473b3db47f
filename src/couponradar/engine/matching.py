"""
Notification matching.

One matching pass joins three things:
- the latest location sample,
- the user's coupons and their businesses (catalog),
- the per-coupon reminder configs (preference store),

and decides which reminders fire. Every event goes to the dispatcher before the
pass returns.

Dedup rules:
- location: inside/outside is recorded for every coupon on every pass, whether or
  not its reminders are on. A coupon fires at most once per stay inside its radius,
  and leaving the radius starts a new stay. If reminders were off when the subject
  entered, turning them on while still inside fires once. The state lives in memory,
  so a process restart re-arms everything.
- time / expiration / custom: keyed by (coupon, kind, local calendar day), so each
  fires at most once per day. These rules only run on timer passes because they
  depend on the wall clock, not on movement.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from datetime import date, datetime

from couponradar.catalog.loader import businesses_by_id
from couponradar.config.settings import Settings
from couponradar.core.time import days_until, to_local
from couponradar.domain.models import (
    BusinessLocation,
    Catalog,
    Coordinate,
    CouponReminderConfig,
    NotificationEvent,
    OwnedCoupon,
    PassReason,
    TriggerKind,
)
from couponradar.notifications.dispatcher import NotificationDispatcher, notification_tag
from couponradar.preferences.store import PreferenceStore
from couponradar.proximity.index import NearbyResult, ProximityIndex, build_index

logger = logging.getLogger(__name__)

_CLOCK_KINDS: tuple[TriggerKind, ...] = ("time", "expiration", "custom")


class MatchingEngine:
    def __init__(
        self,
        *,
        settings: Settings,
        preferences: PreferenceStore,
        dispatcher: NotificationDispatcher,
        catalog: Catalog | None = None,
        history_size: int = 50,
    ):
        self._settings = settings
        self._preferences = preferences
        self._dispatcher = dispatcher
        self._pass_lock = threading.Lock()
        self._catalog_lock = threading.Lock()
        self._coupons: list[OwnedCoupon] = []
        self._businesses: dict[str, BusinessLocation] = {}
        self._index: ProximityIndex = build_index([], settings)
        self._inside: set[str] = set()
        self._notified_this_stay: set[str] = set()
        self._fired_today: set[tuple[str, TriggerKind, date]] = set()
        self._history: deque[NotificationEvent] = deque(maxlen=history_size)
        if catalog is not None:
            self.set_catalog(catalog)

    def set_catalog(self, catalog: Catalog) -> None:
        """Swap in new reference data; coupons without a config get the default one."""
        businesses = businesses_by_id(catalog.businesses)
        index = build_index(list(businesses.values()), self._settings)
        coupons = list({c.coupon_id: c for c in catalog.coupons}.values())
        self._preferences.ensure(c.coupon_id for c in coupons)
        with self._catalog_lock:
            self._coupons = coupons
            self._businesses = businesses
            self._index = index
        logger.info("Catalog loaded: %d businesses, %d coupons", len(businesses), len(coupons))

    def nearby(self, location: Coordinate, max_radius_miles: float) -> NearbyResult:
        with self._catalog_lock:
            index = self._index
        return index.nearby(location, max_radius_miles)

    @property
    def recent_events(self) -> list[NotificationEvent]:
        return list(self._history)

    @property
    def inside_coupons(self) -> list[str]:
        """Coupons whose business was within the coupon's radius on the last pass."""
        with self._pass_lock:
            return sorted(self._inside)

    def run_pass(
        self,
        location: Coordinate | None,
        *,
        is_tracking: bool,
        reason: PassReason,
        now: datetime,
    ) -> list[NotificationEvent]:
        """Evaluate every coupon once; returns the events fired by this pass."""
        if location is None or not is_tracking:
            return []

        with self._pass_lock:
            with self._catalog_lock:
                coupons = list(self._coupons)
                businesses = self._businesses
                index = self._index
            configs = self._preferences.snapshot()
            pairs = [(c, configs.get(c.coupon_id) or self._preferences.get(c.coupon_id)) for c in coupons]

            events = self._location_pass(location, pairs, businesses, index, now)
            if reason == "timer":
                events.extend(self._clock_pass(pairs, businesses, now))

        if events:
            logger.info("Matching pass (%s) fired %d reminder(s)", reason, len(events))
        return events

    def _location_pass(
        self,
        location: Coordinate,
        pairs: list[tuple[OwnedCoupon, CouponReminderConfig]],
        businesses: dict[str, BusinessLocation],
        index: ProximityIndex,
        now: datetime,
    ) -> list[NotificationEvent]:
        # Presence is tracked for every coupon with a known business, whatever its
        # config says, so an exit seen while a coupon is disabled still re-arms it.
        resolved = [(c, cfg, businesses[c.business_id]) for c, cfg in pairs if c.business_id in businesses]
        if not resolved:
            return []

        max_radius = max(cfg.custom.location_radius_miles for _, cfg, _ in resolved)
        distances = {b.id: d for b, d in index.nearby(location, max_radius)}

        events: list[NotificationEvent] = []
        for coupon, cfg, business in resolved:
            d = distances.get(business.id)
            if d is None or d > cfg.custom.location_radius_miles:
                self._inside.discard(coupon.coupon_id)
                self._notified_this_stay.discard(coupon.coupon_id)
                continue
            self._inside.add(coupon.coupon_id)
            if not cfg.wants("location") or coupon.coupon_id in self._notified_this_stay:
                continue
            self._notified_this_stay.add(coupon.coupon_id)
            events.append(self._fire("location", coupon, business, now, distance=d))
        return events

    def _clock_pass(
        self,
        pairs: list[tuple[OwnedCoupon, CouponReminderConfig]],
        businesses: dict[str, BusinessLocation],
        now: datetime,
    ) -> list[NotificationEvent]:
        local = to_local(now, self._settings.app.timezone)
        today = local.date()
        minute_of_day = (local.hour, local.minute)
        self._fired_today = {k for k in self._fired_today if k[2] >= today}

        events: list[NotificationEvent] = []
        for coupon, cfg in pairs:
            if not cfg.enabled:
                continue
            days_left = days_until(coupon.expires_on, today) if coupon.expires_on else None
            if days_left is not None and days_left < 0:
                continue
            past_time_of_day = minute_of_day >= cfg.custom.time_of_day_tuple()
            within_expiry = days_left is not None and days_left <= cfg.custom.days_before_expiry

            due: dict[TriggerKind, bool] = {
                "time": past_time_of_day,
                "expiration": within_expiry,
                "custom": within_expiry and past_time_of_day,
            }
            for kind in _CLOCK_KINDS:
                if not (getattr(cfg.types, kind) and due[kind]):
                    continue
                key = (coupon.coupon_id, kind, today)
                if key in self._fired_today:
                    continue
                self._fired_today.add(key)
                events.append(
                    self._fire(kind, coupon, businesses.get(coupon.business_id), now, days_left=days_left)
                )
        return events

    def _fire(
        self,
        kind: TriggerKind,
        coupon: OwnedCoupon,
        business: BusinessLocation | None,
        now: datetime,
        *,
        distance: float | None = None,
        days_left: int | None = None,
    ) -> NotificationEvent:
        templates = self._settings.notifications.templates
        fields = {
            "business": business.name if business else "your merchant",
            "coupon": coupon.title or coupon.coupon_id,
            "days": days_left if days_left is not None else "",
        }
        title = getattr(templates, f"{kind}_title").format(**fields)
        body = getattr(templates, f"{kind}_body").format(**fields)
        tag = notification_tag(kind, coupon.coupon_id)
        delivered = self._dispatcher.dispatch(title, body, tag)

        event = NotificationEvent(
            coupon_id=coupon.coupon_id,
            kind=kind,
            title=title,
            body=body,
            tag=tag,
            fired_at=now,
            business_id=business.id if business else None,
            distance_miles=round(distance, 3) if distance is not None else None,
            delivered=delivered,
        )
        self._history.append(event)
        return event
