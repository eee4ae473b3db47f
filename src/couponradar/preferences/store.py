"""
Per-coupon reminder preferences.

The store is the only writer of `CouponReminderConfig` records. Configs are immutable
Pydantic models; an update builds a new model and swaps it in under a lock, so a
reader on another thread sees either the old config or the new one, never a mix.

Loading is forgiving: unreadable or invalid records are logged and dropped, and the
coupon simply falls back to the default config the next time it is asked for.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping

from couponradar.config.settings import PreferenceDefaults, Settings
from couponradar.core.env import resolve_project_path
from couponradar.domain.models import CouponReminderConfig, CustomReminderSettings
from couponradar.errors import PreferenceStorageError
from couponradar.preferences.merge import apply_partial_update
from couponradar.preferences.schema import decode_record, encode_record
from couponradar.storage.kv import FileKeyValueStore, KeyValueStore

logger = logging.getLogger(__name__)

PreferenceListener = Callable[[CouponReminderConfig], None]


def default_config(coupon_id: str, defaults: PreferenceDefaults | None = None) -> CouponReminderConfig:
    """The config a coupon gets when it first becomes known: disabled, all types off."""
    d = defaults or PreferenceDefaults()
    return CouponReminderConfig(
        coupon_id=coupon_id,
        enabled=False,
        custom=CustomReminderSettings(
            days_before_expiry=d.days_before_expiry,
            time_of_day=d.time_of_day,
            location_radius_miles=d.location_radius_miles,
        ),
    )


class PreferenceStore:
    def __init__(self, storage: KeyValueStore, *, defaults: PreferenceDefaults | None = None):
        self._storage = storage
        self._defaults = defaults or PreferenceDefaults()
        self._lock = threading.RLock()
        self._configs: dict[str, CouponReminderConfig] = {}
        self._listeners: list[PreferenceListener] = []
        self._load()

    def _load(self) -> None:
        try:
            keys = self._storage.keys()
        except PreferenceStorageError as exc:
            logger.warning("Preference storage unavailable; starting empty: %s", exc)
            return

        for key in keys:
            try:
                config = decode_record(self._storage.get(key), coupon_id=key)
            except (PreferenceStorageError, ValueError) as exc:
                logger.warning("Dropping stored preferences for %s: %s", key, exc)
                continue
            self._configs[key] = config
        logger.debug("Loaded %d reminder configs", len(self._configs))

    def _persist(self, config: CouponReminderConfig) -> None:
        try:
            self._storage.set(config.coupon_id, encode_record(config))
        except PreferenceStorageError as exc:
            # The in-memory config stays authoritative for this session.
            logger.warning("Could not persist preferences for %s: %s", config.coupon_id, exc)

    def add_listener(self, listener: PreferenceListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: PreferenceListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def get(self, coupon_id: str) -> CouponReminderConfig:
        """Return the coupon's config, creating (and storing) the default if missing."""
        with self._lock:
            config = self._configs.get(coupon_id)
            if config is None:
                config = default_config(coupon_id, self._defaults)
                self._configs[coupon_id] = config
                self._persist(config)
            return config

    def peek(self, coupon_id: str) -> CouponReminderConfig | None:
        with self._lock:
            return self._configs.get(coupon_id)

    def ensure(self, coupon_ids: Iterable[str]) -> list[CouponReminderConfig]:
        """Synthesize defaults for any coupon that has no config yet."""
        return [self.get(cid) for cid in coupon_ids]

    def update(self, coupon_id: str, partial: Mapping[str, Any]) -> CouponReminderConfig:
        """Merge `partial` into the coupon's config.

        Raises:
            ValueError: If `partial` names a disallowed key or the merged config is invalid.
                The stored config is left unchanged.
        """
        return self.update_many([coupon_id], partial)[0]

    def update_many(
        self, coupon_ids: Iterable[str] | None, partial: Mapping[str, Any]
    ) -> list[CouponReminderConfig]:
        """Apply one partial update to several coupons (every known coupon when `coupon_ids` is None).

        All merges are validated before anything is stored, so a bad update changes nothing.
        """
        with self._lock:
            ids = sorted(self._configs) if coupon_ids is None else list(dict.fromkeys(coupon_ids))
            current = [self.get(cid) for cid in ids]
            merged = [apply_partial_update(c, partial) for c in current]
            changed = [new for old, new in zip(current, merged) if new != old]
            for config in changed:
                self._configs[config.coupon_id] = config
                self._persist(config)
            listeners = list(self._listeners)

        for config in changed:
            for listener in listeners:
                try:
                    listener(config)
                except Exception:
                    logger.exception("Preference listener failed for %s", config.coupon_id)
        return merged

    def list(self) -> list[CouponReminderConfig]:
        with self._lock:
            return list(self._configs.values())

    def snapshot(self) -> dict[str, CouponReminderConfig]:
        with self._lock:
            return dict(self._configs)


def build_preference_store(settings: Settings, *, base_dir: Path | None = None) -> PreferenceStore:
    storage_dir = base_dir or resolve_project_path(settings.preferences.storage_dir)
    storage = FileKeyValueStore(storage_dir, namespace=settings.preferences.namespace)
    return PreferenceStore(storage, defaults=settings.preferences.defaults)
