"""
HTTP routes for the preference UI and a device/status view.

The preference UI toggles reminders through `PATCH /api/preferences/{coupon_id}` with
a partial body; the engine picks the change up on its next (preference-triggered)
matching pass.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any

from fastapi import APIRouter, Body, HTTPException

from couponradar.config.settings import get_settings
from couponradar.domain.models import CouponReminderConfig
from couponradar.engine.runtime import NotificationEngine, build_engine

router = APIRouter(prefix="/api")


@lru_cache
def _engine() -> NotificationEngine:
    """Process-wide engine (created on first use)."""
    return build_engine(get_settings())


def _config_json(config: CouponReminderConfig) -> dict[str, Any]:
    return config.model_dump(mode="json", by_alias=True)


@router.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/preferences")
def list_preferences() -> list[dict[str, Any]]:
    engine = _engine()
    return [_config_json(c) for c in sorted(engine.preferences.list(), key=lambda c: c.coupon_id)]


@router.post("/preferences/enable-all")
def enable_all_preferences() -> list[dict[str, Any]]:
    """Turn reminders on for every known coupon; reminder types are left as they are."""
    return [_config_json(c) for c in _engine().preferences.update_many(None, {"enabled": True})]


@router.get("/preferences/{coupon_id}")
def get_preferences(coupon_id: str) -> dict[str, Any]:
    return _config_json(_engine().preferences.get(coupon_id))


@router.patch("/preferences/{coupon_id}")
def update_preferences(coupon_id: str, partial: dict[str, Any] = Body(...)) -> dict[str, Any]:
    try:
        config = _engine().update_preferences(coupon_id, partial)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _config_json(config)


@router.get("/status")
def status() -> dict[str, Any]:
    return _engine().status()


@router.post("/location/permission")
def request_location_permission() -> dict[str, Any]:
    engine = _engine()
    engine.request_permission()
    return engine.subject.model_dump(mode="json")


@router.post("/tracking/start")
def start_tracking() -> dict[str, Any]:
    engine = _engine()
    engine.start_tracking()
    return engine.subject.model_dump(mode="json")


@router.post("/tracking/stop")
def stop_tracking() -> dict[str, Any]:
    engine = _engine()
    engine.stop_tracking()
    return engine.subject.model_dump(mode="json")


def close_engine() -> None:
    """Release the engine (platform watch, worker thread) if one was created."""
    if _engine.cache_info().currsize:
        _engine().close()
        _engine.cache_clear()
