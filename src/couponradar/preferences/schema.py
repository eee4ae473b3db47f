"""
Stored record schema for reminder configs.

Each record is `{"schema_version": N, "config": {...}}` keyed by coupon id.

Version history:
- 0: unversioned records written by the browser client: camelCase config with
  `reminderTypes` and `customReminders.locationRadius` (miles).
- 1: current shape (`types`, `custom.locationRadiusMiles`).

`decode_record` migrates old versions forward and raises ValueError on anything it
cannot make sense of; the store treats that as "no stored config".
"""

from __future__ import annotations

from typing import Any

from pydantic import ValidationError

from couponradar.domain.models import CouponReminderConfig

SCHEMA_VERSION = 1


def encode_record(config: CouponReminderConfig) -> dict[str, Any]:
    return {
        "schema_version": SCHEMA_VERSION,
        "config": config.model_dump(mode="json", by_alias=True),
    }


def _migrate_v0(raw: dict[str, Any]) -> dict[str, Any]:
    custom = dict(raw.get("customReminders") or {})
    if "locationRadius" in custom:
        custom["locationRadiusMiles"] = custom.pop("locationRadius")
    return {
        "couponId": raw.get("couponId"),
        "enabled": raw.get("enabled", False),
        "types": dict(raw.get("reminderTypes") or {}),
        "custom": custom,
    }


def decode_record(raw: Any, *, coupon_id: str) -> CouponReminderConfig:
    """Turn a stored value into a config, migrating older schema versions."""
    if not isinstance(raw, dict):
        raise ValueError(f"record for {coupon_id} is not an object")

    version = raw.get("schema_version")
    if version is None:
        payload = _migrate_v0(raw)
    elif version == SCHEMA_VERSION:
        payload = raw.get("config")
    else:
        raise ValueError(f"record for {coupon_id} has unknown schema_version {version!r}")

    if not isinstance(payload, dict):
        raise ValueError(f"record for {coupon_id} has no config object")
    payload = dict(payload)
    stored_id = payload.get("couponId") or payload.get("coupon_id")
    if stored_id is not None and stored_id != coupon_id:
        raise ValueError(f"record key {coupon_id} holds config for {stored_id}")
    payload["couponId"] = coupon_id
    payload.pop("coupon_id", None)

    try:
        return CouponReminderConfig.model_validate(payload)
    except ValidationError as exc:
        raise ValueError(f"record for {coupon_id} failed validation: {exc}") from exc
