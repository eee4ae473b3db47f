"""
Partial updates for reminder configs.

The preference UI sends only the fields a user touched, e.g.
`{"types": {"location": true}}` or `{"custom": {"locationRadiusMiles": 2}}`. This module:
- validates the update against a whitelist (the coupon id itself is not editable),
- deep-merges it onto the current config so untouched nested fields survive,
- re-validates with Pydantic so a bad value (e.g. a zero radius) never gets stored.

Keys may be sent camelCase (wire shape) or snake_case (Python callers).
"""

from __future__ import annotations

from typing import Any, Mapping

from pydantic.alias_generators import to_camel

from couponradar.domain.models import CouponReminderConfig

# True means "any keys under this subtree"; a nested dict restricts the subtree.
ALLOWED_UPDATE_TREE: dict[str, Any] = {
    "enabled": True,
    "types": {"location": True, "time": True, "expiration": True, "custom": True},
    "custom": {"daysBeforeExpiry": True, "timeOfDay": True, "locationRadiusMiles": True},
}


def _wire_key(key: str) -> str:
    return to_camel(key) if "_" in key else key


def _deep_merge(base: dict[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    merged: dict[str, Any] = dict(base)
    for key, override_value in override.items():
        if isinstance(override_value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = _deep_merge(dict(merged[key]), override_value)
            continue
        merged[key] = override_value
    return merged


def _filter_update(
    update: Mapping[str, Any],
    *,
    allowed_tree: Mapping[str, Any],
    path: tuple[str, ...] = (),
) -> dict[str, Any]:
    filtered: dict[str, Any] = {}
    for raw_key, value in update.items():
        key = _wire_key(str(raw_key))
        if key not in allowed_tree:
            dotted_path = ".".join((*path, key))
            raise ValueError(f"preference update contains a disallowed key: '{dotted_path}'")

        allowed = allowed_tree[key]
        if allowed is True:
            filtered[key] = value
            continue

        if not isinstance(value, Mapping):
            dotted_path = ".".join((*path, key))
            raise ValueError(f"preference update key '{dotted_path}' must be a mapping")

        filtered[key] = _filter_update(value, allowed_tree=allowed, path=(*path, key))
    return filtered


def apply_partial_update(
    config: CouponReminderConfig, update: Mapping[str, Any] | None
) -> CouponReminderConfig:
    """Return a new config with `update` merged in; raises ValueError on bad input."""
    if not update:
        return config
    safe_update = _filter_update(update, allowed_tree=ALLOWED_UPDATE_TREE)
    merged_payload = _deep_merge(config.model_dump(mode="json", by_alias=True), safe_update)
    return CouponReminderConfig.model_validate(merged_payload)
