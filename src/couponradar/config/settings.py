# src/couponradar/config/settings.py
"""
Application settings (Pydantic).

Settings are loaded from `src/couponradar/config/defaults.yaml`, then optionally overridden by:
- environment variables (e.g., `COUPONRADAR_LOG_LEVEL`, `COUPONRADAR_WEBHOOK_URL`)
- an external YAML file via `COUPONRADAR_CONFIG_PATH`

Design rule:
- Tuning knobs (timeouts, cadences, default radii) live in YAML, not in engine code.
"""

from __future__ import annotations

import os
from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field

from couponradar.core.env import load_dotenv_if_present


def _read_package_yaml(filename: str) -> dict[str, Any]:
    """Read a YAML file packaged inside `couponradar.config`."""
    text = resources.files("couponradar.config").joinpath(filename).read_text(encoding="utf-8")
    data = yaml.safe_load(text) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid YAML root object for {filename}; expected a mapping.")
    return data


def _read_yaml_file(path: str | Path) -> dict[str, Any]:
    """Read a YAML file from disk and return its mapping root."""
    data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid YAML root object for {path}; expected a mapping.")
    return data


class AppSettings(BaseModel):
    name: str = "CouponRadar"
    timezone: str = "America/Chicago"
    log_level: str = "INFO"


class CatalogSettings(BaseModel):
    path: str = "data/catalogs/catalog.json"


class LocationSettings(BaseModel):
    high_accuracy: bool = True
    acquisition_timeout_seconds: float = Field(10, gt=0)
    maximum_age_seconds: float = Field(60, ge=0)
    # Cadence hint for the continuous watch: a new sample at most this often.
    watch_maximum_age_seconds: float = Field(30, ge=0)
    reevaluate_interval_seconds: float = Field(60, gt=0)


class ProximitySettings(BaseModel):
    index: Literal["scan", "grid"] = "scan"
    grid_cell_size_miles: float = Field(1.0, gt=0)
    # Radius used to report "nearby businesses" in status views.
    nearby_radius_miles: float = Field(10, gt=0)


class PreferenceDefaults(BaseModel):
    days_before_expiry: int = Field(7, gt=0)
    time_of_day: str = "18:00"
    location_radius_miles: float = Field(5, gt=0)


class PreferencesSettings(BaseModel):
    storage_dir: str = ".cache/couponradar/preferences"
    namespace: str = "reminders"
    defaults: PreferenceDefaults = Field(default_factory=PreferenceDefaults)


class NotificationTemplates(BaseModel):
    location_title: str = "Deal Nearby!"
    location_body: str = "You're near {business}! Don't forget to use your coupon."
    time_title: str = "Coupon reminder"
    time_body: str = "Remember your {coupon} coupon at {business}."
    expiration_title: str = "Coupon expiring soon"
    expiration_body: str = "Your {coupon} coupon at {business} expires in {days} day(s)."
    custom_title: str = "Your coupon reminder"
    custom_body: str = "{coupon} at {business}: {days} day(s) left to redeem."


class NotificationSettings(BaseModel):
    icon: str = "/favicon.ico"
    max_per_minute: float = Field(6, gt=0)
    presenter: Literal["log", "memory", "webhook"] = "log"
    webhook_url: str | None = None
    webhook_timeout_seconds: float = Field(5, gt=0)
    templates: NotificationTemplates = Field(default_factory=NotificationTemplates)


class ApiSettings(BaseModel):
    # The API serves a demo engine; it needs some starting location for simulated permission.
    simulated_origin: dict[Literal["latitude", "longitude"], float] | None = None


class Settings(BaseModel):
    app: AppSettings = Field(default_factory=AppSettings)
    catalog: CatalogSettings = Field(default_factory=CatalogSettings)
    location: LocationSettings = Field(default_factory=LocationSettings)
    proximity: ProximitySettings = Field(default_factory=ProximitySettings)
    preferences: PreferencesSettings = Field(default_factory=PreferencesSettings)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    api: ApiSettings = Field(default_factory=ApiSettings)


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Overlay selected environment variables onto raw settings payload.

    Note: We intentionally keep this whitelist small.
    """
    load_dotenv_if_present()
    data = dict(data)
    log_level = os.getenv("COUPONRADAR_LOG_LEVEL")
    if log_level:
        data.setdefault("app", {})["log_level"] = log_level

    storage_dir = os.getenv("COUPONRADAR_STORAGE_DIR")
    if storage_dir:
        data.setdefault("preferences", {})["storage_dir"] = storage_dir

    catalog_path = os.getenv("COUPONRADAR_CATALOG_PATH")
    if catalog_path:
        data.setdefault("catalog", {})["path"] = catalog_path

    webhook_url = os.getenv("COUPONRADAR_WEBHOOK_URL")
    if webhook_url:
        notifications = data.setdefault("notifications", {})
        notifications["webhook_url"] = webhook_url
        notifications["presenter"] = "webhook"

    return data


@lru_cache
def get_settings() -> Settings:
    """Load and validate settings (cached)."""
    load_dotenv_if_present()
    config_path = os.getenv("COUPONRADAR_CONFIG_PATH")
    raw = _read_yaml_file(config_path) if config_path else _read_package_yaml("defaults.yaml")
    raw = _apply_env_overrides(raw)
    return Settings.model_validate(raw)


@lru_cache
def get_logging_config() -> dict[str, Any]:
    """Load logging configuration (cached)."""
    return _read_package_yaml("logging.yaml")
