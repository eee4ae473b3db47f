"""
CouponRadar CLI entrypoint.

Intended for local demos and debugging without a device:
- `distance` / `nearby`: inspect the geometry the engine works with
- `prefs`: read and edit stored reminder preferences
- `simulate`: replay a recorded location track through a full engine
"""

from __future__ import annotations

import argparse
import json
from datetime import datetime
from typing import Any

from couponradar.catalog.loader import load_catalog
from couponradar.config.settings import get_settings
from couponradar.core.geo import distance_miles
from couponradar.core.logging import configure_logging
from couponradar.core.time import parse_datetime
from couponradar.domain.models import TRIGGER_KINDS, Coordinate, CouponReminderConfig
from couponradar.engine.runtime import build_engine
from couponradar.location.provider import SimulatedLocationProvider
from couponradar.location.track import load_track
from couponradar.notifications.presenters import InMemoryPresenter
from couponradar.preferences.store import PreferenceStore, build_preference_store
from couponradar.proximity.index import build_index
from couponradar.storage.kv import MemoryKeyValueStore

_BOOL_WORDS = {"1": True, "true": True, "yes": True, "on": True, "0": False, "false": False, "no": False, "off": False}


def _parse_bool(value: str) -> bool:
    key = value.strip().lower()
    if key not in _BOOL_WORDS:
        raise ValueError(f"Invalid boolean '{value}'")
    return _BOOL_WORDS[key]


def _parse_type_pairs(pairs: list[str]) -> dict[str, bool]:
    """Parse `KIND=BOOL` CLI arguments (e.g. `location=on`)."""
    out: dict[str, bool] = {}
    for pair in pairs:
        if "=" not in pair:
            raise ValueError(f"Invalid --type '{pair}', expected KIND=BOOL")
        kind, value = pair.split("=", 1)
        out[kind.strip().lower()] = _parse_bool(value)
    return out


def _config_json(config: CouponReminderConfig) -> dict[str, Any]:
    return config.model_dump(mode="json", by_alias=True)


def _cmd_distance(args: argparse.Namespace) -> int:
    a = Coordinate(latitude=args.lat1, longitude=args.lon1)
    b = Coordinate(latitude=args.lat2, longitude=args.lon2)
    print(f"{distance_miles(a, b):.3f} mi")
    return 0


def _cmd_nearby(args: argparse.Namespace) -> int:
    settings = get_settings()
    catalog = load_catalog(args.catalog or settings.catalog.path)
    index = build_index(catalog.businesses, settings)
    radius = float(args.radius if args.radius is not None else settings.proximity.nearby_radius_miles)
    here = Coordinate(latitude=args.lat, longitude=args.lon)
    for business, d in sorted(index.nearby(here, radius), key=lambda p: p[1]):
        print(f"{d:7.3f} mi  {business.name}  ({business.address})")
    return 0


def _cmd_prefs_list(_: argparse.Namespace) -> int:
    store = build_preference_store(get_settings())
    payload = [_config_json(c) for c in sorted(store.list(), key=lambda c: c.coupon_id)]
    print(json.dumps(payload, ensure_ascii=False, indent=2))
    return 0


def _cmd_prefs_show(args: argparse.Namespace) -> int:
    store = build_preference_store(get_settings())
    print(json.dumps(_config_json(store.get(args.coupon_id)), ensure_ascii=False, indent=2))
    return 0


def _cmd_prefs_set(args: argparse.Namespace) -> int:
    partial: dict[str, Any] = json.loads(args.json) if args.json else {}
    if args.enabled is not None:
        partial["enabled"] = _parse_bool(args.enabled)
    if args.type:
        partial.setdefault("types", {}).update(_parse_type_pairs(args.type))
    custom: dict[str, Any] = {}
    if args.radius is not None:
        custom["locationRadiusMiles"] = float(args.radius)
    if args.days is not None:
        custom["daysBeforeExpiry"] = int(args.days)
    if args.time is not None:
        custom["timeOfDay"] = args.time
    if custom:
        partial.setdefault("custom", {}).update(custom)

    store = build_preference_store(get_settings())
    config = store.update(args.coupon_id, partial)
    print(json.dumps(_config_json(config), ensure_ascii=False, indent=2))
    return 0


def _cmd_prefs_enable_all(args: argparse.Namespace) -> int:
    settings = get_settings()
    store = build_preference_store(settings)
    # Coupons that were never configured only exist in the catalog.
    catalog = load_catalog(args.catalog or settings.catalog.path)
    store.ensure(c.coupon_id for c in catalog.coupons)
    configs = store.update_many(None, {"enabled": True})
    print(f"Enabled reminders for {len(configs)} coupon(s).")
    return 0


class _ReplayClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now


def _cmd_simulate(args: argparse.Namespace) -> int:
    """Handle the `simulate` subcommand."""
    settings = get_settings()
    tz = settings.app.timezone
    track = load_track(args.track, timezone=tz)
    if not track:
        print("Track is empty.")
        return 1
    catalog = load_catalog(args.catalog or settings.catalog.path)

    preferences: PreferenceStore
    if args.enable_all:
        preferences = PreferenceStore(MemoryKeyValueStore(), defaults=settings.preferences.defaults)
        all_on = {"enabled": True, "types": {kind: True for kind in TRIGGER_KINDS}}
        preferences.update_many((c.coupon_id for c in catalog.coupons), all_on)
    else:
        preferences = build_preference_store(settings)

    clock = _ReplayClock(parse_datetime(args.at, tz) if args.at else track[0].at)
    provider = SimulatedLocationProvider(track[0].coordinate())
    presenter = InMemoryPresenter()
    events = []
    with build_engine(
        settings,
        provider=provider,
        presenter=presenter,
        preferences=preferences,
        catalog=catalog,
        clock=clock,
        register_atexit=False,
    ) as engine:
        if engine.request_permission() is None or not engine.start_tracking():
            print("Location permission was not granted.")
            return 1
        engine.wait_idle()
        for point in track:
            clock.now = point.at
            provider.push(point.coordinate())
            engine.tick()
            engine.wait_idle()
        events = engine.matcher.recent_events
        engine.stop_tracking()

    if args.json:
        print(json.dumps([e.model_dump(mode="json") for e in events], ensure_ascii=False, indent=2))
        return 0

    print(f"Replayed {len(track)} point(s); {len(events)} reminder(s) fired.")
    for e in events:
        where = f" ({e.distance_miles:.2f} mi)" if e.distance_miles is not None else ""
        print(f"  {e.fired_at.isoformat()}  [{e.tag}] {e.title}: {e.body}{where}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the CouponRadar CLI."""
    parser = argparse.ArgumentParser(prog="couponradar")
    parser.add_argument("--log-level", default=None, help="Override the configured log level (e.g. DEBUG)")
    sub = parser.add_subparsers(dest="command", required=True)

    dist = sub.add_parser("distance", help="Great-circle distance in miles between two points.")
    dist.add_argument("lat1", type=float)
    dist.add_argument("lon1", type=float)
    dist.add_argument("lat2", type=float)
    dist.add_argument("lon2", type=float)
    dist.set_defaults(func=_cmd_distance)

    near = sub.add_parser("nearby", help="List catalog businesses within a radius of a point.")
    near.add_argument("--lat", required=True, type=float)
    near.add_argument("--lon", required=True, type=float)
    near.add_argument("--radius", type=float, default=None, help="Miles (default from config)")
    near.add_argument("--catalog", type=str, default=None)
    near.set_defaults(func=_cmd_nearby)

    prefs = sub.add_parser("prefs", help="Read or edit stored reminder preferences.")
    prefs_sub = prefs.add_subparsers(dest="prefs_command", required=True)
    pl = prefs_sub.add_parser("list", help="List stored configs.")
    pl.set_defaults(func=_cmd_prefs_list)
    ps = prefs_sub.add_parser("show", help="Show one coupon's config (created with defaults if missing).")
    ps.add_argument("coupon_id")
    ps.set_defaults(func=_cmd_prefs_show)
    pa = prefs_sub.add_parser("enable-all", help="Enable reminders for every catalog or stored coupon.")
    pa.add_argument("--catalog", type=str, default=None)
    pa.set_defaults(func=_cmd_prefs_enable_all)
    pu = prefs_sub.add_parser("set", help="Partially update one coupon's config.")
    pu.add_argument("coupon_id")
    pu.add_argument("--enabled", type=str, default=None, help="true/false")
    pu.add_argument("--type", action="append", default=[], help="Reminder type toggle: KIND=BOOL")
    pu.add_argument("--radius", type=float, default=None, help="Location radius in miles")
    pu.add_argument("--days", type=int, default=None, help="Days before expiry")
    pu.add_argument("--time", type=str, default=None, help="Time of day HH:MM")
    pu.add_argument("--json", type=str, default=None, help="Raw partial update as JSON")
    pu.set_defaults(func=_cmd_prefs_set)

    sim = sub.add_parser("simulate", help="Replay a location track and print fired reminders.")
    sim.add_argument("--track", required=True, help="Track JSON file")
    sim.add_argument("--catalog", type=str, default=None)
    sim.add_argument("--at", type=str, default=None, help="Clock at permission time (ISO datetime)")
    sim.add_argument(
        "--enable-all",
        action="store_true",
        help="Use throwaway preferences with every reminder type on (stored prefs untouched)",
    )
    sim.add_argument("--json", action="store_true", help="Output machine-readable JSON")
    sim.set_defaults(func=_cmd_simulate)
    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint callable used by `python -m couponradar.cli`."""
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)
    func: Any = getattr(args, "func")
    return int(func(args))


if __name__ == "__main__":
    raise SystemExit(main())
