from datetime import date, datetime
from zoneinfo import ZoneInfo

import pytest

from couponradar.config.settings import get_settings
from couponradar.domain.models import BusinessLocation, Catalog, Coordinate, OwnedCoupon
from couponradar.engine.runtime import NotificationEngine, build_engine
from couponradar.location.provider import SimulatedLocationProvider
from couponradar.notifications.presenters import InMemoryPresenter
from couponradar.preferences.store import PreferenceStore
from couponradar.storage.kv import MemoryKeyValueStore

SHOP = Coordinate(latitude=30.2672, longitude=-97.7431)
AWAY = Coordinate(latitude=30.4, longitude=-97.7)
NOW = datetime(2026, 10, 19, 12, 0, tzinfo=ZoneInfo("America/Chicago"))

CATALOG = Catalog(
    businesses=[BusinessLocation(id="b1", name="Pizza Palace", coordinates=SHOP)],
    coupons=[OwnedCoupon(coupon_id="c1", business_id="b1", title="BOGO", expires_on=date(2027, 1, 31))],
)


@pytest.fixture
def rig():
    provider = SimulatedLocationProvider(AWAY)
    presenter = InMemoryPresenter()
    engine = NotificationEngine(
        settings=get_settings(),
        provider=provider,
        presenter=presenter,
        preferences=PreferenceStore(MemoryKeyValueStore()),
        catalog=CATALOG,
        clock=lambda: NOW,
        register_atexit=False,
    )
    yield engine, provider, presenter
    engine.close()


def test_samples_drive_location_reminders(rig):
    engine, provider, presenter = rig
    # Reminders on, permission granted far from the shop, tracking started.
    engine.update_preferences("c1", {"enabled": True, "types": {"location": True}})
    engine.request_permission()
    assert engine.start_tracking() is True

    # Two samples at the shop; wait_idle() lets the worker finish each pass.
    provider.push(SHOP)
    engine.wait_idle()
    provider.push(SHOP)
    engine.wait_idle()

    # One notification per stay, delivered through the presenter.
    assert [n.tag for n in presenter.history] == ["location-c1"]
    assert [e.kind for e in engine.matcher.recent_events] == ["location"]


def test_nothing_fires_before_tracking(rig):
    engine, provider, presenter = rig
    engine.update_preferences("c1", {"enabled": True, "types": {"location": True}})
    provider.push(SHOP)
    engine.tick()
    engine.wait_idle()
    assert presenter.history == []
    assert engine.run_pass("timer") == []


def test_stop_tracking_stops_reminders(rig):
    engine, provider, presenter = rig
    engine.update_preferences("c1", {"enabled": True, "types": {"location": True}})
    engine.request_permission()
    engine.start_tracking()

    engine.stop_tracking()
    engine.stop_tracking()
    assert provider.push(SHOP) == 0
    engine.wait_idle()

    assert engine.subject.is_tracking is False
    assert presenter.history == []


def test_preference_change_triggers_a_pass(rig):
    engine, provider, presenter = rig
    # Standing at the shop with reminders still off: nothing fires.
    engine.request_permission()
    engine.start_tracking()
    provider.push(SHOP)
    engine.wait_idle()
    assert presenter.history == []

    # Enabling the coupon schedules a pass without waiting for a new sample.
    engine.update_preferences("c1", {"enabled": True, "types": {"location": True}})
    engine.wait_idle()

    assert [n.tag for n in presenter.history] == ["location-c1"]


def test_tick_runs_clock_rules(rig):
    engine, _, presenter = rig
    engine.update_preferences("c1", {"enabled": True, "types": {"time": True}, "custom": {"timeOfDay": "09:00"}})
    engine.request_permission()
    engine.start_tracking()

    engine.tick()
    engine.wait_idle()

    assert [n.tag for n in presenter.history] == ["time-c1"]


def test_status_reports_subject_and_nearby(rig):
    engine, _, _ = rig
    engine.request_permission()

    status = engine.status()

    assert status["subject"]["permission_state"] == "granted"
    assert status["subject"]["location"] == {"latitude": AWAY.latitude, "longitude": AWAY.longitude}
    assert [b["id"] for b in status["nearby_businesses"]] == ["b1"]
    assert status["recent_events"] == []


def test_close_is_idempotent_and_stops_tracking(rig):
    engine, provider, _ = rig
    engine.request_permission()
    engine.start_tracking()

    engine.close()
    engine.close()

    assert provider.active_watches == 0
    assert engine.subject.is_tracking is False


def test_build_engine_defaults_to_simulated_origin(tmp_path):
    settings = get_settings()
    missing = settings.catalog.model_copy(update={"path": str(tmp_path / "nope.json")})
    with build_engine(
        settings.model_copy(update={"catalog": missing}),
        preferences=PreferenceStore(MemoryKeyValueStore()),
        presenter=InMemoryPresenter(),
        register_atexit=False,
    ) as engine:
        coord = engine.request_permission()
        assert coord == Coordinate(latitude=30.2672, longitude=-97.7431)
        assert engine.status()["nearby_businesses"] == []
