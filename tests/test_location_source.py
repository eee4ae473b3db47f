import threading
from datetime import datetime, timezone

from couponradar.config.settings import LocationSettings
from couponradar.domain.models import Coordinate
from couponradar.errors import LocationUnavailable, PermissionDenied, SubscriptionError
from couponradar.location.provider import SimulatedLocationProvider
from couponradar.location.source import LocationSource
from couponradar.location.timer import PeriodicTimer

HOME = Coordinate(latitude=30.2672, longitude=-97.7431)
NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


class _Recorder:
    def __init__(self):
        self.samples = []
        self.ticks = 0

    def on_sample(self, coord, located_at):
        self.samples.append((coord, located_at))

    def on_tick(self):
        self.ticks += 1


def _source(provider, settings=None, recorder=None):
    recorder = recorder or _Recorder()
    source = LocationSource(
        provider,
        settings or LocationSettings(),
        clock=lambda: NOW,
        on_sample=recorder.on_sample,
        on_tick=recorder.on_tick,
    )
    return source, recorder


def test_new_source_is_requesting_and_idle():
    source, _ = _source(SimulatedLocationProvider(HOME))
    subject = source.subject
    assert subject.permission_state == "requesting"
    assert subject.is_tracking is False
    assert subject.location is None


def test_granted_permission_stores_first_fix():
    provider = SimulatedLocationProvider(HOME)
    source, rec = _source(provider)

    assert source.request_permission() == HOME

    subject = source.subject
    assert subject.permission_state == "granted"
    assert subject.location == HOME
    assert subject.located_at == NOW
    assert rec.samples == [(HOME, NOW)]
    assert provider.one_shot_calls == [
        {"high_accuracy": True, "timeout_seconds": 10, "maximum_age_seconds": 60}
    ]


def test_denied_permission_and_retry():
    provider = SimulatedLocationProvider(HOME, denied=True)
    source, rec = _source(provider)

    assert source.request_permission() is None
    assert source.subject.permission_state == "denied"
    assert "PermissionDenied" in source.subject.last_error
    assert rec.samples == []

    provider.deny(False)
    assert source.request_permission() == HOME
    assert source.subject.permission_state == "granted"
    assert source.subject.last_error is None


def test_acquisition_timeout_counts_as_denied():
    source, _ = _source(SimulatedLocationProvider(None))
    assert source.request_permission() is None
    assert source.subject.permission_state == "denied"
    assert "AcquisitionTimeout" in source.subject.last_error


def test_unavailable_platform_counts_as_denied():
    class _NoGps(SimulatedLocationProvider):
        def get_current_position(self, **_options):
            raise LocationUnavailable("no location hardware")

    source, _ = _source(_NoGps(HOME))
    assert source.request_permission() is None
    assert source.subject.permission_state == "denied"
    assert "no location hardware" in source.subject.last_error


def test_start_tracking_requires_permission():
    provider = SimulatedLocationProvider(HOME)
    source, _ = _source(provider)

    assert source.start_tracking() is False
    assert source.is_tracking is False
    assert provider.active_watches == 0


def test_tracking_delivers_samples_until_stopped():
    provider = SimulatedLocationProvider(HOME)
    source, rec = _source(provider)
    source.request_permission()

    assert source.start_tracking() is True
    assert source.start_tracking() is True
    assert provider.active_watches == 1

    moved = Coordinate(latitude=30.27, longitude=-97.74)
    provider.push(moved)
    assert source.subject.location == moved
    assert rec.samples[-1] == (moved, NOW)

    source.stop_tracking()
    source.stop_tracking()
    assert source.is_tracking is False
    assert provider.active_watches == 0


def test_late_samples_after_stop_are_ignored():
    class _LateProvider(SimulatedLocationProvider):
        # Keeps delivering to cleared watches, like a platform that races the cancel.
        def clear_watch(self, handle):
            pass

    provider = _LateProvider(HOME)
    source, rec = _source(provider)
    source.request_permission()
    source.start_tracking()
    source.stop_tracking()

    provider.push(Coordinate(latitude=0, longitude=0))

    assert len(rec.samples) == 1
    assert source.subject.location == HOME


def test_subscription_error_stops_tracking_but_keeps_permission():
    provider = SimulatedLocationProvider(HOME)
    source, _ = _source(provider)
    source.request_permission()
    source.start_tracking()

    provider.push_error(SubscriptionError("stream dropped"))

    subject = source.subject
    assert subject.is_tracking is False
    assert subject.permission_state == "granted"
    assert "stream dropped" in subject.last_error
    assert provider.active_watches == 0

    # Tracking can be restarted once the platform recovers.
    assert source.start_tracking() is True
    source.stop_tracking()


def test_permission_revoked_while_tracking():
    provider = SimulatedLocationProvider(HOME)
    source, _ = _source(provider)
    source.request_permission()
    source.start_tracking()

    provider.push_error(PermissionDenied("revoked in settings"))

    assert source.subject.permission_state == "denied"
    assert source.is_tracking is False


def test_watch_refused_at_start():
    provider = SimulatedLocationProvider(HOME)
    source, _ = _source(provider)
    source.request_permission()
    provider.deny()

    assert source.start_tracking() is False
    assert source.subject.permission_state == "denied"
    assert provider.active_watches == 0


def test_reevaluation_timer_ticks_while_tracking():
    ticked = threading.Event()

    class _TickRecorder(_Recorder):
        def on_tick(self):
            super().on_tick()
            ticked.set()

    settings = LocationSettings(reevaluate_interval_seconds=0.02)
    source, rec = _source(SimulatedLocationProvider(HOME), settings, _TickRecorder())
    source.request_permission()
    source.start_tracking()
    try:
        assert ticked.wait(2.0)
    finally:
        source.stop_tracking()

    ticks = rec.ticks
    assert ticks >= 1


def test_periodic_timer_cancel_is_idempotent():
    calls = []
    timer = PeriodicTimer(0.01, lambda: calls.append(1), name="test-timer")
    timer.start()
    timer.cancel()
    timer.cancel()
    assert timer.active is False


def test_periodic_timer_survives_callback_errors():
    fired = threading.Event()
    count = []

    def _flaky():
        count.append(1)
        if len(count) == 1:
            raise RuntimeError("first call fails")
        fired.set()

    timer = PeriodicTimer(0.01, _flaky)
    timer.start()
    try:
        assert fired.wait(2.0)
    finally:
        timer.cancel()


def test_unexpected_stream_failure_is_recorded_as_subscription_error():
    # Start a healthy tracking session.
    provider = SimulatedLocationProvider(HOME)
    source, _ = _source(provider)
    source.request_permission()
    source.start_tracking()

    # The platform stream dies with an error type the engine knows nothing about.
    provider.push_error(RuntimeError("gps daemon crashed"))

    # It is classified as a subscription failure: tracking stops, permission stays.
    subject = source.subject
    assert subject.last_error.startswith("SubscriptionError: location stream failed")
    assert "gps daemon crashed" in subject.last_error
    assert subject.permission_state == "granted"
    assert subject.is_tracking is False


def test_watch_registration_failure_is_recorded_as_subscription_error():
    class _BrokenWatch(SimulatedLocationProvider):
        # The one-shot fix works but the continuous watch cannot be registered.
        def watch_position(self, on_sample, on_error, **_options):
            raise OSError("watch registry full")

    source, _ = _source(_BrokenWatch(HOME))
    source.request_permission()

    # Starting fails softly and the reason lands in last_error.
    assert source.start_tracking() is False
    assert source.subject.last_error.startswith("SubscriptionError:")
    assert source.subject.permission_state == "granted"
