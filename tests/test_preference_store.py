import threading

import pytest

from couponradar.errors import PreferenceStorageError
from couponradar.preferences.merge import apply_partial_update
from couponradar.preferences.schema import SCHEMA_VERSION, decode_record, encode_record
from couponradar.preferences.store import PreferenceStore, default_config
from couponradar.storage.kv import FileKeyValueStore, MemoryKeyValueStore


def test_unknown_coupon_gets_disabled_defaults():
    store = PreferenceStore(MemoryKeyValueStore())
    config = store.get("c1")

    assert config.coupon_id == "c1"
    assert config.enabled is False
    assert not any(config.types.model_dump().values())
    assert config.custom.days_before_expiry == 7
    assert config.custom.time_of_day == "18:00"
    assert config.custom.location_radius_miles == 5.0


def test_defaults_are_persisted_on_first_read():
    storage = MemoryKeyValueStore()
    PreferenceStore(storage).get("c1")
    assert storage.keys() == ["c1"]
    assert storage.get("c1")["schema_version"] == SCHEMA_VERSION


def test_partial_update_keeps_untouched_fields():
    store = PreferenceStore(MemoryKeyValueStore())
    # Seed a nested change first so the next update has something to preserve.
    store.update("c1", {"types": {"expiration": True}, "custom": {"daysBeforeExpiry": 3}})

    out = store.update("c1", {"enabled": True})

    # Only `enabled` changed; the earlier nested values survive the merge.
    assert out.enabled is True
    assert out.types.expiration is True
    assert out.types.location is False
    assert out.custom.days_before_expiry == 3
    assert out.custom.time_of_day == "18:00"


def test_partial_update_accepts_snake_case_keys():
    store = PreferenceStore(MemoryKeyValueStore())
    out = store.update("c1", {"custom": {"location_radius_miles": 2}})
    assert out.custom.location_radius_miles == 2.0


@pytest.mark.parametrize(
    "update, message",
    [
        ({"couponId": "other"}, r"couponId"),
        ({"custom": {"owner": "x"}}, r"custom\.owner"),
        ({"types": True}, r"'types' must be a mapping"),
    ],
)
def test_disallowed_updates_are_rejected(update, message):
    store = PreferenceStore(MemoryKeyValueStore())
    with pytest.raises(ValueError, match=message):
        store.update("c1", update)


@pytest.mark.parametrize(
    "update",
    [
        {"custom": {"locationRadiusMiles": 0}},
        {"custom": {"daysBeforeExpiry": -1}},
        {"custom": {"timeOfDay": "25:00"}},
        {"custom": {"timeOfDay": "6pm"}},
    ],
)
def test_invalid_values_leave_stored_config_unchanged(update):
    store = PreferenceStore(MemoryKeyValueStore())
    before = store.update("c1", {"enabled": True})

    with pytest.raises(ValueError):
        store.update("c1", update)

    assert store.get("c1") == before


def test_configs_survive_a_restart(tmp_path):
    # Write through a file-backed store...
    first = PreferenceStore(FileKeyValueStore(tmp_path, namespace="reminders"))
    first.update("c1", {"enabled": True, "types": {"location": True}, "custom": {"locationRadiusMiles": 1.5}})

    # ...then read back through a brand new instance, as after an app restart.
    second = PreferenceStore(FileKeyValueStore(tmp_path, namespace="reminders"))
    config = second.peek("c1")

    assert config is not None
    assert config.enabled is True
    assert config.types.location is True
    assert config.custom.location_radius_miles == 1.5


def test_corrupt_record_falls_back_to_default(tmp_path):
    storage = FileKeyValueStore(tmp_path, namespace="reminders")
    PreferenceStore(storage).update("c1", {"enabled": True})
    [record] = list((tmp_path / "reminders").glob("*.json"))
    # Simulate a torn write by clobbering the only record on disk.
    record.write_text("{not json", encoding="utf-8")

    store = PreferenceStore(FileKeyValueStore(tmp_path, namespace="reminders"))

    # The bad record is dropped on load and the coupon falls back to defaults.
    assert store.list() == []
    assert store.get("c1").enabled is False


def test_record_with_bad_values_is_dropped():
    storage = MemoryKeyValueStore(
        {"c1": {"schema_version": 1, "config": {"couponId": "c1", "custom": {"locationRadiusMiles": -3}}}}
    )
    store = PreferenceStore(storage)
    assert store.peek("c1") is None


def test_unknown_schema_version_is_dropped():
    storage = MemoryKeyValueStore({"c1": {"schema_version": 99, "config": {"couponId": "c1"}}})
    assert PreferenceStore(storage).peek("c1") is None


def test_legacy_browser_records_are_migrated():
    # The shape the browser client kept in localStorage: no schema_version,
    # `reminderTypes` and `customReminders.locationRadius`.
    legacy = {
        "couponId": "c1",
        "enabled": True,
        "reminderTypes": {"location": True, "time": False, "expiration": True, "custom": False},
        "customReminders": {"daysBeforeExpiry": 3, "timeOfDay": "09:30", "locationRadius": 2},
    }
    store = PreferenceStore(MemoryKeyValueStore({"c1": legacy}))
    config = store.get("c1")

    assert config.enabled is True
    assert config.types.location is True
    assert config.types.expiration is True
    assert config.custom.days_before_expiry == 3
    assert config.custom.time_of_day == "09:30"
    assert config.custom.location_radius_miles == 2.0


def test_record_under_wrong_key_is_rejected():
    record = encode_record(default_config("c2"))
    with pytest.raises(ValueError, match="holds config for c2"):
        decode_record(record, coupon_id="c1")


def test_encode_uses_camel_case_wire_shape():
    record = encode_record(default_config("c1"))
    assert record["config"]["couponId"] == "c1"
    assert "locationRadiusMiles" in record["config"]["custom"]


def test_unavailable_storage_starts_empty():
    class _BrokenStorage:
        def get(self, key):
            raise PreferenceStorageError("disk gone", key=key)

        def set(self, key, value):
            raise PreferenceStorageError("disk gone", key=key)

        def keys(self):
            raise PreferenceStorageError("disk gone")

    store = PreferenceStore(_BrokenStorage())
    out = store.update("c1", {"enabled": True})

    # Writes fail, but the session keeps working from memory.
    assert out.enabled is True
    assert store.get("c1").enabled is True


def test_listeners_see_changes_only():
    store = PreferenceStore(MemoryKeyValueStore())
    seen = []
    store.add_listener(seen.append)

    store.update("c1", {"enabled": True})
    store.update("c1", {"enabled": True})
    store.remove_listener(seen.append)
    store.update("c1", {"enabled": False})

    assert [c.enabled for c in seen] == [True]


def test_failing_listener_does_not_break_update():
    store = PreferenceStore(MemoryKeyValueStore())

    def _boom(_config):
        raise RuntimeError("listener bug")

    store.add_listener(_boom)
    assert store.update("c1", {"enabled": True}).enabled is True


def test_concurrent_updates_to_different_fields_all_land():
    store = PreferenceStore(MemoryKeyValueStore())
    kinds = ["location", "time", "expiration", "custom"]
    threads = [
        threading.Thread(target=store.update, args=("c1", {"types": {kind: True}})) for kind in kinds
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    types = store.get("c1").types
    assert all(getattr(types, kind) for kind in kinds)


def test_apply_partial_update_without_changes_returns_same_object():
    config = default_config("c1")
    assert apply_partial_update(config, None) is config
    assert apply_partial_update(config, {}) is config


def test_update_many_enables_every_known_coupon():
    # Two coupons are known; one already has a custom radius that must survive.
    store = PreferenceStore(MemoryKeyValueStore())
    store.ensure(["c1", "c2"])
    store.update("c2", {"custom": {"locationRadiusMiles": 2}})
    seen = []
    store.add_listener(seen.append)

    # Passing None targets every known coupon, like the UI's "Enable All" button.
    out = store.update_many(None, {"enabled": True})

    # Both are enabled, nested settings are untouched and each change is announced.
    assert [c.coupon_id for c in out] == ["c1", "c2"]
    assert all(c.enabled for c in store.list())
    assert store.get("c2").custom.location_radius_miles == 2.0
    assert sorted(c.coupon_id for c in seen) == ["c1", "c2"]


def test_update_many_is_all_or_nothing():
    store = PreferenceStore(MemoryKeyValueStore())
    store.ensure(["c1", "c2"])

    # An invalid value fails validation for the batch before anything is stored.
    with pytest.raises(ValueError):
        store.update_many(["c1", "c2"], {"enabled": True, "custom": {"locationRadiusMiles": 0}})

    assert not any(c.enabled for c in store.list())
