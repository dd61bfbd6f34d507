from datetime import date, datetime, timedelta, timezone

from datastore.memory_store import InMemoryStore, build_default_store
from models.records import WatermarkRef
from models.telemetry import Correction, Device, Reading, Sensor, SensorType
from settings import get_settings

T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def _reading(processed: bool = False, time: datetime = T0, **metrics) -> Reading:
    return Reading(
        device="dev1",
        date=time.date(),
        reading_type="zigbee_temp",
        sensor_id="s1",
        processed=processed,
        time=time,
        **metrics,
    )


def test_raw_and_corrected_are_distinct_records(tmp_path) -> None:
    store = InMemoryStore(persistence_path=tmp_path / "store.json")
    raw = _reading(processed=False, temperature=20.0)
    corrected = _reading(processed=True, temperature=21.0)

    store.upsert_reading(raw)
    store.upsert_reading(corrected)

    assert store.get_reading(raw.key()).temperature == 20.0
    assert store.get_reading(corrected.key()).temperature == 21.0
    assert len(store.scan_readings("dev1")) == 2


def test_upsert_replaces_the_stored_row() -> None:
    store = InMemoryStore()
    store.upsert_reading(_reading(temperature=20.0, humidity=40.0))
    store.upsert_reading(_reading(temperature=None, humidity=41.0))

    stored = store.scan_readings()
    assert len(stored) == 1
    assert stored[0].temperature is None
    assert stored[0].humidity == 41.0


def test_merge_upsert_is_idempotent_and_keeps_columns() -> None:
    store = InMemoryStore()
    store.upsert_reading(_reading(temperature=20.0), merge=True)
    store.upsert_reading(_reading(temperature=20.0), merge=True)
    store.upsert_reading(_reading(humidity=40.0), merge=True)

    stored = store.scan_readings()
    assert len(stored) == 1
    assert stored[0].temperature == 20.0
    assert stored[0].humidity == 40.0


def test_returned_items_are_copies() -> None:
    store = InMemoryStore()
    reading = _reading(temperature=20.0)
    store.upsert_reading(reading)

    fetched = store.get_reading(reading.key())
    fetched.temperature = 99.0

    assert store.get_reading(reading.key()).temperature == 20.0


def test_device_upsert_never_regresses_last_record() -> None:
    store = InMemoryStore()
    store.upsert_device(Device(id="dev1", name="Kitchen", last_record=T0))
    store.upsert_device(Device(id="dev1", name="Kitchen 2", last_record=T0 - timedelta(days=1)))

    device = store.get_device("dev1")
    assert device.name == "Kitchen 2"
    assert device.last_record == T0


def test_conditional_advance_requires_existing_entity() -> None:
    store = InMemoryStore()
    ref = WatermarkRef(device_id="dev1", sensor_id="s1")

    assert store.conditional_advance_watermark(ref, T0) is False
    assert store.get_watermark(ref) is None

    store.upsert_sensor(Sensor(device="dev1", id="s1", type=SensorType.zigbee_temp))
    assert store.conditional_advance_watermark(ref, T0) is True
    assert store.conditional_advance_watermark(ref, T0) is False
    assert store.conditional_advance_watermark(ref, T0 - timedelta(seconds=1)) is False
    assert store.get_watermark(ref) == T0


def test_corrections_are_fetched_by_device() -> None:
    store = InMemoryStore()
    store.put_correction(
        Correction(device="dev1", reading_type="zigbee_temp", metric="temperature", expression="temperature")
    )
    store.put_correction(
        Correction(device="dev2", reading_type="zigbee_temp", metric="temperature", expression="1")
    )

    corrections = store.get_corrections_by_device("dev1")
    assert [c.device for c in corrections] == ["dev1"]


def test_persistence_round_trip(tmp_path) -> None:
    path = tmp_path / "store.json"
    store = InMemoryStore(persistence_path=path)
    store.upsert_device(Device(id="dev1", name="Kitchen"))
    store.upsert_sensor(Sensor(device="dev1", id="s1", type=SensorType.zigbee_temp))
    store.upsert_reading(_reading(temperature=20.0))
    store.conditional_advance_watermark(WatermarkRef(device_id="dev1"), T0)

    reloaded = InMemoryStore(persistence_path=path)

    assert reloaded.get_device("dev1").last_record == T0
    assert reloaded.get_sensor("dev1", "s1") is not None
    assert reloaded.scan_readings()[0].date == date(2024, 3, 1)


def test_default_store_uses_settings(monkeypatch, tmp_path) -> None:
    path = tmp_path / "custom.json"
    monkeypatch.setenv("TELEMETRY_STORE_PATH", str(path))
    get_settings.cache_clear()
    build_default_store.cache_clear()
    try:
        store = build_default_store()
        assert store.persistence_path == path
        assert build_default_store() is store
    finally:
        build_default_store.cache_clear()
        get_settings.cache_clear()
