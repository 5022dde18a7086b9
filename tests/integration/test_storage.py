"""
Integration tests for sensor readings and manual entries on a SQLite database.
"""
from datetime import datetime, timedelta, timezone

import pytest

from farm_assistant.schemas.farm import ManualEntry, ManualEntryUpdate, SensorReading
from farm_assistant.services.manual_entry_service import ManualEntryValidationError

BASE_TIME = datetime(2024, 7, 1, 6, 0, tzinfo=timezone.utc)


def reading(sensor_type, value, hours=0, location="North field", **extra):
    return SensorReading(
        sensor_type=sensor_type,
        value=value,
        sensor_location=location,
        timestamp=BASE_TIME + timedelta(hours=hours),
        **extra,
    )


async def test_add_reading_returns_classified_row(sensor_service):
    stored = await sensor_service.add_reading(SensorReading(sensor_type="soil_ph", value=5.0))

    assert stored.id is not None
    assert stored.status == "critical"
    assert stored.timestamp is not None


async def test_get_sensor_data_filters(sensor_service):
    await sensor_service.add_reading(reading("soil_ph", 6.5, hours=0))
    await sensor_service.add_reading(reading("soil_ph", 6.7, hours=2))
    await sensor_service.add_reading(reading("nitrogen", 30, hours=1))
    await sensor_service.add_reading(reading("soil_ph", 7.0, hours=3, location="South field"))

    north_ph = await sensor_service.get_sensor_data(location="North field", sensor_type="soil_ph")
    assert [r.value for r in north_ph] == [6.7, 6.5]
    assert north_ph[0].timestamp == BASE_TIME + timedelta(hours=2)

    window = await sensor_service.get_sensor_data(
        start=BASE_TIME + timedelta(minutes=30), end=BASE_TIME + timedelta(hours=2)
    )
    assert [r.value for r in window] == [6.7, 30]

    assert len(await sensor_service.get_sensor_data(limit=2)) == 2


async def test_latest_readings_per_sensor_and_location(sensor_service):
    await sensor_service.add_reading(reading("soil_moisture", 55, hours=0))
    await sensor_service.add_reading(reading("soil_moisture", 20, hours=4))
    await sensor_service.add_reading(reading("nitrogen", 30, hours=1))
    await sensor_service.add_reading(reading("soil_moisture", 45, hours=2, location="South field"))
    await sensor_service.add_reading(reading("potassium", 10, hours=3, location=None))

    latest = await sensor_service.get_latest_readings()

    assert [(r.sensor_type, r.sensor_location, r.value) for r in latest] == [
        ("soil_moisture", "North field", 20),
        ("potassium", None, 10),
        ("soil_moisture", "South field", 45),
        ("nitrogen", "North field", 30),
    ]
    assert len(await sensor_service.get_latest_readings(limit=2)) == 2

    counts = await sensor_service.get_status_counts()
    assert counts.optimal == 2
    assert counts.warning == 1
    assert counts.critical == 1


async def test_manual_entry_lifecycle(manual_entry_service):
    created = await manual_entry_service.add_manual_entry(ManualEntry(
        entry_type="water_quality",
        title=" Pond A ",
        location="East pond",
        data={"ph_level": "7.4", "dissolved_oxygen": 6.2},
        user_id="farmer-1",
    ))
    assert created.id is not None
    assert created.title == "Pond A"
    assert created.data == {"ph_level": 7.4, "dissolved_oxygen": 6.2}

    await manual_entry_service.add_manual_entry(ManualEntry(
        entry_type="custom", title="Fence repaired", location="North field",
        timestamp=datetime.now(timezone.utc) + timedelta(minutes=5),
    ))

    entries = await manual_entry_service.get_manual_entries()
    assert [entry.title for entry in entries] == ["Fence repaired", "Pond A"]
    water = await manual_entry_service.get_manual_entries(entry_type="water_quality")
    assert [entry.id for entry in water] == [created.id]

    updated = await manual_entry_service.update_manual_entry(
        created.id, ManualEntryUpdate(description="After rain", data={"ph_level": 7.9, "dissolved_oxygen": 5.5})
    )
    assert updated.description == "After rain"
    assert updated.title == "Pond A"
    assert (await manual_entry_service.get_manual_entry(created.id)).data["ph_level"] == 7.9

    with pytest.raises(ManualEntryValidationError):
        await manual_entry_service.update_manual_entry(created.id, ManualEntryUpdate(title="  "))

    assert await manual_entry_service.update_manual_entry(999, ManualEntryUpdate(title="x")) is None
    assert await manual_entry_service.delete_manual_entry(created.id) is True
    assert await manual_entry_service.delete_manual_entry(created.id) is False
    assert await manual_entry_service.get_manual_entry(created.id) is None


async def test_invalid_manual_entry_is_not_stored(manual_entry_service):
    with pytest.raises(ManualEntryValidationError):
        await manual_entry_service.add_manual_entry(ManualEntry(
            entry_type="weather", title="Storm", location="Farm", data={"temperature": 25},
        ))

    assert await manual_entry_service.get_manual_entries() == []
