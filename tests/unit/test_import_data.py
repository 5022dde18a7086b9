"""
Unit tests for the sensor CSV import script.
"""
from datetime import datetime, timezone

import pytest

from db.import_data import read_rows


def write_csv(tmp_path, text):
    path = tmp_path / "readings.csv"
    path.write_text(text, encoding="utf-8")
    return str(path)


def test_rows_are_parsed(tmp_path):
    path = write_csv(
        tmp_path,
        "sensor_id,sensor_type,sensor_location,value,unit,latitude,longitude,timestamp\n"
        "S1,soil_ph,North field,6.5,pH,30.9,75.85,2024-07-01T06:00:00+00:00\n",
    )

    rows = read_rows(path)

    assert rows == [{
        "sensor_id": "S1",
        "sensor_type": "soil_ph",
        "sensor_location": "North field",
        "value": 6.5,
        "unit": "pH",
        "latitude": 30.9,
        "longitude": 75.85,
        "timestamp": datetime(2024, 7, 1, 6, 0, tzinfo=timezone.utc),
    }]


def test_short_row_without_timestamp_uses_now(tmp_path):
    path = write_csv(tmp_path, "sensor_type,value,latitude,timestamp\nnitrogen,30\n")

    rows = read_rows(path)

    assert rows[0]["value"] == 30.0
    assert rows[0]["latitude"] is None
    assert rows[0]["timestamp"].tzinfo is not None


@pytest.mark.parametrize("text, message", [
    ("sensor_type,value\nsoil_ph\n", "Line 2"),
    ("value,sensor_type\n6.5\n", "Line 2: sensor_type is required"),
    ("sensor_type,value\nsoil_ph,6.5\nsoil_ph,high\n", "Line 3"),
    ("sensor_type,unit\nsoil_ph,pH\n", "Missing columns: value"),
])
def test_bad_rows_name_the_line(tmp_path, text, message):
    with pytest.raises(ValueError, match=message):
        read_rows(write_csv(tmp_path, text))
