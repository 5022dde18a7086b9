"""
Database import script for Farm Assistant.

This script creates the Farm Assistant tables and imports sensor readings
from a CSV file into the sensor_data table.

Expected CSV columns: sensor_id, sensor_type, sensor_location, value, unit,
latitude, longitude, timestamp (ISO 8601; blank means now).

Database connection is configured with the same environment variables as the
service (DATABASE_URL, or DB_USER / DB_PASSWORD / DB_HOST / DB_PORT / DB_NAME).
"""
import sys
import csv
import asyncio
import argparse
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import sqlalchemy as sa

from farm_assistant.config import configure_logging
from farm_assistant.schemas.conversation import utcnow
from farm_assistant.services.db_operations import create_tables, get_engine, sensor_data

logger = logging.getLogger("import_data")

BATCH_SIZE = 1000
REQUIRED_COLUMNS = ("sensor_type", "value")


def _optional_float(value: Optional[str]) -> Optional[float]:
    if value is None or not value.strip():
        return None
    return float(value)


def parse_row(row: Dict[str, str], line: int) -> Dict[str, Any]:
    # Short rows come back from DictReader with None in the missing cells
    try:
        timestamp = (row.get("timestamp") or "").strip()
        sensor_type = (row.get("sensor_type") or "").strip()
        if not sensor_type:
            raise ValueError("sensor_type is required")
        return {
            "sensor_id": row.get("sensor_id") or None,
            "sensor_type": sensor_type,
            "sensor_location": row.get("sensor_location") or None,
            "value": float(row.get("value") or ""),
            "unit": row.get("unit") or None,
            "latitude": _optional_float(row.get("latitude")),
            "longitude": _optional_float(row.get("longitude")),
            "timestamp": datetime.fromisoformat(timestamp) if timestamp else utcnow(),
        }
    except ValueError as e:
        raise ValueError(f"Line {line}: {str(e)}")


def read_rows(csv_path: str) -> List[Dict[str, Any]]:
    with open(csv_path, newline="", encoding="utf-8") as f:
        reader = csv.DictReader(f)
        missing = [col for col in REQUIRED_COLUMNS if col not in (reader.fieldnames or [])]
        if missing:
            raise ValueError(f"Missing columns: {', '.join(missing)}")
        return [parse_row(row, line) for line, row in enumerate(reader, start=2)]


async def import_sensor_data(csv_path: str) -> int:
    rows = read_rows(csv_path)
    engine = get_engine()
    await create_tables(engine)

    async with engine.begin() as conn:
        for i in range(0, len(rows), BATCH_SIZE):
            await conn.execute(sa.insert(sensor_data), rows[i:i + BATCH_SIZE])
            logger.info("Imported %d/%d rows", min(i + BATCH_SIZE, len(rows)), len(rows))

    await engine.dispose()
    return len(rows)


def main():
    parser = argparse.ArgumentParser(description="Import sensor readings from CSV")
    parser.add_argument("csv", help="Path to the sensor readings CSV")
    args = parser.parse_args()

    configure_logging()
    try:
        count = asyncio.run(import_sensor_data(args.csv))
    except (OSError, ValueError) as e:
        logger.error("Import failed: %s", str(e))
        sys.exit(1)
    print(f"Imported {count} sensor readings")


if __name__ == "__main__":
    main()
