"""
Sensor readings for Farm Assistant.

This module provides functionality for:
1. Classifying readings against agronomy standards
2. Storing and filtering raw readings
3. Reporting the latest reading of every sensor and their status counts
"""
import math
import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncEngine

from farm_assistant.config import load_yaml_config
from farm_assistant.schemas.farm import (
    ProcessedSensorReading, SensorReading, SensorStatus, StatusCounts
)
from farm_assistant.schemas.conversation import utcnow
from farm_assistant.services.db_operations import as_utc, get_engine, row_to_dict, sensor_data

logger = logging.getLogger(__name__)

SENSOR_STANDARDS = load_yaml_config('sensor_standards.yaml')
assert isinstance(SENSOR_STANDARDS.get('standards'), dict), "sensor_standards.yaml must define 'standards'"

WARNING_MARGIN = float(SENSOR_STANDARDS.get('warning_margin', 0.2))


def normalize_sensor_type(sensor_type: str) -> str:
    key = sensor_type.strip().lower().replace(" ", "_").replace("-", "_")
    return SENSOR_STANDARDS.get('aliases', {}).get(key, key)


def get_standard(sensor_type: str) -> Optional[Dict]:
    return SENSOR_STANDARDS['standards'].get(normalize_sensor_type(sensor_type))


def classify_reading(sensor_type: str, value: float) -> SensorStatus:
    """
    Classify a value as optimal, warning or critical.

    Inside the optimal range is optimal. Outside it by no more than the
    warning margin is a warning, measured against the range width, or against
    the bound itself when only one side is limited. Unknown sensor types have
    no standard and are reported as optimal.
    NaN and infinite values are always critical.
    """
    if not math.isfinite(value):
        return "critical"

    standard = get_standard(sensor_type)
    if not standard:
        return "optimal"

    low = standard.get('min')
    high = standard.get('max')

    if low is not None and value < low:
        deviation = low - value
        bound = low
    elif high is not None and value > high:
        deviation = value - high
        bound = high
    else:
        return "optimal"

    if low is not None and high is not None:
        tolerance = (high - low) * WARNING_MARGIN
    else:
        tolerance = abs(bound) * WARNING_MARGIN

    return "warning" if deviation <= tolerance else "critical"


def process_reading(reading: SensorReading) -> ProcessedSensorReading:
    return ProcessedSensorReading(
        **reading.model_dump(exclude={"status"}),
        status=classify_reading(reading.sensor_type, reading.value)
    )


def _reading_from_row(row) -> ProcessedSensorReading:
    data = row_to_dict(row)
    data["timestamp"] = as_utc(data.get("timestamp"))
    return process_reading(SensorReading(**data))


class SensorService:
    """Stores raw readings and serves processed views of them."""

    def __init__(self, engine: Optional[AsyncEngine] = None):
        self._engine = engine

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            self._engine = get_engine()
        return self._engine

    async def add_reading(self, reading: SensorReading) -> ProcessedSensorReading:
        values = reading.model_dump(exclude={"id"})
        values["timestamp"] = values.get("timestamp") or utcnow()
        async with self.engine.begin() as conn:
            result = await conn.execute(sa.insert(sensor_data).values(**values))
            new_id = result.inserted_primary_key[0]
        stored = reading.model_copy(update={"id": new_id, "timestamp": values["timestamp"]})
        processed = process_reading(stored)
        if processed.status == "critical":
            logger.warning(
                "[add_reading] critical %s reading %s%s at %s",
                processed.sensor_type, processed.value, processed.unit or "", processed.sensor_location
            )
        return processed

    async def get_sensor_data(
        self,
        location: Optional[str] = None,
        sensor_type: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 1000
    ) -> List[ProcessedSensorReading]:
        """Return readings matching the filters, newest first."""
        query = sa.select(sensor_data).order_by(sensor_data.c.timestamp.desc()).limit(limit)
        if location:
            query = query.where(sensor_data.c.sensor_location == location)
        if sensor_type:
            query = query.where(sensor_data.c.sensor_type == sensor_type)
        if start:
            query = query.where(sensor_data.c.timestamp >= start)
        if end:
            query = query.where(sensor_data.c.timestamp <= end)

        async with self.engine.connect() as conn:
            result = await conn.execute(query)
            return [_reading_from_row(row) for row in result]

    async def get_latest_readings(self, limit: Optional[int] = None) -> List[ProcessedSensorReading]:
        """Return the newest reading of each sensor type at each location."""
        latest = (
            sa.select(
                sensor_data.c.sensor_type,
                sensor_data.c.sensor_location,
                sa.func.max(sensor_data.c.timestamp).label("latest_ts")
            )
            .group_by(sensor_data.c.sensor_type, sensor_data.c.sensor_location)
            .subquery()
        )
        query = (
            sa.select(sensor_data)
            .join(latest, sa.and_(
                sensor_data.c.sensor_type == latest.c.sensor_type,
                sensor_data.c.sensor_location.is_not_distinct_from(latest.c.sensor_location),
                sensor_data.c.timestamp == latest.c.latest_ts,
            ))
            .order_by(sensor_data.c.timestamp.desc(), sensor_data.c.id.desc())
        )

        async with self.engine.connect() as conn:
            result = await conn.execute(query)
            rows = [_reading_from_row(row) for row in result]

        # Two readings can share the latest timestamp; keep one per sensor
        seen: set = set()
        readings = []
        for reading in rows:
            key: Tuple = (reading.sensor_type, reading.sensor_location)
            if key in seen:
                continue
            seen.add(key)
            readings.append(reading)
        return readings[:limit] if limit else readings

    async def get_status_counts(self) -> StatusCounts:
        counts = StatusCounts()
        for reading in await self.get_latest_readings():
            setattr(counts, reading.status, getattr(counts, reading.status) + 1)
        return counts
