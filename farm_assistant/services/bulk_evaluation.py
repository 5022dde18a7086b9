"""
Bulk query evaluation for Farm Assistant.

This module provides functionality for:
1. Reading a CSV matrix of test cases (location, soil readings, crop)
2. Turning each case into a query plus the farm telemetry it describes
3. Running the cases through the assistant with bounded concurrency
4. Exporting the outcomes as a downloadable CSV report
"""
import io
import csv
import math
import time
import asyncio
import logging
from typing import Any, Dict, List, Optional

from farm_assistant.schemas.bulk import BulkResult, BulkTestCase
from farm_assistant.schemas.farm import FarmData, Location, SensorReading
from farm_assistant.services.ai_service import AiService, ai_service, location_key
from farm_assistant.services.db_operations import export_rows_to_csv
from farm_assistant.services.sensor_service import get_standard, process_reading

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 3

# CSV column -> sensor type of the reading it carries
SOIL_COLUMNS = {
    "soil_ph": "soil_ph",
    "soil_moisture": "soil_moisture",
    "nitrogen": "nitrogen",
    "phosphorus": "phosphorus",
    "potassium": "potassium",
}
NUMERIC_COLUMNS = ("latitude", "longitude") + tuple(SOIL_COLUMNS)


class BulkInputError(ValueError):
    """Raised when a bulk evaluation CSV cannot be read."""


def _parse_number(value: str, column: str, row_number: int) -> Optional[float]:
    if value is None or not value.strip():
        return None
    try:
        number = float(value.strip())
    except ValueError:
        raise BulkInputError(f"Row {row_number}: '{value}' is not a number in column '{column}'")
    if not math.isfinite(number):
        raise BulkInputError(f"Row {row_number}: '{value}' is not a finite number in column '{column}'")
    return number


def parse_bulk_csv(text: str) -> List[BulkTestCase]:
    """
    Parse a bulk evaluation CSV.

    Header names are matched case-insensitively. crop_type is required on
    every row; blank numeric cells mean the reading is absent.

    Raises:
        BulkInputError: On a missing crop_type column, blank crop, or malformed number
    """
    reader = csv.DictReader(io.StringIO(text.lstrip("\ufeff")))
    if not reader.fieldnames:
        raise BulkInputError("CSV file is empty")

    columns = {name: (name or "").strip().lower() for name in reader.fieldnames}
    if "crop_type" not in columns.values():
        raise BulkInputError("CSV must have a 'crop_type' column")

    cases = []
    # Row 1 is the header
    for row_number, raw in enumerate(reader, start=2):
        row = {
            columns[name]: (value or "").strip()
            for name, value in raw.items()
            if name is not None
        }
        if not any(row.values()):
            continue

        if not row.get("crop_type"):
            raise BulkInputError(f"Row {row_number}: crop_type is required")

        numbers = {
            column: _parse_number(row.get(column), column, row_number)
            for column in NUMERIC_COLUMNS
        }

        cases.append(BulkTestCase(
            case_id=row.get("case_id") or str(len(cases) + 1),
            location=row.get("location") or None,
            crop_type=row["crop_type"],
            question=row.get("question") or None,
            language=row.get("language") or "en",
            **numbers,
        ))

    logger.info("[parse_bulk_csv] Parsed %d test cases", len(cases))
    return cases


def _format_value(value: float) -> str:
    return f"{value:g}"


def build_case_query(case: BulkTestCase) -> str:
    """The case's own question, or one describing the crop, place and soil."""
    if case.question:
        return case.question

    readings = [
        f"{column.replace('_', ' ')} {_format_value(getattr(case, column))}"
        f"{(get_standard(sensor_type) or {}).get('unit') or ''}"
        for column, sensor_type in SOIL_COLUMNS.items()
        if getattr(case, column) is not None
    ]

    if case.language == "hi":
        query = f"मैं {case.crop_type} उगा रहा हूं"
        if case.location:
            query += f" ({case.location})"
        if readings:
            query += "। मिट्टी की रीडिंग: " + ", ".join(readings)
        return query + "। मुझे क्या करना चाहिए?"

    query = f"I am growing {case.crop_type}"
    if case.location:
        query += f" in {case.location}"
    if readings:
        query += ". Soil readings: " + ", ".join(readings)
    return query + ". What should I do?"


def _case_readings(case: BulkTestCase) -> List[SensorReading]:
    readings = []
    for column, sensor_type in SOIL_COLUMNS.items():
        value = getattr(case, column)
        if value is None:
            continue
        readings.append(SensorReading(
            sensor_id=f"bulk_{case.case_id}",
            sensor_type=sensor_type,
            sensor_location=case.location,
            value=value,
            unit=(get_standard(sensor_type) or {}).get("unit") or None,
            latitude=case.latitude,
            longitude=case.longitude,
        ))
    return readings


async def build_case_farm_data(case: BulkTestCase, service: AiService = ai_service) -> FarmData:
    """Telemetry for one case: its soil readings and the weather at its coordinates."""
    sensor_readings = [process_reading(reading) for reading in _case_readings(case)]

    locations = []
    if case.latitude is not None and case.longitude is not None:
        locations.append(Location(
            lat=case.latitude,
            lon=case.longitude,
            name=case.location or f"Case {case.case_id}",
            location_key=location_key(case.latitude, case.longitude),
        ))

    return FarmData(
        sensor_data=sensor_readings,
        weather_data_map=await service.fetch_weather(locations) if locations else {},
        locations=locations,
        critical_alerts=[r for r in sensor_readings if r.status == "critical"],
    )


async def evaluate_case(case: BulkTestCase, service: AiService = ai_service) -> BulkResult:
    """Run one case in a fresh conversation; failures are reported, not raised."""
    query = build_case_query(case)
    start = time.perf_counter()
    try:
        farm_data = await build_case_farm_data(case, service)
        response = await service.process_query(query, language=case.language, farm_data=farm_data)
    except Exception as e:
        logger.error("[evaluate_case] Case %s failed: %s: %s", case.case_id, type(e).__name__, str(e))
        return BulkResult(
            case_id=case.case_id,
            status="error",
            query=query,
            response_time=(time.perf_counter() - start) * 1000,
            error=f"{type(e).__name__}: {str(e)}",
        )

    recommendations = response.recommendations
    return BulkResult(
        case_id=case.case_id,
        status="success",
        query=query,
        conversation_id=response.conversation_id,
        advice=response.advice,
        immediate_count=len(recommendations.immediate) if recommendations else 0,
        short_term_count=len(recommendations.short_term) if recommendations else 0,
        long_term_count=len(recommendations.long_term) if recommendations else 0,
        follow_up_count=len(response.follow_up_questions or []),
        response_time=response.response_time,
    )


async def run_bulk_evaluation(
    cases: List[BulkTestCase],
    concurrency: int = DEFAULT_CONCURRENCY,
    service: AiService = ai_service
) -> List[BulkResult]:
    """Evaluate all cases, at most `concurrency` at a time, keeping input order."""
    if concurrency < 1:
        raise ValueError("concurrency must be at least 1")

    semaphore = asyncio.Semaphore(concurrency)

    async def run(case: BulkTestCase) -> BulkResult:
        async with semaphore:
            return await evaluate_case(case, service)

    results = await asyncio.gather(*(run(case) for case in cases))
    succeeded = sum(1 for result in results if result.status == "success")
    logger.info("[run_bulk_evaluation] %d/%d cases succeeded", succeeded, len(results))
    return list(results)


def export_results(results: List[BulkResult]) -> Dict[str, Any]:
    """Write the results to a CSV report; returns download URL and row count."""
    rows = [result.model_dump() for result in results]
    return export_rows_to_csv(rows, prefix="bulk_")
