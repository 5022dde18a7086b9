"""
Schemas for farm telemetry and manual records.

This module defines the Pydantic models for sensor readings, weather
observations and manually entered field data.
"""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

SensorStatus = Literal["optimal", "warning", "critical"]
EntryType = Literal["water_quality", "fertilizer", "weather", "custom"]


class SensorReading(BaseModel):
    """A single raw reading reported by a field sensor."""
    id: Optional[int] = None
    sensor_id: Optional[str] = None
    sensor_type: str
    sensor_location: Optional[str] = None
    value: float
    unit: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    timestamp: Optional[datetime] = None


class ProcessedSensorReading(SensorReading):
    """A sensor reading classified against the agronomy standards."""
    status: SensorStatus = "optimal"


class StatusCounts(BaseModel):
    optimal: int = 0
    warning: int = 0
    critical: int = 0


class WeatherData(BaseModel):
    """Current conditions at one location."""
    location: Optional[str] = None
    temperature: float
    humidity: float
    wind_speed: float = Field(0.0, description="Wind speed in km/h")
    pressure: float = Field(0.0, description="Pressure in hPa")
    rainfall: Optional[float] = Field(None, description="Rainfall in mm over the last hour")
    visibility: Optional[float] = Field(None, description="Visibility in km")
    weather: str = ""
    description: str = ""


class WeatherForecast(BaseModel):
    """One day of forecast."""
    date: str
    temperature: float
    humidity: float
    rainfall: float = 0.0
    weather: str = ""


class Location(BaseModel):
    lat: float
    lon: float
    name: Optional[str] = None
    location_key: Optional[str] = None


class FarmData(BaseModel):
    """Everything the assistant knows about the farm at query time."""
    sensor_data: List[ProcessedSensorReading] = []
    weather_data_map: Dict[str, WeatherData] = {}
    locations: List[Location] = []
    critical_alerts: List[ProcessedSensorReading] = []


class ManualEntry(BaseModel):
    """A record typed in by the farmer rather than reported by a sensor."""
    id: Optional[int] = None
    entry_type: EntryType = "custom"
    title: str
    description: Optional[str] = None
    location: str
    data: Dict[str, Any] = {}
    timestamp: Optional[datetime] = None
    user_id: Optional[str] = None


class ManualEntryUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
