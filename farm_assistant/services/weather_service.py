"""
Weather observations for Farm Assistant.

Current conditions and a daily forecast come from the OpenWeatherMap REST
API. Units are converted to the ones used across the service: °C, km/h,
hPa, mm and km.
"""
import logging
from typing import Any, Dict, List, Optional

import httpx

from farm_assistant.config import get_weather_api_key
from farm_assistant.schemas.farm import WeatherData, WeatherForecast

logger = logging.getLogger(__name__)

WEATHER_BASE_URL = "https://api.openweathermap.org/data/2.5"
FORECAST_DAYS = 5

WEATHER_ICONS = {
    "clear": "☀️",
    "clouds": "☁️",
    "rain": "🌧️",
    "drizzle": "🌦️",
    "thunderstorm": "⛈️",
    "snow": "❄️",
    "mist": "🌫️",
    "fog": "🌫️",
    "haze": "🌫️",
}
DEFAULT_WEATHER_ICON = "🌤️"


class WeatherServiceError(Exception):
    """Raised when weather data cannot be fetched or understood."""


def get_weather_icon(condition: str) -> str:
    return WEATHER_ICONS.get((condition or "").strip().lower(), DEFAULT_WEATHER_ICON)


def _ms_to_kmh(speed: Optional[float]) -> float:
    return round((speed or 0.0) * 3.6, 1)


def parse_current_weather(payload: Dict[str, Any]) -> WeatherData:
    """Map an OpenWeatherMap /weather payload to WeatherData."""
    try:
        main = payload["main"]
        condition = (payload.get("weather") or [{}])[0]
        visibility = payload.get("visibility")
        return WeatherData(
            location=payload.get("name") or None,
            temperature=main["temp"],
            humidity=main["humidity"],
            pressure=main.get("pressure", 0.0),
            wind_speed=_ms_to_kmh(payload.get("wind", {}).get("speed")),
            rainfall=payload.get("rain", {}).get("1h"),
            visibility=round(visibility / 1000, 1) if visibility is not None else None,
            weather=condition.get("main", ""),
            description=condition.get("description", ""),
        )
    except (KeyError, TypeError) as e:
        raise WeatherServiceError(f"Unexpected weather payload: missing {e}")


def parse_forecast(payload: Dict[str, Any], days: int = FORECAST_DAYS) -> List[WeatherForecast]:
    """
    Reduce the 3-hourly /forecast list to one entry per day.

    The midday slot (or the first slot of the day) gives temperature,
    humidity and condition; rainfall is summed over the day.
    """
    by_date: Dict[str, List[Dict[str, Any]]] = {}
    for item in payload.get("list", []):
        stamp = item.get("dt_txt", "")
        if not stamp:
            continue
        by_date.setdefault(stamp[:10], []).append(item)

    forecasts = []
    for date, items in list(by_date.items())[:days]:
        midday = next((i for i in items if i["dt_txt"][11:13] == "12"), items[0])
        try:
            forecasts.append(WeatherForecast(
                date=date,
                temperature=midday["main"]["temp"],
                humidity=midday["main"]["humidity"],
                rainfall=round(sum(i.get("rain", {}).get("3h", 0.0) for i in items), 1),
                weather=(midday.get("weather") or [{}])[0].get("main", ""),
            ))
        except (KeyError, TypeError) as e:
            raise WeatherServiceError(f"Unexpected forecast payload: missing {e}")
    return forecasts


class WeatherService:
    """Thin async client over OpenWeatherMap."""

    def __init__(self, api_key: Optional[str] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._api_key = api_key
        self._transport = transport

    @property
    def api_key(self) -> str:
        return self._api_key if self._api_key is not None else get_weather_api_key()

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def _get(self, path: str, lat: float, lon: float) -> Dict[str, Any]:
        if not self.enabled:
            raise WeatherServiceError("WEATHER_API_KEY is not configured")
        params = {"lat": lat, "lon": lon, "appid": self.api_key, "units": "metric"}
        try:
            async with httpx.AsyncClient(timeout=15.0, transport=self._transport) as client:
                response = await client.get(f"{WEATHER_BASE_URL}/{path}", params=params)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as e:
            raise WeatherServiceError(
                f"Weather API error: {e.response.status_code} - {e.response.text}"
            )
        except httpx.RequestError as e:
            raise WeatherServiceError(f"Weather service unavailable: {str(e)}")

    async def get_current_weather(self, lat: float, lon: float) -> WeatherData:
        payload = await self._get("weather", lat, lon)
        return parse_current_weather(payload)

    async def get_weather_forecast(self, lat: float, lon: float) -> List[WeatherForecast]:
        payload = await self._get("forecast", lat, lon)
        return parse_forecast(payload)
