"""
Unit tests for the OpenWeatherMap client.
"""
import httpx
import pytest

from farm_assistant.services.weather_service import (
    DEFAULT_WEATHER_ICON, WEATHER_ICONS, WeatherService, WeatherServiceError,
    get_weather_icon, parse_current_weather, parse_forecast
)

CURRENT_PAYLOAD = {
    "name": "New Delhi",
    "main": {"temp": 33.2, "humidity": 48, "pressure": 1006},
    "wind": {"speed": 5.0},
    "visibility": 8000,
    "rain": {"1h": 1.5},
    "weather": [{"main": "Rain", "description": "light rain"}],
}


def forecast_item(stamp, temp, rain=None):
    item = {"dt_txt": stamp, "main": {"temp": temp, "humidity": 60}, "weather": [{"main": "Clouds"}]}
    if rain is not None:
        item["rain"] = {"3h": rain}
    return item


def test_parse_current_weather_converts_units():
    weather = parse_current_weather(CURRENT_PAYLOAD)

    assert weather.location == "New Delhi"
    assert weather.temperature == 33.2
    assert weather.wind_speed == 18.0
    assert weather.visibility == 8.0
    assert weather.rainfall == 1.5
    assert weather.weather == "Rain"
    assert weather.description == "light rain"


def test_parse_current_weather_rejects_bad_payload():
    with pytest.raises(WeatherServiceError):
        parse_current_weather({"name": "Nowhere"})


def test_parse_forecast_one_entry_per_day():
    payload = {"list": [
        forecast_item("2024-07-01 09:00:00", 29, rain=1.2),
        forecast_item("2024-07-01 12:00:00", 32, rain=0.8),
        forecast_item("2024-07-02 00:00:00", 26),
        forecast_item("2024-07-03 12:00:00", 31),
    ]}

    forecast = parse_forecast(payload)

    assert [day.date for day in forecast] == ["2024-07-01", "2024-07-02", "2024-07-03"]
    assert forecast[0].temperature == 32
    assert forecast[0].rainfall == 2.0
    assert forecast[1].temperature == 26
    assert forecast[1].rainfall == 0.0


def test_parse_forecast_limits_days():
    payload = {"list": [forecast_item(f"2024-07-0{day} 12:00:00", 30) for day in range(1, 8)]}

    assert len(parse_forecast(payload)) == 5


@pytest.mark.parametrize("condition, key", [
    ("Clear", "clear"), ("rain", "rain"), (" Thunderstorm ", "thunderstorm"),
])
def test_weather_icon(condition, key):
    assert get_weather_icon(condition) == WEATHER_ICONS[key]


@pytest.mark.parametrize("condition", ["Tornado", "", None])
def test_unknown_weather_icon(condition):
    assert get_weather_icon(condition) == DEFAULT_WEATHER_ICON


def test_disabled_without_key():
    assert WeatherService(api_key="").enabled is False
    assert WeatherService(api_key="abc").enabled is True


def test_api_key_from_environment(monkeypatch):
    monkeypatch.setenv("WEATHER_API_KEY", "env-key")

    assert WeatherService().enabled is True


async def test_get_current_weather_over_http():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["params"] = dict(request.url.params)
        return httpx.Response(200, json=CURRENT_PAYLOAD)

    service = WeatherService(api_key="abc", transport=httpx.MockTransport(handler))
    weather = await service.get_current_weather(28.6, 77.2)

    assert weather.temperature == 33.2
    assert seen["path"] == "/data/2.5/weather"
    assert seen["params"]["appid"] == "abc"
    assert seen["params"]["units"] == "metric"


async def test_http_error_becomes_weather_error():
    transport = httpx.MockTransport(lambda request: httpx.Response(401, text="Invalid API key"))
    service = WeatherService(api_key="bad", transport=transport)

    with pytest.raises(WeatherServiceError, match="401"):
        await service.get_weather_forecast(28.6, 77.2)


async def test_disabled_service_raises():
    with pytest.raises(WeatherServiceError, match="not configured"):
        await WeatherService(api_key="").get_current_weather(28.6, 77.2)
