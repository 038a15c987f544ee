"""
Weather forecasts for a city, from mock data or the live Open-Meteo API.

Both providers return the same ``DayForecast`` list so the weather agent
never needs to know which one produced it. Set ``USE_LIVE_WEATHER=true``
to query Open-Meteo (free, no API key).
"""

import hashlib
import logging
import os
from dataclasses import dataclass
from datetime import date, timedelta
from typing import List, Optional, Protocol, runtime_checkable

import httpx


logger = logging.getLogger(__name__)

OPEN_METEO_URL = "https://api.open-meteo.com/v1/forecast"

# WMO weather interpretation codes used by Open-Meteo
WMO_CONDITIONS = {
    0: "Clear",
    1: "Mainly Clear",
    2: "Partly Cloudy",
    3: "Overcast",
    45: "Fog",
    48: "Depositing Rime Fog",
    51: "Light Drizzle",
    53: "Moderate Drizzle",
    55: "Dense Drizzle",
    61: "Slight Rain",
    63: "Moderate Rain",
    65: "Heavy Rain",
    71: "Slight Snow",
    73: "Moderate Snow",
    75: "Heavy Snow",
    80: "Slight Showers",
    81: "Moderate Showers",
    82: "Violent Showers",
    95: "Thunderstorms",
    96: "Thunderstorms with Hail",
    99: "Heavy Thunderstorms with Hail",
}

WET_CODES = {51, 53, 55, 61, 63, 65, 71, 73, 75, 80, 81, 82, 95, 96, 99}


@dataclass
class DayForecast:
    """One day of forecast data."""

    date: str
    weather_code: int
    temp_max_c: float
    temp_min_c: float
    precipitation_mm: float

    @property
    def condition(self) -> str:
        return WMO_CONDITIONS.get(self.weather_code, "Unknown")

    @property
    def is_wet(self) -> bool:
        return self.weather_code in WET_CODES or self.precipitation_mm >= 2.0


@runtime_checkable
class WeatherClient(Protocol):
    async def get_forecast(self, lat: float, lng: float, days: int) -> List[DayForecast]:
        ...


class OpenMeteoClient:
    """Live forecasts from Open-Meteo. Caps at the API's 16 day horizon."""

    def __init__(self, timeout: float = 10.0) -> None:
        self._timeout = timeout
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout))
        return self._client

    async def get_forecast(self, lat: float, lng: float, days: int) -> List[DayForecast]:
        params = {
            "latitude": lat,
            "longitude": lng,
            "daily": "weather_code,temperature_2m_max,temperature_2m_min,precipitation_sum",
            "timezone": "auto",
            "forecast_days": max(1, min(days, 16)),
        }
        client = await self._get_client()
        response = await client.get(OPEN_METEO_URL, params=params)
        response.raise_for_status()

        daily = response.json().get("daily", {})
        dates = daily.get("time", [])
        codes = daily.get("weather_code", [])
        maxs = daily.get("temperature_2m_max", [])
        mins = daily.get("temperature_2m_min", [])
        precip = daily.get("precipitation_sum", [])

        forecasts = []
        for i, day in enumerate(dates):
            forecasts.append(
                DayForecast(
                    date=day,
                    weather_code=int(codes[i]) if i < len(codes) and codes[i] is not None else 0,
                    temp_max_c=float(maxs[i]) if i < len(maxs) and maxs[i] is not None else 0.0,
                    temp_min_c=float(mins[i]) if i < len(mins) and mins[i] is not None else 0.0,
                    precipitation_mm=float(precip[i]) if i < len(precip) and precip[i] is not None else 0.0,
                )
            )
        return forecasts

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class MockWeatherClient:
    """Deterministic offline forecasts seeded by location."""

    _CODES = (0, 1, 2, 3, 61, 1, 80, 2)

    def __init__(self, start: Optional[date] = None) -> None:
        self._start = start or date.today()

    async def get_forecast(self, lat: float, lng: float, days: int) -> List[DayForecast]:
        seed = int(hashlib.sha256(f"{lat:.3f},{lng:.3f}".encode()).hexdigest(), 16)
        forecasts = []
        for i in range(max(1, days)):
            code = self._CODES[(seed + i) % len(self._CODES)]
            base = 14 + (seed >> i) % 12
            forecasts.append(
                DayForecast(
                    date=(self._start + timedelta(days=i)).isoformat(),
                    weather_code=code,
                    temp_max_c=float(base + 6),
                    temp_min_c=float(base - 2),
                    precipitation_mm=4.0 if code in WET_CODES else 0.0,
                )
            )
        return forecasts


def get_weather_client() -> WeatherClient:
    """Pick the live or mock provider from ``USE_LIVE_WEATHER``."""
    if os.environ.get("USE_LIVE_WEATHER", "false").lower() == "true":
        logger.info("Using live Open-Meteo weather provider")
        return OpenMeteoClient()
    return MockWeatherClient()
