"""External lookup services (places, weather)."""

from city_intelligence.shared.services.places import GooglePlacesClient, PlacesClient
from city_intelligence.shared.services.weather import (
    DayForecast,
    MockWeatherClient,
    OpenMeteoClient,
    WeatherClient,
    get_weather_client,
)

__all__ = [
    "GooglePlacesClient",
    "PlacesClient",
    "DayForecast",
    "MockWeatherClient",
    "OpenMeteoClient",
    "WeatherClient",
    "get_weather_client",
]
