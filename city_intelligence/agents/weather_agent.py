"""
Weather agent: outlook for the stay and which clusters suit it.

Uses the forecast to mark dry slots as safe for outdoor clusters and to
point wet days at indoor ones (museums, food halls).
"""

import logging
from collections import Counter
from datetime import date
from typing import Any, Dict, List, Mapping

import httpx

from city_intelligence.agents.base import BaseAgent
from city_intelligence.agents.schemas import AgentContext
from city_intelligence.shared.contracts import DayOutlook, WeatherOutput
from city_intelligence.shared.errors import DependencyUnavailableError
from city_intelligence.shared.services.weather import DayForecast, WeatherClient


logger = logging.getLogger(__name__)

INDOOR_THEMES = {"cultural", "food", "shopping", "nightlife"}


def golden_hour(lat: float, month: int) -> str:
    """Rough evening golden hour by hemisphere season."""
    northern_summer = month in (4, 5, 6, 7, 8, 9)
    summer = northern_summer if lat >= 0 else not northern_summer
    if abs(lat) < 15:
        return "5:30 PM"
    return "7:30 PM" if summer else "4:30 PM"


def summarize(forecasts: List[DayForecast]) -> str:
    if not forecasts:
        return "Forecast unavailable"
    condition = Counter(f.condition for f in forecasts).most_common(1)[0][0]
    low = min(f.temp_min_c for f in forecasts)
    high = max(f.temp_max_c for f in forecasts)
    wet_days = sum(1 for f in forecasts if f.is_wet)
    summary = f"Mostly {condition.lower()}, {low:.0f}-{high:.0f}°C"
    if wet_days:
        summary += f", {wet_days} wet day{'s' if wet_days > 1 else ''}"
    return summary


class WeatherAgent(BaseAgent):
    name = "weather_agent"
    description = "Weather outlook and outdoor-safe windows"
    required_inputs = ("city", "nights")
    optional_inputs = ("dependency:cluster_agent",)
    outputs = ("weather",)
    depends_on = ("cluster_agent",)
    supports_refinement = False

    def __init__(self, weather: WeatherClient):
        super().__init__(llm=None)
        self.weather = weather

    async def run(self, input: Mapping[str, Any], context: AgentContext) -> Dict[str, Any]:
        city = input["city"]
        nights = int(input["nights"])
        coordinates = city.get("coordinates")
        try:
            clusters = self.require_dependency(input, "cluster_agent").get("clusters") or []
        except DependencyUnavailableError as e:
            logger.info(f"[session={context.session_id}] [agent={self.name}] {e}, skipping cluster matching")
            clusters = []

        if not coordinates:
            return {
                "data": {"weather": WeatherOutput(forecast="Forecast unavailable").model_dump()},
                "confidence": 30,
                "gaps": ["City has no coordinates for a forecast"],
            }

        await context.report_progress(30, "Fetching forecast...")
        try:
            forecasts = await self.weather.get_forecast(
                coordinates["lat"], coordinates["lng"], days=nights + 1
            )
        except httpx.HTTPError as e:
            logger.warning(
                f"[session={context.session_id}] [agent={self.name}] Forecast failed: {e}"
            )
            return {
                "data": {"weather": WeatherOutput(forecast="Forecast unavailable").model_dump()},
                "confidence": 30,
                "gaps": ["Weather service unavailable"],
            }

        await context.report_progress(70, "Matching clusters to conditions...")
        days = [
            DayOutlook(
                date=f.date,
                condition=f.condition,
                temp_max_c=f.temp_max_c,
                temp_min_c=f.temp_min_c,
                precipitation_mm=f.precipitation_mm,
                outdoor_friendly=not f.is_wet,
            )
            for f in forecasts
        ]

        outdoor_safe = []
        for i, day in enumerate(days, start=1):
            if day.outdoor_friendly:
                outdoor_safe.extend([f"Day {i} Morning", f"Day {i} Evening"])

        indoor_clusters = []
        if any(not d.outdoor_friendly for d in days):
            indoor_clusters = [c["id"] for c in clusters if c.get("theme") in INDOOR_THEMES]

        month = date.fromisoformat(forecasts[0].date).month if forecasts else date.today().month
        outlook = WeatherOutput(
            forecast=summarize(forecasts),
            days=days,
            outdoor_safe=outdoor_safe,
            indoor_clusters=indoor_clusters,
            golden_hour=golden_hour(coordinates["lat"], month),
        )

        gaps = []
        if not indoor_clusters and any(not d.outdoor_friendly for d in days):
            gaps.append("Wet days forecast but no indoor cluster to fall back on")

        return {
            "data": {"weather": outlook.model_dump()},
            "confidence": 85 if forecasts else 40,
            "gaps": gaps,
        }
