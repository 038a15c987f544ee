"""Input and per-slot output contracts."""

from city_intelligence.shared.contracts.trip_input import (
    Coordinates,
    CityInput,
    TripContext,
    TravelPreferences,
)
from city_intelligence.shared.contracts.intelligence_output import (
    OUTPUT_SLOTS,
    StoryOutput,
    TimeBlock,
    TimeBlocksOutput,
    Place,
    Cluster,
    ClustersOutput,
    MatchReason,
    MatchWarning,
    MatchScoreOutput,
    HiddenGem,
    HiddenGemsOutput,
    LogisticsOutput,
    DayOutlook,
    WeatherOutput,
    PhotoSpot,
    PhotoSpotsOutput,
    SynthesisOutput,
)

__all__ = [
    "Coordinates",
    "CityInput",
    "TripContext",
    "TravelPreferences",
    "OUTPUT_SLOTS",
    "StoryOutput",
    "TimeBlock",
    "TimeBlocksOutput",
    "Place",
    "Cluster",
    "ClustersOutput",
    "MatchReason",
    "MatchWarning",
    "MatchScoreOutput",
    "HiddenGem",
    "HiddenGemsOutput",
    "LogisticsOutput",
    "DayOutlook",
    "WeatherOutput",
    "PhotoSpot",
    "PhotoSpotsOutput",
    "SynthesisOutput",
]
