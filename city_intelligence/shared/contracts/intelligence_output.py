"""
City intelligence output contracts.

One model per output slot. Agents validate what they produce against
these models and hand the dumped dict to the state store; the reflection
engine scores the dicts.
"""

from typing import List, Optional
from pydantic import BaseModel, Field

from city_intelligence.shared.contracts.trip_input import Coordinates


OUTPUT_SLOTS = (
    "story",
    "time_blocks",
    "clusters",
    "match_score",
    "hidden_gems",
    "logistics",
    "weather",
    "photo_spots",
    "synthesis",
)


class StoryOutput(BaseModel):
    """Narrative hook for a city."""

    hook: str = Field(description="One memorable headline")
    narrative: str = Field(description="Two or three vivid sentences")
    differentiators: List[str] = Field(
        default_factory=list, description="What makes the city unique"
    )


class TimeBlock(BaseModel):
    """A usable slice of time in the city."""

    id: str
    name: str
    day: int = Field(ge=1, description="Day number within the stay")
    hours: float = Field(gt=0)
    mood: str = Field(description="explore|dine|activity|depart|rest")
    flexibility: str = Field(description="low|medium|high")
    suggested: Optional[str] = None


class TimeBlocksOutput(BaseModel):
    """Time allocation for the whole stay."""

    blocks: List[TimeBlock] = Field(default_factory=list)
    total_usable_hours: float = 0


class Place(BaseModel):
    """A discovered place within a cluster."""

    id: str
    name: str
    type: str = "other"
    theme: str = "mixed"
    rating: Optional[float] = None
    review_count: Optional[int] = None
    price_level: Optional[int] = None
    photo_url: Optional[str] = None
    coordinates: Coordinates
    address: Optional[str] = None


class Cluster(BaseModel):
    """A walkable group of places."""

    id: str
    name: str
    theme: str
    best_for: str = Field(description="Time block or time of day")
    walking_minutes: int = 0
    center_point: Optional[Coordinates] = None
    day_number: Optional[int] = None
    places: List[Place] = Field(default_factory=list)


class ClustersOutput(BaseModel):
    clusters: List[Cluster] = Field(default_factory=list)


class MatchReason(BaseModel):
    preference: str
    match: str
    score: int = Field(ge=0, le=100)


class MatchWarning(BaseModel):
    preference: str
    gap: str
    score: int = Field(ge=0, le=100)


class MatchScoreOutput(BaseModel):
    """How well the city fits the traveller."""

    score: int = Field(ge=0, le=100)
    reasons: List[MatchReason] = Field(default_factory=list)
    warnings: List[MatchWarning] = Field(default_factory=list)
    dimensions: dict = Field(default_factory=dict)


class HiddenGem(BaseModel):
    name: str
    type: str = Field(description="restaurant|cafe|bar|shop|experience|viewpoint|...")
    why: str
    insider_tip: Optional[str] = None
    dietary_options: List[str] = Field(default_factory=list)


class HiddenGemsOutput(BaseModel):
    hidden_gems: List[HiddenGem] = Field(default_factory=list)


class LogisticsOutput(BaseModel):
    """Practical notes for arriving and getting around."""

    tips: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    parking: Optional[str] = None
    transport: Optional[str] = None


class DayOutlook(BaseModel):
    date: str
    condition: str
    temp_max_c: Optional[float] = None
    temp_min_c: Optional[float] = None
    precipitation_mm: Optional[float] = None
    outdoor_friendly: bool = True


class WeatherOutput(BaseModel):
    forecast: str = Field(description="One-line outlook")
    days: List[DayOutlook] = Field(default_factory=list)
    outdoor_safe: List[str] = Field(
        default_factory=list, description="Time slots suited to outdoor clusters"
    )
    indoor_clusters: List[str] = Field(
        default_factory=list, description="Cluster ids to favour on wet days"
    )
    golden_hour: Optional[str] = None


class PhotoSpot(BaseModel):
    name: str
    best_time: str
    tip: str


class PhotoSpotsOutput(BaseModel):
    spots: List[PhotoSpot] = Field(default_factory=list)


class SynthesisOutput(BaseModel):
    """Final combined view across the other slots."""

    synthesized: bool = True
    coherent: bool = True
    headline: Optional[str] = None
    day_outline: List[str] = Field(default_factory=list)
    highlights: List[str] = Field(default_factory=list)
    issues: List[str] = Field(default_factory=list)
