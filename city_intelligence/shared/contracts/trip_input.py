"""
Trip input contract.

Defines the cities, trip context, and traveller preferences that a
city intelligence run is started with.
"""

from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


class Coordinates(BaseModel):
    """A latitude/longitude pair."""

    lat: float = Field(ge=-90, le=90, description="Latitude")
    lng: float = Field(ge=-180, le=180, description="Longitude")


class CityInput(BaseModel):
    """A city on the route."""

    id: str = Field(min_length=1, description="Stable city identifier")
    name: str = Field(min_length=1, description="Display name of the city")
    country: str = Field(default="", description="Country the city is in")
    coordinates: Optional[Coordinates] = Field(
        default=None, description="City centre coordinates"
    )
    image_url: Optional[str] = Field(default=None, description="Hero image URL")
    description: Optional[str] = Field(default=None, description="Short description")


class TripContext(BaseModel):
    """Route-level context shared by every city."""

    origin: Optional[str] = Field(default=None, description="Route start")
    destination: Optional[str] = Field(default=None, description="Route end")
    start_date: Optional[str] = Field(default=None, description="YYYY-MM-DD")
    end_date: Optional[str] = Field(default=None, description="YYYY-MM-DD")
    total_nights: int = Field(default=0, ge=0, description="Nights across the route")
    traveller_type: Optional[str] = Field(
        default=None, description="e.g. 'couple', 'family', 'solo'"
    )
    transport_mode: Optional[str] = Field(
        default="car", description="e.g. 'car', 'train'"
    )


class TravelPreferences(BaseModel):
    """Traveller preferences. Unknown keys are kept for the agents."""

    model_config = ConfigDict(extra="allow")

    interests: List[str] = Field(
        default_factory=list, description="e.g. ['food', 'culture']"
    )
    dining_style: Optional[str] = Field(default=None, description="e.g. 'casual'")
    dietary: Optional[str] = Field(default=None, description="e.g. 'vegetarian'")
    pace: Optional[str] = Field(default=None, description="relaxed|moderate|packed")
    budget: Optional[str] = Field(default=None, description="budget|mid|luxury")
    traveller_type: Optional[str] = Field(default=None, description="Who is travelling")
    occasion: Optional[str] = Field(default=None, description="e.g. 'honeymoon'")
