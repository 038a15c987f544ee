"""
Cluster agent: group places into walkable areas.

Searches the places provider for theme queries derived from the
traveller's interests, clusters results by haversine distance around
farthest-point seeds, then names each cluster, matches it to a time
block, and estimates walking time across it.
"""

import logging
import math
from collections import Counter
from typing import Any, Dict, List, Mapping, Optional, Sequence

import httpx

from city_intelligence.agents.base import BaseAgent
from city_intelligence.agents.schemas import AgentContext
from city_intelligence.shared.contracts import Cluster, Coordinates, Place
from city_intelligence.shared.errors import DependencyUnavailableError
from city_intelligence.shared.services.places import PlacesClient


logger = logging.getLogger(__name__)

EARTH_RADIUS_M = 6_371_000
WALKING_M_PER_MIN = 83  # ~5 km/h
PATH_FACTOR = 1.3

THEME_QUERIES = {
    "cultural": ("museum", "art gallery", "historic site", "monument", "church", "castle"),
    "food": ("restaurant", "cafe", "bakery", "food market", "wine bar"),
    "nature": ("park", "garden", "viewpoint", "beach", "lake"),
    "shopping": ("market", "boutique", "antique shop", "local shop"),
    "nightlife": ("bar", "cocktail bar", "wine bar", "club"),
}

THEME_NAMES = {
    "cultural": "Cultural Quarter",
    "food": "Food District",
    "nature": "Green Zone",
    "shopping": "Shopping Area",
    "nightlife": "Evening District",
    "mixed": "Central Zone",
}

THEME_TIMES = {
    "cultural": "morning",
    "food": "evening",
    "nature": "morning",
    "shopping": "afternoon",
    "nightlife": "evening",
    "mixed": "afternoon",
}

PLACE_TYPES = {
    "museum": "museum",
    "art_gallery": "gallery",
    "church": "landmark",
    "cathedral": "landmark",
    "castle": "landmark",
    "monument": "landmark",
    "tourist_attraction": "landmark",
    "park": "park",
    "natural_feature": "viewpoint",
    "restaurant": "restaurant",
    "cafe": "cafe",
    "bakery": "cafe",
    "bar": "bar",
    "food": "restaurant",
    "shopping_mall": "shop",
    "store": "shop",
    "market": "market",
}

MIN_PLACES = 3
MIN_PLACES_PER_CLUSTER = 2
MAX_PLACES_PER_CLUSTER = 6


def haversine_m(a: Coordinates, b: Coordinates) -> float:
    """Great-circle distance between two points in meters."""
    d_lat = math.radians(b.lat - a.lat)
    d_lng = math.radians(b.lng - a.lng)
    h = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(a.lat)) * math.cos(math.radians(b.lat)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def prioritize_themes(preferences: Dict[str, Any]) -> List[str]:
    interests = {i.lower() for i in preferences.get("interests") or []}
    themes = []
    if interests & {"food", "culinary"}:
        themes.append("food")
    if interests & {"culture", "art", "history"}:
        themes.append("cultural")
    if interests & {"nature", "outdoor"}:
        themes.append("nature")
    if "shopping" in interests:
        themes.append("shopping")
    if "nightlife" in interests:
        themes.append("nightlife")
    for baseline in ("cultural", "food"):
        if baseline not in themes:
            themes.append(baseline)
    return themes


def infer_place_type(types: Sequence[str]) -> str:
    for t in types or ():
        if t in PLACE_TYPES:
            return PLACE_TYPES[t]
    return "other"


def seed_centers(places: List[Place], k: int) -> List[Coordinates]:
    """Farthest-point seeding: each new center maximizes distance to the rest."""
    centers = [places[0].coordinates]
    while len(centers) < min(k, len(places)):
        farthest = max(
            places,
            key=lambda p: min(haversine_m(p.coordinates, c) for c in centers),
        )
        centers.append(farthest.coordinates)
    return centers


def cluster_places(places: List[Place], target: int) -> List[Dict[str, Any]]:
    """Assign places to the nearest seed and recenter on the centroid."""
    if len(places) <= target:
        return [
            {"id": f"cluster-{i + 1}", "places": [p], "center": p.coordinates}
            for i, p in enumerate(places)
        ]

    centers = seed_centers(places, target)
    groups: List[List[Place]] = [[] for _ in centers]
    for place in places:
        nearest = min(range(len(centers)), key=lambda i: haversine_m(place.coordinates, centers[i]))
        groups[nearest].append(place)

    clusters = []
    for members in groups:
        if len(members) < MIN_PLACES_PER_CLUSTER:
            continue
        center = Coordinates(
            lat=sum(p.coordinates.lat for p in members) / len(members),
            lng=sum(p.coordinates.lng for p in members) / len(members),
        )
        clusters.append({
            "id": f"cluster-{len(clusters) + 1}",
            "places": members[:MAX_PLACES_PER_CLUSTER],
            "center": center,
        })
    return clusters


def walking_minutes(places: List[Place]) -> int:
    if len(places) <= 1:
        return 5
    max_dist = max(
        haversine_m(a.coordinates, b.coordinates)
        for i, a in enumerate(places)
        for b in places[i + 1:]
    )
    minutes = round(max_dist / WALKING_M_PER_MIN * PATH_FACTOR)
    return max(5, min(45, minutes))


class ClusterAgent(BaseAgent):
    name = "cluster_agent"
    description = "Group activities by geographic proximity"
    required_inputs = ("city", "preferences")
    optional_inputs = ("dependency:time_agent", "nights")
    outputs = ("clusters",)
    depends_on = ("time_agent",)

    def __init__(self, places: PlacesClient, queries_per_theme: int = 2, results_per_query: int = 5):
        super().__init__(llm=None)
        self.places = places
        self.queries_per_theme = queries_per_theme
        self.results_per_query = results_per_query

    async def run(self, input: Mapping[str, Any], context: AgentContext) -> Dict[str, Any]:
        city = input["city"]
        preferences = input.get("preferences") or {}
        nights = int(input.get("nights") or 2)

        try:
            time_data = self.require_dependency(input, "time_agent")
        except DependencyUnavailableError as e:
            logger.info(f"[session={context.session_id}] [agent={self.name}] {e}, using default cluster count")
            time_data = {}
        blocks = (time_data.get("time_blocks") or {}).get("blocks", [])
        target = max(2, min(5, math.ceil(len(blocks) / 2)))

        # Refinement widens the search
        widen = bool(input.get("refinement_instructions"))
        queries = self.queries_per_theme + (1 if widen else 0)
        per_query = self.results_per_query + (3 if widen else 0)

        await context.report_progress(5, "Identifying relevant place types...")
        themes = prioritize_themes(preferences)

        await context.report_progress(15, "Searching for places...")
        places = await self.discover_places(city, themes, queries, per_query, context)

        if len(places) < MIN_PLACES:
            logger.warning(
                f"[session={context.session_id}] [agent={self.name}] "
                f"Only found {len(places)} places for {city['name']}"
            )
            return {
                "data": {"clusters": [c.model_dump() for c in self.fallback_clusters(city, nights)]},
                "confidence": 40,
                "gaps": ["Insufficient place data found"],
                "suggestions": [f"{self.name}: Try broader search terms"],
            }

        await context.report_progress(50, f"Found {len(places)} places, clustering...")
        raw_clusters = cluster_places(places, target)

        await context.report_progress(75, "Enriching clusters...")
        clusters = [
            self.enrich_cluster(raw, blocks) for raw in raw_clusters
        ]

        return {
            "data": {"clusters": [c.model_dump() for c in clusters]},
            "confidence": self.calculate_confidence(clusters),
            "gaps": self.identify_gaps(clusters, preferences),
        }

    async def discover_places(
        self,
        city: Mapping[str, Any],
        themes: List[str],
        queries_per_theme: int,
        results_per_query: int,
        context: AgentContext,
    ) -> List[Place]:
        coordinates = Coordinates(**city["coordinates"]) if city.get("coordinates") else None
        seen = set()
        places: List[Place] = []

        for theme in themes:
            for query in THEME_QUERIES.get(theme, ())[:queries_per_theme]:
                search = f"{query} in {city['name']}"
                try:
                    results = await self.places.text_search(search, coordinates)
                except httpx.HTTPError as e:
                    logger.warning(
                        f"[session={context.session_id}] [agent={self.name}] "
                        f"Search failed for {search!r}: {e}"
                    )
                    continue

                for result in results[:results_per_query]:
                    place_id = result.get("place_id")
                    if not place_id or place_id in seen:
                        continue
                    place = self.transform_place(result, theme)
                    if place is not None:
                        seen.add(place_id)
                        places.append(place)

        logger.info(
            f"[session={context.session_id}] [agent={self.name}] "
            f"Discovered {len(places)} unique places in {city['name']}"
        )
        return places

    def transform_place(self, result: Dict[str, Any], theme: str) -> Optional[Place]:
        location = (result.get("geometry") or {}).get("location")
        if not location:
            return None
        photos = result.get("photos") or []
        photo_ref = photos[0].get("photo_reference") if photos else None
        return Place(
            id=result["place_id"],
            name=result.get("name", "Unnamed place"),
            type=infer_place_type(result.get("types", [])),
            theme=theme,
            rating=result.get("rating"),
            review_count=result.get("user_ratings_total"),
            price_level=result.get("price_level"),
            photo_url=self.places.photo_url(photo_ref) if photo_ref else None,
            coordinates=Coordinates(lat=location["lat"], lng=location["lng"]),
            address=result.get("formatted_address") or result.get("vicinity"),
        )

    def enrich_cluster(self, raw: Dict[str, Any], blocks: List[Dict[str, Any]]) -> Cluster:
        members: List[Place] = raw["places"]
        theme_counts = Counter(p.theme for p in members)
        theme = theme_counts.most_common(1)[0][0] if theme_counts else "mixed"

        name = THEME_NAMES.get(theme, f"Zone {raw['id'].split('-')[-1]}")
        landmark = next(
            (p for p in members if p.type == "landmark" and (p.rating or 0) >= 4.5), None
        )
        if landmark is not None:
            name = f"{landmark.name} Area"

        preferred = THEME_TIMES.get(theme, "afternoon")
        best_for = next(
            (b["name"] for b in blocks if preferred in b.get("name", "").lower()),
            preferred,
        )

        return Cluster(
            id=raw["id"],
            name=name,
            theme=theme,
            best_for=best_for,
            walking_minutes=walking_minutes(members),
            center_point=raw["center"],
            places=members,
        )

    def calculate_confidence(self, clusters: List[Cluster]) -> int:
        if not clusters:
            return 30
        confidence = 60 + min(15, len(clusters) * 3)
        avg_places = sum(len(c.places) for c in clusters) / len(clusters)
        confidence += min(15, round(avg_places * 3))
        if sum(1 for c in clusters for p in c.places if p.photo_url) > 5:
            confidence += 5
        return min(95, confidence)

    def identify_gaps(self, clusters: List[Cluster], preferences: Dict[str, Any]) -> List[str]:
        gaps = []
        if len(clusters) < 2:
            gaps.append("Insufficient clusters for meaningful exploration")
        themes = {c.theme for c in clusters}
        interests = {i.lower() for i in preferences.get("interests") or []}
        if "food" in interests and "food" not in themes:
            gaps.append("No food-focused cluster despite food interest")
        if "culture" in interests and "cultural" not in themes:
            gaps.append("No cultural cluster despite culture interest")
        return gaps

    def fallback_clusters(self, city: Mapping[str, Any], nights: int) -> List[Cluster]:
        """Day-based placeholder clusters when discovery finds too little."""
        center = Coordinates(**city["coordinates"]) if city.get("coordinates") else None
        days = max(1, nights)
        return [
            Cluster(
                id=f"day-{day}",
                name=f"Day {day}",
                theme="arrival" if day == 1 else "departure" if day == days else "exploration",
                best_for="all-day",
                walking_minutes=0,
                center_point=center,
                day_number=day,
            )
            for day in range(1, days + 1)
        ]
