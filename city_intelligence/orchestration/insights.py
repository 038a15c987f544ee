"""
Cross-city insights computed from the finished city records.
"""

from collections import Counter
from typing import List, Sequence

from city_intelligence.memory.schemas import CityIntelligence, CrossCityInsights


THEME_LABELS = {
    "cultural": "Cultural heritage",
    "food": "Local cuisine",
    "nature": "Natural beauty",
    "nightlife": "Evening life",
    "shopping": "Markets and shopping",
    "romantic": "Romantic spots",
    "family": "Family friendly",
}

GEM_THEMES = {
    "restaurant": "food",
    "cafe": "food",
    "bakery": "food",
    "market": "food",
    "bar": "nightlife",
    "wine bar": "nightlife",
    "museum": "cultural",
    "gallery": "cultural",
    "park": "nature",
    "viewpoint": "nature",
    "shop": "shopping",
}


def _city_themes(record: CityIntelligence) -> List[str]:
    themes = []
    for cluster in record.outputs.get("clusters") or []:
        theme = cluster.get("theme")
        if theme in THEME_LABELS:
            themes.append(theme)
    for gem in record.outputs.get("hidden_gems") or []:
        theme = GEM_THEMES.get(str(gem.get("type", "")).lower())
        if theme:
            themes.append(theme)
    return themes


def pace_score(nights: Sequence[int]) -> int:
    """100 minus penalties for one-night stops and stays over four nights."""
    if not nights:
        return 0
    short = sum(1 for n in nights if n <= 1)
    long = sum(1 for n in nights if n > 4)
    score = 100 - round(40 * short / len(nights)) - round(20 * long / len(nights))
    return max(0, min(100, score))


def compute_cross_city_insights(records: Sequence[CityIntelligence]) -> CrossCityInsights:
    """
    Summarize a route from its city records.

    Themes are the most common cluster and gem themes across cities;
    variety rewards cities that bring themes the others lack.
    """
    if not records:
        return CrossCityInsights()

    per_city = [set(_city_themes(r)) for r in records]
    counts = Counter(t for themes in per_city for t in themes)
    themes = [THEME_LABELS[t] for t, _ in counts.most_common(5)]

    distinct = len(counts)
    if len(records) == 1:
        variety = min(100, 40 + 15 * distinct)
    else:
        unique_per_city = []
        for i, city_themes in enumerate(per_city):
            others = set()
            for j, other in enumerate(per_city):
                if j != i:
                    others |= other
            unique_per_city.append(len(city_themes - others))
        distinctive = sum(1 for u in unique_per_city if u > 0)
        variety = min(100, 30 + 10 * distinct + round(30 * distinctive / len(records)))

    nights = [r.nights for r in records]
    pace = pace_score(nights)

    names = [r.city.name for r in records]
    recommendations = []
    if len(names) > 1:
        route = " → ".join(names)
        if themes:
            recommendations.append(f"Your route through {route} combines {', '.join(themes[:3]).lower()}")
        else:
            recommendations.append(f"Your route through {route} offers great variety")
        recommendations.append("Consider allowing for travel time between cities")
    one_night = [r.city.name for r in records if r.nights <= 1]
    if one_night and len(records) > 1:
        recommendations.append(f"Short stops in {', '.join(one_night)} leave little time to explore")
    low_quality = [r.city.name for r in records if r.quality < 70]
    if low_quality:
        recommendations.append(f"Intelligence for {', '.join(low_quality)} is thin; check details before booking")

    return CrossCityInsights(
        themes=themes,
        variety_score=variety,
        pace_score=pace,
        recommendations=recommendations,
    )
