"""
Placeholder outputs for agents without a configured backend.

Each entry mirrors the shape the real agent writes to its slot, so the
rest of the pipeline (reflection, synthesis, serialization) runs the same
against placeholders as against real data.
"""

from typing import Any, Dict, Mapping, Sequence

from city_intelligence.agents.time_agent import build_time_blocks


def _time_blocks(city: Mapping[str, Any], nights: int) -> Dict[str, Any]:
    blocks = build_time_blocks(nights)
    return {
        "blocks": [b.model_dump() for b in blocks],
        "total_usable_hours": sum(b.hours for b in blocks),
    }


def _story(city: Mapping[str, Any], nights: int) -> Dict[str, Any]:
    return {
        "hook": f"Discover the magic of {city['name']}",
        "narrative": (
            f"{city['name']} offers a unique blend of culture, cuisine, and charm "
            "that makes it a perfect stop on your journey."
        ),
        "differentiators": ["Local character", "Authentic experiences", "Scenic beauty"],
    }


def _match_score(city: Mapping[str, Any], nights: int) -> Dict[str, Any]:
    return {
        "score": 85,
        "reasons": [{"preference": "Exploration", "match": "Great for walking", "score": 90}],
        "warnings": [],
        "dimensions": {},
    }


def _clusters(city: Mapping[str, Any], nights: int) -> list:
    return [
        {
            "id": f"day-{day}",
            "name": f"Day {day}",
            "theme": "arrival" if day == 1 else "exploration",
            "best_for": "all-day",
            "walking_minutes": 0,
            "center_point": city.get("coordinates"),
            "day_number": day,
            "places": [],
        }
        for day in (1, 2)
    ]


def _hidden_gems(city: Mapping[str, Any], nights: int) -> list:
    return [
        {
            "name": f"Local Favorite in {city['name']}",
            "type": "experience",
            "why": "Where locals go to relax",
            "insider_tip": "Visit in the morning for fewer crowds",
            "dietary_options": [],
        }
    ]


def _logistics(city: Mapping[str, Any], nights: int) -> Dict[str, Any]:
    return {
        "tips": ["Walking is the best way to explore the center"],
        "warnings": [],
        "parking": "Street parking available",
        "transport": None,
    }


def _weather(city: Mapping[str, Any], nights: int) -> Dict[str, Any]:
    return {
        "forecast": "Pleasant conditions expected",
        "days": [],
        "outdoor_safe": ["Morning", "Evening"],
        "indoor_clusters": [],
        "golden_hour": "7:00 PM",
    }


def _photo_spots(city: Mapping[str, Any], nights: int) -> Dict[str, Any]:
    return {
        "spots": [
            {"name": "City viewpoint", "best_time": "Golden hour", "tip": "Great for panoramic shots"}
        ]
    }


def _synthesis(city: Mapping[str, Any], nights: int) -> Dict[str, Any]:
    return {
        "synthesized": True,
        "coherent": True,
        "headline": f"Discover the magic of {city['name']}",
        "day_outline": [],
        "highlights": [],
        "issues": [],
    }


MOCK_SLOTS = {
    "time_blocks": (_time_blocks, 95),
    "story": (_story, 80),
    "match_score": (_match_score, 85),
    "clusters": (_clusters, 70),
    "hidden_gems": (_hidden_gems, 75),
    "logistics": (_logistics, 90),
    "weather": (_weather, 85),
    "photo_spots": (_photo_spots, 80),
    "synthesis": (_synthesis, 90),
}


def generate_mock_output(
    slots: Sequence[str], city: Mapping[str, Any], nights: int
) -> Dict[str, Any]:
    """
    Build a placeholder run result covering ``slots``.

    Returns:
        Dict in the ``BaseAgent.run`` result shape
    """
    data = {}
    confidences = []
    for slot in slots:
        if slot not in MOCK_SLOTS:
            continue
        builder, confidence = MOCK_SLOTS[slot]
        data[slot] = builder(city, nights)
        confidences.append(confidence)
    return {
        "data": data,
        "confidence": min(confidences) if confidences else 50,
        "gaps": [],
        "suggestions": [],
    }
