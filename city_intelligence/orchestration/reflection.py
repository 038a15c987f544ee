"""
Quality reflection.

Scores each output slot of a city with a structural heuristic, combines
the scores into one weighted quality figure, and turns low categories
into tagged gaps and a verdict. Pure functions over the slot values, so
re-scoring identical outputs always gives identical results.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from city_intelligence.agents.gems_agent import eligible_food_gems, has_dining_preference
from city_intelligence.memory.schemas import Reflection, ReflectionGap


logger = logging.getLogger(__name__)

DEFAULT_WEIGHTS = {
    "story": 0.15,
    "time_blocks": 0.15,
    "clusters": 0.25,
    "match_score": 0.20,
    "hidden_gems": 0.10,
    "logistics": 0.10,
    "synthesis": 0.05,
}

GAP_DESCRIPTIONS = {
    "story": "Narrative needs more emotional connection",
    "time_blocks": "Time allocation is incomplete",
    "clusters": "Clusters need more places or better organization",
    "match_score": "Preference matching incomplete",
    "hidden_gems": "Need more hidden gems relevant to preferences",
    "logistics": "Practical logistics are thin",
    "synthesis": "Intelligence has not been synthesized coherently",
    "dining": "No restaurant recommendations despite dining preference",
}

STRENGTH_DESCRIPTIONS = {
    "story": "Engaging story hook",
    "time_blocks": "Clear time plan",
    "clusters": "Well-formed activity clusters",
    "match_score": "Strong preference match",
    "hidden_gems": "Great hidden gem recommendations",
    "logistics": "Practical logistics covered",
    "synthesis": "Coherent overall picture",
}


@dataclass
class QualityConfig:
    """
    Attributes:
        weights: Category -> weight; must sum to 1.0
        gap_threshold: Category score below which a gap is reported
        strength_threshold: Category score at or above which a strength is noted
    """

    weights: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_WEIGHTS))
    gap_threshold: int = 70
    strength_threshold: int = 85

    def __post_init__(self):
        total = sum(self.weights.values())
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"Category weights must sum to 1.0, got {total}")


# =============================================================================
# Category heuristics
# =============================================================================


def score_story(story: Optional[Mapping[str, Any]]) -> int:
    if not story:
        return 0
    score = 0
    if story.get("hook"):
        score += 40
    if len(story.get("narrative") or "") > 50:
        score += 40
    if len(story.get("differentiators") or []) >= 2:
        score += 20
    return score


def score_time_blocks(time_blocks: Optional[Mapping[str, Any]]) -> int:
    blocks = (time_blocks or {}).get("blocks") or []
    return min(100, len(blocks) * 15)


def score_clusters(clusters: Optional[List[Mapping[str, Any]]]) -> int:
    if not clusters:
        return 0
    total_places = sum(len(c.get("places") or []) for c in clusters)
    return min(50, len(clusters) * 20) + min(50, total_places * 5)


def score_match(match: Optional[Mapping[str, Any]]) -> int:
    if not match:
        return 0
    score = int(match.get("score") or 0)
    if match.get("reasons"):
        score = max(score, 70)
    return max(0, min(100, score))


def score_gems(gems: Optional[List[Mapping[str, Any]]]) -> int:
    return min(100, len(gems or []) * 25)


def score_logistics(logistics: Optional[Mapping[str, Any]]) -> int:
    if not logistics:
        return 0
    score = 50 + 10 * len(logistics.get("tips") or [])
    if logistics.get("parking"):
        score += 20
    return min(100, score)


def score_synthesis(synthesis: Optional[Mapping[str, Any]]) -> int:
    if not synthesis:
        return 0
    score = 0
    if synthesis.get("synthesized"):
        score += 40
    if synthesis.get("coherent"):
        score += 30
    if synthesis.get("headline"):
        score += 30
    return score


SCORERS = {
    "story": score_story,
    "time_blocks": score_time_blocks,
    "clusters": score_clusters,
    "match_score": score_match,
    "hidden_gems": score_gems,
    "logistics": score_logistics,
    "synthesis": score_synthesis,
}


def score_categories(outputs: Mapping[str, Any], categories: List[str]) -> Dict[str, int]:
    return {c: SCORERS[c](outputs.get(c)) for c in categories if c in SCORERS}


def weighted_quality(scores: Mapping[str, int], weights: Mapping[str, float]) -> int:
    total = sum(scores.get(c, 0) * w for c, w in weights.items())
    return max(0, min(100, round(total)))


# =============================================================================
# Engine
# =============================================================================


class ReflectionEngine:
    """Builds one Reflection per city iteration."""

    def __init__(self, config: Optional[QualityConfig] = None):
        self.config = config or QualityConfig()

    def reflect(
        self,
        outputs: Mapping[str, Any],
        preferences: Mapping[str, Any],
        iteration: int,
    ) -> Reflection:
        """
        Score a city's accumulated outputs.

        Args:
            outputs: Slot name -> latest accepted value
            preferences: Combined traveller preferences
            iteration: Iteration the outputs belong to

        Returns:
            A frozen Reflection
        """
        cfg = self.config
        scores = score_categories(outputs, list(cfg.weights))
        quality = weighted_quality(scores, cfg.weights)

        gaps: List[ReflectionGap] = []
        strengths: List[str] = []
        below = 0
        for category, score in scores.items():
            if score < cfg.gap_threshold:
                below += 1
                gaps.append(self._gap(category))
            elif score >= cfg.strength_threshold and category in STRENGTH_DESCRIPTIONS:
                strengths.append(STRENGTH_DESCRIPTIONS[category])

        if has_dining_preference(preferences) and not eligible_food_gems(
            outputs.get("hidden_gems") or [], preferences.get("dietary")
        ):
            gaps.append(self._gap("dining"))

        if not gaps:
            verdict = "complete"
        elif below > 2:
            verdict = "critical_gaps"
        else:
            verdict = "needs_refinement"

        return Reflection(
            iteration=iteration,
            quality_score=quality,
            category_scores=scores,
            strengths=strengths,
            gaps=gaps,
            verdict=verdict,
            suggestions=[g.remediation for g in gaps if g.remediation],
        )

    def _gap(self, category: str) -> ReflectionGap:
        description = GAP_DESCRIPTIONS[category]
        return ReflectionGap(
            category=category,
            description=description,
            remediation=f"Address: {description}",
        )
