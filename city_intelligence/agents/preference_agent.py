"""
Preference agent: how well a city fits the traveller.

The LLM rates the city on fixed travel dimensions; the match score is
then computed in code from the dimensions the traveller cares about
(stated interests weigh double). Warnings become suggestions for the
gems agent so it can look for alternatives.
"""

import logging
from typing import Any, Dict, List, Mapping, Tuple

from city_intelligence.agents.base import BaseAgent
from city_intelligence.agents.prompts import (
    PREFERENCE_SYSTEM_PROMPT,
    format_city,
    format_refinement_block,
    traveller_type_of,
)
from city_intelligence.agents.schemas import AgentContext
from city_intelligence.shared.contracts import MatchReason, MatchScoreOutput, MatchWarning


logger = logging.getLogger(__name__)

DIMENSIONS = (
    "walkability",
    "food_scene",
    "cultural_depth",
    "nature_access",
    "nightlife",
    "family_friendly",
    "budget_friendly",
    "luxury_options",
    "offbeat",
    "romantic",
)

INTEREST_DIMENSIONS = {
    "food": ("food_scene",),
    "culinary": ("food_scene",),
    "culture": ("cultural_depth",),
    "art": ("cultural_depth",),
    "history": ("cultural_depth",),
    "nature": ("nature_access",),
    "outdoor": ("nature_access",),
    "hiking": ("nature_access",),
    "nightlife": ("nightlife",),
    "party": ("nightlife",),
    "shopping": ("walkability",),
    "relaxation": ("nature_access", "walkability"),
    "adventure": ("nature_access", "offbeat"),
}

POPULAR_CITIES = ("paris", "rome", "barcelona", "amsterdam", "florence", "prague", "vienna", "lisbon")

REASON_THRESHOLD = 75
WARNING_THRESHOLD = 50
MAX_REASONS = 4


def _dimension(analysis: Dict[str, Any], key: str, default: int, default_reason: str) -> Tuple[int, str]:
    entry = analysis.get(key) or {}
    if isinstance(entry, (int, float)):
        return int(entry), default_reason
    score = entry.get("score")
    return (
        int(score) if isinstance(score, (int, float)) else default,
        entry.get("reason") or default_reason,
    )


class PreferenceAgent(BaseAgent):
    name = "preference_agent"
    description = "Score how well the city matches the traveller's preferences"
    required_inputs = ("city", "preferences")
    optional_inputs = ("trip_context",)
    outputs = ("match_score",)
    depends_on = ()

    async def run(self, input: Mapping[str, Any], context: AgentContext) -> Dict[str, Any]:
        city = input["city"]
        preferences = input.get("preferences") or {}
        traveller_type = traveller_type_of(input)

        await context.report_progress(10, "Analyzing city characteristics...")
        try:
            analysis = await self.call_llm_json(
                PREFERENCE_SYSTEM_PROMPT,
                self.build_prompt(city, input.get("refinement_instructions")),
                context,
                max_tokens=1000,
            )
        except Exception as e:
            logger.warning(
                f"[session={context.session_id}] [agent={self.name}] "
                f"City analysis failed, using heuristic scoring: {e}"
            )
            return {
                "data": {"match_score": self.fallback_score(city).model_dump()},
                "confidence": 50,
                "gaps": ["AI analysis failed, using heuristic scoring"],
            }

        await context.report_progress(40, "Matching against preferences...")
        dimensions = self.calculate_dimension_scores(analysis, preferences, traveller_type)

        await context.report_progress(70, "Generating insights...")
        reasons, warnings = self.generate_insights(dimensions)

        await context.report_progress(90, "Calculating final score...")
        match = MatchScoreOutput(
            score=self.calculate_overall_score(dimensions),
            reasons=reasons,
            warnings=warnings,
            dimensions=dimensions,
        )

        return {
            "data": {"match_score": match.model_dump()},
            "confidence": 85,
            "gaps": ["Multiple preference mismatches detected"] if len(warnings) > 2 else [],
            "suggestions": [
                f"gems_agent: Focus on finding alternatives for {w.preference}"
                for w in warnings
            ],
        }

    def build_prompt(self, city: Mapping[str, Any], refinement_instructions: Any = None) -> str:
        dims = "\n".join(f"- {d}" for d in DIMENSIONS)
        return (
            f"Analyze the travel characteristics of {format_city(city)}.\n\n"
            f"Rate each dimension from 0-100 and provide a brief reason:\n{dims}\n\n"
            "Return JSON only, keyed by dimension:\n"
            '{\n  "walkability": {"score": 85, "reason": "Compact old town"},\n'
            '  "food_scene": {"score": 90, "reason": "..."},\n  ...\n}'
            f"{format_refinement_block(refinement_instructions)}"
        )

    def calculate_dimension_scores(
        self,
        analysis: Dict[str, Any],
        preferences: Dict[str, Any],
        traveller_type: str,
    ) -> Dict[str, Dict[str, Any]]:
        scores: Dict[str, Dict[str, Any]] = {}

        for interest in preferences.get("interests") or []:
            for dim in INTEREST_DIMENSIONS.get(interest.lower(), ()):
                if dim in analysis:
                    score, reason = _dimension(analysis, dim, 70, f"{dim} rated")
                    scores[dim] = {
                        "score": score,
                        "reason": reason,
                        "is_primary": True,
                        "matched_interest": interest,
                    }

        practical = []
        if preferences.get("pace") == "relaxed":
            practical.append(("walkability", 70, "Walkable areas available", False, "relaxed pace"))
        if preferences.get("budget") == "budget":
            practical.append(("budget_friendly", 60, "Budget options available", True, "budget travel"))
        if preferences.get("budget") == "luxury":
            practical.append(("luxury_options", 70, "Luxury options available", True, "luxury experience"))
        if traveller_type in ("couple", "honeymoon"):
            practical.append(("romantic", 75, "Romantic atmosphere", True, "romantic trip"))
        if traveller_type == "family":
            practical.append(("family_friendly", 70, "Family-friendly options", True, "family trip"))

        for dim, default, default_reason, is_primary, matched in practical:
            score, reason = _dimension(analysis, dim, default, default_reason)
            scores[dim] = {
                "score": score,
                "reason": reason,
                "is_primary": is_primary,
                "matched_interest": matched,
            }

        if "walkability" not in scores:
            score, reason = _dimension(analysis, "walkability", 70, "Walkable areas available")
            scores["walkability"] = {
                "score": score,
                "reason": reason,
                "is_primary": False,
                "matched_interest": "general exploration",
            }

        return scores

    def generate_insights(
        self, dimensions: Dict[str, Dict[str, Any]]
    ) -> Tuple[List[MatchReason], List[MatchWarning]]:
        reasons = []
        warnings = []
        for dim, data in dimensions.items():
            score = max(0, min(100, data["score"]))
            if score >= REASON_THRESHOLD:
                reasons.append(
                    MatchReason(preference=data["matched_interest"], match=data["reason"], score=score)
                )
            elif score < WARNING_THRESHOLD and data["is_primary"]:
                warnings.append(
                    MatchWarning(
                        preference=data["matched_interest"],
                        gap=data["reason"] or f"{dim} may not meet expectations",
                        score=score,
                    )
                )
        reasons.sort(key=lambda r: r.score, reverse=True)
        return reasons[:MAX_REASONS], warnings

    def calculate_overall_score(self, dimensions: Dict[str, Dict[str, Any]]) -> int:
        if not dimensions:
            return 75
        weighted_sum = 0.0
        total_weight = 0
        for data in dimensions.values():
            weight = 2 if data["is_primary"] else 1
            weighted_sum += data["score"] * weight
            total_weight += weight
        raw = weighted_sum / total_weight if total_weight else 75
        return round(max(40, min(98, raw)))

    def fallback_score(self, city: Mapping[str, Any]) -> MatchScoreOutput:
        base = 75
        if any(c in city["name"].lower() for c in POPULAR_CITIES):
            base += 10
        return MatchScoreOutput(
            score=base,
            reasons=[
                MatchReason(preference="Exploration", match="Great destination for discovering", score=base)
            ],
        )
