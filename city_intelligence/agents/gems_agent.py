"""
Gems agent: local finds that fit the traveller.

Reads the preference agent's warnings and any messages other agents
left for it, and honours dining style and dietary requirements.
"""

import logging
from typing import Any, Dict, List, Mapping

from pydantic import ValidationError

from city_intelligence.agents.base import BaseAgent
from city_intelligence.agents.prompts import (
    GEMS_SYSTEM_PROMPT,
    format_city,
    format_refinement_block,
    format_traveller_profile,
    traveller_type_of,
)
from city_intelligence.agents.schemas import AgentContext
from city_intelligence.shared.contracts import HiddenGem
from city_intelligence.shared.errors import DependencyUnavailableError


logger = logging.getLogger(__name__)

FOOD_TYPES = {"restaurant", "cafe", "bakery", "market", "food", "bar", "wine bar"}
TARGET_GEMS = 5


def has_dining_preference(preferences: Dict[str, Any]) -> bool:
    return bool(preferences.get("dining_style") or preferences.get("dietary"))


def eligible_food_gems(gems: List[Dict[str, Any]], dietary: Any = None) -> List[Dict[str, Any]]:
    """Food venues, filtered to those serving ``dietary`` when given."""
    matches = []
    for gem in gems:
        if str(gem.get("type", "")).lower() not in FOOD_TYPES:
            continue
        if dietary:
            diet = str(dietary).lower()
            options = [str(o).lower() for o in gem.get("dietary_options") or []]
            text = f"{gem.get('why', '')} {gem.get('insider_tip') or ''}".lower()
            if diet not in options and diet not in text:
                continue
        matches.append(gem)
    return matches


class GemsAgent(BaseAgent):
    name = "gems_agent"
    description = "Find local favourites relevant to the traveller"
    required_inputs = ("city", "preferences")
    optional_inputs = ("dependency:preference_agent", "agent_messages")
    outputs = ("hidden_gems",)
    depends_on = ("preference_agent",)

    async def run(self, input: Mapping[str, Any], context: AgentContext) -> Dict[str, Any]:
        city = input["city"]
        preferences = input.get("preferences") or {}

        try:
            match = self.require_dependency(input, "preference_agent").get("match_score") or {}
        except DependencyUnavailableError as e:
            logger.info(f"[session={context.session_id}] [agent={self.name}] {e}, no preference warnings")
            match = {}
        warnings = [w.get("preference") for w in match.get("warnings") or [] if w.get("preference")]
        focus = list(input.get("agent_messages") or [])

        await context.report_progress(20, "Asking around...")
        prompt = self.build_prompt(
            city,
            preferences,
            traveller_type_of(input),
            warnings,
            focus,
            input.get("refinement_instructions"),
        )

        try:
            response = await self.call_llm_json(GEMS_SYSTEM_PROMPT, prompt, context, max_tokens=1200)
            gems = self.clean_gems(response)
        except Exception as e:
            logger.warning(
                f"[session={context.session_id}] [agent={self.name}] "
                f"Gem discovery failed, using fallback: {e}"
            )
            return {
                "data": {"hidden_gems": self.fallback_gems(city, preferences)},
                "confidence": 45,
                "gaps": ["AI discovery failed, using generic local picks"],
            }

        await context.report_progress(90, "Checking fit...")
        gaps = []
        if len(gems) < 3:
            gaps.append("Fewer than three local finds")
        if has_dining_preference(preferences) and not eligible_food_gems(gems, preferences.get("dietary")):
            gaps.append("No restaurant recommendations despite dining preference")

        return {
            "data": {"hidden_gems": gems},
            "confidence": 80 if not gaps else 65,
            "gaps": gaps,
        }

    def build_prompt(
        self,
        city: Mapping[str, Any],
        preferences: Dict[str, Any],
        traveller_type: str,
        warnings: List[str],
        focus: List[str],
        refinement_instructions: Any = None,
    ) -> str:
        prompt = (
            f"Find {TARGET_GEMS} local favourites in {format_city(city)}.\n\n"
            f"{format_traveller_profile(preferences, traveller_type)}\n"
        )
        if has_dining_preference(preferences):
            prompt += (
                "\nAt least two finds MUST be restaurants or cafes matching the dining "
                "preference" + (f" and serving {preferences['dietary']} food" if preferences.get("dietary") else "")
                + ".\n"
            )
        if warnings:
            prompt += f"\nThe city is weak on: {', '.join(warnings)}. Suggest alternatives that compensate.\n"
        if focus:
            prompt += "\nNotes from other planners:\n" + "\n".join(f"- {f}" for f in focus) + "\n"
        prompt += format_refinement_block(refinement_instructions)
        prompt += (
            '\nReturn JSON:\n{\n  "hidden_gems": [\n    {"name": "...", "type": "restaurant", '
            '"why": "...", "insider_tip": "...", "dietary_options": ["vegetarian"]}\n  ]\n}'
        )
        return prompt

    def clean_gems(self, response: Dict[str, Any]) -> List[Dict[str, Any]]:
        raw = response.get("hidden_gems") or response.get("gems") or []
        gems = []
        for item in raw if isinstance(raw, list) else []:
            try:
                gem = HiddenGem.model_validate(item)
            except ValidationError:
                continue
            gem.type = gem.type.lower()
            gems.append(gem.model_dump())
        return gems

    def fallback_gems(self, city: Mapping[str, Any], preferences: Dict[str, Any]) -> List[Dict[str, Any]]:
        gems = [
            HiddenGem(
                name=f"Neighbourhood square in {city['name']}",
                type="experience",
                why="Where locals go to relax in the evening",
                insider_tip="Visit in the morning for fewer crowds",
            )
        ]
        if has_dining_preference(preferences):
            dietary = preferences.get("dietary")
            gems.append(
                HiddenGem(
                    name=f"Family-run trattoria in {city['name']}",
                    type="restaurant",
                    why="Seasonal local cooking away from the main square",
                    insider_tip="Ask for the daily special",
                    dietary_options=[dietary] if dietary else [],
                )
            )
        return [g.model_dump() for g in gems]
