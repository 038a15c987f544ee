"""
Story agent: the narrative hook for a city.

Generates a headline hook, a short sensory narrative, and three
differentiators, personalised to the traveller. Falls back to templates
when the LLM call fails.
"""

import logging
import re
from typing import Any, Dict, List, Mapping

from city_intelligence.agents.base import BaseAgent
from city_intelligence.agents.prompts import (
    STORY_SYSTEM_PROMPT,
    format_city,
    format_refinement_block,
    format_traveller_profile,
    traveller_type_of,
)
from city_intelligence.agents.schemas import AgentContext
from city_intelligence.shared.contracts import StoryOutput


logger = logging.getLogger(__name__)

GENERIC_OPENERS = ("discover", "explore", "visit", "welcome", "experience")
FOOD_TERMS = ("food", "cuisine", "restaurant", "dish", "culinary", "eat", "taste")

FALLBACK_TEMPLATES = {
    "default": {
        "hook": "The soul of {country} awaits",
        "narrative": (
            "{name} blends historic charm with vibrant local life. Wander through "
            "streets that reveal surprises at every corner, from cozy cafes to "
            "centuries-old architecture."
        ),
        "differentiators": [
            "Authentic local atmosphere",
            "Rich cultural heritage",
            "Walkable historic center",
        ],
    },
    "foodie": {
        "hook": "Where every meal tells a story",
        "narrative": (
            "{name} is a feast for the senses. Local markets brim with regional "
            "specialties, while family-run restaurants serve recipes passed down "
            "through generations."
        ),
        "differentiators": [
            "Celebrated regional cuisine",
            "Vibrant food markets",
            "Farm-to-table tradition",
        ],
    },
    "romantic": {
        "hook": "Romance written in every street",
        "narrative": (
            "{name} sets the stage for unforgettable moments. Intimate squares, "
            "candlelit dinners, and golden hour walks create the perfect backdrop "
            "for connection."
        ),
        "differentiators": [
            "Romantic atmosphere",
            "Intimate dining scene",
            "Scenic evening walks",
        ],
    },
}


class StoryAgent(BaseAgent):
    name = "story_agent"
    description = "Create an emotional narrative hook for the city"
    required_inputs = ("city", "preferences")
    optional_inputs = ("trip_context",)
    outputs = ("story",)
    depends_on = ()

    async def run(self, input: Mapping[str, Any], context: AgentContext) -> Dict[str, Any]:
        city = input["city"]
        preferences = input.get("preferences") or {}
        traveller_type = traveller_type_of(input)

        await context.report_progress(10, "Researching city character...")
        prompt = self.build_prompt(
            city, preferences, traveller_type, input.get("refinement_instructions")
        )

        await context.report_progress(30, "Crafting narrative...")
        try:
            response = await self.call_llm_json(
                STORY_SYSTEM_PROMPT, prompt, context, max_tokens=800
            )
        except Exception as e:
            logger.warning(
                f"[session={context.session_id}] [agent={self.name}] "
                f"Story generation failed, using fallback: {e}"
            )
            return {
                "data": {"story": self.fallback_story(city, preferences).model_dump()},
                "confidence": 50,
                "gaps": ["AI generation failed, using fallback narrative"],
                "suggestions": [f"{self.name}: Consider re-running story generation"],
            }

        await context.report_progress(90, "Polishing story...")
        story = self.clean_story(response, city)

        return {
            "data": {"story": story.model_dump()},
            "confidence": self.calculate_confidence(story),
            "gaps": self.identify_gaps(story, preferences),
        }

    def build_prompt(
        self,
        city: Mapping[str, Any],
        preferences: Dict[str, Any],
        traveller_type: str,
        refinement_instructions: Any = None,
    ) -> str:
        interests = [i.lower() for i in preferences.get("interests") or []]

        prompt = (
            f"Create a compelling narrative for: {format_city(city)}\n\n"
            f"{format_traveller_profile(preferences, traveller_type)}\n\n"
            "TASK:\n"
            "Generate a JSON object with:\n"
            '1. "hook" - A single memorable line (the headline). Think magazine cover line.\n'
            '2. "narrative" - 2-3 sentences that paint a picture. Mention actual places.\n'
            '3. "differentiators" - Array of 3 specific things that make this city unique.'
        )
        prompt += format_refinement_block(refinement_instructions)

        if "food" in interests or preferences.get("dining_style"):
            prompt += "\nFOCUS: This traveler loves food. Mention culinary aspects prominently."
        if "culture" in interests or "art" in interests:
            prompt += "\nFOCUS: This traveler appreciates culture and art. Highlight cultural depth."
        if "nature" in interests or "outdoor" in interests:
            prompt += "\nFOCUS: This traveler loves the outdoors. Mention natural settings."
        if traveller_type in ("couple", "honeymoon"):
            prompt += "\nFOCUS: This is a romantic trip. Emphasize romance without being cheesy."
        if traveller_type == "family":
            prompt += "\nFOCUS: Family trip. Mention family-friendly aspects naturally."

        prompt += (
            '\n\nReturn JSON:\n{\n  "hook": "...",\n  "narrative": "...",\n'
            '  "differentiators": ["...", "...", "..."]\n}'
        )
        return prompt

    def clean_story(self, response: Dict[str, Any], city: Mapping[str, Any]) -> StoryOutput:
        hook = str(response.get("hook") or f"The character of {city['name']}")
        hook = re.sub(r"^[\"']|[\"']$", "", hook).strip()
        if len(hook) > 60:
            short = re.split(r"[,.\-]", hook)[0].strip()
            if len(short) >= 15:
                hook = short

        narrative = str(
            response.get("narrative")
            or f"{city['name']} offers a unique blend of experiences waiting to be explored."
        )

        differentiators = response.get("differentiators") or []
        if not isinstance(differentiators, list):
            differentiators = [str(differentiators)]
        differentiators = [str(d) for d in differentiators if d][:3]
        while len(differentiators) < 3:
            differentiators.append("Local character")

        return StoryOutput(hook=hook, narrative=narrative, differentiators=differentiators)

    def calculate_confidence(self, story: StoryOutput) -> int:
        confidence = 70
        hook = story.hook.lower()
        if 10 <= len(story.hook) <= 50:
            confidence += 10
        if "discover" not in hook:
            confidence += 5
        if "welcome" not in hook:
            confidence += 5
        if 80 <= len(story.narrative) <= 300:
            confidence += 5
        if "," in story.narrative:
            confidence += 2
        if len(story.differentiators) == 3:
            confidence += 3
        return min(95, confidence)

    def identify_gaps(self, story: StoryOutput, preferences: Dict[str, Any]) -> List[str]:
        gaps = []
        if story.hook.lower().startswith(GENERIC_OPENERS):
            gaps.append("Hook starts with generic verb")
        interests = [i.lower() for i in preferences.get("interests") or []]
        if "food" in interests and not any(t in story.narrative.lower() for t in FOOD_TERMS):
            gaps.append("Narrative missing food focus despite preference")
        if len(story.narrative) < 80:
            gaps.append("Narrative too short")
        return gaps

    def fallback_story(self, city: Mapping[str, Any], preferences: Dict[str, Any]) -> StoryOutput:
        interests = [i.lower() for i in preferences.get("interests") or []]
        template = FALLBACK_TEMPLATES["default"]
        if "food" in interests or preferences.get("dining_style"):
            template = FALLBACK_TEMPLATES["foodie"]
        if preferences.get("traveller_type") == "couple" or preferences.get("occasion") == "honeymoon":
            template = FALLBACK_TEMPLATES["romantic"]

        fields = {"name": city["name"], "country": city.get("country") or city["name"]}
        return StoryOutput(
            hook=template["hook"].format(**fields),
            narrative=template["narrative"].format(**fields),
            differentiators=list(template["differentiators"]),
        )
