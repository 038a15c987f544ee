"""Photo agent: where and when to take the best pictures."""

import logging
from typing import Any, Dict, Mapping

from pydantic import ValidationError

from city_intelligence.agents.base import BaseAgent
from city_intelligence.agents.prompts import (
    PHOTO_SYSTEM_PROMPT,
    format_city,
    format_refinement_block,
)
from city_intelligence.agents.schemas import AgentContext
from city_intelligence.shared.contracts import PhotoSpot


logger = logging.getLogger(__name__)


class PhotoAgent(BaseAgent):
    name = "photo_agent"
    description = "Recommend photo spots with timing"
    required_inputs = ("city",)
    optional_inputs = ("preferences",)
    outputs = ("photo_spots",)
    depends_on = ()
    min_phase = 3

    async def run(self, input: Mapping[str, Any], context: AgentContext) -> Dict[str, Any]:
        city = input["city"]

        await context.report_progress(20, "Scouting viewpoints...")
        prompt = (
            f"Recommend 3-5 photo spots in {format_city(city)}.\n\n"
            'Return JSON:\n{\n  "spots": [\n    {"name": "...", "best_time": "Golden hour", '
            '"tip": "..."}\n  ]\n}'
            f"{format_refinement_block(input.get('refinement_instructions'))}"
        )

        try:
            response = await self.call_llm_json(PHOTO_SYSTEM_PROMPT, prompt, context, max_tokens=600)
        except Exception as e:
            logger.warning(
                f"[session={context.session_id}] [agent={self.name}] "
                f"Photo scouting failed, using fallback: {e}"
            )
            spot = PhotoSpot(
                name=f"{city['name']} viewpoint",
                best_time="Golden hour",
                tip="Great for panoramic shots",
            )
            return {
                "data": {"photo_spots": {"spots": [spot.model_dump()]}},
                "confidence": 45,
                "gaps": ["AI scouting failed, using a generic viewpoint"],
            }

        spots = []
        for item in response.get("spots") or []:
            try:
                spots.append(PhotoSpot.model_validate(item).model_dump())
            except ValidationError:
                continue

        return {
            "data": {"photo_spots": {"spots": spots}},
            "confidence": 80 if len(spots) >= 3 else 60,
            "gaps": [] if spots else ["No usable photo spots returned"],
        }
