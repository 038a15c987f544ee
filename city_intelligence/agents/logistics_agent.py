"""Logistics agent: arrival, parking and getting around."""

import logging
from typing import Any, Dict, List, Mapping

from city_intelligence.agents.base import BaseAgent
from city_intelligence.agents.prompts import (
    LOGISTICS_SYSTEM_PROMPT,
    format_city,
    format_refinement_block,
)
from city_intelligence.agents.schemas import AgentContext
from city_intelligence.shared.contracts import LogisticsOutput


logger = logging.getLogger(__name__)

FALLBACK_BY_MODE = {
    "car": LogisticsOutput(
        tips=[
            "Park on the edge of the centre and walk in",
            "Walking is the best way to explore the centre",
        ],
        warnings=["Historic centres often restrict traffic; check signage before entering"],
        parking="Use a public car park outside the restricted zone",
        transport="Car to the edge of town, then on foot",
    ),
    "train": LogisticsOutput(
        tips=[
            "Leave luggage at the station or hotel before exploring",
            "Walking is the best way to explore the centre",
        ],
        warnings=[],
        parking=None,
        transport="Station to centre on foot or local bus",
    ),
}


class LogisticsAgent(BaseAgent):
    name = "logistics_agent"
    description = "Practical arrival and getting-around advice"
    required_inputs = ("city",)
    optional_inputs = ("trip_context", "nights")
    outputs = ("logistics",)
    depends_on = ()
    min_phase = 3

    async def run(self, input: Mapping[str, Any], context: AgentContext) -> Dict[str, Any]:
        city = input["city"]
        mode = ((input.get("trip_context") or {}).get("transport_mode") or "car").lower()

        await context.report_progress(20, "Checking arrival logistics...")
        prompt = (
            f"Practical logistics for arriving in and exploring {format_city(city)} "
            f"for {input.get('nights') or 1} night(s), travelling by {mode}.\n\n"
            "Return JSON:\n{\n"
            '  "tips": ["..."],\n'
            '  "warnings": ["..."],\n'
            '  "parking": "where to park, or null if not driving",\n'
            '  "transport": "how to get around"\n}'
            f"{format_refinement_block(input.get('refinement_instructions'))}"
        )

        try:
            response = await self.call_llm_json(LOGISTICS_SYSTEM_PROMPT, prompt, context, max_tokens=600)
            logistics = LogisticsOutput(
                tips=[str(t) for t in response.get("tips") or []][:6],
                warnings=[str(w) for w in response.get("warnings") or []][:4],
                parking=response.get("parking"),
                transport=response.get("transport"),
            )
        except Exception as e:
            logger.warning(
                f"[session={context.session_id}] [agent={self.name}] "
                f"Logistics lookup failed, using fallback: {e}"
            )
            fallback = FALLBACK_BY_MODE.get(mode, FALLBACK_BY_MODE["car"])
            return {
                "data": {"logistics": fallback.model_dump()},
                "confidence": 55,
                "gaps": ["AI logistics failed, using generic advice"],
            }

        gaps: List[str] = []
        if not logistics.tips:
            gaps.append("No practical tips returned")
        if mode == "car" and not logistics.parking:
            gaps.append("No parking guidance for a driving trip")

        return {
            "data": {"logistics": logistics.model_dump()},
            "confidence": 85 if not gaps else 65,
            "gaps": gaps,
        }
