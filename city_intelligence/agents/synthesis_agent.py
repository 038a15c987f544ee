"""
Synthesis agent: combine the other slots into one coherent view.

Runs last and alone. Pure combination of upstream outputs, so it needs
no external service and does not support refinement.
"""

from typing import Any, Dict, List, Mapping

from city_intelligence.agents.base import BaseAgent
from city_intelligence.agents.schemas import AgentContext
from city_intelligence.shared.contracts import SynthesisOutput
from city_intelligence.shared.errors import DependencyUnavailableError


UPSTREAM = {
    "story_agent": "story",
    "time_agent": "time_blocks",
    "cluster_agent": "clusters",
    "preference_agent": "match_score",
    "gems_agent": "hidden_gems",
}


class SynthesisAgent(BaseAgent):
    name = "synthesis_agent"
    description = "Synthesize all intelligence into a coherent city view"
    required_inputs = ("city", "nights")
    optional_inputs = tuple(f"dependency:{name}" for name in UPSTREAM)
    outputs = ("synthesis",)
    depends_on = tuple(UPSTREAM)
    supports_refinement = False
    terminal = True

    async def run(self, input: Mapping[str, Any], context: AgentContext) -> Dict[str, Any]:
        city = input["city"]
        nights = int(input["nights"])

        slots = {}
        issues = []
        for agent_name, slot in UPSTREAM.items():
            try:
                data = self.require_dependency(input, agent_name)
            except DependencyUnavailableError:
                data = {}
            if data.get(slot) is None:
                issues.append(f"Missing {slot.replace('_', ' ')}")
            else:
                slots[slot] = data[slot]

        await context.report_progress(40, "Weaving outputs together...")

        story = slots.get("story") or {}
        match = slots.get("match_score") or {}
        clusters = slots.get("clusters") or []
        gems = slots.get("hidden_gems") or []

        headline = story.get("hook")
        if headline and match.get("score") is not None:
            headline = f"{headline} ({match['score']}% match)"

        outline = self.day_outline(city["name"], nights, clusters)
        highlights: List[str] = [g["name"] for g in gems[:2]]
        for reason in (match.get("reasons") or [])[:1]:
            highlights.append(reason.get("match", ""))

        if clusters and len(clusters) < max(1, min(nights, 5)):
            issues.append("Fewer clusters than full days")

        synthesis = SynthesisOutput(
            synthesized=True,
            coherent=not issues,
            headline=headline,
            day_outline=outline,
            highlights=[h for h in highlights if h],
            issues=issues,
        )

        return {
            "data": {"synthesis": synthesis.model_dump()},
            "confidence": max(40, 90 - 10 * len(issues)),
            "gaps": issues,
        }

    def day_outline(self, city_name: str, nights: int, clusters: List[Dict[str, Any]]) -> List[str]:
        days = max(1, nights)
        outline = []
        for day in range(1, days + 1):
            if clusters:
                cluster = clusters[(day - 1) % len(clusters)]
                area = f"{cluster.get('name')} ({cluster.get('best_for', 'all-day')})"
            else:
                area = f"central {city_name}"
            if day == 1:
                outline.append(f"Day 1: Arrive and settle into {area}")
            else:
                outline.append(f"Day {day}: Explore {area}")
        return outline
