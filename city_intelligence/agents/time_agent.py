"""
Time allocation agent.

Splits a stay into usable blocks (arrival afternoon, day mornings,
afternoons and evenings, departure morning). Deterministic: no external
calls, so it does not support refinement.
"""

from typing import Any, Dict, List, Mapping

from city_intelligence.agents.base import BaseAgent
from city_intelligence.agents.schemas import AgentContext
from city_intelligence.shared.contracts import TimeBlock, TimeBlocksOutput


# Morning/afternoon hours by pace
PACE_HOURS = {
    "relaxed": (2, 3),
    "moderate": (3, 4),
    "packed": (4, 5),
}


def build_time_blocks(nights: int, pace: str = "moderate") -> List[TimeBlock]:
    """
    Build the ordered time blocks for a stay of ``nights`` nights.

    A zero-night stay is a single day-visit block.
    """
    morning_hours, afternoon_hours = PACE_HOURS.get(pace, PACE_HOURS["moderate"])

    if nights <= 0:
        return [
            TimeBlock(
                id="day-visit",
                name="Day Visit",
                day=1,
                hours=afternoon_hours + 2,
                mood="explore",
                flexibility="low",
                suggested="Highlights only",
            )
        ]

    blocks = [
        TimeBlock(
            id="arrival-afternoon",
            name="Arrival Afternoon",
            day=1,
            hours=afternoon_hours,
            mood="explore",
            flexibility="high",
            suggested="Initial exploration",
        ),
        TimeBlock(
            id="day1-evening",
            name="First Evening",
            day=1,
            hours=3,
            mood="dine",
            flexibility="medium",
            suggested="Welcome dinner",
        ),
    ]

    for day in range(2, nights + 1):
        blocks.extend([
            TimeBlock(
                id=f"day{day}-morning",
                name=f"Day {day} Morning",
                day=day,
                hours=morning_hours,
                mood="activity",
                flexibility="medium",
            ),
            TimeBlock(
                id=f"day{day}-afternoon",
                name=f"Day {day} Afternoon",
                day=day,
                hours=afternoon_hours,
                mood="rest" if pace == "relaxed" else "explore",
                flexibility="high",
            ),
            TimeBlock(
                id=f"day{day}-evening",
                name=f"Day {day} Evening",
                day=day,
                hours=3,
                mood="dine",
                flexibility="medium",
            ),
        ])

    blocks.append(
        TimeBlock(
            id="departure-morning",
            name="Departure Morning",
            day=nights + 1,
            hours=2,
            mood="depart",
            flexibility="low",
            suggested="Final stroll or breakfast",
        )
    )
    return blocks


class TimeAgent(BaseAgent):
    name = "time_agent"
    description = "Allocate the stay into usable time blocks"
    required_inputs = ("city", "nights")
    optional_inputs = ("preferences", "trip_context")
    outputs = ("time_blocks",)
    depends_on = ()
    supports_refinement = False

    async def run(self, input: Mapping[str, Any], context: AgentContext) -> Dict[str, Any]:
        nights = int(input["nights"])
        pace = (input.get("preferences") or {}).get("pace") or "moderate"

        await context.report_progress(30, "Allocating time blocks...")
        blocks = build_time_blocks(nights, pace)
        output = TimeBlocksOutput(
            blocks=blocks,
            total_usable_hours=sum(b.hours for b in blocks),
        )

        gaps = []
        if nights <= 0:
            gaps.append("No overnight stay; only a day-visit block available")

        return {
            "data": {"time_blocks": output.model_dump()},
            "confidence": 95,
            "gaps": gaps,
        }
