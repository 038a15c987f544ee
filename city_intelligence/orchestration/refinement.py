"""
Refinement planning.

Maps reflection gaps to the agents that should re-run and the one-line
instruction each one gets. Tagged gaps go through REFINEMENT_TABLE;
gaps with an unknown tag fall back to keyword matching on the text.
Anything still unmatched is recorded and left alone.
"""

import logging
from typing import Dict, List, Optional, Sequence, Tuple

from city_intelligence.memory.schemas import Reflection, ReflectionGap
from city_intelligence.orchestration.schemas import RefinementPlan


logger = logging.getLogger(__name__)

STORY_INSTRUCTION = "Create more emotionally resonant narrative"
CLUSTER_INSTRUCTION = "Add more places and improve organization"
GEMS_INSTRUCTION = "Focus on finding restaurant recommendations"
PREFERENCE_INSTRUCTION = "Improve preference matching analysis"

REFINEMENT_TABLE: Dict[str, Tuple[str, str]] = {
    "story": ("story_agent", STORY_INSTRUCTION),
    "time_blocks": ("time_agent", "Rebuild the time allocation for the stay"),
    "clusters": ("cluster_agent", CLUSTER_INSTRUCTION),
    "match_score": ("preference_agent", PREFERENCE_INSTRUCTION),
    "hidden_gems": ("gems_agent", "Find more hidden gems relevant to the traveller"),
    "dining": ("gems_agent", GEMS_INSTRUCTION),
    "logistics": ("logistics_agent", "Add concrete parking and transport tips"),
    "synthesis": ("synthesis_agent", "Resynthesize with the refreshed outputs"),
}

# Checked in order; first match wins
KEYWORD_TABLE: Sequence[Tuple[Tuple[str, ...], str, str]] = (
    (("narrative", "story"), "story_agent", STORY_INSTRUCTION),
    (("cluster", "places"), "cluster_agent", CLUSTER_INSTRUCTION),
    (("restaurant", "dining", "cuisine", "gem"), "gems_agent", GEMS_INSTRUCTION),
    (("preference",), "preference_agent", PREFERENCE_INSTRUCTION),
)


def match_gap(gap: ReflectionGap) -> Optional[Tuple[str, str]]:
    """Return (agent, instruction) for a gap, or None if nothing matches."""
    if gap.category in REFINEMENT_TABLE:
        return REFINEMENT_TABLE[gap.category]

    text = gap.description.lower()
    for keywords, agent, instruction in KEYWORD_TABLE:
        if any(k in text for k in keywords):
            return agent, instruction
    return None


def plan_refinement(
    reflection: Reflection,
    next_iteration: int,
    available_agents: Optional[Sequence[str]] = None,
) -> RefinementPlan:
    """
    Build the refinement plan for the iteration after ``reflection``.

    Never raises: a gap that cannot be mapped (or maps to an agent that
    is not available) lands in ``unmatched_gaps``.
    """
    agents: List[str] = []
    instructions: Dict[str, str] = {}
    unmatched: List[str] = []

    for gap in reflection.gaps:
        try:
            match = match_gap(gap)
        except Exception as e:
            logger.warning(f"Could not map gap '{gap.description}': {e}")
            match = None

        if match is None or (available_agents is not None and match[0] not in available_agents):
            unmatched.append(gap.description)
            continue

        agent, instruction = match
        if agent not in agents:
            agents.append(agent)
            instructions[agent] = instruction
        elif instruction not in instructions[agent]:
            instructions[agent] = f"{instructions[agent]}. {instruction}"

    if unmatched:
        logger.info(f"Refinement left {len(unmatched)} gap(s) unactioned: {unmatched}")

    return RefinementPlan(
        iteration=next_iteration,
        agents_to_rerun=agents,
        instructions=instructions,
        focus_areas=[g.description for g in reflection.gaps],
        unmatched_gaps=unmatched,
    )
