"""
Tests for mapping reflection gaps to refinement plans.
"""

import pytest

from city_intelligence.memory.schemas import Reflection, ReflectionGap
from city_intelligence.orchestration.refinement import (
    CLUSTER_INSTRUCTION,
    GEMS_INSTRUCTION,
    STORY_INSTRUCTION,
    match_gap,
    plan_refinement,
)


# ============================================================================
# Test Fixtures
# ============================================================================


def _make_reflection(*gaps, verdict="needs_refinement"):
    """Create a reflection from (category, description) pairs."""
    return Reflection(
        iteration=1,
        quality_score=60,
        verdict=verdict,
        gaps=[ReflectionGap(category=c, description=d) for c, d in gaps],
    )


# ============================================================================
# TestMatchGap
# ============================================================================


class TestMatchGap:
    """Tests for match_gap."""

    def test_tagged_gap_uses_table(self):
        """A known category should map through the table."""
        gap = ReflectionGap(category="story", description="anything")

        assert match_gap(gap) == ("story_agent", STORY_INSTRUCTION)

    def test_dining_maps_to_gems(self):
        """The dining cross-check should steer the gems agent."""
        gap = ReflectionGap(category="dining", description="No restaurant recommendations")

        assert match_gap(gap) == ("gems_agent", GEMS_INSTRUCTION)

    def test_keyword_fallback(self):
        """An unknown category should fall back to keywords in the text."""
        gap = ReflectionGap(category="other", description="Too few places near the old town")

        assert match_gap(gap) == ("cluster_agent", CLUSTER_INSTRUCTION)

    def test_unmatched_returns_none(self):
        """A gap with no known category or keyword should not match."""
        gap = ReflectionGap(category="other", description="Sunsets are underrated")

        assert match_gap(gap) is None


# ============================================================================
# TestPlanRefinement
# ============================================================================


class TestPlanRefinement:
    """Tests for plan_refinement."""

    def test_agents_and_instructions(self):
        """Each gap should add its agent once, with its instruction."""
        reflection = _make_reflection(
            ("story", "Narrative needs more emotional connection"),
            ("clusters", "Clusters need more places or better organization"),
        )

        plan = plan_refinement(reflection, next_iteration=2)

        assert plan.iteration == 2
        assert plan.agents_to_rerun == ["story_agent", "cluster_agent"]
        assert plan.instructions["story_agent"] == STORY_INSTRUCTION
        assert plan.focus_areas == [
            "Narrative needs more emotional connection",
            "Clusters need more places or better organization",
        ]
        assert plan.unmatched_gaps == []

    def test_instructions_merge_for_same_agent(self):
        """Two gaps steering one agent should merge their instructions."""
        reflection = _make_reflection(
            ("hidden_gems", "Need more hidden gems relevant to preferences"),
            ("dining", "No restaurant recommendations despite dining preference"),
        )

        plan = plan_refinement(reflection, next_iteration=2)

        assert plan.agents_to_rerun == ["gems_agent"]
        assert GEMS_INSTRUCTION in plan.instructions["gems_agent"]
        assert "hidden gems" in plan.instructions["gems_agent"]

    def test_unmatched_gaps_recorded(self):
        """Gaps that map nowhere should be recorded, not dropped silently."""
        reflection = _make_reflection(("other", "Sunsets are underrated"))

        plan = plan_refinement(reflection, next_iteration=2)

        assert plan.agents_to_rerun == []
        assert plan.unmatched_gaps == ["Sunsets are underrated"]

    def test_unavailable_agent_is_unmatched(self):
        """A gap mapping to an agent outside the registry should be unmatched."""
        reflection = _make_reflection(("story", "Narrative needs more emotional connection"))

        plan = plan_refinement(reflection, next_iteration=2, available_agents=["time_agent"])

        assert plan.agents_to_rerun == []
        assert plan.unmatched_gaps == ["Narrative needs more emotional connection"]

    def test_no_gaps_gives_empty_plan(self):
        """A reflection with no gaps should produce an empty plan."""
        plan = plan_refinement(_make_reflection(verdict="complete"), next_iteration=2)

        assert plan.agents_to_rerun == []
        assert plan.instructions == {}


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
