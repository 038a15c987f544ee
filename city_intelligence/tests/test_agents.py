"""
Tests for the concrete agents, the agent registry and cross-city insights.

External collaborators are replaced by small fakes: an LLM backend that
returns canned JSON, a places client that fabricates nearby results, and
the deterministic mock weather provider.
"""

import json
from datetime import date

import httpx
import pytest

from city_intelligence.agents.cluster_agent import ClusterAgent, haversine_m, prioritize_themes
from city_intelligence.agents.gems_agent import GemsAgent
from city_intelligence.agents.preference_agent import PreferenceAgent
from city_intelligence.agents.registry import (
    AGENT_SPECS,
    AgentRegistry,
    NullAgent,
    build_default_registry,
)
from city_intelligence.agents.schemas import AgentContext, TaskOutput
from city_intelligence.agents.story_agent import StoryAgent
from city_intelligence.agents.synthesis_agent import SynthesisAgent
from city_intelligence.agents.time_agent import TimeAgent
from city_intelligence.agents.weather_agent import WeatherAgent
from city_intelligence.memory.schemas import CityIntelligence
from city_intelligence.orchestration.insights import compute_cross_city_insights, pace_score
from city_intelligence.shared.contracts import CityInput, Coordinates
from city_intelligence.shared.errors import SchedulerError
from city_intelligence.shared.llm import LLMResponse
from city_intelligence.shared.services.weather import DayForecast, MockWeatherClient


# ============================================================================
# Test Fixtures
# ============================================================================


class FakeLLM:
    """LLM backend returning canned replies and recording prompts."""

    def __init__(self, reply=None, error=None):
        self.reply = reply
        self.error = error
        self.prompts = []

    async def complete(self, system_prompt, user_prompt, max_tokens=None):
        self.prompts.append(user_prompt)
        if self.error is not None:
            raise self.error
        content = self.reply if isinstance(self.reply, str) else json.dumps(self.reply)
        return LLMResponse(content=content, usage={"input_tokens": 10, "output_tokens": 20})


class FakePlaces:
    """Places client producing three nearby results per query."""

    def __init__(self, fail=False):
        self.fail = fail
        self.queries = []

    async def text_search(self, query, coordinates=None):
        self.queries.append(query)
        if self.fail:
            raise httpx.ConnectError("network down")
        offset = 0.01 * (len(self.queries) % 2)
        return [
            {
                "place_id": f"{query}-{i}",
                "name": f"{query.title()} {i}",
                "geometry": {"location": {"lat": 45.76 + offset + i * 0.001, "lng": 4.83 + i * 0.001}},
                "types": ["restaurant"] if "restaurant" in query else ["museum"],
                "rating": 4.4,
                "photos": [{"photo_reference": f"ref-{i}"}],
            }
            for i in range(3)
        ]

    def photo_url(self, photo_reference, max_width=400):
        return f"https://photos.example/{photo_reference}?w={max_width}"


class RainyWeather:
    """Weather client forecasting heavy rain every day."""

    async def get_forecast(self, lat, lng, days):
        return [DayForecast(f"2026-06-0{i + 1}", 63, 18.0, 12.0, 9.5) for i in range(days)]


def _make_city():
    return {"id": "lyon", "name": "Lyon", "country": "France", "coordinates": {"lat": 45.76, "lng": 4.83}}


def _make_input(**overrides):
    """Create an agent input with the standard base fields."""
    data = {
        "city": _make_city(),
        "nights": 2,
        "preferences": {"interests": ["food", "culture"]},
        "trip_context": {"transport_mode": "car"},
        "previous_outputs": {},
    }
    data.update(overrides)
    return data


def _make_context():
    return AgentContext(session_id="test-session", city_id="lyon")


async def _time_output():
    return await TimeAgent().execute(_make_input(), _make_context())


def _failed_output(agent_name, data=None):
    return TaskOutput(agent_name=agent_name, success=False, data=data or {}, error="boom")


# ============================================================================
# TestStoryAgent
# ============================================================================


class TestStoryAgent:
    """Tests for StoryAgent."""

    @pytest.mark.asyncio
    async def test_story_from_llm(self):
        """A well-formed reply should become the story slot."""
        llm = FakeLLM({
            "hook": "Silk, stone and two rivers",
            "narrative": "Lyon hides its silk history in covered traboules, and its bouchons serve hearty local cuisine.",
            "differentiators": ["Traboules", "Bouchons", "Two rivers"],
        })

        output = await StoryAgent(llm=llm).execute(_make_input(), _make_context())

        assert output.success is True
        assert output.data["story"]["hook"] == "Silk, stone and two rivers"
        assert len(output.data["story"]["differentiators"]) == 3
        assert output.confidence >= 80

    @pytest.mark.asyncio
    async def test_fallback_on_llm_failure(self):
        """An LLM failure should fall back to a template narrative."""
        llm = FakeLLM(error=RuntimeError("rate limited"))

        output = await StoryAgent(llm=llm).execute(_make_input(), _make_context())

        assert output.success is True
        assert output.confidence == 50
        assert "AI generation failed, using fallback narrative" in output.gaps
        assert "Lyon" in output.data["story"]["narrative"]

    @pytest.mark.asyncio
    async def test_unparseable_reply_falls_back(self):
        """A reply without JSON should also fall back."""
        output = await StoryAgent(llm=FakeLLM("Sorry, I cannot help")).execute(_make_input(), _make_context())

        assert output.confidence == 50

    @pytest.mark.asyncio
    async def test_refinement_instructions_reach_prompt(self):
        """Refinement feedback should be included in the prompt."""
        llm = FakeLLM({"hook": "Lyon after dark", "narrative": "x" * 90, "differentiators": ["a", "b", "c"]})
        agent = StoryAgent(llm=llm)
        previous = await agent.execute(_make_input(), _make_context())

        await agent.refine("Create more emotionally resonant narrative", previous, _make_input(), _make_context())

        assert "REFINEMENT REQUESTED" in llm.prompts[-1]
        assert "Create more emotionally resonant narrative" in llm.prompts[-1]


# ============================================================================
# TestPreferenceAgent
# ============================================================================


class TestPreferenceAgent:
    """Tests for PreferenceAgent."""

    @pytest.mark.asyncio
    async def test_score_is_bounded(self):
        """The match score should stay within 0-100."""
        output = await PreferenceAgent(llm=FakeLLM({})).execute(_make_input(), _make_context())

        assert output.success is True
        assert 0 <= output.data["match_score"]["score"] <= 100
        assert output.confidence == 85

    @pytest.mark.asyncio
    async def test_heuristic_fallback(self):
        """An LLM failure should fall back to heuristic scoring."""
        output = await PreferenceAgent(llm=FakeLLM(error=RuntimeError("boom"))).execute(
            _make_input(), _make_context()
        )

        assert output.success is True
        assert output.confidence == 50
        assert "match_score" in output.data


# ============================================================================
# TestGemsAgent
# ============================================================================


class TestGemsAgent:
    """Tests for GemsAgent."""

    @pytest.mark.asyncio
    async def test_gems_from_llm(self):
        """Valid gems should be kept and invalid ones dropped."""
        llm = FakeLLM({
            "hidden_gems": [
                {"name": "Le Kitchen Café", "type": "Cafe", "why": "Seasonal brunch", "dietary_options": ["vegan"]},
                {"name": "Mur des Canuts", "type": "art", "why": "Huge trompe-l'oeil"},
                {"name": "Jardin Rosa Mir", "type": "garden", "why": "Tiny shell garden"},
                {"type": "bar"},
            ]
        })

        output = await GemsAgent(llm=llm).execute(
            _make_input(preferences={"dietary": "vegan"}), _make_context()
        )

        gems = output.data["hidden_gems"]
        assert [g["name"] for g in gems] == ["Le Kitchen Café", "Mur des Canuts", "Jardin Rosa Mir"]
        assert gems[0]["type"] == "cafe"
        assert output.gaps == []

    @pytest.mark.asyncio
    async def test_dining_gap_reported(self):
        """No food gem for a dining preference should be reported as a gap."""
        llm = FakeLLM({"hidden_gems": [{"name": "Mur des Canuts", "type": "art", "why": "Mural"}]})

        output = await GemsAgent(llm=llm).execute(
            _make_input(preferences={"dining_style": "casual"}), _make_context()
        )

        assert "No restaurant recommendations despite dining preference" in output.gaps

    @pytest.mark.asyncio
    async def test_agent_messages_reach_prompt(self):
        """Suggestions from other agents should be passed to the model."""
        llm = FakeLLM({"hidden_gems": []})

        await GemsAgent(llm=llm).execute(
            _make_input(agent_messages=["Focus on finding alternatives for nightlife"]), _make_context()
        )

        assert "Focus on finding alternatives for nightlife" in llm.prompts[0]

    @pytest.mark.asyncio
    async def test_preference_warnings_only_from_successful_match(self):
        """Warnings from a failed preference run should not reach the prompt."""
        match = {"match_score": {"score": 60, "warnings": [{"preference": "nightlife"}]}}
        ok = TaskOutput(agent_name="preference_agent", success=True, data=match)
        llm = FakeLLM({"hidden_gems": []})
        agent = GemsAgent(llm=llm)

        await agent.execute(_make_input(previous_outputs={"preference_agent": ok}), _make_context())
        await agent.execute(
            _make_input(previous_outputs={"preference_agent": _failed_output("preference_agent", match)}),
            _make_context(),
        )

        assert "weak on: nightlife" in llm.prompts[0]
        assert "weak on" not in llm.prompts[1]

    @pytest.mark.asyncio
    async def test_fallback_on_llm_failure(self):
        """An LLM failure should fall back to generic picks."""
        output = await GemsAgent(llm=FakeLLM(error=RuntimeError("boom"))).execute(
            _make_input(), _make_context()
        )

        assert output.success is True
        assert output.confidence == 45


# ============================================================================
# TestClusterAgent
# ============================================================================


class TestClusterAgent:
    """Tests for ClusterAgent."""

    def test_themes_put_interests_first(self):
        """Interests should lead, with cultural and food as baselines."""
        assert prioritize_themes({"interests": ["nature"]}) == ["nature", "cultural", "food"]

    def test_haversine(self):
        """One degree of latitude should be roughly 111 km."""
        distance = haversine_m(Coordinates(lat=45.0, lng=4.0), Coordinates(lat=46.0, lng=4.0))
        assert 110_000 < distance < 112_500

    @pytest.mark.asyncio
    async def test_clusters_from_places(self):
        """Discovered places should be grouped into clusters."""
        places = FakePlaces()
        time_output = await _time_output()

        output = await ClusterAgent(places).execute(
            _make_input(previous_outputs={"time_agent": time_output}), _make_context()
        )

        clusters = output.data["clusters"]
        assert output.success is True
        assert clusters
        assert all(len(c["places"]) >= 1 for c in clusters)
        assert places.queries[0].endswith("in Lyon")
        assert output.confidence >= 60

    @pytest.mark.asyncio
    async def test_search_failures_fall_back(self):
        """Failed searches should yield day-based fallback clusters."""
        output = await ClusterAgent(FakePlaces(fail=True)).execute(_make_input(), _make_context())

        assert output.success is True
        assert output.confidence == 40
        assert "Insufficient place data found" in output.gaps
        assert [c["day_number"] for c in output.data["clusters"]] == [1, 2]

    @pytest.mark.asyncio
    async def test_failed_time_agent_still_clusters(self):
        """A failed time agent should not stop clustering."""
        output = await ClusterAgent(FakePlaces()).execute(
            _make_input(previous_outputs={"time_agent": _failed_output("time_agent")}), _make_context()
        )

        assert output.success is True
        assert output.data["clusters"]


# ============================================================================
# TestWeatherAndSynthesis
# ============================================================================


class TestWeatherAndSynthesis:
    """Tests for WeatherAgent and SynthesisAgent."""

    @pytest.mark.asyncio
    async def test_weather_covers_the_stay(self):
        """The forecast should cover every day of the stay."""
        agent = WeatherAgent(MockWeatherClient(start=date(2026, 6, 1)))

        output = await agent.execute(_make_input(), _make_context())

        assert output.success is True
        assert len(output.data["weather"]["days"]) == 3

    @pytest.mark.asyncio
    async def test_weather_without_coordinates(self):
        """A city without coordinates should get a low-confidence placeholder."""
        city = {"id": "lyon", "name": "Lyon", "country": "France"}

        output = await WeatherAgent(MockWeatherClient()).execute(_make_input(city=city), _make_context())

        assert output.confidence == 30

    @pytest.mark.asyncio
    async def test_weather_ignores_failed_clusters(self):
        """Clusters from a failed run should not be offered as indoor fallbacks."""
        clusters = {"clusters": [{"id": "c1", "theme": "cultural"}]}
        ok = TaskOutput(agent_name="cluster_agent", success=True, data=clusters)
        agent = WeatherAgent(RainyWeather())

        matched = await agent.execute(_make_input(previous_outputs={"cluster_agent": ok}), _make_context())
        unmatched = await agent.execute(
            _make_input(previous_outputs={"cluster_agent": _failed_output("cluster_agent", clusters)}),
            _make_context(),
        )

        assert matched.data["weather"]["indoor_clusters"] == ["c1"]
        assert unmatched.success is True
        assert unmatched.data["weather"]["indoor_clusters"] == []

    @pytest.mark.asyncio
    async def test_synthesis_skips_failed_upstream(self):
        """A failed upstream output should count as missing."""
        story = {"story": {"hook": "Lyon at dusk"}}

        output = await SynthesisAgent().execute(
            _make_input(previous_outputs={"story_agent": _failed_output("story_agent", story)}),
            _make_context(),
        )

        assert "Missing story" in output.data["synthesis"]["issues"]
        assert output.data["synthesis"]["headline"] is None

    @pytest.mark.asyncio
    async def test_synthesis_reports_missing_upstream(self):
        """Missing upstream slots should be listed as issues."""
        time_output = await _time_output()

        output = await SynthesisAgent().execute(
            _make_input(previous_outputs={"time_agent": time_output}), _make_context()
        )

        synthesis = output.data["synthesis"]
        assert synthesis["synthesized"] is True
        assert synthesis["coherent"] is False
        assert "Missing story" in synthesis["issues"]


# ============================================================================
# TestRegistry
# ============================================================================


class TestRegistry:
    """Tests for AgentRegistry and NullAgent."""

    def test_unregistered_names_resolve_to_null(self):
        """Declared agents without an implementation should be placeholders."""
        registry = AgentRegistry()

        assert isinstance(registry.get("story_agent"), NullAgent)
        assert registry.is_null("story_agent")

    def test_unknown_name_raises(self):
        """Resolving an undeclared name should raise."""
        with pytest.raises(SchedulerError):
            AgentRegistry().get("ghost_agent")

    def test_register_rejects_undeclared(self):
        """Registering an agent with an undeclared name should raise."""

        class _Stray(TimeAgent):
            name = "stray_agent"

        with pytest.raises(SchedulerError):
            AgentRegistry().register(_Stray())

    def test_register_rejects_mismatched_dependencies(self):
        """An implementation must declare the same dependencies."""

        class _Rewired(TimeAgent):
            depends_on = ("story_agent",)

        with pytest.raises(SchedulerError):
            AgentRegistry().register(_Rewired())

    def test_dependents_of_is_transitive(self):
        """Re-running time should pull in everything downstream."""
        closure = AgentRegistry().dependents_of(["time_agent"])

        assert closure == {"time_agent", "cluster_agent", "weather_agent", "synthesis_agent"}

    def test_default_registry_without_backends(self):
        """Without backends only the self-contained agents are real."""
        registry = build_default_registry()

        assert not registry.is_null("time_agent")
        assert not registry.is_null("synthesis_agent")
        assert registry.is_null("story_agent")
        assert registry.is_null("cluster_agent")

    def test_default_registry_with_backends(self):
        """Every agent should be real once all backends are available."""
        registry = build_default_registry(llm=FakeLLM({}), places=FakePlaces(), weather=MockWeatherClient())

        assert all(not registry.is_null(s.name) for s in AGENT_SPECS)

    @pytest.mark.asyncio
    async def test_null_agent_fills_declared_slots(self):
        """A placeholder should fill exactly its declared slots."""
        agent = AgentRegistry().get("gems_agent")

        output = await agent.execute(_make_input(), _make_context())

        assert output.success is True
        assert list(output.data) == ["hidden_gems"]


# ============================================================================
# TestCrossCityInsights
# ============================================================================


def _make_record(city_id, name, nights, quality=90, clusters=None, gems=None):
    """Create a finished city record."""
    record = CityIntelligence(
        city_id=city_id,
        city=CityInput(id=city_id, name=name),
        nights=nights,
        quality=quality,
        status="complete",
    )
    record.outputs = {"clusters": clusters or [], "hidden_gems": gems or []}
    return record


class TestCrossCityInsights:
    """Tests for compute_cross_city_insights."""

    def test_empty_route(self):
        """No records should yield empty insights."""
        insights = compute_cross_city_insights([])

        assert insights.themes == []
        assert insights.recommendations == []

    def test_route_recommendations(self):
        """Multi-city routes should get route and travel-time advice."""
        records = [
            _make_record("lyon", "Lyon", 2, clusters=[{"theme": "food"}]),
            _make_record("annecy", "Annecy", 1, clusters=[{"theme": "nature"}]),
        ]

        insights = compute_cross_city_insights(records)

        assert insights.themes == ["Local cuisine", "Natural beauty"]
        assert insights.recommendations[0].startswith("Your route through Lyon → Annecy")
        assert "Consider allowing for travel time between cities" in insights.recommendations
        assert any("Annecy" in r and "Short stops" in r for r in insights.recommendations)

    def test_variety_rewards_distinct_cities(self):
        """Cities with distinct themes should score more variety than identical ones."""
        same = [
            _make_record("a", "A", 2, clusters=[{"theme": "food"}]),
            _make_record("b", "B", 2, clusters=[{"theme": "food"}]),
        ]
        distinct = [
            _make_record("a", "A", 2, clusters=[{"theme": "food"}]),
            _make_record("b", "B", 2, clusters=[{"theme": "cultural"}]),
        ]

        assert (
            compute_cross_city_insights(distinct).variety_score
            > compute_cross_city_insights(same).variety_score
        )

    def test_low_quality_flagged(self):
        """Thin cities should be called out."""
        insights = compute_cross_city_insights([_make_record("lyon", "Lyon", 2, quality=40)])

        assert any("thin" in r for r in insights.recommendations)

    def test_pace_score(self):
        """One-night stops should reduce the pace score."""
        assert pace_score([2, 3]) == 100
        assert pace_score([1, 3]) == 80
        assert pace_score([]) == 0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
