"""
Tests for the orchestrator: the per-city loop, event ordering, failure
isolation, the iteration bound and cancellation.

Runs use the default registry without backends, so only the time and
synthesis agents are real and everything else returns placeholder
output. Placeholder clusters carry no places, which keeps the clusters
category below the gap threshold and the loop iterating until its bound.
"""

import asyncio

import pytest

from city_intelligence.agents.registry import AgentRegistry
from city_intelligence.agents.story_agent import StoryAgent
from city_intelligence.agents.synthesis_agent import SynthesisAgent
from city_intelligence.agents.time_agent import TimeAgent
from city_intelligence.orchestration.config import get_config
from city_intelligence.orchestration.executor import parse_suggestion
from city_intelligence.orchestration.graph.router import route_after_execute, route_after_reflect
from city_intelligence.orchestration.orchestrator import CityIntelligenceOrchestrator
from city_intelligence.orchestration.schemas import TERMINAL_EVENTS, StartIntelligenceRequest
from city_intelligence.shared.errors import SchedulerError, SessionConflictError, SessionNotFoundError


# ============================================================================
# Test Fixtures
# ============================================================================


class _BrokenStoryAgent(StoryAgent):
    """Story agent whose every run fails."""

    async def run(self, input, context):
        raise RuntimeError("story backend down")


class _GatedStoryAgent(StoryAgent):
    """Story agent that holds its run open until released."""

    def __init__(self):
        super().__init__(llm=None)
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def run(self, input, context):
        self.started.set()
        await self.release.wait()
        return {"data": {"story": {"hook": "Held"}}, "confidence": 80}


class _CancellingStoryAgent(StoryAgent):
    """Story agent that cancels its own session mid-run."""

    def __init__(self):
        super().__init__(llm=None)
        self.orchestrator = None

    async def run(self, input, context):
        self.orchestrator.cancel(context.session_id)
        return {"data": {"story": {"hook": "Too late"}}, "confidence": 90}


def _make_request(**overrides):
    """Create a two-city request."""
    data = {
        "cities": [
            {"id": "lyon", "name": "Lyon", "country": "France", "coordinates": {"lat": 45.76, "lng": 4.83}},
            {"id": "annecy", "name": "Annecy", "country": "France", "coordinates": {"lat": 45.9, "lng": 6.13}},
        ],
        "nights": {"lyon": 2, "annecy": 3},
        "preferences": {"interests": ["food"]},
        "trip": {"origin": "Paris", "total_nights": 5},
        "session_id": "sess-test",
    }
    data.update(overrides)
    return StartIntelligenceRequest.model_validate(data)


def _make_orchestrator(registry=None, **config):
    """Create an orchestrator with a small iteration budget."""
    config.setdefault("max_iterations", 2)
    return CityIntelligenceOrchestrator(registry=registry, config=get_config(**config))


def _registry_with(*agents):
    """Time and synthesis plus the given agents; the rest are placeholders."""
    registry = AgentRegistry()
    registry.register(TimeAgent())
    registry.register(SynthesisAgent())
    for agent in agents:
        registry.register(agent)
    return registry


async def _run_collecting(orchestrator, request):
    """Run a request and return (result, events)."""
    events = []
    result = await orchestrator.run(request, on_event=events.append)
    return result, events


def _of_type(events, event_type, city_id=None):
    return [
        e for e in events
        if e.type == event_type and (city_id is None or e.city_id == city_id)
    ]


# ============================================================================
# TestRun
# ============================================================================


class TestRun:
    """Tests for a complete run."""

    @pytest.mark.asyncio
    async def test_cities_complete_in_route_order(self):
        """Cities should be processed sequentially in request order."""
        _, events = await _run_collecting(_make_orchestrator(), _make_request())

        completed = [e.city_id for e in _of_type(events, "city_complete")]
        assert completed == ["lyon", "annecy"]

    @pytest.mark.asyncio
    async def test_foundation_agents_report_start_and_completion(self):
        """Every foundation agent should start and complete for every city."""
        _, events = await _run_collecting(_make_orchestrator(), _make_request())

        for city_id in ("lyon", "annecy"):
            started = {e.agent for e in _of_type(events, "agent_started", city_id)}
            finished = {e.agent for e in _of_type(events, "agent_complete", city_id)}
            for agent in ("time_agent", "story_agent", "preference_agent"):
                assert agent in started
                assert agent in finished

    @pytest.mark.asyncio
    async def test_agent_events_bracket_each_other(self):
        """An agent's start event should precede its completion event."""
        _, events = await _run_collecting(_make_orchestrator(), _make_request())

        kinds = [(e.type, e.agent) for e in events if e.city_id == "lyon"]
        assert kinds.index(("agent_started", "synthesis_agent")) < kinds.index(
            ("agent_complete", "synthesis_agent")
        )
        assert kinds.index(("agent_complete", "time_agent")) < kinds.index(
            ("agent_started", "cluster_agent")
        )

    @pytest.mark.asyncio
    async def test_summary_and_single_terminal_event(self):
        """The run should end with all_complete, then exactly one done."""
        result, events = await _run_collecting(_make_orchestrator(), _make_request())

        all_complete = _of_type(events, "all_complete")
        assert len(all_complete) == 1
        assert all_complete[0].data["summary"]["total_cities"] == 2

        terminal = [e for e in events if e.type in TERMINAL_EVENTS]
        assert [e.type for e in terminal] == ["done"]
        assert events[-1].type == "done"
        assert events[0].type == "orchestrator_goal"

        assert set(result["cities"]) == {"lyon", "annecy"}
        assert result["summary"]["total_cities"] == 2

    @pytest.mark.asyncio
    async def test_city_complete_carries_intelligence(self):
        """city_complete should carry the serialized city record."""
        _, events = await _run_collecting(_make_orchestrator(), _make_request())

        lyon = _of_type(events, "city_complete", "lyon")[0].data["intelligence"]
        assert lyon["nights"] == 2
        assert lyon["time_blocks"]["blocks"]
        assert lyon["synthesis"]["synthesized"] is True

    @pytest.mark.asyncio
    async def test_status_after_run(self):
        """A finished session should report completion for every city."""
        orchestrator = _make_orchestrator()
        await orchestrator.run(_make_request())

        status = orchestrator.get_status("sess-test")

        assert status.exists is True
        assert status.phase == "complete"
        assert [c.city_id for c in status.per_city] == ["lyon", "annecy"]
        assert all(c.status == "complete" for c in status.per_city)
        assert status.overall_progress == 100

    @pytest.mark.asyncio
    async def test_insights_available_after_run(self):
        """Cross-city insights should be stored once every city is done."""
        orchestrator = _make_orchestrator()
        await orchestrator.run(_make_request())

        insights = orchestrator.get_cross_city_insights("sess-test")

        assert insights is not None
        assert insights.recommendations[0].startswith("Your route through Lyon → Annecy")

    @pytest.mark.asyncio
    async def test_parallel_cities(self):
        """Concurrent city loops should still complete every city."""
        orchestrator = _make_orchestrator(parallel_cities=True)

        result, events = await _run_collecting(orchestrator, _make_request())

        assert {e.city_id for e in _of_type(events, "city_complete")} == {"lyon", "annecy"}
        assert events[-1].type == "done"

    @pytest.mark.asyncio
    async def test_failing_observer_does_not_stop_run(self):
        """Observer exceptions should be logged, not propagated."""

        def on_event(event):
            raise ValueError("client went away")

        result = await _make_orchestrator().run(_make_request(), on_event=on_event)

        assert result["summary"]["total_cities"] == 2


# ============================================================================
# TestQualityLoop
# ============================================================================


class TestQualityLoop:
    """Tests for reflection, refinement and the iteration bound."""

    @pytest.mark.asyncio
    async def test_iterations_bounded(self):
        """A city that never reaches the threshold stops at max_iterations."""
        orchestrator = _make_orchestrator(max_iterations=3)

        result, events = await _run_collecting(orchestrator, _make_request())

        for city in result["cities"].values():
            assert city["iterations"] == 3
        assert len(_of_type(events, "reflection", "lyon")) == 3

    @pytest.mark.asyncio
    async def test_single_iteration(self):
        """max_iterations=1 should never refine."""
        _, events = await _run_collecting(_make_orchestrator(max_iterations=1), _make_request())

        assert _of_type(events, "refinement_started") == []
        assert len(_of_type(events, "reflection", "lyon")) == 1

    @pytest.mark.asyncio
    async def test_refinement_reruns_only_affected_agents(self):
        """Iteration two should re-run the steered agents and their dependents."""
        _, events = await _run_collecting(_make_orchestrator(), _make_request())

        refinement = _of_type(events, "refinement_started", "lyon")[0]
        assert set(refinement.data["agents_to_rerun"]) == {"cluster_agent", "gems_agent"}

        second = {
            e.agent for e in _of_type(events, "agent_started", "lyon") if e.data["iteration"] == 2
        }
        assert second == {"cluster_agent", "gems_agent", "weather_agent", "synthesis_agent"}

    @pytest.mark.asyncio
    async def test_steered_agents_refine(self):
        """Steered agents with a previous output should refine, others execute."""
        _, events = await _run_collecting(_make_orchestrator(), _make_request())

        second = {
            e.agent: e.data["refining"]
            for e in _of_type(events, "agent_started", "lyon")
            if e.data["iteration"] == 2
        }
        assert second["cluster_agent"] is True
        assert second["synthesis_agent"] is False

    @pytest.mark.asyncio
    async def test_failing_foundation_agent_is_isolated(self):
        """A failing agent should not stop its dependents or the run."""
        orchestrator = _make_orchestrator(registry=_registry_with(_BrokenStoryAgent()))

        result, events = await _run_collecting(orchestrator, _make_request())

        errors = _of_type(events, "agent_error", "lyon")
        assert errors and all(e.agent == "story_agent" for e in errors)
        assert "synthesis_agent" in {e.agent for e in _of_type(events, "agent_complete", "lyon")}

        reflection = _of_type(events, "reflection", "lyon")[0]
        assert "story" in {g["category"] for g in reflection.data["gaps"]}
        assert result["cities"]["lyon"]["iterations"] == 2
        assert events[-1].type == "done"

    @pytest.mark.asyncio
    async def test_critical_gaps_rerun_everything(self):
        """A critical verdict should re-plan every agent."""
        orchestrator = _make_orchestrator(registry=_registry_with(_BrokenStoryAgent()))

        _, events = await _run_collecting(orchestrator, _make_request())

        first = _of_type(events, "reflection", "lyon")[0]
        assert first.data["verdict"] == "critical_gaps"
        plans = _of_type(events, "orchestrator_plan", "lyon")
        assert plans[1].data["rerun"] is None
        assert "story_agent" in plans[1].data["steering"]

    @pytest.mark.asyncio
    async def test_scheduler_fault_emits_error_and_raises(self, monkeypatch):
        """Scheduler faults should end the run with an error event."""
        orchestrator = _make_orchestrator()

        def boom(*args, **kwargs):
            raise SchedulerError("layering failed")

        monkeypatch.setattr(orchestrator.scheduler, "create_plan", boom)
        events = []

        with pytest.raises(SchedulerError):
            await orchestrator.run(_make_request(), on_event=events.append)

        assert events[-1].type == "error"
        assert events[-1].data["error_type"] == "SchedulerError"
        assert _of_type(events, "done") == []


# ============================================================================
# TestCancellation
# ============================================================================


class TestCancellation:
    """Tests for cancel and the queries after it."""

    @pytest.mark.asyncio
    async def test_cancel_mid_run(self):
        """Cancelling mid-run should end the stream with cancelled and stop work."""
        agent = _CancellingStoryAgent()
        orchestrator = _make_orchestrator(registry=_registry_with(agent))
        agent.orchestrator = orchestrator

        result, events = await _run_collecting(orchestrator, _make_request())

        assert result is None
        assert events[-1].type == "cancelled"
        assert [e for e in events if e.type in TERMINAL_EVENTS] == [events[-1]]
        assert _of_type(events, "city_complete") == []

    @pytest.mark.asyncio
    async def test_status_after_cancel(self):
        """A cancelled session should report exists=False with a timestamp."""
        agent = _CancellingStoryAgent()
        orchestrator = _make_orchestrator(registry=_registry_with(agent))
        agent.orchestrator = orchestrator
        await orchestrator.run(_make_request())

        status = orchestrator.get_status("sess-test")

        assert status.exists is False
        assert status.cancelled_at is not None
        with pytest.raises(SessionNotFoundError):
            orchestrator.get_city_intelligence("sess-test", "lyon")

    @pytest.mark.asyncio
    async def test_cancel_is_idempotent(self):
        """A second cancel should report the original cancellation."""
        orchestrator = _make_orchestrator()
        await orchestrator.run(_make_request())

        first = orchestrator.cancel("sess-test")
        second = orchestrator.cancel("sess-test")

        assert first.cancelled is True
        assert second.cancelled is True
        assert second.message == "Session already cancelled"

    @pytest.mark.asyncio
    async def test_restart_while_running_is_rejected(self):
        """A running session id should not be reusable until the run ends."""
        agent = _GatedStoryAgent()
        orchestrator = _make_orchestrator(registry=_registry_with(agent), max_iterations=1)
        events = []
        first = asyncio.create_task(orchestrator.run(_make_request(), on_event=events.append))
        await agent.started.wait()

        with pytest.raises(SessionConflictError):
            await orchestrator.run(_make_request())

        agent.release.set()
        await first
        assert [e.type for e in events if e.type in TERMINAL_EVENTS] == ["done"]

    @pytest.mark.asyncio
    async def test_restart_after_cancel_is_rejected(self):
        """A cancelled run should wind down alone, with a single terminal event."""
        agent = _GatedStoryAgent()
        orchestrator = _make_orchestrator(registry=_registry_with(agent))
        events = []
        first = asyncio.create_task(orchestrator.run(_make_request(), on_event=events.append))
        await agent.started.wait()

        orchestrator.cancel("sess-test")
        with pytest.raises(SessionConflictError):
            await orchestrator.run(_make_request())
        agent.release.set()
        result = await first

        assert result is None
        assert [e.type for e in events if e.type in TERMINAL_EVENTS] == ["cancelled"]
        assert _of_type(events, "city_complete") == []
        assert not orchestrator.memory.has_session("sess-test")

    @pytest.mark.asyncio
    async def test_finished_session_can_be_rerun(self):
        """Once a run has ended its id can start a fresh run."""
        orchestrator = _make_orchestrator(max_iterations=1)
        await orchestrator.run(_make_request())

        result = await orchestrator.run(_make_request())

        assert result["summary"]["total_cities"] == 2

    def test_cancel_unknown_session(self):
        """Cancelling an unknown session should not claim success."""
        response = _make_orchestrator().cancel("missing")

        assert response.cancelled is False

    def test_status_unknown_session(self):
        """An unknown session should not exist and have no cancel time."""
        status = _make_orchestrator().get_status("missing")

        assert status.exists is False
        assert status.cancelled_at is None


# ============================================================================
# TestStream
# ============================================================================


class TestStream:
    """Tests for the streamed variant."""

    @pytest.mark.asyncio
    async def test_stream_starts_connected_and_ends_done(self):
        """A stream should open with connected and close with done."""
        orchestrator = _make_orchestrator(keepalive_interval_seconds=30)
        stream = await orchestrator.stream(_make_request())

        events = [e async for e in stream.events() if e is not None]

        assert stream.session_id == "sess-test"
        assert events[0].type == "connected"
        assert events[-1].type == "done"

    @pytest.mark.asyncio
    async def test_stream_cancelled_before_start(self):
        """Cancelling before the run task starts should still close the stream."""
        orchestrator = _make_orchestrator()
        stream = await orchestrator.stream(_make_request())
        task = orchestrator._tasks.get(stream.session_id)

        orchestrator.cancel(stream.session_id)
        events = [e async for e in stream.events() if e is not None]
        if task is not None:
            await task

        assert [e.type for e in events] == ["connected", "cancelled"]


# ============================================================================
# TestRouting
# ============================================================================


class TestRouting:
    """Tests for the loop routers."""

    def _state(self, **overrides):
        state = {
            "session_id": "s",
            "city_id": "lyon",
            "iteration": 1,
            "max_iterations": 3,
            "quality_threshold": 85,
            "quality": 60,
            "verdict": "needs_refinement",
            "cancelled": False,
        }
        state.update(overrides)
        return state

    def test_execute_routes_to_reflect(self):
        assert route_after_execute(self._state()) == "reflect"

    def test_execute_cancelled(self):
        assert route_after_execute(self._state(cancelled=True)) == "cancelled"

    def test_reflect_complete_on_quality(self):
        assert route_after_reflect(self._state(quality=90)) == "complete"

    def test_reflect_complete_on_verdict(self):
        assert route_after_reflect(self._state(verdict="complete")) == "complete"

    def test_reflect_exhausted(self):
        assert route_after_reflect(self._state(iteration=3)) == "complete"

    def test_reflect_refine(self):
        assert route_after_reflect(self._state()) == "refine"

    def test_reflect_critical_replans(self):
        assert route_after_reflect(self._state(verdict="critical_gaps")) == "plan"

    def test_reflect_cancelled(self):
        assert route_after_reflect(self._state(cancelled=True)) == "cancelled"


# ============================================================================
# TestSuggestions
# ============================================================================


class TestSuggestions:
    """Tests for parse_suggestion."""

    def test_addressed_suggestion(self):
        """A known agent prefix should split off."""
        assert parse_suggestion("gems_agent: Find vegan food", ["gems_agent"]) == (
            "gems_agent",
            "Find vegan food",
        )

    def test_unknown_or_empty_suggestions(self):
        """Unknown targets and empty text should be ignored."""
        assert parse_suggestion("ghost_agent: Hi", ["gems_agent"]) is None
        assert parse_suggestion("gems_agent:", ["gems_agent"]) is None
        assert parse_suggestion("No prefix here", ["gems_agent"]) is None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
