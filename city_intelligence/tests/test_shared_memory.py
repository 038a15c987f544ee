"""
Tests for the session state store.
"""

import asyncio
from datetime import timedelta

import pytest

from city_intelligence.agents.schemas import TaskOutput
from city_intelligence.memory import SharedMemory
from city_intelligence.memory.schemas import Reflection, utc_now
from city_intelligence.shared.contracts import OUTPUT_SLOTS, CityInput, TripContext
from city_intelligence.shared.errors import CityNotFoundError, SessionNotFoundError, StateStoreError


# ============================================================================
# Test Fixtures
# ============================================================================


def _make_city(city_id="lyon", name="Lyon"):
    """Create a city input."""
    return CityInput(id=city_id, name=name, country="France", coordinates={"lat": 45.76, "lng": 4.84})


def _make_memory_with_city():
    """Create a store holding one session with one initialized city."""
    memory = SharedMemory()
    session_id = memory.create_session(user_id="user-1", session_id="sess-1")
    memory.initialize_city_intelligence(session_id, _make_city(), nights=2)
    return memory, session_id


# ============================================================================
# TestSessions
# ============================================================================


class TestSessions:
    """Tests for session lifecycle."""

    def test_create_and_get(self):
        """A created session should be retrievable."""
        memory = SharedMemory()
        session_id = memory.create_session(user_id="u")

        assert memory.has_session(session_id)
        assert memory.get_session(session_id).user_id == "u"

    def test_unknown_session_raises(self):
        """Reading an unknown session should raise SessionNotFoundError."""
        memory = SharedMemory()

        with pytest.raises(SessionNotFoundError):
            memory.get_session("missing")

    def test_delete_session(self):
        """Deleting should remove the session and report whether it existed."""
        memory, session_id = _make_memory_with_city()

        assert memory.delete_session(session_id) is True
        assert memory.delete_session(session_id) is False
        assert not memory.has_session(session_id)

    def test_cleanup_stale_sessions(self):
        """Sessions idle past the retention window should be swept."""
        memory = SharedMemory(session_timeout_seconds=60)
        old = memory.create_session(session_id="old")
        fresh = memory.create_session(session_id="fresh")
        memory.get_session(old).last_activity_at = utc_now() - timedelta(minutes=5)

        removed = memory.cleanup_stale_sessions()

        assert removed == [old]
        assert memory.has_session(fresh)

    def test_preferences_explicit_wins(self):
        """Explicit preferences should override inferred ones."""
        memory = SharedMemory()
        session_id = memory.create_session()
        memory.update_inferred_preferences(session_id, {"pace": "packed", "budget": "mid"})
        memory.set_explicit_preferences(session_id, {"pace": "relaxed"})

        assert memory.get_preferences(session_id) == {"pace": "relaxed", "budget": "mid"}

    def test_trip_context_round_trip(self):
        """Stored trip context should be returned unchanged."""
        memory = SharedMemory()
        session_id = memory.create_session()
        memory.set_trip_context(session_id, TripContext(origin="Paris", total_nights=5))

        assert memory.get_trip_context(session_id).origin == "Paris"


# ============================================================================
# TestCityIntelligence
# ============================================================================


class TestCityIntelligence:
    """Tests for city records."""

    def test_initialize_creates_pending_record(self):
        """A new city record should start pending with no outputs."""
        memory, session_id = _make_memory_with_city()
        record = memory.get_city_intelligence(session_id, "lyon")

        assert record.status == "pending"
        assert record.quality == 0
        assert record.outputs == {}

    def test_unknown_city_raises(self):
        """Reading an unknown city should raise CityNotFoundError."""
        memory, session_id = _make_memory_with_city()

        with pytest.raises(CityNotFoundError):
            memory.get_city_intelligence(session_id, "nice")

    def test_quality_is_clamped(self):
        """Quality should be clamped to 0-100."""
        memory, session_id = _make_memory_with_city()
        memory.update_city_quality(session_id, "lyon", 140, iterations=1)

        assert memory.get_city_intelligence(session_id, "lyon").quality == 100

    def test_reflections_are_appended(self):
        """Reflections should accumulate in order on the city and orchestrator."""
        memory, session_id = _make_memory_with_city()
        for i in (1, 2):
            memory.add_reflection(
                session_id, "lyon", Reflection(iteration=i, quality_score=60 + i, verdict="needs_refinement")
            )

        record = memory.get_city_intelligence(session_id, "lyon")
        assert [r.iteration for r in record.reflections] == [1, 2]
        assert len(memory.get_orchestrator_state(session_id)["reflections"]) == 2

    def test_serialize_includes_every_slot(self):
        """Serialized intelligence should expose every output slot."""
        memory, session_id = _make_memory_with_city()
        data = memory.get_city_intelligence(session_id, "lyon").serialize()

        for slot in ("story", "time_blocks", "clusters", "match_score", "hidden_gems", "synthesis"):
            assert slot in data
        assert data["city"]["name"] == "Lyon"


# ============================================================================
# TestTaskStates
# ============================================================================


class TestTaskStates:
    """Tests for task state tracking and outputs."""

    def test_progress_is_monotonic(self):
        """Progress should never go backwards within an execution."""
        memory, session_id = _make_memory_with_city()
        memory.initialize_task_state(session_id, "lyon", "story_agent")
        memory.update_task_state(session_id, "lyon", "story_agent", status="running", progress=60)
        state = memory.update_task_state(session_id, "lyon", "story_agent", progress=30)

        assert state.progress == 60
        assert state.started_at is not None

    def test_progress_none_is_ignored(self):
        """An explicit progress=None should leave the stored value alone."""
        memory, session_id = _make_memory_with_city()
        memory.initialize_task_state(session_id, "lyon", "story_agent")
        memory.update_task_state(session_id, "lyon", "story_agent", progress=40)
        state = memory.update_task_state(session_id, "lyon", "story_agent", status="running", progress=None)

        assert state.progress == 40
        assert state.status == "running"

    def test_reinitialize_resets_progress(self):
        """A new execution should start from zero again."""
        memory, session_id = _make_memory_with_city()
        memory.initialize_task_state(session_id, "lyon", "story_agent")
        memory.update_task_state(session_id, "lyon", "story_agent", progress=100)
        state = memory.initialize_task_state(session_id, "lyon", "story_agent")

        assert state.progress == 0
        assert state.status == "pending"

    def test_finish_stamps_time(self):
        """Completing a task should stamp finished_at."""
        memory, session_id = _make_memory_with_city()
        memory.initialize_task_state(session_id, "lyon", "story_agent")
        state = memory.update_task_state(session_id, "lyon", "story_agent", status="completed")

        assert state.finished_at is not None

    def test_unknown_field_rejected(self):
        """Updating an unknown field should raise StateStoreError."""
        memory, session_id = _make_memory_with_city()
        memory.initialize_task_state(session_id, "lyon", "story_agent")

        with pytest.raises(StateStoreError):
            memory.update_task_state(session_id, "lyon", "story_agent", colour="blue")

    def test_uninitialized_task_rejected(self):
        """Updating a task that was never initialized should raise."""
        memory, session_id = _make_memory_with_city()

        with pytest.raises(CityNotFoundError):
            memory.update_task_state(session_id, "lyon", "gems_agent", progress=10)

    def test_set_task_output_writes_declared_slots(self):
        """Successful outputs should land in their declared slots only."""
        memory, session_id = _make_memory_with_city()
        output = TaskOutput(
            agent_name="story_agent",
            success=True,
            data={"story": {"hook": "Silk and stone"}, "extra": 1},
            confidence=80,
        )

        written = memory.set_task_output(session_id, "lyon", "story_agent", output, ["story"])

        record = memory.get_city_intelligence(session_id, "lyon")
        assert written == ["story"]
        assert record.outputs == {"story": {"hook": "Silk and stone"}}

    def test_failed_output_keeps_previous_value(self):
        """A failed output should not overwrite the last accepted value."""
        memory, session_id = _make_memory_with_city()
        good = TaskOutput(agent_name="story_agent", success=True, data={"story": {"hook": "A"}})
        bad = TaskOutput(agent_name="story_agent", success=False, error="boom")

        memory.set_task_output(session_id, "lyon", "story_agent", good, ["story"])
        written = memory.set_task_output(session_id, "lyon", "story_agent", bad, ["story"])

        assert written == []
        assert memory.get_city_intelligence(session_id, "lyon").outputs["story"] == {"hook": "A"}

    def test_overall_progress(self):
        """Overall progress should average every task, completed counting as 100."""
        memory, session_id = _make_memory_with_city()
        memory.initialize_task_state(session_id, "lyon", "story_agent")
        memory.initialize_task_state(session_id, "lyon", "time_agent")
        memory.update_task_state(session_id, "lyon", "story_agent", status="completed")

        assert memory.calculate_overall_progress(session_id) == 50

    @pytest.mark.asyncio
    async def test_concurrent_writes_to_one_city_are_not_lost(self):
        """Many simultaneous state and slot writes on one city should all land."""
        memory, session_id = _make_memory_with_city()
        agents = [f"{slot}_writer" for slot in OUTPUT_SLOTS]
        for agent in agents:
            memory.initialize_task_state(session_id, "lyon", agent)

        def write(agent, slot):
            for progress in range(1, 101):
                memory.update_task_state(session_id, "lyon", agent, progress=progress)
            output = TaskOutput(agent_name=agent, success=True, data={slot: {"by": agent}})
            memory.set_task_output(session_id, "lyon", agent, output, [slot])
            memory.update_task_state(session_id, "lyon", agent, status="completed", output=output)

        await asyncio.gather(
            *(asyncio.to_thread(write, agent, slot) for agent, slot in zip(agents, OUTPUT_SLOTS))
        )

        record = memory.get_city_intelligence(session_id, "lyon")
        assert record.outputs == {slot: {"by": f"{slot}_writer"} for slot in OUTPUT_SLOTS}
        states = memory.get_all_task_states(session_id, "lyon")
        assert all(states[agent].status == "completed" for agent in agents)
        assert all(states[agent].progress == 100 for agent in agents)
        assert memory.calculate_overall_progress(session_id) == 100


# ============================================================================
# TestAgentMessages
# ============================================================================


class TestAgentMessages:
    """Tests for inter-agent messages."""

    def test_messages_filtered_by_recipient_and_city(self):
        """Agents should only see messages addressed to them for their city."""
        memory, session_id = _make_memory_with_city()
        memory.send_agent_message(session_id, "preference_agent", "gems_agent", "Find vegan food", city_id="lyon")
        memory.send_agent_message(session_id, "preference_agent", "gems_agent", "Other city", city_id="nice")
        memory.send_agent_message(session_id, "preference_agent", "story_agent", "Not for gems", city_id="lyon")

        messages = memory.get_messages_for_agent(session_id, "gems_agent", "lyon")

        assert [m.content for m in messages] == ["Find vegan food"]

    def test_messages_are_bounded(self):
        """Only the most recent messages should be kept."""
        memory = SharedMemory(max_agent_messages=3)
        session_id = memory.create_session()
        for i in range(5):
            memory.send_agent_message(session_id, "a", "b", f"m{i}")

        contents = [m.content for m in memory.get_messages_for_agent(session_id, "b")]
        assert contents == ["m2", "m3", "m4"]


# ============================================================================
# TestOrchestratorRecord
# ============================================================================


class TestOrchestratorRecord:
    """Tests for the orchestrator record and session snapshots."""

    def test_phase_changes_are_logged(self):
        """Every phase change should append an execution log entry."""
        memory, session_id = _make_memory_with_city()

        memory.set_orchestrator_phase(session_id, "planning", city_id="lyon")
        memory.set_orchestrator_phase(session_id, "executing")

        state = memory.get_orchestrator_state(session_id)
        assert state["current_phase"] == "executing"
        assert state["current_city_id"] == "lyon"
        assert [e["event"] for e in state["execution_log"]] == ["phase:planning", "phase:executing"]

    def test_execution_log_is_bounded(self):
        """Only the most recent log entries should be kept."""
        memory = SharedMemory(max_execution_log=2)
        session_id = memory.create_session()
        for i in range(4):
            memory.add_execution_log(session_id, f"step-{i}")

        log = memory.get_orchestrator_state(session_id)["execution_log"]
        assert [e["event"] for e in log] == ["step-2", "step-3"]

    def test_snapshot(self):
        """The snapshot should summarise cities and progress."""
        memory, session_id = _make_memory_with_city()
        memory.update_city_quality(session_id, "lyon", 72, iterations=1)

        snapshot = memory.get_session_snapshot(session_id)

        assert snapshot["session_id"] == "sess-1"
        assert snapshot["cities"]["lyon"]["quality"] == 72
        assert snapshot["overall_progress"] == 0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
