"""
Unit Tests for Progress Sessions and the Registry
"""
import asyncio

import pytest

from docsearch.services.progress import (
    InvalidTransitionError,
    ProgressRegistry,
    ProgressSession,
    ProgressStep,
)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestProgressSession:

    def test_forward_transitions(self):
        session = ProgressSession(session_id="s1")

        session.advance(ProgressStep.VALIDATING, "Validating")
        event = session.advance(ProgressStep.EXTRACTING, "Extracting")

        assert session.step is ProgressStep.EXTRACTING
        assert event.progress == 20
        assert event.to_dict()["type"] == "progress"
        assert event.to_dict()["step"] == "extracting"

    def test_repeating_a_step_is_allowed(self):
        session = ProgressSession(session_id="s1")
        session.advance(ProgressStep.EXTRACTING, "page 1")

        session.advance(ProgressStep.EXTRACTING, "page 2")

        assert session.last_event.message == "page 2"

    def test_backwards_is_rejected(self):
        session = ProgressSession(session_id="s1")
        session.advance(ProgressStep.INDEXING, "Indexing")

        with pytest.raises(InvalidTransitionError):
            session.advance(ProgressStep.VALIDATING, "Validating")

    @pytest.mark.parametrize("terminal", [ProgressStep.COMPLETED, ProgressStep.ERROR])
    def test_terminal_states_are_absorbing(self, terminal):
        session = ProgressSession(session_id="s1")
        session.advance(terminal, "done")

        with pytest.raises(InvalidTransitionError):
            session.advance(ProgressStep.SAVING, "Saving")
        assert session.fail("late failure") is None
        assert session.step is terminal

    def test_error_is_reachable_from_any_live_step(self):
        for step in (ProgressStep.STARTING, ProgressStep.VALIDATING, ProgressStep.SAVING):
            session = ProgressSession(session_id="s1", step=step)

            event = session.fail("boom")

            assert event.step is ProgressStep.ERROR
            assert session.is_terminal

    def test_late_subscriber_gets_last_event(self):
        session = ProgressSession(session_id="s1")
        session.advance(ProgressStep.SAVING, "Saving")

        queue = session.subscribe()

        assert queue.get_nowait().step is ProgressStep.SAVING

    @pytest.mark.asyncio
    async def test_events_stop_at_terminal_state(self):
        session = ProgressSession(session_id="s1")

        async def produce():
            await asyncio.sleep(0)
            session.advance(ProgressStep.VALIDATING, "Validating")
            session.advance(ProgressStep.COMPLETED, "Done")

        producer = asyncio.create_task(produce())
        steps = [event.step async for event in session.events(idle_timeout=1.0)]
        await producer

        assert steps == [ProgressStep.VALIDATING, ProgressStep.COMPLETED]
        assert session.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_events_end_when_idle(self):
        session = ProgressSession(session_id="s1")

        steps = [event.step async for event in session.events(idle_timeout=0.01)]

        assert steps == []
        assert session.subscriber_count == 0


class TestProgressRegistry:

    def test_open_reuses_session(self):
        registry = ProgressRegistry()

        assert registry.open("a") is registry.open("a")
        assert len(registry) == 1

    def test_release_requires_terminal_state(self):
        registry = ProgressRegistry()
        session = registry.open("a")

        assert registry.release("a") is False
        session.advance(ProgressStep.COMPLETED, "Done")
        assert registry.release("a") is True
        assert registry.get("a") is None

    def test_release_waits_for_subscribers(self):
        registry = ProgressRegistry()
        session = registry.open("a")
        queue = session.subscribe()
        session.advance(ProgressStep.COMPLETED, "Done")

        assert registry.release("a") is False
        session.unsubscribe(queue)
        assert registry.release("a") is True

    def test_expired_sessions_are_purged(self):
        clock = FakeClock()
        registry = ProgressRegistry(ttl_seconds=10, clock=clock)
        registry.open("old")

        clock.now = 11
        registry.open("new")

        assert registry.get("old") is None
        assert registry.get("new") is not None
