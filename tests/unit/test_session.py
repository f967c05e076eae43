"""Tests for execution session state."""

import pytest

from src.automation.exceptions import InvalidStateTransitionError
from src.automation.session import (
    ExecutionResult,
    ExecutionSession,
    ExecutionStatus,
    ResultStatus,
)


@pytest.fixture
def session():
    return ExecutionSession(
        id="session-1",
        profile_id="profile-1",
        urls=["https://a.example/", "https://b.example/", "https://c.example/", "https://d.example/"],
    )


class TestTransitions:
    """Tests for the session lifecycle."""

    def test_start(self, session):
        session.start()

        assert session.status == ExecutionStatus.RUNNING
        assert session.start_time is not None
        assert session.progress.total_urls == 4

    def test_pause_resume_complete(self, session):
        """Test the normal path through pause and resume."""
        session.start()
        session.pause()
        assert session.status == ExecutionStatus.PAUSED

        session.resume()
        session.complete()

        assert session.status == ExecutionStatus.COMPLETED
        assert session.end_time is not None
        assert session.is_completed()

    def test_pause_requires_running(self, session):
        with pytest.raises(InvalidStateTransitionError):
            session.pause()

    def test_resume_requires_paused(self, session):
        session.start()
        with pytest.raises(InvalidStateTransitionError):
            session.resume()

    def test_cancel_pending(self, session):
        """Test a session can be cancelled before it starts."""
        session.cancel()

        assert session.status == ExecutionStatus.CANCELLED
        assert session.is_completed()

    @pytest.mark.parametrize("finish", ["complete", "fail", "cancel"])
    def test_terminal_states_are_final(self, session, finish):
        """Test nothing leaves a terminal state."""
        session.start()
        getattr(session, finish)()

        for move in (session.start, session.pause, session.resume, session.complete, session.cancel):
            with pytest.raises(InvalidStateTransitionError):
                move()

    def test_cannot_complete_pending(self, session):
        with pytest.raises(InvalidStateTransitionError):
            session.complete()


class TestProgress:
    """Tests for results and progress counters."""

    def test_counters_and_percentage(self, session):
        """Test each status lands in its counter."""
        session.start()
        session.add_result(ExecutionResult(url=session.urls[0], status=ResultStatus.SUCCESS))
        session.add_result(ExecutionResult(url=session.urls[1], status=ResultStatus.PARTIAL))
        session.add_result(ExecutionResult(url=session.urls[2], status=ResultStatus.FAILURE))

        assert session.progress.completed_urls == 2
        assert session.progress.failed_urls == 1
        assert session.progress.percentage == 75

        session.add_result(ExecutionResult(url=session.urls[3], status=ResultStatus.SKIPPED))

        assert session.progress.skipped_urls == 1
        assert session.progress.percentage == 100

    def test_success_rate_counts_full_successes(self, session):
        session.start()
        session.add_result(ExecutionResult(url="a", status=ResultStatus.SUCCESS))
        session.add_result(ExecutionResult(url="b", status=ResultStatus.PARTIAL))

        assert session.get_success_rate() == 50

    def test_empty_session(self, session):
        assert session.get_success_rate() == 0
        assert session.get_duration().total_seconds() == 0
