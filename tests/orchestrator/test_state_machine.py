"""Tests for state machine validation and transitions."""

import pytest

from renote.orchestrator.exceptions import InvalidStateTransitionError
from renote.orchestrator.models import JobStatus, TERMINAL_STATUSES
from renote.orchestrator.state_machine import (
    VALID_TRANSITIONS,
    StateTransition,
    validate_transition,
)


def test_valid_transition_created_to_active():
    """Test the dispatcher pick-up transition."""
    transition = validate_transition("job-1", JobStatus.CREATED, JobStatus.ACTIVE)

    assert transition.is_valid()
    assert transition.from_status == JobStatus.CREATED
    assert transition.to_status == JobStatus.ACTIVE


@pytest.mark.parametrize(
    "to_status",
    [JobStatus.COMPLETED, JobStatus.RETRY, JobStatus.FAILED, JobStatus.CANCELLED],
)
def test_active_jobs_can_reach_every_outcome(to_status):
    """Test that a running handler can end in any outcome."""
    assert validate_transition("job-1", JobStatus.ACTIVE, to_status).is_valid()


def test_retry_jobs_become_active_again():
    """Test that retries are picked up like new jobs."""
    assert validate_transition("job-1", JobStatus.RETRY, JobStatus.ACTIVE).is_valid()


@pytest.mark.parametrize("from_status", sorted(TERMINAL_STATUSES, key=lambda s: s.value))
def test_terminal_states_accept_no_transitions(from_status):
    """Test that terminal jobs stay terminal."""
    assert VALID_TRANSITIONS[from_status] == frozenset()

    with pytest.raises(InvalidStateTransitionError, match="terminal"):
        validate_transition("job-1", from_status, JobStatus.CREATED)


def test_created_cannot_skip_to_completed():
    """Test that a job must run before it completes."""
    with pytest.raises(InvalidStateTransitionError, match="created → completed"):
        validate_transition("job-1", JobStatus.CREATED, JobStatus.COMPLETED)


def test_nothing_returns_to_created():
    """Test that no state leads back to CREATED."""
    for targets in VALID_TRANSITIONS.values():
        assert JobStatus.CREATED not in targets


def test_state_transition_records_reason():
    """Test transition metadata."""
    transition = StateTransition(
        job_id="job-1",
        from_status=JobStatus.ACTIVE,
        to_status=JobStatus.CANCELLED,
        reason="operator request",
    )

    assert transition.is_valid()
    assert transition.reason == "operator request"
    assert transition.timestamp.tzinfo is not None
