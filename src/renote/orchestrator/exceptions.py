"""Custom exceptions for job lifecycle operations."""

from __future__ import annotations


class InvalidStateTransitionError(ValueError):
    """Raised when an invalid state transition is attempted.

    Example:
        Cancelling a job that already COMPLETED raises this exception
        since terminal states accept no further transitions.
    """


class StateTransitionRaceError(RuntimeError):
    """Raised when optimistic locking detects a concurrent state modification.

    The job store conditions every status write on the status that was
    read. If another writer (an operator cancelling through the CLI, for
    instance) changed the row in between, the write matches nothing and this
    exception is raised instead.
    """


class JobNotFoundError(KeyError):
    """Raised when a job doesn't exist in the job store."""


class PermanentJobError(RuntimeError):
    """Raised by handlers for failures that retrying cannot fix.

    Jobs failing with this error go straight to FAILED regardless of the
    remaining retry budget.
    """
