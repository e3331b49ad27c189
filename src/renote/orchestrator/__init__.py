"""Durable job queue, dispatcher and rate limiting."""

from .config import (
    ConfigurationError,
    ConfigurationManager,
    DispatcherConfig,
    OrchestratorConfig,
    SchedulingConfig,
)
from .crash_recovery import CrashRecoveryReport, recover_interrupted_jobs
from .dispatcher import JobDispatcher, rate_limit_service
from .exceptions import (
    InvalidStateTransitionError,
    JobNotFoundError,
    PermanentJobError,
    StateTransitionRaceError,
)
from .handlers import JobHandlerRegistry
from .models import JobRecord, JobStatus, JobType, TriggerType
from .queue import JobQueue
from .rate_limiter import RateLimiter, ServiceLimit
from .retry_policy import RetryPolicy
from .state_machine import VALID_TRANSITIONS, StateTransition
from .status import collect_status_report

__all__ = [
    "ConfigurationError",
    "ConfigurationManager",
    "CrashRecoveryReport",
    "DispatcherConfig",
    "InvalidStateTransitionError",
    "JobDispatcher",
    "JobHandlerRegistry",
    "JobNotFoundError",
    "JobQueue",
    "JobRecord",
    "JobStatus",
    "JobType",
    "OrchestratorConfig",
    "PermanentJobError",
    "RateLimiter",
    "RetryPolicy",
    "SchedulingConfig",
    "ServiceLimit",
    "StateTransition",
    "StateTransitionRaceError",
    "TriggerType",
    "VALID_TRANSITIONS",
    "collect_status_report",
    "rate_limit_service",
    "recover_interrupted_jobs",
]
