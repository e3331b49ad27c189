"""Priority job dispatcher.

The dispatcher owns the durable job store, the handler table and the rate
limiter. A single asyncio task polls the store for due jobs and runs them
one at a time, most urgent first. Its poll delay adapts to the load: short
while there is work, growing while the queue stays empty, and growing
faster when the store cannot be read. User-triggered enqueues wake the loop
for an immediate pass.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from .config import DispatcherConfig
from .crash_recovery import recover_interrupted_jobs
from .exceptions import (
    InvalidStateTransitionError,
    JobNotFoundError,
    StateTransitionRaceError,
)
from .handlers import JobHandlerRegistry
from .models import (
    DEFAULT_MAX_RETRIES,
    MAX_PRIORITY,
    MIN_PRIORITY,
    PENDING_STATUSES,
    JobRecord,
    JobStatus,
    JobType,
    TriggerType,
    default_priority,
    entity_reference,
    utc_now,
)
from .queue import JobQueue
from .rate_limiter import (
    BULK_SERVICE,
    GENERAL_SERVICE,
    INFERENCE_SERVICE,
    WORKSPACE_SERVICE,
    RateLimiter,
)
from .retry_policy import RetryPolicy, classify_failure

logger = logging.getLogger(__name__)

CLEAR_PENDING_MESSAGE = "Job cancelled due to queue clear operation"


def rate_limit_service(job: JobRecord) -> str:
    """Name of the rate limiter service that gates ``job``."""
    if job.job_type == JobType.GENERATE_DERIVED_CONTENT:
        return INFERENCE_SERVICE
    if job.job_type == JobType.SYNC_ENTITY:
        return WORKSPACE_SERVICE
    if job.trigger_type == TriggerType.BULK:
        return BULK_SERVICE
    return GENERAL_SERVICE


class JobDispatcher:
    """Durable priority queue with an adaptive polling loop."""

    def __init__(
        self,
        queue: JobQueue,
        handlers: JobHandlerRegistry,
        rate_limiter: Optional[RateLimiter] = None,
        *,
        config: Optional[DispatcherConfig] = None,
        retry_policy: Optional[RetryPolicy] = None,
        default_max_retries: int = DEFAULT_MAX_RETRIES,
        recover_on_start: bool = True,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._queue = queue
        self._handlers = handlers
        self._rate_limiter = rate_limiter or RateLimiter()
        self._config = config or DispatcherConfig()
        self._retry_policy = retry_policy or RetryPolicy()
        self._default_max_retries = default_max_retries
        self._recover_on_start = recover_on_start
        self._clock = clock

        self._delay = self._config.initial_delay_seconds
        self._had_work = False
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._wake = asyncio.Event()
        self._cycle_lock = asyncio.Lock()

    @property
    def queue(self) -> JobQueue:
        return self._queue

    @property
    def poll_delay(self) -> float:
        """Seconds the loop waits before its next cycle."""
        return self._delay

    @property
    def running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Queue operations

    def enqueue(
        self,
        job_type: Union[JobType, str],
        payload: Optional[Dict[str, Any]] = None,
        *,
        priority: Optional[int] = None,
        trigger_type: Optional[Union[TriggerType, str]] = None,
        max_retries: Optional[int] = None,
        owner_id: Optional[str] = None,
    ) -> str:
        """Persist a new job and return its id.

        Without an explicit priority the trigger default applies. An
        unspecified trigger counts as ``user`` and wakes the poll loop.

        Raises:
            ValueError: For an unknown job type, trigger or out-of-range priority
        """
        job_type = JobType(job_type)
        trigger = TriggerType(trigger_type) if trigger_type is not None else TriggerType.USER
        if priority is None:
            priority = default_priority(trigger)
        elif not MIN_PRIORITY <= priority <= MAX_PRIORITY:
            raise ValueError(
                f"Priority must be between {MIN_PRIORITY} and {MAX_PRIORITY}, got {priority}"
            )
        if max_retries is None:
            max_retries = self._default_max_retries
        elif max_retries < 0:
            raise ValueError("max_retries cannot be negative")

        payload = dict(payload or {})
        entity_id, entity_type = entity_reference(payload)
        now = self._clock()
        record = JobRecord(
            job_id=str(uuid.uuid4()),
            job_type=job_type,
            status=JobStatus.CREATED,
            priority=priority,
            trigger_type=trigger,
            payload=payload,
            owner_id=owner_id or payload.get("owner_id"),
            entity_id=entity_id,
            entity_type=entity_type,
            max_retries=max_retries,
            created_at=now,
            updated_at=now,
        )
        self._queue.create(record)
        logger.info(
            "Enqueued job",
            extra={
                "job_id": record.job_id,
                "job_type": job_type.value,
                "trigger_type": trigger.value,
                "priority": priority,
                "entity_id": entity_id,
            },
        )

        if trigger == TriggerType.USER:
            self._wake.set()
        return record.job_id

    def get_status(self, job_id: str) -> JobRecord:
        record = self._queue.get(job_id)
        if record is None:
            raise JobNotFoundError(job_id)
        return record

    def cancel(self, job_id: str, reason: Optional[str] = None) -> JobRecord:
        """Cancel a created, retrying or active job.

        An active handler is not interrupted; its outcome is discarded.

        Raises:
            JobNotFoundError: If the job does not exist
            InvalidStateTransitionError: If the job is already terminal
        """
        self.get_status(job_id)
        record = self._queue.transition(job_id, JobStatus.CANCELLED, error=reason)
        logger.info("Cancelled job", extra={"job_id": job_id, "reason": reason})
        return record

    def clear_pending(
        self,
        owner_id: Optional[str] = None,
        entity_ids: Optional[Sequence[str]] = None,
    ) -> int:
        """Cancel every created or retrying job, optionally filtered.

        Returns:
            Number of jobs cancelled
        """
        pending = self._queue.query(
            statuses=PENDING_STATUSES,
            owner_id=owner_id,
            entity_ids=entity_ids,
        )
        cleared = 0
        for job in pending:
            try:
                self._queue.transition(job.job_id, JobStatus.CANCELLED, error=CLEAR_PENDING_MESSAGE)
            except (StateTransitionRaceError, InvalidStateTransitionError):
                # Picked up by the loop between the query and the update.
                continue
            cleared += 1
        logger.info(
            "Cleared pending jobs",
            extra={"owner_id": owner_id, "cleared": cleared},
        )
        return cleared

    def list_jobs(
        self,
        *,
        owner_id: Optional[str] = None,
        job_type: Optional[JobType] = None,
        entity_ids: Optional[Sequence[str]] = None,
        statuses: Optional[Sequence[JobStatus]] = None,
        limit: Optional[int] = 50,
        offset: int = 0,
    ) -> List[JobRecord]:
        """Job history, newest first."""
        return self._queue.query(
            statuses=statuses,
            owner_id=owner_id,
            entity_ids=entity_ids,
            job_type=job_type,
            newest_first=True,
            limit=limit,
            offset=offset,
        )

    def counts(self, owner_id: Optional[str] = None) -> Dict[str, int]:
        return self._queue.count_by_status(owner_id)

    # ------------------------------------------------------------------
    # Lifecycle

    def start(self) -> None:
        """Start the poll loop on the running event loop."""
        if self._running:
            return
        loop = asyncio.get_running_loop()
        self._handlers.freeze()
        if self._recover_on_start:
            recover_interrupted_jobs(self._queue, now=self._clock())
        self._running = True
        self._task = loop.create_task(self._poll_loop())
        logger.info("Job dispatcher started", extra={"batch_size": self._config.batch_size})

    async def stop(self, timeout: Optional[float] = 30.0) -> None:
        """Stop after the current cycle finishes."""
        if not self._running:
            return
        self._running = False
        self._wake.set()
        task, self._task = self._task, None
        if task is not None:
            try:
                await asyncio.wait_for(task, timeout)
            except asyncio.TimeoutError:
                logger.warning("Dispatcher cycle did not finish before stop timeout")
            except asyncio.CancelledError:
                pass
        logger.info("Job dispatcher stopped")

    def wake(self) -> None:
        """Request an immediate poll cycle."""
        self._wake.set()

    async def _poll_loop(self) -> None:
        while self._running:
            try:
                await self.run_cycle()
            except Exception:  # noqa: BLE001
                self._back_off_after_error()
                logger.exception(
                    "Dispatcher cycle failed",
                    extra={"next_poll_s": round(self._delay, 2)},
                )
            if not self._running:
                break
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self._delay)
            except asyncio.TimeoutError:
                pass
            self._wake.clear()

    # ------------------------------------------------------------------
    # Execution

    async def run_cycle(self) -> int:
        """Run one polling pass and return the number of jobs processed."""
        async with self._cycle_lock:
            try:
                jobs = self._queue.fetch_due(self._clock(), self._config.batch_size)
            except Exception:  # noqa: BLE001
                self._back_off_after_error()
                logger.exception(
                    "Failed to fetch due jobs",
                    extra={"next_poll_s": round(self._delay, 2)},
                )
                return 0

            if not jobs:
                if self._had_work:
                    self._delay = self._config.drained_delay_seconds
                    self._had_work = False
                else:
                    self._delay = min(
                        self._delay * self._config.idle_growth_factor,
                        self._config.max_delay_seconds,
                    )
                logger.debug("No due jobs", extra={"next_poll_s": round(self._delay, 2)})
                return 0

            self._had_work = True
            previous_delay = self._delay
            failed = 0
            for job in jobs:
                try:
                    await self.process_job(job)
                except Exception as exc:  # noqa: BLE001
                    failed += 1
                    logger.exception(
                        "Failed to record job state",
                        extra={"job_id": job.job_id, "job_type": job.job_type_value},
                    )
                    self._requeue_after_store_error(job.job_id, exc)

            if failed:
                self._delay = previous_delay
                self._back_off_after_error()
            else:
                self._delay = self._config.busy_delay_seconds
            return len(jobs)

    def _back_off_after_error(self) -> None:
        self._delay = min(
            self._delay * self._config.error_growth_factor,
            self._config.max_delay_seconds,
        )

    def _requeue_after_store_error(self, job_id: str, exc: Exception) -> None:
        """Put a job stranded in ``active`` back in line for another attempt."""
        now = self._clock()
        try:
            job = self._queue.get(job_id)
            if job is None or job.status != JobStatus.ACTIVE:
                return
            self._queue.transition(
                job_id,
                JobStatus.RETRY,
                next_retry_at=now,
                error=str(exc) or exc.__class__.__name__,
                updated_at=now,
            )
        except Exception:  # noqa: BLE001
            # Left active; recovered on the next start.
            logger.warning(
                "Could not requeue job after store error",
                exc_info=True,
                extra={"job_id": job_id},
            )

    async def process_job(self, job: JobRecord) -> JobRecord:
        """Execute one due job and record its outcome."""
        handler = self._handlers.resolve(job.job_type)
        if handler is None:
            logger.error(
                "No handler registered for job type",
                extra={"job_id": job.job_id, "job_type": job.job_type_value},
            )
            return self._record_outcome(
                job.job_id,
                JobStatus.FAILED,
                error=f"No handler registered for job type {job.job_type_value}",
            )

        service = rate_limit_service(job)
        await self._rate_limiter.wait_for_availability(service)

        started_at = self._clock()
        try:
            active = self._queue.transition(
                job.job_id,
                JobStatus.ACTIVE,
                started_at=started_at,
                updated_at=started_at,
            )
        except (StateTransitionRaceError, InvalidStateTransitionError):
            logger.info("Job left the queue before it started", extra={"job_id": job.job_id})
            return self.get_status(job.job_id)
        self._rate_limiter.record_use(service)

        logger.info(
            "Processing job",
            extra={
                "job_id": job.job_id,
                "job_type": job.job_type_value,
                "trigger_type": job.trigger_type.value,
                "priority": job.priority,
                "service": service,
            },
        )
        try:
            result = handler(dict(active.payload))
            if inspect.isawaitable(result):
                result = await result
        except Exception as exc:  # noqa: BLE001
            return self._handle_failure(active, exc)

        completed_at = self._clock()
        duration = (completed_at - started_at).total_seconds()
        logger.info(
            "Job completed",
            extra={"job_id": job.job_id, "duration_s": round(duration, 3)},
        )
        return self._record_outcome(
            job.job_id,
            JobStatus.COMPLETED,
            result=result,
            error=None,
            duration_seconds=duration,
            completed_at=completed_at,
            updated_at=completed_at,
        )

    def _handle_failure(self, job: JobRecord, exc: Exception) -> JobRecord:
        now = self._clock()
        message = str(exc) or exc.__class__.__name__
        failure_type = classify_failure(exc)
        decision = self._retry_policy.decide(job, now, failure_type)
        duration = (now - job.started_at).total_seconds() if job.started_at else None

        if decision.retry:
            logger.warning(
                "Job failed, scheduling retry",
                extra={
                    "job_id": job.job_id,
                    "job_type": job.job_type_value,
                    "retry_count": decision.retry_count,
                    "max_retries": job.max_retries,
                    "delay_minutes": decision.delay_minutes,
                    "error": message,
                },
            )
            return self._record_outcome(
                job.job_id,
                JobStatus.RETRY,
                error=message,
                retry_count=decision.retry_count,
                next_retry_at=decision.next_retry_at,
                duration_seconds=duration,
                updated_at=now,
            )

        logger.error(
            "Job failed",
            exc_info=exc,
            extra={
                "job_id": job.job_id,
                "job_type": job.job_type_value,
                "retry_count": job.retry_count,
                "failure_type": failure_type.value,
            },
        )
        return self._record_outcome(
            job.job_id,
            JobStatus.FAILED,
            error=message,
            duration_seconds=duration,
            completed_at=now,
            updated_at=now,
        )

    def _record_outcome(self, job_id: str, status: JobStatus, **fields: Any) -> JobRecord:
        try:
            return self._queue.transition(job_id, status, **fields)
        except (StateTransitionRaceError, InvalidStateTransitionError):
            # Cancelled while running; the cancellation stands.
            logger.info(
                "Discarding outcome of job that changed state while running",
                extra={"job_id": job_id, "outcome": status.value},
            )
            return self.get_status(job_id)
