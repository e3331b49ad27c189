"""Dispatch table from job type to handler.

The table is closed over :class:`JobType`: only enum members can be
registered, and ``freeze`` locks the table once the dispatcher starts so the
set of handled types is fixed for the life of the process.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Union

from .models import JobType

logger = logging.getLogger(__name__)

JobHandler = Callable[[Dict[str, Any]], Union[Any, Awaitable[Any]]]


class JobHandlerRegistry:
    """Maps each :class:`JobType` to the callable that executes it."""

    def __init__(self, handlers: Optional[Mapping[JobType, JobHandler]] = None) -> None:
        self._handlers: Dict[JobType, JobHandler] = {}
        self._frozen = False
        for job_type, handler in (handlers or {}).items():
            self.register(job_type, handler)

    def register(self, job_type: JobType, handler: JobHandler) -> None:
        if self._frozen:
            raise RuntimeError("Handler registry is frozen; register handlers before start()")
        if not isinstance(job_type, JobType):
            raise TypeError(f"Handlers are keyed by JobType, got {job_type!r}")
        if not callable(handler):
            raise TypeError(f"Handler for {job_type.value} is not callable")
        self._handlers[job_type] = handler
        logger.debug("Registered job handler", extra={"job_type": job_type.value})

    def resolve(self, job_type: Union[JobType, str]) -> Optional[JobHandler]:
        try:
            key = JobType(job_type)
        except ValueError:
            return None
        return self._handlers.get(key)

    def missing(self) -> List[JobType]:
        return [job_type for job_type in JobType if job_type not in self._handlers]

    def freeze(self) -> None:
        """Lock the table and report job types that have no handler."""
        self._frozen = True
        missing = self.missing()
        if missing:
            logger.warning(
                "Job types without handlers will fail when dequeued",
                extra={"job_types": [job_type.value for job_type in missing]},
            )

    @property
    def frozen(self) -> bool:
        return self._frozen

    def __contains__(self, job_type: object) -> bool:
        return job_type in self._handlers
