"""Per-service request quotas for external APIs.

Each named service (the workspace API, the inference API, bulk work) gets a
rolling window quota and an optional cooldown between consecutive requests.
State is process-local; one dispatcher owns one limiter.

Acquisition is two-step: ``try_acquire``/``wait_for_availability`` only
check, and nothing is consumed until ``record_use`` is called after the
gated request was issued. ``acquire`` performs both steps in one call.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Mapping, Optional, Set

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


WORKSPACE_SERVICE = "workspace"
INFERENCE_SERVICE = "inference"
BULK_SERVICE = "bulk"
GENERAL_SERVICE = "general"


class ServiceLimit(BaseModel):
    """Quota for one external service.

    Attributes:
        max_requests: Requests allowed per window
        window_seconds: Window length in seconds
        cooldown_seconds: Minimum gap between consecutive requests
    """

    max_requests: int = Field(ge=1)
    window_seconds: float = Field(gt=0)
    cooldown_seconds: float = Field(default=0.0, ge=0)


DEFAULT_LIMITS: Dict[str, ServiceLimit] = {
    # Workspace API: 3 requests per second
    WORKSPACE_SERVICE: ServiceLimit(max_requests=3, window_seconds=1.0, cooldown_seconds=0.334),
    # Inference API: 60 requests per minute
    INFERENCE_SERVICE: ServiceLimit(max_requests=60, window_seconds=60.0, cooldown_seconds=1.0),
    BULK_SERVICE: ServiceLimit(max_requests=10, window_seconds=60.0, cooldown_seconds=6.0),
}


@dataclass
class _ServiceState:
    window_start: float
    requests: int = 0
    last_request: Optional[float] = None


class RateLimiter:
    """Rolling-window rate limiter keyed by service name."""

    def __init__(
        self,
        limits: Optional[Mapping[str, ServiceLimit]] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._limits: Dict[str, ServiceLimit] = dict(DEFAULT_LIMITS if limits is None else limits)
        self._states: Dict[str, _ServiceState] = {}
        self._clock = clock
        self._sleep = sleep
        self._warned: Set[str] = set()

    def configure(self, service: str, limit: ServiceLimit) -> None:
        self._limits[service] = limit
        self._states.pop(service, None)

    def services(self) -> Dict[str, ServiceLimit]:
        return dict(self._limits)

    def try_acquire(self, service: str) -> bool:
        """Return True if a request to ``service`` may be issued now."""
        limit = self._limits.get(service)
        if limit is None:
            self._warn_unconfigured(service)
            return True

        now = self._clock()
        state = self._state(service, now)

        if now - state.window_start >= limit.window_seconds:
            state.requests = 0
            state.window_start = now

        if state.requests >= limit.max_requests:
            logger.debug(
                "Rate limit exceeded",
                extra={
                    "service": service,
                    "reset_in_s": round(limit.window_seconds - (now - state.window_start), 3),
                },
            )
            return False

        if (
            limit.cooldown_seconds
            and state.last_request is not None
            and now - state.last_request < limit.cooldown_seconds
        ):
            logger.debug(
                "Rate limit cooldown active",
                extra={
                    "service": service,
                    "cooldown_remaining_s": round(
                        limit.cooldown_seconds - (now - state.last_request), 3
                    ),
                },
            )
            return False

        return True

    async def wait_for_availability(self, service: str) -> None:
        """Block until ``try_acquire(service)`` would succeed."""
        limit = self._limits.get(service)
        if limit is None:
            return

        while not self.try_acquire(service):
            state = self._states[service]
            now = self._clock()
            wait = 0.0
            if state.requests >= limit.max_requests:
                wait = max(wait, limit.window_seconds - (now - state.window_start))
            if limit.cooldown_seconds and state.last_request is not None:
                wait = max(wait, limit.cooldown_seconds - (now - state.last_request))
            logger.info(
                "Rate limiter waiting",
                extra={"service": service, "wait_s": round(wait, 3)},
            )
            await self._sleep(max(wait, 0.001))

    def record_use(self, service: str) -> None:
        """Account for a request that was just issued to ``service``."""
        if service not in self._limits:
            return
        now = self._clock()
        state = self._state(service, now)
        state.requests += 1
        state.last_request = now

    async def acquire(self, service: str) -> None:
        """Wait for capacity and consume it in one step."""
        await self.wait_for_availability(service)
        self.record_use(service)

    def remaining(self, service: str) -> float:
        """Requests left in the current window (``math.inf`` if unlimited)."""
        limit = self._limits.get(service)
        state = self._states.get(service)
        if limit is None:
            return math.inf
        if state is None or self._clock() - state.window_start >= limit.window_seconds:
            return limit.max_requests
        return max(0, limit.max_requests - state.requests)

    def _state(self, service: str, now: float) -> _ServiceState:
        state = self._states.get(service)
        if state is None:
            state = _ServiceState(window_start=now)
            self._states[service] = state
        return state

    def _warn_unconfigured(self, service: str) -> None:
        if service not in self._warned:
            self._warned.add(service)
            logger.warning("No rate limit configured for service", extra={"service": service})
