"""Bounded polling of one provider job until it reaches a terminal state.

Provider jobs legitimately take minutes, so the poller queries the job at a
fixed interval instead of blocking on a single long request, and gives up
after a fixed number of attempts.

State Machine
-------------
::

    submitted ──► queued / running ──► success   (return PollResult)
                        │          └──► fail      (ProviderJobFailedError)
                        └── N attempts without a terminal state
                                                   (PollTimeoutError)

Error Classification
--------------------
Each status query is one attempt.  A failed query is classified by the
``permanent`` flag on :class:`~xiaobao.core.errors.QueryError`:

- **transient** (network failure, timeout, 5xx, malformed payload): the
  attempt is consumed and polling continues.  If it was the last attempt,
  that error is raised instead of a timeout.
- **permanent** (bad credentials, no credits, unknown job): raised at once,
  since the remaining attempts would fail the same way.

Wall-clock time is bounded only by the attempt ceiling: the worst case is
``interval_s * (max_attempts - 1)`` plus the query latencies.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Protocol

from xiaobao.core.errors import PollTimeoutError, ProviderJobFailedError, QueryError
from xiaobao.core.models import JobStatus

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_S = 3.0
DEFAULT_MAX_ATTEMPTS = 60


class StatusSource(Protocol):
    """Anything that can report the status of a provider job."""

    async def query_status(self, job_id: str) -> JobStatus: ...


@dataclass(slots=True)
class PollResult:
    """Successful outcome of a poll sequence."""

    job_id: str
    result_url: str
    result_urls: list[str] = field(default_factory=list)
    cost_time_ms: int | None = None
    complete_time: int | None = None
    attempts: int = 0


class Poller:
    """Drive one job from submission to a terminal state."""

    def __init__(
        self,
        client: StatusSource,
        *,
        interval_s: float = DEFAULT_INTERVAL_S,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._client = client
        self.interval_s = max(0.0, interval_s)
        self.max_attempts = max_attempts
        self._sleep = sleep

    async def wait(self, job_id: str) -> PollResult:
        """Poll *job_id* until success, failure, or the attempt ceiling.

        Returns:
            The first result URL plus timing metadata.

        Raises:
            ProviderJobFailedError: The provider reported ``fail``.
            QueryError: A permanent query error, or a transient one on the
                final attempt.
            PollTimeoutError: ``max_attempts`` queries saw no terminal state.
        """
        for attempt in range(1, self.max_attempts + 1):
            try:
                status = await self._client.query_status(job_id)
            except QueryError as exc:
                if exc.permanent:
                    logger.warning("Job %s query failed permanently: %s", job_id, exc)
                    raise
                if attempt >= self.max_attempts:
                    raise
                logger.warning(
                    "Job %s query failed attempt=%d/%d reason=%s",
                    job_id,
                    attempt,
                    self.max_attempts,
                    exc,
                )
            else:
                if status.state == "success":
                    if not status.result_urls:
                        raise QueryError(
                            f"Job {job_id} succeeded without result URLs", permanent=True
                        )
                    logger.info(
                        "Job %s succeeded after %d attempts (cost_time_ms=%s)",
                        job_id,
                        attempt,
                        status.cost_time_ms,
                    )
                    return PollResult(
                        job_id=job_id,
                        result_url=status.result_urls[0],
                        result_urls=list(status.result_urls),
                        cost_time_ms=status.cost_time_ms,
                        complete_time=status.complete_time,
                        attempts=attempt,
                    )
                if status.state == "fail":
                    raise ProviderJobFailedError(job_id, status.fail_reason or "unknown reason")
                logger.debug("Job %s state=%s attempt=%d", job_id, status.state, attempt)

            if attempt < self.max_attempts:
                await self._sleep(self.interval_s)

        raise PollTimeoutError(job_id, self.max_attempts)
