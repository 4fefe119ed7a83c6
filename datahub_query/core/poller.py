"""Polling of job status until the job reaches a terminal state."""

from __future__ import annotations

import asyncio
import logging
from time import perf_counter
from typing import Optional, Protocol

from datahub_query.core.backoff import DEFAULT_POLL_POLICY, BackoffPolicy
from datahub_query.models import JobStatus
from datahub_query.telemetry.metrics import QueryMetrics

logger = logging.getLogger(__name__)


class StatusSource(Protocol):
    async def get_job_status(self, job_id: str) -> JobStatus: ...


async def wait_for_job_to_complete(
    client: StatusSource,
    job_id: str,
    policy: BackoffPolicy = DEFAULT_POLL_POLICY,
    abandoned: Optional[asyncio.Event] = None,
    metrics: Optional[QueryMetrics] = None,
) -> Optional[JobStatus]:
    """Poll ``job_id`` until its state is COMPLETED, CANCELLED or FAILED.

    Waits for the next ``policy`` delay between attempts. A failing status
    request propagates at once; only "not finished yet" is retried.

    Returns ``None`` without issuing further requests once ``abandoned`` is
    set. A request already in flight at that moment is allowed to finish.
    """
    delays = iter(policy)
    attempt = 0
    while abandoned is None or not abandoned.is_set():
        attempt += 1
        start = perf_counter()
        status = await client.get_job_status(job_id)
        if metrics is not None:
            metrics.inc("polls")
            metrics.observe_stage("status", perf_counter() - start)

        if abandoned is not None and abandoned.is_set():
            break
        if status.is_terminal:
            logger.info(
                "Job %s reached %s after %d poll(s)",
                job_id, status.job_state, attempt,
            )
            return status

        delay = next(delays)
        logger.debug(
            "Job %s is %s, polling again in %.2f s (attempt %d)",
            job_id, status.job_state, delay, attempt,
        )
        if abandoned is None:
            await asyncio.sleep(delay)
        else:
            try:
                await asyncio.wait_for(abandoned.wait(), delay)
            except asyncio.TimeoutError:
                pass
    logger.debug("Stopped polling job %s", job_id)
    return None


def _discard_outcome(task: "asyncio.Task[Optional[JobStatus]]") -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug("Abandoned poll %s ended with %r", task.get_name(), exc)


class JobStatusWatch:
    """Single-shot source of a job's terminal status.

    ``start()`` schedules the polling loop and returns its task. ``abandon()``
    stops further polls; a request already in flight is left to complete and
    its outcome is dropped.
    """

    def __init__(
        self,
        client: StatusSource,
        job_id: str,
        policy: BackoffPolicy = DEFAULT_POLL_POLICY,
        metrics: Optional[QueryMetrics] = None,
    ) -> None:
        self.job_id = job_id
        self._client = client
        self._policy = policy
        self._metrics = metrics
        self._abandoned = asyncio.Event()
        self._task: Optional[asyncio.Task[Optional[JobStatus]]] = None

    def start(self) -> "asyncio.Task[Optional[JobStatus]]":
        if self._task is None:
            self._task = asyncio.create_task(
                wait_for_job_to_complete(
                    self._client, self.job_id, self._policy,
                    self._abandoned, self._metrics,
                ),
                name=f"poll-job-{self.job_id}",
            )
        return self._task

    @property
    def abandoned(self) -> bool:
        return self._abandoned.is_set()

    def abandon(self) -> None:
        if self._abandoned.is_set():
            return
        self._abandoned.set()
        if self._task is not None:
            self._task.add_done_callback(_discard_outcome)
