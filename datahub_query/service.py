"""Submit a query, wait for its job under a timeout and fetch its results."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from time import perf_counter
from typing import Any, Dict, Mapping, NoReturn, Optional, Protocol, Union

from datahub_query.core.backoff import DEFAULT_POLL_POLICY, BackoffPolicy
from datahub_query.core.poller import JobStatusWatch
from datahub_query.errors import (
    CancelRequestError,
    DataHubError,
    JobCancelled,
    JobFailed,
    QueryTimeout,
    QueryTimeoutCancelUnrecoverable,
    RemoteJobError,
)
from datahub_query.models import Job, JobResult, JobState, JobStatus, QueryConfig
from datahub_query.telemetry.metrics import QueryMetrics

logger = logging.getLogger(__name__)


class LifecycleState(str, Enum):
    SUBMITTED = "SUBMITTED"
    POLLING = "POLLING"
    RESULT_FETCHED = "RESULT_FETCHED"
    CANCELLED_BY_USER_TIMEOUT = "CANCELLED_BY_USER_TIMEOUT"
    FAILED_REMOTELY = "FAILED_REMOTELY"
    TIMEOUT_CANCEL_FAILED = "TIMEOUT_CANCEL_FAILED"


FINAL_STATES = frozenset({
    LifecycleState.RESULT_FETCHED,
    LifecycleState.CANCELLED_BY_USER_TIMEOUT,
    LifecycleState.FAILED_REMOTELY,
    LifecycleState.TIMEOUT_CANCEL_FAILED,
})


class JobClient(Protocol):
    async def submit_query(self, query: str) -> Job: ...

    async def get_job_status(self, job_id: str) -> JobStatus: ...

    async def get_job_results(
        self, job_id: str, offset: int = 0, limit: int = 100
    ) -> JobResult[Any]: ...

    async def cancel_job(self, job_id: str) -> Optional[Dict[str, Any]]: ...


class QueryService:
    """Runs queries against DataHub, one independent job per call.

    Parameters
    ----------
    client:
        Transport used for every request, usually a
        :class:`~datahub_query.clients.DataHubAsyncClient`.
    poll_policy:
        Backoff between status polls.
    defaults:
        Options used when a call does not override them.
    metrics:
        Optional :class:`QueryMetrics` updated by every run.
    """

    def __init__(
        self,
        client: JobClient,
        poll_policy: BackoffPolicy = DEFAULT_POLL_POLICY,
        defaults: QueryConfig = QueryConfig(),
        metrics: Optional[QueryMetrics] = None,
    ) -> None:
        self._client = client
        self._poll_policy = poll_policy
        self._defaults = defaults
        self._metrics = metrics

    def resolve_config(
        self,
        config: Union[QueryConfig, Mapping[str, Any], None] = None,
        **overrides: Any,
    ) -> QueryConfig:
        """Merge a partial ``config`` and keyword ``overrides`` over the defaults."""
        if isinstance(config, QueryConfig):
            base = config
        else:
            base = self._defaults.merged(config)
        return base.merged(overrides)

    async def query_for_results(
        self,
        query: str,
        config: Union[QueryConfig, Mapping[str, Any], None] = None,
        **overrides: Any,
    ) -> JobResult[Any]:
        """Run ``query`` and return the requested page of its results.

        Raises a :class:`~datahub_query.errors.DataHubError` subclass on any
        failure; partial results are never returned.
        """
        full_config = self.resolve_config(config, **overrides)
        if self._metrics is not None:
            self._metrics.inc("queries_total")
        try:
            result = await self._run(query, full_config)
        except DataHubError as exc:
            if self._metrics is not None:
                self._metrics.inc("queries_failed")
                self._metrics.record_error(exc)
            raise
        if self._metrics is not None:
            self._metrics.inc("queries_succeeded")
            self._metrics.inc("rows_fetched", len(result.rows))
        return result

    def _transition(self, job_id: str, state: LifecycleState) -> None:
        logger.debug("Job %s -> %s", job_id, state.value)
        if state in FINAL_STATES and self._metrics is not None:
            self._metrics.record_outcome(state.value)

    def _fail(
        self, job_id: str, state: LifecycleState, exc: DataHubError
    ) -> DataHubError:
        self._transition(job_id, state)
        exc.lifecycle_state = state.value
        return exc

    def _observe(self, stage: str, start: float) -> None:
        if self._metrics is not None:
            self._metrics.observe_stage(stage, perf_counter() - start)

    async def _run(self, query: str, config: QueryConfig) -> JobResult[Any]:
        start = perf_counter()
        job = await self._client.submit_query(query)
        self._observe("submit", start)
        job_id = job.id
        self._transition(job_id, LifecycleState.SUBMITTED)

        watch = JobStatusWatch(self._client, job_id, self._poll_policy, self._metrics)
        poll_task = watch.start()
        self._transition(job_id, LifecycleState.POLLING)

        # No deadline means no timer at all
        timeout = config.timeout if config.has_deadline else None
        try:
            done, _ = await asyncio.wait({poll_task}, timeout=timeout)
        finally:
            if not poll_task.done():
                watch.abandon()

        if poll_task in done:
            # Only abandoned watches return None, and this one finished first
            status = poll_task.result()
            return await self._settle(job_id, status, config)
        await self._cancel_after_timeout(job_id, config.timeout)

    async def _settle(
        self, job_id: str, status: JobStatus, config: QueryConfig
    ) -> JobResult[Any]:
        if status.state is JobState.COMPLETED:
            start = perf_counter()
            result = await self._client.get_job_results(
                job_id, config.offset, config.limit)
            self._observe("results", start)
            self._transition(job_id, LifecycleState.RESULT_FETCHED)
            logger.info(
                "Fetched %d of %d row(s) for job %s",
                len(result.rows), result.row_count, job_id,
            )
            return result

        if status.state is JobState.CANCELLED:
            exc: DataHubError = JobCancelled(job_id)
        elif status.error_message:
            exc = RemoteJobError(job_id, status.error_message)
        else:
            exc = JobFailed(job_id, status.job_state)
        raise self._fail(job_id, LifecycleState.FAILED_REMOTELY, exc)

    async def _cancel_after_timeout(self, job_id: str, timeout: float) -> NoReturn:
        logger.warning(
            "Job %s did not finish within %.3f s, cancelling", job_id, timeout)
        if self._metrics is not None:
            self._metrics.inc("cancellations")
        start = perf_counter()
        try:
            await self._client.cancel_job(job_id)
        except CancelRequestError as exc:
            self._observe("cancel", start)
            logger.error(
                "Could not cancel job %s, it may still be running: %s",
                job_id, exc.message,
            )
            raise self._fail(
                job_id, LifecycleState.TIMEOUT_CANCEL_FAILED,
                QueryTimeoutCancelUnrecoverable(job_id, timeout, exc),
            ) from exc
        self._observe("cancel", start)
        raise self._fail(
            job_id, LifecycleState.CANCELLED_BY_USER_TIMEOUT, QueryTimeout(job_id, timeout))
