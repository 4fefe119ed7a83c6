import asyncio
import math

import pytest

from datahub_query.errors import (
    JobCancelled,
    JobFailed,
    QueryTimeout,
    QueryTimeoutCancelUnrecoverable,
    RemoteJobError,
    ResultFetchError,
    StatusFetchError,
    SubmissionError,
)
from datahub_query.models import JobResult, QueryConfig
from datahub_query.service import LifecycleState, QueryService
from datahub_query.telemetry.metrics import QueryMetrics

from conftest import FAST_POLL, RESULT_PAYLOAD, settle, status


@pytest.fixture
def service(client):
    return QueryService(client, poll_policy=FAST_POLL)


class TestCompletedJob:
    async def test_results_fetched_with_default_page(self, service, datahub):
        datahub.status_replies = [status("POLLING"), status("COMPLETED")]
        result = await service.query_for_results("SELECT * FROM alarms")
        assert result == JobResult.from_payload(RESULT_PAYLOAD)
        (request,) = datahub.calls("GET", "/results")
        assert request.url.path.endswith("/job/42/results")
        assert request.url.params["offset"] == "0"
        assert request.url.params["limit"] == "100"
        assert datahub.calls("POST", "/cancel") == []

    async def test_offset_and_limit_forwarded(self, service, datahub):
        await service.query_for_results("SELECT 1", {"offset": 10}, limit=5)
        (request,) = datahub.calls("GET", "/results")
        assert request.url.params["offset"] == "10"
        assert request.url.params["limit"] == "5"

    async def test_full_config_object(self, service, datahub):
        await service.query_for_results("SELECT 1", QueryConfig(offset=3, limit=7))
        (request,) = datahub.calls("GET", "/results")
        assert request.url.params["offset"] == "3"
        assert request.url.params["limit"] == "7"

    async def test_service_defaults_apply(self, client, datahub):
        svc = QueryService(client, poll_policy=FAST_POLL, defaults=QueryConfig(limit=20))
        await svc.query_for_results("SELECT 1")
        (request,) = datahub.calls("GET", "/results")
        assert request.url.params["limit"] == "20"

    async def test_result_fetch_failure(self, service, datahub):
        datahub.results_reply = (500, {"errorMessage": "out of memory"})
        with pytest.raises(ResultFetchError, match="out of memory"):
            await service.query_for_results("SELECT 1")


class TestRemoteTerminalStates:
    async def test_cancelled(self, service, datahub):
        datahub.status_replies = [status("RUNNING"), status("CANCELLED")]
        with pytest.raises(JobCancelled) as info:
            await service.query_for_results("SELECT 1")
        assert info.value.job_id == "42"
        assert datahub.calls("GET", "/results") == []

    async def test_failed_with_message(self, service, datahub):
        datahub.status_replies = [status("FAILED", errorMessage="syntax error")]
        with pytest.raises(RemoteJobError) as info:
            await service.query_for_results("SELEKT")
        assert info.value.message == "syntax error"

    async def test_failed_without_message(self, service, datahub):
        datahub.status_replies = [status("FAILED")]
        with pytest.raises(JobFailed) as info:
            await service.query_for_results("SELECT 1")
        assert info.value.state == "FAILED"
        assert "FAILED" in str(info.value)

    async def test_status_fetch_error_propagates(self, service, datahub):
        datahub.status_replies = [status("RUNNING"), (500, "oops")]
        with pytest.raises(StatusFetchError) as info:
            await service.query_for_results("SELECT 1", timeout=5)
        assert info.value.message == "oops"
        assert datahub.calls("POST", "/cancel") == []

    async def test_submission_error_skips_polling(self, service, datahub):
        datahub.submit_reply = (403, {"errorMessage": "forbidden"})
        with pytest.raises(SubmissionError, match="forbidden"):
            await service.query_for_results("SELECT 1")
        assert len(datahub.requests) == 1


class TestTimeout:
    async def test_timeout_cancels_job_once(self, service, datahub):
        datahub.status_replies = [status("RUNNING")]
        with pytest.raises(QueryTimeout) as info:
            await service.query_for_results("SELECT 1", timeout=0.05)
        assert type(info.value) is QueryTimeout
        assert info.value.job_id == "42"
        (cancel,) = datahub.calls("POST", "/cancel")
        assert cancel.url.path.endswith("/job/42/cancel")
        assert datahub.calls("GET", "/results") == []

    async def test_timeout_stops_polling(self, service, datahub):
        datahub.status_replies = [status("RUNNING")]
        with pytest.raises(QueryTimeout):
            await service.query_for_results("SELECT 1", timeout=0.03)
        polled = len(datahub.status_calls())
        await settle()
        assert len(datahub.status_calls()) == polled

    async def test_timeout_while_status_request_in_flight(self, service, datahub):
        datahub.status_replies = [status("COMPLETED")]
        datahub.status_delay = 0.2
        with pytest.raises(QueryTimeout):
            await service.query_for_results("SELECT 1", timeout=0.05)
        await settle(0.25)
        # The in-flight request completed, nothing acted on its answer
        assert len(datahub.status_calls()) == 1
        assert len(datahub.calls("POST", "/cancel")) == 1
        assert datahub.calls("GET", "/results") == []

    async def test_cancel_failure_is_unrecoverable(self, service, datahub):
        datahub.status_replies = [status("RUNNING")]
        datahub.cancel_reply = (500, {"errorMessage": "cannot cancel"})
        with pytest.raises(QueryTimeoutCancelUnrecoverable) as info:
            await service.query_for_results("SELECT 1", timeout=0.05)
        assert info.value.cancel_error.message == "cannot cancel"
        assert len(datahub.calls("POST", "/cancel")) == 1

    async def test_zero_timeout_expires_immediately(self, service, datahub):
        datahub.status_replies = [status("RUNNING")]
        with pytest.raises(QueryTimeout):
            await service.query_for_results("SELECT 1", timeout=0)
        assert len(datahub.calls("POST", "/cancel")) == 1

    @pytest.mark.parametrize("timeout", [math.inf, -1])
    async def test_unbounded_timeout_never_cancels(self, service, datahub, timeout):
        datahub.status_replies = [status("RUNNING")] * 5 + [status("COMPLETED")]
        result = await service.query_for_results("SELECT 1", timeout=timeout)
        assert result.row_count == 2
        assert datahub.calls("POST", "/cancel") == []

    async def test_unbounded_timeout_surfaces_remote_failure(self, service, datahub):
        datahub.status_replies = [status("RUNNING"), status("FAILED", errorMessage="disk full")]
        with pytest.raises(RemoteJobError, match="disk full"):
            await service.query_for_results("SELECT 1")
        assert datahub.calls("POST", "/cancel") == []

    async def test_terminal_status_before_deadline_wins(self, service, datahub):
        datahub.status_replies = [status("RUNNING"), status("COMPLETED")]
        result = await service.query_for_results("SELECT 1", timeout=5)
        assert result.row_count == 2
        assert datahub.calls("POST", "/cancel") == []


class TestLifecycleState:
    async def test_remote_failure_is_tagged(self, service, datahub):
        datahub.status_replies = [status("CANCELLED")]
        with pytest.raises(JobCancelled) as info:
            await service.query_for_results("SELECT 1")
        assert info.value.lifecycle_state == LifecycleState.FAILED_REMOTELY

    async def test_timeout_is_tagged(self, service, datahub):
        datahub.status_replies = [status("RUNNING")]
        with pytest.raises(QueryTimeout) as info:
            await service.query_for_results("SELECT 1", timeout=0.02)
        assert info.value.lifecycle_state == "CANCELLED_BY_USER_TIMEOUT"

    async def test_unrecoverable_timeout_is_tagged(self, service, datahub):
        datahub.status_replies = [status("RUNNING")]
        datahub.cancel_reply = (500, "nope")
        with pytest.raises(QueryTimeoutCancelUnrecoverable) as info:
            await service.query_for_results("SELECT 1", timeout=0.02)
        assert info.value.lifecycle_state == "TIMEOUT_CANCEL_FAILED"
        assert info.value.cancel_error.lifecycle_state is None

    async def test_request_failure_is_not_tagged(self, service, datahub):
        datahub.submit_reply = (500, "down")
        with pytest.raises(SubmissionError) as info:
            await service.query_for_results("SELECT 1")
        assert info.value.lifecycle_state is None


async def test_caller_cancellation_abandons_polling(service, datahub):
    datahub.status_replies = [status("RUNNING")]
    task = asyncio.create_task(service.query_for_results("SELECT 1"))
    await settle(0.03)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    await settle(0.01)
    polled = len(datahub.status_calls())
    await settle()
    assert len(datahub.status_calls()) == polled
    assert datahub.calls("POST", "/cancel") == []


async def test_concurrent_queries_are_independent(client, datahub):
    service = QueryService(client, poll_policy=FAST_POLL)
    results = await asyncio.gather(*(service.query_for_results(f"SELECT {i}") for i in range(3)))
    assert all(r.row_count == 2 for r in results)
    assert len(datahub.calls("POST", "/job/sql")) == 3


async def test_metrics_recorded(client, datahub):
    metrics = QueryMetrics()
    service = QueryService(client, poll_policy=FAST_POLL, metrics=metrics)
    datahub.status_replies = [status("RUNNING"), status("COMPLETED")]
    await service.query_for_results("SELECT 1")
    datahub.status_replies = [status("RUNNING")]
    with pytest.raises(QueryTimeout):
        await service.query_for_results("SELECT 2", timeout=0.02)

    assert metrics.queries_total == 2
    assert metrics.queries_succeeded == 1
    assert metrics.queries_failed == 1
    assert metrics.cancellations == 1
    assert metrics.rows_fetched == 2
    assert metrics.errors_by_type["QueryTimeout"] == 1
    assert {"submit", "status", "results", "cancel"} <= set(metrics.stage_durations)
    assert metrics.outcomes == {"RESULT_FETCHED": 1, "CANCELLED_BY_USER_TIMEOUT": 1}


async def test_unknown_option_rejected(service):
    with pytest.raises(TypeError):
        await service.query_for_results("SELECT 1", page=2)


async def test_outcomes_count_remote_failures(client, datahub):
    metrics = QueryMetrics()
    service = QueryService(client, poll_policy=FAST_POLL, metrics=metrics)
    datahub.status_replies = [status("FAILED")]
    with pytest.raises(JobFailed):
        await service.query_for_results("SELECT 1")
    datahub.submit_reply = (500, "down")
    with pytest.raises(SubmissionError):
        await service.query_for_results("SELECT 2")
    assert metrics.outcomes == {"FAILED_REMOTELY": 1}
