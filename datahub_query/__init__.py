"""Public package exports for the :mod:`datahub_query` library."""

from __future__ import annotations

from datahub_query.clients.datahub import DataHubAsyncClient
from datahub_query.core.backoff import BackoffPolicy
from datahub_query.errors import (
    CancelRequestError,
    DataHubError,
    JobCancelled,
    JobFailed,
    QueryTimeout,
    QueryTimeoutCancelUnrecoverable,
    RemoteJobError,
    RemoteRequestError,
    ResultFetchError,
    StatusFetchError,
    SubmissionError,
)
from datahub_query.models import (
    DatasetField,
    FieldType,
    Job,
    JobResult,
    JobState,
    JobStatus,
    QueryConfig,
)
from datahub_query.service import QueryService

__all__ = [
    "DataHubAsyncClient",
    "BackoffPolicy",
    "QueryService",
    "QueryConfig",
    "Job",
    "JobState",
    "JobStatus",
    "JobResult",
    "DatasetField",
    "FieldType",
    "DataHubError",
    "RemoteRequestError",
    "SubmissionError",
    "StatusFetchError",
    "ResultFetchError",
    "CancelRequestError",
    "JobCancelled",
    "RemoteJobError",
    "JobFailed",
    "QueryTimeout",
    "QueryTimeoutCancelUnrecoverable",
]
