"""Exception hierarchy raised by the DataHub query client."""

from __future__ import annotations

from typing import Optional


class DataHubError(Exception):
    """Base class for every failure surfaced by :mod:`datahub_query`.

    ``lifecycle_state`` names the terminal lifecycle state of the run that
    raised it (``FAILED_REMOTELY``, ``CANCELLED_BY_USER_TIMEOUT`` or
    ``TIMEOUT_CANCEL_FAILED``); it stays ``None`` for request failures.
    """

    lifecycle_state: Optional[str] = None

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class RemoteRequestError(DataHubError):
    """A single request to the remote service failed.

    ``status_code`` is ``None`` when the failure happened below HTTP (connection
    refused, read timeout, ...) or when a success response could not be decoded.
    """

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class SubmissionError(RemoteRequestError):
    """Posting the SQL query failed."""


class StatusFetchError(RemoteRequestError):
    """Fetching the job status failed."""


class ResultFetchError(RemoteRequestError):
    """Fetching a page of job results failed."""


class CancelRequestError(RemoteRequestError):
    """Asking the remote service to cancel a job failed."""


class JobCancelled(DataHubError):
    """The job reached the ``CANCELLED`` state on the server."""

    def __init__(self, job_id: str) -> None:
        super().__init__("DataHub Query Job Cancelled")
        self.job_id = job_id


class RemoteJobError(DataHubError):
    """The job ``FAILED`` and the server reported why."""

    def __init__(self, job_id: str, message: str) -> None:
        super().__init__(message)
        self.job_id = job_id


class JobFailed(DataHubError):
    """The job ``FAILED`` without an error message."""

    def __init__(self, job_id: str, state: str) -> None:
        super().__init__(f"DataHub Query Job Failed, status: {state}")
        self.job_id = job_id
        self.state = state


class QueryTimeout(DataHubError):
    """The timeout expired first and the job was cancelled remotely."""

    def __init__(self, job_id: str, timeout: float, message: str = "Query timed out") -> None:
        super().__init__(message)
        self.job_id = job_id
        self.timeout = timeout


class QueryTimeoutCancelUnrecoverable(QueryTimeout):
    """The timeout expired first but the cancel request failed.

    The server-side job may still be running.
    """

    def __init__(self, job_id: str, timeout: float, cancel_error: CancelRequestError) -> None:
        super().__init__(job_id, timeout, "Query timed out but was unable to cancel")
        self.cancel_error = cancel_error
