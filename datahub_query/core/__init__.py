from __future__ import annotations

from .backoff import BackoffPolicy, DEFAULT_POLL_POLICY, backoff_delays
from .poller import JobStatusWatch, wait_for_job_to_complete

__all__ = [
    "BackoffPolicy",
    "DEFAULT_POLL_POLICY",
    "backoff_delays",
    "JobStatusWatch",
    "wait_for_job_to_complete",
]
