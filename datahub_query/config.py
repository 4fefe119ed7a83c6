"""Environment-based configuration loading for the query client."""

from __future__ import annotations

import math
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from datahub_query.clients.datahub import DEFAULT_API_PATH
from datahub_query.core.backoff import BackoffPolicy
from datahub_query.models import QueryConfig


@dataclass
class Config:
    """Configuration values derived from environment variables."""
    # HTTP
    base_url: str
    api_path: str
    submit_path: str
    req_timeout: float
    http_max: int

    # Auth (forwarded as request headers only)
    token: Optional[str]
    username: Optional[str]
    password: Optional[str]

    # Polling
    poll_policy: BackoffPolicy

    # Per-query defaults
    query: QueryConfig


def parse_timeout(raw: str) -> float:
    """Parse a timeout in seconds; ``inf``, ``none`` or empty mean unbounded."""
    if raw.strip().lower() in ("", "inf", "infinity", "none"):
        return math.inf
    return float(raw)


async def initialize_environment() -> Config:
    """Load environment variables and build a :class:`Config` instance.

    A ``.env`` file in the working directory is honoured. Every setting has a
    default, so an empty environment yields a client for
    ``http://localhost:8080`` without authentication.
    """
    load_dotenv()

    poll_policy = BackoffPolicy(
        initial_delay=float(os.getenv("DATAHUB_POLL_INITIAL_DELAY", "0.3")),
        max_delay=float(os.getenv("DATAHUB_POLL_MAX_DELAY", "30")),
    )

    query = QueryConfig(
        timeout=parse_timeout(os.getenv("DATAHUB_QUERY_TIMEOUT", "inf")),
        offset=int(os.getenv("DATAHUB_QUERY_OFFSET", "0")),
        limit=int(os.getenv("DATAHUB_QUERY_LIMIT", "100")),
    )

    return Config(
        base_url=os.getenv("DATAHUB_BASE_URL", "http://localhost:8080"),
        api_path=os.getenv("DATAHUB_API_PATH", DEFAULT_API_PATH),
        submit_path=os.getenv("DATAHUB_SUBMIT_PATH", "/job/sql"),
        req_timeout=float(os.getenv("DATAHUB_REQ_TIMEOUT", "30")),
        http_max=int(os.getenv("DATAHUB_HTTP_MAX", "10")),

        token=os.getenv("DATAHUB_TOKEN") or None,
        username=os.getenv("DATAHUB_USERNAME") or None,
        password=os.getenv("DATAHUB_PASSWORD") or None,

        poll_policy=poll_policy,
        query=query,
    )
