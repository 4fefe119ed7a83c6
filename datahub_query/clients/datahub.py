"""Async client for the DataHub (Dremio) job REST API."""

from __future__ import annotations

import base64
import logging
import os
from time import perf_counter
from typing import Any, Dict, Optional, Type

import httpx
import orjson

from datahub_query.errors import (
    CancelRequestError,
    RemoteRequestError,
    ResultFetchError,
    StatusFetchError,
    SubmissionError,
)
from datahub_query.models import Job, JobResult, JobStatus

logger = logging.getLogger(__name__)

DEFAULT_API_PATH = "/service/datahub/dremio/api/v3"


def raise_for_error_response(
    response: httpx.Response, error_cls: Type[RemoteRequestError]
) -> None:
    """Raise ``error_cls`` describing a non-success ``response``.

    The body is read once as text. If it parses as a JSON object carrying an
    ``errorMessage`` that message is used, otherwise the raw text is.
    """
    text = response.text
    try:
        data = orjson.loads(text)
    except orjson.JSONDecodeError:
        data = None
    if isinstance(data, dict) and data.get("errorMessage"):
        raise error_cls(str(data["errorMessage"]), response.status_code)
    raise error_cls(text, response.status_code)


class DataHubAsyncClient:
    """Minimal async wrapper around the DataHub job API.

    The underlying :class:`httpx.AsyncClient` can be passed in, in which case
    the caller owns it; otherwise one is created on ``__aenter__`` and closed
    on ``__aexit__``.
    """

    def __init__(
        self,
        base_url: str = os.getenv("DATAHUB_BASE_URL", "http://localhost:8080"),
        api_path: str = DEFAULT_API_PATH,
        submit_path: str = "/job/sql",
        token: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        request_timeout: float = 30.0,
        max_connections: int = 10,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """Create a client for one DataHub tenant.

        Parameters
        ----------
        base_url:
            Tenant URL, e.g. ``https://example.cumulocity.com``.
        api_path:
            Fixed prefix of the Dremio proxy below ``base_url``.
        submit_path:
            Path below ``api_path`` that accepts SQL submissions.
        token:
            Optional bearer token; takes precedence over username/password.
        username, password:
            Basic credentials sent with every request.
        request_timeout:
            Timeout applied to each HTTP request.
        max_connections:
            Maximum number of concurrent HTTP connections.
        http_client:
            Pre-built transport to use instead of creating one.
        """
        self.api_url = base_url.rstrip("/") + "/" + api_path.strip("/")
        self.submit_path = "/" + submit_path.strip("/")
        self._headers = {"Content-Type": "application/json"}
        if token:
            self._headers["Authorization"] = f"Bearer {token}"
        elif username and password:
            creds = base64.b64encode(f"{username}:{password}".encode()).decode()
            self._headers["Authorization"] = f"Basic {creds}"
        self._timeout = httpx.Timeout(request_timeout)
        self._limits = httpx.Limits(
            max_connections=max_connections, max_keepalive_connections=max_connections
        )
        self._client = http_client
        self._owns_client = http_client is None

    async def __aenter__(self) -> "DataHubAsyncClient":
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._timeout, limits=self._limits)
        if "Authorization" not in self._headers:
            logger.warning("Continuing without authentication")
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _require_client(self) -> httpx.AsyncClient:
        """Return the HTTP client or raise ``RuntimeError``."""
        if self._client is None:
            raise RuntimeError(
                "Client not initialized; use 'async with DataHubAsyncClient()'")
        return self._client

    async def _request(
        self,
        method: str,
        path: str,
        error_cls: Type[RemoteRequestError],
        **kwargs: Any,
    ) -> httpx.Response:
        """Send one request and map any failure onto ``error_cls``."""
        client = self._require_client()
        url = f"{self.api_url}{path}"
        start = perf_counter()
        try:
            resp = await client.request(method, url, headers=self._headers, **kwargs)
        except httpx.HTTPError as exc:
            logger.debug("%s %s failed: %r", method, url, exc)
            raise error_cls(f"{method} {url} failed: {str(exc) or type(exc).__name__}") from exc
        logger.debug(
            "%s %s -> %d in %.3fs", method, url, resp.status_code, perf_counter() - start
        )
        if not resp.is_success:
            raise_for_error_response(resp, error_cls)
        return resp

    @staticmethod
    def _decode(resp: httpx.Response, error_cls: Type[RemoteRequestError]) -> Any:
        try:
            return orjson.loads(resp.content)
        except orjson.JSONDecodeError as exc:
            raise error_cls(f"Undecodable response body: {resp.text!r}") from exc

    async def submit_query(self, query: str) -> Job:
        """Post ``query`` and return the created job."""
        resp = await self._request(
            "POST", self.submit_path, SubmissionError,
            content=orjson.dumps({"sql": query}),
        )
        data = self._decode(resp, SubmissionError)
        try:
            job = Job.from_payload(data)
        except (ValueError, AttributeError) as exc:
            raise SubmissionError(str(exc)) from exc
        logger.info("Submitted query as job %s", job.id)
        return job

    async def get_job_status(self, job_id: str) -> JobStatus:
        """Return the current status of ``job_id``."""
        resp = await self._request("GET", f"/job/{job_id}", StatusFetchError)
        data = self._decode(resp, StatusFetchError)
        try:
            return JobStatus.from_payload(data)
        except (ValueError, TypeError, AttributeError) as exc:
            raise StatusFetchError(str(exc)) from exc

    async def get_job_results(
        self, job_id: str, offset: int = 0, limit: int = 100
    ) -> JobResult[Any]:
        """Return one page of rows of a completed job.

        ``offset`` and ``limit`` are forwarded verbatim; callers fetch further
        pages themselves.
        """
        resp = await self._request(
            "GET", f"/job/{job_id}/results", ResultFetchError,
            params={"offset": offset, "limit": limit},
        )
        data = self._decode(resp, ResultFetchError)
        try:
            return JobResult.from_payload(data)
        except (ValueError, TypeError, KeyError, AttributeError) as exc:
            raise ResultFetchError(f"Malformed job result: {exc}") from exc

    async def cancel_job(self, job_id: str) -> Optional[Dict[str, Any]]:
        """Ask the server to cancel ``job_id`` and return its reply, if any."""
        resp = await self._request("POST", f"/job/{job_id}/cancel", CancelRequestError)
        logger.info("Cancelled job %s", job_id)
        if not resp.content.strip():
            return None
        return self._decode(resp, CancelRequestError)
