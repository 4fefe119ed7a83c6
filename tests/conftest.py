from __future__ import annotations

import asyncio
from typing import Any, List, Optional, Tuple, Union

import httpx
import pytest

from datahub_query.clients.datahub import DEFAULT_API_PATH, DataHubAsyncClient
from datahub_query.core.backoff import BackoffPolicy

BASE_URL = "http://datahub.test"
API_URL = BASE_URL + DEFAULT_API_PATH

# Keeps the poll loop fast without busy-spinning
FAST_POLL = BackoffPolicy(initial_delay=0.001, max_delay=0.004)

RESULT_PAYLOAD = {
    "rowCount": 2,
    "schema": [
        {"name": "id", "type": {"name": "VARCHAR"}},
        {
            "name": "c8y_Temperature",
            "type": {
                "name": "STRUCT",
                "subSchema": [{"name": "value", "type": {"name": "DOUBLE"}}],
            },
        },
    ],
    "rows": [
        {"id": "1", "c8y_Temperature": {"value": 21.5}},
        {"id": "2", "c8y_Temperature": {"value": 22.0}},
    ],
}

Reply = Tuple[int, Union[dict, str]]


def _build(reply: Reply) -> httpx.Response:
    status, body = reply
    if isinstance(body, str):
        return httpx.Response(status, text=body)
    return httpx.Response(status, json=body)


class FakeDataHub:
    """In-memory stand-in for the DataHub job API.

    ``status_replies`` are served in order; the last one repeats forever.
    """

    def __init__(self) -> None:
        self.submit_reply: Reply = (200, {"id": "42"})
        self.status_replies: List[Reply] = [(200, {"jobState": "COMPLETED"})]
        self.results_reply: Reply = (200, RESULT_PAYLOAD)
        self.cancel_reply: Reply = (200, {})
        self.status_delay: float = 0.0
        self.requests: List[httpx.Request] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path[len(DEFAULT_API_PATH):]
        if request.method == "POST" and path == "/job/sql":
            return _build(self.submit_reply)
        if request.method == "POST" and path.endswith("/cancel"):
            return _build(self.cancel_reply)
        if request.method == "GET" and path.endswith("/results"):
            return _build(self.results_reply)
        if request.method == "GET" and path.startswith("/job/"):
            if self.status_delay:
                await asyncio.sleep(self.status_delay)
            if len(self.status_replies) > 1:
                return _build(self.status_replies.pop(0))
            return _build(self.status_replies[0])
        return httpx.Response(404, text="no such endpoint")

    def calls(self, method: str, suffix: str) -> List[httpx.Request]:
        return [
            r for r in self.requests
            if r.method == method and r.url.path.endswith(suffix)
        ]

    def status_calls(self, job_id: str = "42") -> List[httpx.Request]:
        return self.calls("GET", f"/job/{job_id}")


@pytest.fixture
def datahub() -> FakeDataHub:
    return FakeDataHub()


@pytest.fixture
async def http_client(datahub: FakeDataHub):
    async with httpx.AsyncClient(transport=httpx.MockTransport(datahub)) as http:
        yield http


@pytest.fixture
async def client(http_client: httpx.AsyncClient):
    async with DataHubAsyncClient(
        base_url=BASE_URL, token="secret", http_client=http_client
    ) as c:
        yield c


def status(state: str, **extra: Any) -> Reply:
    return 200, {"jobState": state, "queryType": "REST", **extra}


async def settle(seconds: Optional[float] = 0.05) -> None:
    """Let abandoned background work run for a little while."""
    await asyncio.sleep(seconds)
