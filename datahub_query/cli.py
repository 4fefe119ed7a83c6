"""Command line interface for running a single DataHub query."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

import aiofiles
import httpx
import orjson

from datahub_query.clients.datahub import DataHubAsyncClient
from datahub_query.config import initialize_environment, parse_timeout
from datahub_query.errors import (
    DataHubError,
    QueryTimeout,
    QueryTimeoutCancelUnrecoverable,
)
from datahub_query.logging_setup import configure_logging
from datahub_query.service import QueryService
from datahub_query.telemetry.metrics import QueryMetrics

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_TIMEOUT = 2
EXIT_TIMEOUT_CANCEL_FAILED = 3


def build_parser() -> argparse.ArgumentParser:
    """Return the argument parser for the command line interface."""
    p = argparse.ArgumentParser(description="Run a SQL query against Cumulocity DataHub")
    p.add_argument("query", help="SQL query text")
    p.add_argument(
        "--timeout",
        type=parse_timeout,
        default=None,
        help="Seconds to wait for the job before cancelling it ('inf' waits forever). "
             "Defaults to $DATAHUB_QUERY_TIMEOUT.",
    )
    p.add_argument("--offset", type=int, default=None, help="First row to fetch.")
    p.add_argument("--limit", type=int, default=None, help="Number of rows to fetch.")
    p.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Write the result JSON to this file instead of stdout.",
    )
    p.add_argument(
        "--log-level",
        default=None,
        help="Logging level (DEBUG, INFO, WARNING, ERROR). Defaults to $LOG_LEVEL or INFO.",
    )
    return p


async def main(
    argv: Optional[List[str]] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> int:
    """Run one query using command line arguments and return the exit code."""
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)
    config = await initialize_environment()
    metrics = QueryMetrics()

    async with DataHubAsyncClient(
        base_url=config.base_url,
        api_path=config.api_path,
        submit_path=config.submit_path,
        token=config.token,
        username=config.username,
        password=config.password,
        request_timeout=config.req_timeout,
        max_connections=config.http_max,
        http_client=http_client,
    ) as client:
        service = QueryService(
            client, poll_policy=config.poll_policy,
            defaults=config.query, metrics=metrics,
        )
        try:
            result = await service.query_for_results(
                args.query, timeout=args.timeout, offset=args.offset, limit=args.limit,
            )
        except QueryTimeoutCancelUnrecoverable as exc:
            logger.error("%s (job %s may still be running on the server)", exc, exc.job_id)
            return EXIT_TIMEOUT_CANCEL_FAILED
        except QueryTimeout as exc:
            logger.error("%s after %.1f s (job %s cancelled)", exc, exc.timeout, exc.job_id)
            return EXIT_TIMEOUT
        except DataHubError as exc:
            logger.error("Query failed (%s): %s", exc.lifecycle_state or "REQUEST_FAILED", exc)
            return EXIT_FAILED
        finally:
            txt, _ = metrics.summary()
            logger.debug("\n%s", txt)

    payload = orjson.dumps(result.to_payload(), option=orjson.OPT_INDENT_2)
    if args.output is not None:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(args.output, "wb") as fd:
            await fd.write(payload)
        logger.info("Wrote %d row(s) to %s", len(result.rows), args.output)
    else:
        sys.stdout.write(payload.decode() + "\n")
    return EXIT_OK


def run() -> None:
    """Console-script entry point."""
    sys.exit(asyncio.run(main()))
