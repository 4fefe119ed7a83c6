from __future__ import annotations

import logging
import os

# Loggers of the HTTP stack underneath DataHubAsyncClient
HTTP_LOGGERS = ("httpx", "httpcore")


def configure_logging(level: str | None = None) -> int:
    """
    Configure root logging once. Level can be given explicitly or taken from
    LOG_LEVEL env var (default INFO).

    The ``datahub_query`` loggers follow the chosen level. httpx and httpcore
    log every request line, which is only useful when debugging a DataHub
    conversation, so they stay at WARNING unless the level is DEBUG.
    Returns the numeric level applied.
    """
    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO")
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        raise ValueError(f"Unknown log level: {level!r}")
    logging.basicConfig(
        level=numeric,
        format="%(asctime)s %(levelname)s %(name)s:%(lineno)d | %(message)s",
    )
    logging.getLogger("datahub_query").setLevel(numeric)
    http_level = logging.DEBUG if numeric <= logging.DEBUG else logging.WARNING
    for name in HTTP_LOGGERS:
        logging.getLogger(name).setLevel(http_level)
    return numeric
