from __future__ import annotations

from .datahub import DataHubAsyncClient, raise_for_error_response

__all__ = [
    "DataHubAsyncClient",
    "raise_for_error_response",
]
