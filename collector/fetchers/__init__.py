"""
Fetchers for third-party listing endpoints.
"""

from collector.fetchers.source_client import (
    FetchResponse,
    SourceClient,
    SourceFetchError,
    build_url,
)

__all__ = [
    "FetchResponse",
    "SourceClient",
    "SourceFetchError",
    "build_url",
]
