"""
Source HTTP client - requests with retry and backoff.

Every source speaks the same query protocol on its list/detail endpoint:

    ?ac=list&pg=2&t=13        list page 2 of raw category 13
    ?ac=detail&ids=1,2,3      detail records
    ?ac=detail&wd=keyword     keyword search
    ?ac=detail&pg=1&h=24      items updated in the last 24 hours

The client returns raw bytes; decoding is left to the response parser.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import requests
from django.conf import settings

logger = logging.getLogger(__name__)

ACTION_LIST = "list"
ACTION_DETAIL = "detail"


class SourceFetchError(Exception):
    """A source request failed after all retries."""

    def __init__(self, message: str, status_code: int = 0, timed_out: bool = False):
        super().__init__(message)
        self.status_code = status_code
        self.timed_out = timed_out


@dataclass
class FetchResponse:
    """Response from a source request."""

    content: bytes
    status_code: int
    elapsed_ms: int
    success: bool
    error: Optional[str] = None
    timed_out: bool = False


def build_url(
    endpoint_url: str,
    action: str = ACTION_LIST,
    page: Optional[int] = None,
    category_id: Any = None,
    keyword: str = "",
    ids: Optional[Iterable[Any]] = None,
    hours: Optional[int] = None,
) -> str:
    """
    Build a query URL against a source endpoint.

    Query parameters already present on the endpoint are kept; protocol
    parameters override them.
    """
    parts = urlsplit(endpoint_url)
    params: Dict[str, str] = dict(parse_qsl(parts.query, keep_blank_values=True))

    params["ac"] = action
    if page:
        params["pg"] = str(page)
    if category_id not in (None, ""):
        params["t"] = str(category_id)
    if keyword:
        params["wd"] = keyword
    if ids:
        params["ids"] = ",".join(str(i) for i in ids)
    if hours:
        params["h"] = str(hours)

    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(params), parts.fragment))


class SourceClient:
    """
    Blocking HTTP client for source endpoints.

    Features:
    - Connection pooling through a requests.Session
    - Configurable timeout and retry count
    - Exponential backoff on timeouts, connection errors and 5xx
    - 4xx responses are returned without retrying
    """

    DEFAULT_USER_AGENT = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/120.0.0.0 Safari/537.36"
    )

    DEFAULT_HEADERS = {
        "Accept": "application/json, application/xml;q=0.9, */*;q=0.8",
        "Accept-Encoding": "gzip, deflate",
        "Connection": "keep-alive",
    }

    def __init__(
        self,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        backoff: Optional[float] = None,
        user_agent: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the client.

        Args:
            timeout: Request timeout in seconds (default from settings)
            max_retries: Retries after the first attempt (default from settings)
            backoff: Base delay before the first retry, doubled per attempt
            user_agent: Custom User-Agent string
            session: Optional shared requests.Session
        """
        self.timeout = timeout if timeout is not None else getattr(
            settings, "COLLECTOR_REQUEST_TIMEOUT", 30
        )
        self.max_retries = max_retries if max_retries is not None else getattr(
            settings, "COLLECTOR_MAX_RETRIES", 2
        )
        self.backoff = backoff if backoff is not None else getattr(
            settings, "COLLECTOR_RETRY_BACKOFF", 1.0
        )
        self.user_agent = user_agent or getattr(
            settings, "COLLECTOR_USER_AGENT", self.DEFAULT_USER_AGENT
        )
        self._session = session

    @property
    def session(self) -> requests.Session:
        if self._session is None:
            self._session = requests.Session()
            self._session.headers.update({
                **self.DEFAULT_HEADERS,
                "User-Agent": self.user_agent,
            })
        return self._session

    def close(self):
        if self._session is not None:
            self._session.close()
            self._session = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def fetch(self, url: str, timeout: Optional[float] = None) -> FetchResponse:
        """
        Fetch a URL, never raising.

        Returns:
            FetchResponse with content, status and elapsed time
        """
        started = time.monotonic()
        try:
            response = self._get_with_retry(url, timeout or self.timeout)
        except SourceFetchError as e:
            return FetchResponse(
                content=b"",
                status_code=e.status_code,
                elapsed_ms=int((time.monotonic() - started) * 1000),
                success=False,
                error=str(e),
                timed_out=e.timed_out,
            )

        elapsed_ms = int((time.monotonic() - started) * 1000)
        is_success = 200 <= response.status_code < 300
        error_msg = None
        if not is_success:
            error_msg = f"HTTP {response.status_code}"
            logger.warning(f"HTTP {response.status_code} for {url}")

        return FetchResponse(
            content=response.content,
            status_code=response.status_code,
            elapsed_ms=elapsed_ms,
            success=is_success,
            error=error_msg,
        )

    def get(self, url: str, timeout: Optional[float] = None) -> bytes:
        """
        Fetch a URL and return the body.

        Raises:
            SourceFetchError: On timeout, connection failure or non-2xx status
        """
        result = self.fetch(url, timeout=timeout)
        if not result.success:
            raise SourceFetchError(
                result.error or f"Failed to fetch {url}",
                status_code=result.status_code,
                timed_out=result.timed_out,
            )
        return result.content

    def _get_with_retry(self, url: str, timeout: float) -> requests.Response:
        attempts = max(self.max_retries, 0) + 1
        last_error: Optional[SourceFetchError] = None

        for attempt in range(attempts):
            try:
                response = self.session.get(url, timeout=timeout)

                # Don't retry on 4xx client errors
                if response.status_code < 500:
                    return response

                last_error = SourceFetchError(
                    f"HTTP {response.status_code}", status_code=response.status_code
                )
                logger.warning(
                    f"HTTP error {response.status_code} for {url} "
                    f"(attempt {attempt + 1}/{attempts})"
                )

            except requests.exceptions.Timeout as e:
                last_error = SourceFetchError(f"Timeout: {e}", timed_out=True)
                logger.warning(f"Timeout fetching {url} (attempt {attempt + 1}/{attempts})")

            except requests.exceptions.RequestException as e:
                last_error = SourceFetchError(f"Request failed: {e}")
                logger.warning(f"Error fetching {url}: {e} (attempt {attempt + 1}/{attempts})")

            if attempt < attempts - 1 and self.backoff:
                time.sleep(self.backoff * (2 ** attempt))

        raise last_error
