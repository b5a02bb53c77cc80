"""
Typed Exception Hierarchy for Acquirarr

Errors raised while talking to indexers and download clients, and while
creating and importing downloads.

Exception Hierarchy:
    AcquisitionError (base, non-retryable)
    ├── IndexerError (bad API key, bad URL, error document)
    ├── DownloadClientError (client unreachable or rejected the request)
    │   └── DownloadClientAuthError
    ├── DuplicateDownloadError (an active download already covers the target)
    ├── MediaImportError (downloaded content missing or not importable)
    ├── RateLimitExceeded (indexer gate timed out)
    └── NetworkRetryableError (retried by @retry_on_network_error)
"""

import asyncio
import functools
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')

RETRYABLE_STATUSES = {
    429: "Rate limited",
    502: "Bad gateway",
    503: "Service temporarily unavailable",
    504: "Gateway timeout",
}


# ============================================================================
# Exception Hierarchy
# ============================================================================

class AcquisitionError(Exception):
    """
    Base class; fail fast, no retry.

    Args:
        message: Human-readable error description
        status_code: HTTP status of the failing call, if any
        response_data: Decoded response body, for debugging
    """

    def __init__(self, message: str, status_code: int = None, response_data: Dict[str, Any] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.response_data = response_data

    def __str__(self) -> str:
        if self.status_code:
            return f"{self.__class__.__name__} (HTTP {self.status_code}): {self.message}"
        return f"{self.__class__.__name__}: {self.message}"


class IndexerError(AcquisitionError):
    """Indexer rejected the request or answered with an error document."""

    def __init__(self, message: str, indexer: str = None, **kwargs):
        super().__init__(message, **kwargs)
        self.indexer = indexer


class DownloadClientError(AcquisitionError):
    """
    Download client could not be reached or refused the request.

    Surfaced to interactive callers as HTTP 502; background loops log it and
    move on to the next item.
    """

    def __init__(self, message: str, client: str = None, **kwargs):
        super().__init__(message, **kwargs)
        self.client = client


class DownloadClientAuthError(DownloadClientError):
    """Login or API key refused."""


class DuplicateDownloadError(AcquisitionError):
    """
    A grab would create a second download for a covered target.

    Attributes:
        existing_download_id: the download that already covers it
        reason: 'active' (non-terminal download for the target) or
            'same_url' (identical source URL grabbed before)
    """

    def __init__(self, message: str, existing_download_id: Optional[int] = None,
                 reason: str = "active"):
        super().__init__(message, status_code=409)
        self.existing_download_id = existing_download_id
        self.reason = reason


class MediaImportError(AcquisitionError):
    """Downloaded content could not be located or moved into the library."""


class NetworkRetryableError(AcquisitionError):
    """
    Transient failure: timeout, connection error, 429/502/503/504.

    retry_after (seconds) overrides the computed backoff when the server
    sent one.
    """

    def __init__(self, message: str, original_exception: Exception = None,
                 retry_after: Optional[float] = None):
        super().__init__(message)
        self.original_exception = original_exception
        self.retry_after = retry_after


class RateLimitExceeded(AcquisitionError):
    """The indexer gate could not hand out a slot within its timeout."""

    def __init__(self, service: str, retry_after: float, message: str = None):
        super().__init__(message or f"Rate limit exceeded for {service}. Retry after {retry_after:.1f}s")
        self.service = service
        self.retry_after = retry_after


# ============================================================================
# Retry Decorator
# ============================================================================

def retry_on_network_error(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    exponential_base: int = 2,
    retryable_exceptions: tuple = (NetworkRetryableError,)
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """
    Retry a coroutine on transient errors with exponential backoff.

    delay = min(base_delay * exponential_base ** attempt, max_delay), or the
    error's retry_after (capped the same way) when it carries one. Any other
    exception propagates on the first attempt.

    Example:
        @retry_on_network_error(max_retries=1, base_delay=3.0)
        async def request(self, client, params):
            ...
    """

    def _delay_for(attempt: int, error: Exception) -> float:
        if isinstance(error, NetworkRetryableError) and error.retry_after:
            return min(error.retry_after, max_delay)
        return min(base_delay * (exponential_base ** attempt), max_delay)

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except retryable_exceptions as e:
                    if attempt >= max_retries:
                        logger.error(f"{func.__name__} failed after {max_retries} retries: {e}")
                        raise
                    delay = _delay_for(attempt, e)
                    attempt += 1
                    logger.warning(
                        f"{func.__name__} attempt {attempt}/{max_retries + 1} failed: {e}. "
                        f"Retrying in {delay}s"
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator


# ============================================================================
# HTTP status mapping
# ============================================================================

def classify_http_error(status_code: int, message: str, response_data: Dict[str, Any] = None,
                        error_class: type = AcquisitionError,
                        retry_after: Optional[float] = None) -> AcquisitionError:
    """
    Map an HTTP error status to an exception.

    429/502/503/504 become NetworkRetryableError (retry_after taken from the
    argument or response_data['retry_after']); anything else an instance of
    error_class carrying the status.
    """
    if status_code in RETRYABLE_STATUSES:
        if retry_after is None and response_data and 'retry_after' in response_data:
            retry_after = float(response_data['retry_after'])
        return NetworkRetryableError(
            f"{RETRYABLE_STATUSES[status_code]} (HTTP {status_code}): {message}",
            retry_after=retry_after,
        )
    return error_class(message, status_code=status_code, response_data=response_data)


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Retry-After header in seconds; HTTP-date values are ignored."""
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None
