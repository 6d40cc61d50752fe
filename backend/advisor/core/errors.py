"""Error taxonomy for provider calls and the task workflow.

Provider failures (Gmail, Calendar, HubSpot) are classified into retryable and
non-retryable ``ProviderError``s. ``with_retry`` retries the retryable ones with
exponential backoff; everything else surfaces immediately.
"""

import logging
from typing import Awaitable, Callable, TypeVar

import httpx
from google.auth.exceptions import RefreshError
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ProviderError(Exception):
    def __init__(
        self,
        message: str,
        service: str,
        code: str = "UNKNOWN_ERROR",
        status_code: int | None = None,
        retryable: bool = False,
        retry_after: float | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.service = service
        self.code = code
        self.status_code = status_code
        self.retryable = retryable
        self.retry_after = retry_after

    @property
    def needs_reconnect(self) -> bool:
        return self.code in ("AUTH_REQUIRED", "TOKEN_EXPIRED")


class TaskNotFoundError(Exception):
    pass


class WorkflowError(Exception):
    """Raised on an invalid task state transition or a malformed workflow."""


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def classify_error(exc: BaseException, service: str) -> ProviderError:
    """Map a raw exception from a provider call onto the ProviderError taxonomy."""
    if isinstance(exc, ProviderError):
        return exc

    if isinstance(exc, RefreshError):
        return ProviderError(
            f"{service} access token expired. Please reconnect your account.",
            service, code="TOKEN_EXPIRED", status_code=403,
        )

    if isinstance(exc, httpx.HTTPStatusError):
        response = exc.response
        status = response.status_code
        body = response.text.lower() if response.content else ""

        if status == 401:
            return ProviderError(
                f"{service} authentication failed. Please reconnect your account.",
                service, code="AUTH_REQUIRED", status_code=401,
            )
        if status == 403 and ("quota" in body or "ratelimitexceeded" in body):
            return ProviderError(
                f"{service} API quota exceeded. Please try again later.",
                service, code="QUOTA_EXCEEDED", status_code=403, retryable=True,
                retry_after=_retry_after(response),
            )
        if status == 403:
            return ProviderError(
                f"{service} access token expired. Please reconnect your account.",
                service, code="TOKEN_EXPIRED", status_code=403,
            )
        if status == 429:
            return ProviderError(
                f"{service} API rate limit reached. Please try again later.",
                service, code="RATE_LIMITED", status_code=429, retryable=True,
                retry_after=_retry_after(response),
            )
        if status == 400:
            return ProviderError(
                f"{service} API bad request: {response.text[:200] or 'Invalid request parameters'}",
                service, code="BAD_REQUEST", status_code=400,
            )
        if status >= 500:
            return ProviderError(
                f"{service} server error. Please try again later.",
                service, code="SERVER_ERROR", status_code=status, retryable=True,
            )
        return ProviderError(
            f"{service} API error: HTTP {status}",
            service, code="UNKNOWN_ERROR", status_code=status,
        )

    if isinstance(exc, httpx.TransportError):
        return ProviderError(
            f"{service} network error. Please try again later.",
            service, code="NETWORK_ERROR", status_code=503, retryable=True,
        )

    return ProviderError(f"{service} API error: {exc}", service)


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, ProviderError) and exc.retryable


def _backoff(base_delay: float) -> Callable[[RetryCallState], float]:
    exponential = wait_exponential(multiplier=base_delay)

    def wait(state: RetryCallState) -> float:
        exc = state.outcome.exception() if state.outcome else None
        if isinstance(exc, ProviderError) and exc.retry_after is not None:
            return exc.retry_after
        return exponential(state)

    return wait


def _log_retry(service: str, max_attempts: int) -> Callable[[RetryCallState], None]:
    def before_sleep(state: RetryCallState) -> None:
        delay = state.next_action.sleep if state.next_action else 0
        logger.warning(
            f"{service} API error on attempt {state.attempt_number}/{max_attempts}. "
            f"Retrying in {delay:.1f}s..."
        )

    return before_sleep


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    service: str,
    max_attempts: int = 3,
    base_delay: float = 1.0,
) -> T:
    """Run ``operation``, retrying classified retryable errors with backoff."""

    async def attempt() -> T:
        try:
            return await operation()
        except Exception as e:
            raise classify_error(e, service) from e

    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=_backoff(base_delay),
        retry=retry_if_exception(_is_retryable),
        before_sleep=_log_retry(service, max_attempts),
        reraise=True,
    )
    return await retrying(attempt)
