# catsync Retry Manager
# Error classification and exponential backoff around a single remote call

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from tenacity import RetryCallState, Retrying, retry_if_exception, stop_after_attempt

from catsync.sync.errors import AuthError, RateLimitError, TransientNetworkError, ValidationError

logger = logging.getLogger(__name__)


class ErrorClass(str, Enum):
    """Whether an error is worth another attempt."""

    RETRYABLE = "retryable"
    FATAL = "fatal"


class ErrorKind(str, Enum):
    """Why a dispatch ended unsuccessfully."""

    FATAL = "fatal"
    RETRY_EXHAUSTED = "retry_exhausted"


def classify_error(exc: BaseException) -> ErrorClass:
    """
    Classify an error raised by a remote call.

    Rate limiting, timeouts, connection failures and 5xx responses are
    retryable. Authentication, validation, other 4xx responses and
    anything unrecognized are fatal.

    Args:
        exc: The raised exception.

    Returns:
        ErrorClass of the exception.
    """
    if isinstance(exc, (RateLimitError, TransientNetworkError)):
        return ErrorClass.RETRYABLE
    if isinstance(exc, (AuthError, ValidationError)):
        return ErrorClass.FATAL
    if isinstance(exc, (TimeoutError, ConnectionError)):
        return ErrorClass.RETRYABLE

    status = getattr(exc, "status_code", None)
    if isinstance(status, int) and (status == 429 or status >= 500):
        return ErrorClass.RETRYABLE
    return ErrorClass.FATAL


def _is_retryable(exc: BaseException) -> bool:
    return classify_error(exc) is ErrorClass.RETRYABLE


@dataclass
class DispatchResult:
    """Outcome of one item's dispatch, after all retries."""

    success: bool
    attempts: int
    error_kind: Optional[str] = None
    error: Optional[BaseException] = None
    response: Any = None

    @property
    def error_message(self) -> Optional[str]:
        """String form of the final error."""
        return str(self.error) if self.error is not None else None

    @property
    def is_auth_failure(self) -> bool:
        """Check if the call failed on credentials."""
        return isinstance(self.error, AuthError)

    @property
    def is_quota_exhausted(self) -> bool:
        """Check if rate limiting persisted through every retry."""
        if self.error_kind != ErrorKind.RETRY_EXHAUSTED.value:
            return False
        return isinstance(self.error, RateLimitError) or getattr(self.error, "status_code", None) == 429


class RetryManager:
    """
    Executes remote calls with retry and exponential backoff.

    Only retryable errors consume retries. Waits block the caller through
    the injected sleep function.
    """

    def __init__(
        self,
        *,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize retry manager.

        Args:
            max_retries: Retries after the first attempt.
            base_delay: Delay in seconds before the first retry.
            max_delay: Upper bound for computed backoff delays.
            sleep: Blocking sleep function.
        """
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep

    def delay_for(self, attempt: int, error: Optional[BaseException] = None) -> float:
        """
        Backoff delay before retry number ``attempt`` (0-based).

        A server-provided Retry-After longer than the base delay becomes the
        base, so a constant hint still doubles on every retry. The cap never
        cuts below the hint itself.
        """
        base = self.base_delay
        ceiling = self.max_delay
        retry_after = getattr(error, "retry_after", None)
        if retry_after is not None and retry_after > base:
            base = float(retry_after)
            ceiling = max(ceiling, base)
        return min(base * (2**attempt), ceiling)

    def _wait(self, retry_state: RetryCallState) -> float:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        return self.delay_for(retry_state.attempt_number - 1, error)

    def _log_retry(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        wait = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning(
            "Retryable error on attempt %d/%d, waiting %.2fs: %s",
            retry_state.attempt_number,
            self.max_retries + 1,
            wait,
            error,
        )

    def execute_with_retry(self, call: Callable[[], Any]) -> DispatchResult:
        """
        Execute a remote call with classification and backoff.

        Args:
            call: Zero-argument callable performing the request.

        Returns:
            DispatchResult, never raises for errors raised by ``call``.
        """
        attempts = 0

        def attempt() -> Any:
            nonlocal attempts
            attempts += 1
            return call()

        retrying = Retrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=self._wait,
            retry=retry_if_exception(_is_retryable),
            sleep=self._sleep,
            before_sleep=self._log_retry,
            reraise=True,
        )

        try:
            response = retrying(attempt)
        except Exception as exc:
            if classify_error(exc) is ErrorClass.FATAL:
                kind = ErrorKind.FATAL
            else:
                kind = ErrorKind.RETRY_EXHAUSTED
            logger.debug("Dispatch failed after %d attempt(s) (%s): %s", attempts, kind.value, exc)
            return DispatchResult(success=False, attempts=attempts, error_kind=kind.value, error=exc)

        return DispatchResult(success=True, attempts=attempts, response=response)
