# backend/modules/payouts/utils/retry_decorator.py

import asyncio
import logging
import random
from functools import wraps
from typing import Any, Callable, Optional, Tuple

import httpx

from core.exceptions import GatewayTimeoutError, StructuralGatewayError, TransientGatewayError

logger = logging.getLogger(__name__)


class RetryConfig:
    """Configuration for retry behavior"""

    def __init__(
        self,
        max_attempts: int = 3,
        initial_delay: float = 1.0,
        max_delay: float = 30.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
    ):
        self.max_attempts = max(1, max_attempts)
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter

    def calculate_delay(self, attempt: int) -> float:
        """Calculate delay for next retry attempt"""
        delay = min(
            self.initial_delay * (self.exponential_base ** (attempt - 1)),
            self.max_delay
        )

        if self.jitter:
            # Add random jitter (±25%)
            jitter_range = delay * 0.25
            delay += random.uniform(-jitter_range, jitter_range)

        return max(delay, 0)


class ErrorClassification:
    """Error classification for retry decisions"""

    # Only failures where the request provably did not execute, or the
    # gateway asked us to come back later
    TRANSIENT_STATUS_CODES = (
        429,  # Too Many Requests
        502,  # Bad Gateway
        503,  # Service Unavailable
        504,  # Gateway Timeout
    )

    TRANSIENT_TRANSPORT_ERRORS = (
        httpx.ConnectError,
        httpx.ConnectTimeout,
        httpx.PoolTimeout,
    )

    @classmethod
    def classify_error(cls, error: Exception) -> Tuple[bool, str]:
        """
        Classify an error as transient or permanent

        Returns:
            Tuple of (is_transient, reason)
        """
        if isinstance(error, GatewayTimeoutError):
            return False, "Timeout with unknown outcome"

        if isinstance(error, StructuralGatewayError):
            return False, f"Structural gateway error: {error.message}"

        if isinstance(error, TransientGatewayError):
            status_code = error.http_status
            if status_code is None or status_code in cls.TRANSIENT_STATUS_CODES:
                return True, f"Transient gateway error ({status_code or 'transport'})"
            return False, f"HTTP {status_code} - Permanent error"

        if isinstance(error, cls.TRANSIENT_TRANSPORT_ERRORS):
            return True, "Failed to connect to server"

        # Default to permanent (don't retry unknown errors)
        return False, "Unknown error type"


def is_retryable_error(error: Exception) -> bool:
    """Check if an error is retryable based on classification"""
    is_transient, reason = ErrorClassification.classify_error(error)

    if is_transient:
        logger.debug(f"Error classified as transient: {reason}")
    else:
        logger.debug(f"Error classified as permanent: {reason}")
    return is_transient


def retry_async(config: Optional[RetryConfig] = None):
    """
    Async retry decorator for payout gateway operations

    Usage:
        @retry_async(RetryConfig(max_attempts=5))
        async def create_session():
            ...
    """
    if config is None:
        config = RetryConfig()

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            for attempt in range(1, config.max_attempts + 1):
                try:
                    if attempt > 1:
                        logger.info(
                            f"Retry attempt {attempt}/{config.max_attempts} "
                            f"for {func.__name__}"
                        )

                    result = await func(*args, **kwargs)

                    if attempt > 1:
                        logger.info(f"Retry successful for {func.__name__}")

                    return result

                except Exception as e:
                    if not is_retryable_error(e):
                        logger.warning(
                            f"Non-retryable error in {func.__name__}: "
                            f"{type(e).__name__}: {str(e)}"
                        )
                        raise

                    if attempt >= config.max_attempts:
                        logger.error(
                            f"Max retry attempts ({config.max_attempts}) exceeded "
                            f"for {func.__name__}: {type(e).__name__}: {str(e)}"
                        )
                        raise

                    delay = config.calculate_delay(attempt)

                    logger.warning(
                        f"Retryable error in {func.__name__} "
                        f"(attempt {attempt}/{config.max_attempts}): "
                        f"{type(e).__name__}: {str(e)}. "
                        f"Retrying in {delay:.2f} seconds..."
                    )

                    await asyncio.sleep(delay)

            raise RuntimeError(f"Unexpected retry logic error in {func.__name__}")

        return wrapper

    return decorator
