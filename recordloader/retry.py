"""Exponential backoff retry for transient transport failures."""

import asyncio
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from loguru import logger

from .exceptions import RateLimitError, TransientTransportError

T = TypeVar("T")


class RetryState(Enum):
    READY = "ready"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class RetryConfig:
    max_attempts: int = 3
    base_delay: float = 0.5  # seconds
    max_delay: float = 10.0  # seconds
    exponential_base: float = 2.0
    jitter: bool = True
    retry_on_exceptions: List[type] = field(
        default_factory=lambda: [TransientTransportError, ConnectionError, TimeoutError]
    )


class ExponentialBackoffRetry:
    """Runs an async callable, retrying the configured exception types."""

    def __init__(self, config: RetryConfig, name: str = "transport"):
        self.config = config
        self.name = name
        self.attempt_count = 0
        self.total_delay = 0.0
        self.state = RetryState.READY
        self.last_exception: Optional[BaseException] = None

    async def execute(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Call ``func`` until it succeeds or retries are exhausted.

        Exceptions that are not retryable, and the last retryable one once
        ``max_attempts`` is reached, propagate to the caller unchanged.
        """
        self.state = RetryState.RUNNING
        self.attempt_count = 0
        self.total_delay = 0.0

        while True:
            self.attempt_count += 1
            try:
                result = await func(*args, **kwargs)
            except Exception as exc:
                self.last_exception = exc
                retryable = isinstance(exc, tuple(self.config.retry_on_exceptions))
                if not retryable or self.attempt_count >= self.config.max_attempts:
                    self.state = RetryState.FAILED
                    raise
                delay = self._calculate_delay(self.attempt_count - 1, exc)
                logger.warning(
                    "{} attempt {}/{} failed ({}); retrying in {:.2f}s",
                    self.name,
                    self.attempt_count,
                    self.config.max_attempts,
                    exc,
                    delay,
                )
                await asyncio.sleep(delay)
                self.total_delay += delay
            else:
                self.state = RetryState.COMPLETED
                return result

    def _calculate_delay(self, attempt_number: int, exc: Optional[BaseException] = None) -> float:
        if isinstance(exc, RateLimitError) and exc.retry_after:
            return min(exc.retry_after, self.config.max_delay)
        delay = self.config.base_delay * (self.config.exponential_base**attempt_number)
        if self.config.jitter:
            jitter_range = min(delay * 0.1, 1.0)
            delay += random.uniform(-jitter_range, jitter_range)
        return max(0.0, min(delay, self.config.max_delay))

    def get_stats(self) -> Dict[str, Any]:
        return {
            "attempts": self.attempt_count,
            "max_attempts": self.config.max_attempts,
            "total_delay": self.total_delay,
            "state": self.state.value,
            "last_exception": str(self.last_exception) if self.last_exception else None,
        }
