"""Retry policies and recovery helpers for transient failures."""

import random
import time
from functools import wraps
from typing import Any, Callable, List, Optional, Type

from ..models.core import BackoffStrategy, Node, WorkflowSettings
from .exceptions import StorageError, WorkflowEngineError
from .logging import ErrorRecoveryLogger, get_logger

logger = get_logger(__name__)


class RetryPolicy:
    """Attempt budget and backoff schedule for one step."""

    def __init__(
        self,
        retry_limit: int = 1,
        backoff: BackoffStrategy = BackoffStrategy.CONSTANT,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        exponential_base: float = 2.0
    ):
        if retry_limit < 1:
            raise ValueError("retry_limit must allow at least one attempt")
        self.retry_limit = retry_limit
        self.backoff = BackoffStrategy(backoff)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base

    @classmethod
    def for_node(cls, node: Node, settings: WorkflowSettings) -> "RetryPolicy":
        """Node overrides take precedence over workflow settings."""
        return cls(
            retry_limit=node.retry_limit or settings.retry_limit,
            backoff=node.retry_backoff or settings.retry_backoff,
            base_delay=node.retry_delay if node.retry_delay is not None else settings.retry_delay,
            max_delay=settings.max_retry_delay,
        )

    def has_attempts_left(self, attempt: int) -> bool:
        return attempt < self.retry_limit

    def get_delay(self, attempt: int) -> float:
        """Delay to wait after failed attempt number ``attempt`` (1-based)."""
        if self.backoff == BackoffStrategy.CONSTANT:
            delay = self.base_delay
        elif self.backoff == BackoffStrategy.LINEAR:
            delay = self.base_delay * attempt
        else:
            delay = self.base_delay * (self.exponential_base ** (attempt - 1))
        return min(delay, self.max_delay)

    def __repr__(self) -> str:
        return (f"RetryPolicy(retry_limit={self.retry_limit}, backoff={self.backoff.value}, "
                f"base_delay={self.base_delay})")


class RetryConfig:
    """Configuration for retrying internal operations such as storage writes."""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 0.1,
        max_delay: float = 2.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
        retryable_exceptions: Optional[List[Type[Exception]]] = None
    ):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.retryable_exceptions = retryable_exceptions or [StorageError]

    def should_retry(self, exception: Exception, attempt: int) -> bool:
        if attempt >= self.max_attempts:
            return False
        if not any(isinstance(exception, exc_type) for exc_type in self.retryable_exceptions):
            return False
        if isinstance(exception, WorkflowEngineError):
            return exception.recoverable
        return True

    def get_delay(self, attempt: int) -> float:
        delay = min(self.base_delay * (self.exponential_base ** (attempt - 1)), self.max_delay)
        if self.jitter:
            delay *= (0.5 + random.random() * 0.5)
        return delay


def with_retry(config: Optional[RetryConfig] = None):
    """Decorator to add retry logic to functions."""
    if config is None:
        config = RetryConfig()

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            return _execute_with_retry(func, config, *args, **kwargs)
        return wrapper

    return decorator


def _execute_with_retry(func: Callable, config: RetryConfig, *args, **kwargs) -> Any:
    recovery_logger = ErrorRecoveryLogger(func.__name__)

    for attempt in range(1, config.max_attempts + 1):
        try:
            result = func(*args, **kwargs)
            if attempt > 1:
                recovery_logger.log_recovery_success(func.__name__, attempt)
            return result
        except Exception as e:
            if not config.should_retry(e, attempt):
                if attempt > 1:
                    recovery_logger.log_recovery_failure(func.__name__, e, attempt)
                raise
            delay = config.get_delay(attempt)
            recovery_logger.log_recovery_attempt(func.__name__, e, attempt, config.max_attempts, delay)
            time.sleep(delay)
