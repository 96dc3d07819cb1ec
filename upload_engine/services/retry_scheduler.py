"""
Retry Scheduler.
Maps (retry index, error class) to a backoff delay or a do-not-retry decision.
"""
from enum import Enum
from typing import Optional, Sequence, Tuple

DEFAULT_RETRY_DELAYS: Tuple[float, ...] = (0.0, 3.0, 5.0, 10.0, 20.0)


class ErrorClass(str, Enum):
    """Classification of a failed attempt."""
    
    RETRYABLE = "retryable"
    FATAL = "fatal"


class RetryScheduler:
    """
    Stateless backoff policy.
    
    `attempt` is the zero-based index of the retry about to be made: after
    the first failure the caller asks for next_delay(0, ...) and waits
    delays[0]. Indexes past the end of the delay sequence hold at its last
    value; indexes at or beyond max_retries return None. With the defaults
    an operation is tried once plus five retries, and an exhausted cycle
    waits exactly sum(delays).
    """
    
    def __init__(self, delays: Sequence[float] = DEFAULT_RETRY_DELAYS, max_retries: Optional[int] = None):
        delays = tuple(float(delay) for delay in delays)
        if not delays:
            raise ValueError("delays must not be empty")
        if any(delay < 0 for delay in delays):
            raise ValueError("delays must be non-negative")
        if any(later < earlier for earlier, later in zip(delays, delays[1:])):
            raise ValueError("delays must be non-decreasing")
        
        self.delays = delays
        self.max_retries = len(delays) if max_retries is None else max_retries
        if self.max_retries < 0:
            raise ValueError("max_retries must not be negative")
    
    def next_delay(self, attempt: int, error_class: ErrorClass) -> Optional[float]:
        """
        Delay in seconds before the given retry, or None to stop retrying.
        
        Args:
            attempt: Zero-based index of the upcoming retry
            error_class: Classification of the failure that preceded it
        """
        if attempt < 0:
            raise ValueError("attempt must be non-negative")
        if error_class is ErrorClass.FATAL:
            return None
        if attempt >= self.max_retries:
            return None
        return self.delays[min(attempt, len(self.delays) - 1)]
