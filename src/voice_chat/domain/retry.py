import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int = 3
    backoff_seconds: float = 0.5
    multiplier: float = 1.0

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("RetryPolicy needs at least one attempt")

    def delay_after(self, attempt: int) -> float:
        return self.backoff_seconds * (self.multiplier ** (attempt - 1))


class RetryExhaustedError(Exception):
    def __init__(self, description: str, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"{description} failed after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    description: str = "operation",
) -> T:
    last_error: Exception | None = None
    for attempt in range(1, policy.attempts + 1):
        try:
            result = await operation()
        except Exception as exc:
            last_error = exc
            logger.warning("%s failed (attempt %d/%d): %s", description, attempt, policy.attempts, exc)
            if attempt < policy.attempts:
                await asyncio.sleep(policy.delay_after(attempt))
            continue
        if attempt > 1:
            logger.info("%s succeeded on attempt %d", description, attempt)
        return result
    raise RetryExhaustedError(description, policy.attempts, last_error)
