import asyncio
import logging
import random

from .errors import ApiTimeoutError

logger = logging.getLogger(__name__)


def next_sleep(current_delay_ms: float, exponential_base: float, use_jitter: bool) -> float:
    """Delay before the next attempt, given the delay used before the previous one.

    With jitter the result lies in ``[current * base, 2 * current * base)``.
    """
    factor = 1.0 + random.random() if use_jitter else 1.0
    return current_delay_ms * exponential_base * factor


def adjust_sleep_for_final_retry(
    max_duration_seconds: int,
    delay_ms: float,
    remaining_ms: float,
    min_sleep_for_final_retry_seconds: int,
    max_execution_time_for_final_retry_seconds: int,
) -> float:
    """Shorten a sleep that would use up the budget so one last attempt still fits.

    Returns the delay unchanged when there is no deadline, when the sleep fits,
    when plenty of budget is left, or when not even a shortened final attempt
    would fit.
    """
    if max_duration_seconds <= 0:
        return delay_ms
    if delay_ms <= remaining_ms:
        return delay_ms
    if min_sleep_for_final_retry_seconds * 1000 < remaining_ms:
        return delay_ms

    adjusted = remaining_ms - max_execution_time_for_final_retry_seconds * 1000
    if adjusted <= 0:
        return delay_ms
    logger.debug(f"Shortening backoff from {delay_ms:.0f}ms to {adjusted:.0f}ms for the final retry")
    return adjusted


async def apply_sleep(delay_ms: float, max_duration_ms: int, remaining_ms: float) -> None:
    if max_duration_ms > 0 and delay_ms > remaining_ms:
        raise ApiTimeoutError(
            f"Skipping sleep to prevent timeout (remaining: {remaining_ms / 1000:.1f}s)"
        )
    await asyncio.sleep(delay_ms / 1000)
