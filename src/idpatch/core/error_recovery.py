"""
IDPatch Retry & Recovery Helpers
Bounded retry for calls into external tools
"""

import time
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional


logger = logging.getLogger(__name__)


@dataclass
class RetryResult:
    """Result of a bounded retry loop"""
    success: bool
    attempts: int
    value: Any = None
    last_error: Optional[Exception] = None


def retry_operation(operation: Callable[[int], Any], attempts: int = 3,
                    delay: float = 1.0, description: str = "operation",
                    sleep: Callable[[float], None] = time.sleep) -> RetryResult:
    """
    Call ``operation`` until it returns a truthy value or attempts run out.

    Args:
        operation: Callable receiving the 1-based attempt number
        attempts: Maximum number of attempts (at least 1)
        delay: Seconds to sleep after a failed attempt
        description: Used in log messages
        sleep: Sleep function, replaceable in tests

    Exceptions raised by ``operation`` count as a failed attempt and are kept
    on the result; they are not re-raised.
    """
    attempts = max(1, attempts)
    last_error: Optional[Exception] = None

    for attempt in range(1, attempts + 1):
        logger.info(f"Attempting {description} (attempt {attempt}/{attempts})")
        try:
            value = operation(attempt)
            if value:
                return RetryResult(True, attempt, value=value)
            logger.warning(f"{description} attempt {attempt} did not succeed")
        except Exception as e:
            last_error = e
            logger.warning(f"{description} attempt {attempt} raised: {e}")

        if attempt < attempts and delay > 0:
            sleep(delay)

    logger.error(f"{description} failed after {attempts} attempts")
    return RetryResult(False, attempts, last_error=last_error)
