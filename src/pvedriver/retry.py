import logging
import time
from typing import Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def retry(op: Callable[[], T], delay: float, max_attempts: int) -> T:
    """Run op until it succeeds, at most max_attempts times.

    Sleeps a fixed delay between attempts and re-raises the last error once
    attempts are exhausted.
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")

    for attempt in range(1, max_attempts):
        try:
            return op()
        except Exception as e:
            logger.warning(f"Attempt {attempt}/{max_attempts} failed: {e}")
            time.sleep(delay)

    # final attempt: its error propagates unchanged
    try:
        return op()
    except Exception as e:
        logger.warning(f"Attempt {max_attempts}/{max_attempts} failed, giving up: {e}")
        raise
