"""Retrying one operation on one target."""
import logging
from typing import Callable

from ..domains.cancel import CancelToken
from ..domains.errors import RotationError

logger = logging.getLogger(__name__)


def run_with_retry(
    operation: Callable[[], None],
    tries: int,
    wait_seconds: float,
    cancel: CancelToken,
    description: str = "operation",
) -> None:
    """
    Run operation up to tries times, waiting wait_seconds between tries.

    Returns on the first success. Raises:
        - the operation's error on the last try (no wait)
        - the operation's error if cancellation is observed before waiting;
          it is the more recent and more specific cause
        - CancelledError if cancellation is observed during the wait
    """
    for try_no in range(1, tries + 1):
        try:
            operation()
            return
        except Exception as err:
            if try_no == tries:
                raise

            if cancel.cancelled:
                logger.warning(f"{description}: cancelled after try {try_no}, not retrying "
                               f"({tries - try_no} tries remained)")
                raise

            logger.warning(f"{description}: error try {try_no} of {tries}, "
                           f"retry in {wait_seconds}s: {err}")
            if cancel.wait(wait_seconds):
                logger.warning(f"{description}: cancelled during retry wait, not retrying "
                               f"({tries - try_no} tries remained)")
                raise cancel.error() from err

    # Only reachable when tries < 1
    raise RotationError(f"{description}: retry loop ended without success or error (tries={tries})")
