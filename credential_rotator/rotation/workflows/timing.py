"""Call/return timing log lines."""
import logging
import time
from contextlib import contextmanager
from typing import Iterator


@contextmanager
def log_call(logger: logging.Logger, name: str) -> Iterator[None]:
    """Log "<name> call" on entry and "<name> return: <N>ms" on exit, even on error."""
    t0 = time.monotonic()
    logger.info(f"{name} call")
    try:
        yield
    finally:
        logger.info(f"{name} return: {(time.monotonic() - t0) * 1000:.0f}ms")
