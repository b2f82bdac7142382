"""Bounded parallel execution of one action over many items."""
import logging
import threading
from typing import Callable, Generic, List, Optional, Sequence, TypeVar

from ..domains.cancel import CancelToken

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ExecutionResult(Generic[T]):
    """Per-item errors from one run, in item order. None means the item succeeded."""

    def __init__(self, items: Sequence[T], errors: List[Optional[BaseException]], dispatched: int):
        self.items = items
        self.errors = errors
        self.dispatched = dispatched

    @property
    def failed(self) -> int:
        return sum(1 for e in self.errors[:self.dispatched] if e is not None)


class _Slots:
    """Counting slots whose waiters also wake on cancellation and on the token's deadline."""

    def __init__(self, size: int):
        self._free = size
        self._condition = threading.Condition()

    def acquire(self, cancel: CancelToken) -> bool:
        with self._condition:
            while True:
                if cancel.cancelled:
                    return False
                if self._free > 0:
                    self._free -= 1
                    return True
                self._condition.wait(cancel.remaining)

    def release(self) -> None:
        with self._condition:
            self._free += 1
            self._condition.notify_all()

    def wake(self) -> None:
        with self._condition:
            self._condition.notify_all()


class BoundedExecutor:
    """
    Runs an action over items with at most max_parallel actions in flight.

    Waiting for a free slot races against cancellation. When cancellation
    wins, no more items are dispatched, but every dispatched item runs to
    completion before CancelledError is raised: in-flight external calls are
    never abandoned.

    Anything raised by an action, BaseException subclasses included, is that
    item's failure. It is logged, passed to record, and the slot is released;
    it never escapes run().
    """

    def __init__(self, max_parallel: int = 1, name: str = "worker"):
        if max_parallel < 1:
            raise ValueError(f"max_parallel must be at least 1, got {max_parallel}")
        self.max_parallel = max_parallel
        self.name = name

    def run(
        self,
        items: Sequence[T],
        action: Callable[[T], None],
        cancel: Optional[CancelToken] = None,
        record: Optional[Callable[[T, Optional[BaseException]], None]] = None,
        label: Callable[[T], str] = str,
    ) -> ExecutionResult[T]:
        """
        Run action(item) for every item.

        record(item, error) is called from the item's own worker thread after
        the action returns or raises; it is the only writer of that item's state.

        Raises:
            CancelledError: If cancelled before every item was dispatched
        """
        cancel = cancel or CancelToken()
        slots = _Slots(self.max_parallel)
        errors: List[Optional[BaseException]] = [None] * len(items)
        threads: List[threading.Thread] = []

        remove_listener = cancel.add_listener(slots.wake)
        try:
            for index, item in enumerate(items):
                if not slots.acquire(cancel):
                    logger.warning(f"{self.name}: cancelled after dispatching {index} of {len(items)}, "
                                   f"waiting for {len(threads)} in flight")
                    self._join(threads)
                    raise cancel.error()
                thread = threading.Thread(
                    target=self._work,
                    args=(slots, index, item, action, record, label, errors),
                    name=f"{self.name}-{index}",
                    daemon=True,
                )
                threads.append(thread)
                thread.start()
        finally:
            remove_listener()

        self._join(threads)
        return ExecutionResult(items, errors, dispatched=len(threads))

    def _work(self, slots, index, item, action, record, label, errors) -> None:
        try:
            error = None
            try:
                action(item)
            except BaseException as e:
                logger.error(f"{label(item)}: {self.name} failed: {type(e).__name__}: {e}")
                error = e
            errors[index] = error
            if record is not None:
                try:
                    record(item, error)
                except BaseException as e:
                    logger.exception(f"{label(item)}: {self.name} failed to record outcome: {e}")
                    errors[index] = error or e
        finally:
            slots.release()

    def _join(self, threads: List[threading.Thread]) -> None:
        for thread in threads:
            thread.join()
