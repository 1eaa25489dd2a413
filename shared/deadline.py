import time
from typing import Callable, Optional

from .errors import OperationCancelled, PersistenceTimeout


class Deadline:
    """
    Timeout plus cancellation token threaded through every store call.

    Store calls are synchronous and cannot be interrupted once issued, so the
    deadline is checked before each call. A ``None`` timeout never expires.
    """

    def __init__(self, timeout: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self.timeout = timeout
        self._clock = clock
        self._started = clock()
        self._cancelled = False

    def cancel(self):
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def remaining(self) -> Optional[float]:
        if self.timeout is None:
            return None
        return max(0.0, self.timeout - (self._clock() - self._started))

    @property
    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def check(self, operation: str):
        if self._cancelled:
            raise OperationCancelled(operation)
        if self.expired:
            raise PersistenceTimeout(operation, self.timeout)
