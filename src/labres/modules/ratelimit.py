from __future__ import annotations

import threading

from labres.context.core import StoppableService
from labres.modules import errors


from typing import NamedTuple
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from collections.abc import Callable


class _Bucket(NamedTuple):
    tokens: float
    updated: float


class TokenBucket(StoppableService):
    """ A token bucket per caller identity.

    Each key may spend ``capacity`` requests at once, after which it gets
    back one request every ``window / capacity`` seconds. Labres itself
    never limits anyone, the bucket is offered to the collaborators in
    front of it (kiosk endpoints for example) through the ``rate_limiter``
    service::

        limiter = context.get_service('rate_limiter')
        limiter.consume(f'start:{ip_address}')

    """

    def __init__(
        self,
        capacity: int,
        window: float,
        clock: Callable[[], float]
    ):
        assert capacity > 0 and window > 0

        self.capacity = capacity
        self.window = window
        self.clock = clock
        self.buckets: dict[str, _Bucket] = {}
        self.thread_lock = threading.Lock()

    def _refill(self, key: str, now: float) -> float:
        bucket = self.buckets.get(key)

        if bucket is None:
            return float(self.capacity)

        elapsed = max(0.0, now - bucket.updated)
        refilled = elapsed * self.capacity / self.window
        return min(float(self.capacity), bucket.tokens + refilled)

    def _prune(self, now: float) -> None:
        # a bucket untouched for a whole window has refilled completely
        full = [
            key for key, bucket in self.buckets.items()
            if now - bucket.updated >= self.window
        ]

        for key in full:
            del self.buckets[key]

    def consume(self, key: str, tokens: int = 1) -> None:
        """ Takes tokens from the bucket of the given key, raising a
        :class:`~labres.modules.errors.RateLimitedError` if there are
        not enough left.

        """
        with self.thread_lock:
            now = self.clock()
            self._prune(now)
            available = self._refill(key, now)

            if available < tokens:
                self.buckets[key] = _Bucket(available, now)
                retry_after = (tokens - available) * self.window / self.capacity
                raise errors.RateLimitedError(key, retry_after)

            self.buckets[key] = _Bucket(available - tokens, now)

    def remaining(self, key: str) -> int:
        with self.thread_lock:
            return int(self._refill(key, self.clock()))

    def reset(self, key: str | None = None) -> None:
        with self.thread_lock:
            if key is None:
                self.buckets.clear()
            else:
                self.buckets.pop(key, None)

    def stop_service(self) -> None:
        self.reset()
