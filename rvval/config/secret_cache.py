"""
Short-lived in-memory cache for a single configuration secret.

The cache is eventually consistent: concurrent refreshes are harmless, the
last loader to finish wins.
"""
import time
from typing import Awaitable, Callable, Optional


Clock = Callable[[], float]
SecretLoader = Callable[[], Awaitable[Optional[str]]]


class SecretCache:
    """Caches one secret value for ``ttl_seconds`` using an injectable clock."""

    def __init__(self, ttl_seconds: float = 60.0, clock: Clock = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._value: Optional[str] = None
        self._loaded_at: Optional[float] = None

    def is_fresh(self) -> bool:
        if self._loaded_at is None:
            return False
        return (self._clock() - self._loaded_at) < self.ttl_seconds

    def peek(self) -> Optional[str]:
        """Return the cached value if it is still fresh, without loading."""
        return self._value if self.is_fresh() else None

    async def get(self, loader: SecretLoader) -> Optional[str]:
        """
        Return the cached secret, calling ``loader`` when the entry is stale.

        A loader result of None is cached too, so a missing override does not
        trigger a store read on every call.
        """
        if self.is_fresh():
            return self._value

        value = await loader()
        self._value = value
        self._loaded_at = self._clock()
        return value

    def invalidate(self) -> None:
        self._value = None
        self._loaded_at = None
