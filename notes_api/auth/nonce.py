import secrets
import threading
import time
from collections import OrderedDict
from typing import Callable


class NonceCache:
    """
    One-time login nonces with a fixed lifetime.

    Entries expire ``ttl`` seconds after insertion. When ``capacity`` entries
    are live, adding another drops the oldest. Safe to share between request
    threads.
    """

    def __init__(self, ttl: float = 300.0, capacity: int = 100, clock: Callable[[], float] = time.monotonic):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.ttl = ttl
        self.capacity = capacity
        self._clock = clock
        self._entries: "OrderedDict[str, float]" = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            self._evict_expired(self._clock())
            return len(self._entries)

    def _evict_expired(self, now: float) -> None:
        # Insertion order is expiry order since every entry shares one ttl.
        while self._entries:
            nonce, expires_at = next(iter(self._entries.items()))
            if expires_at > now:
                break
            del self._entries[nonce]

    def add(self, nonce: str) -> None:
        with self._lock:
            now = self._clock()
            self._evict_expired(now)
            self._entries.pop(nonce, None)
            while len(self._entries) >= self.capacity:
                self._entries.popitem(last=False)
            self._entries[nonce] = now + self.ttl

    def new_nonce(self) -> str:
        nonce = secrets.token_urlsafe(32)
        self.add(nonce)
        return nonce

    def pop(self, nonce: str) -> bool:
        """Remove ``nonce`` and report whether it was present and unexpired."""
        with self._lock:
            self._evict_expired(self._clock())
            return self._entries.pop(nonce, None) is not None
