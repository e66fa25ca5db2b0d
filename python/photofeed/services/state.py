"""Process-wide mutable state.

The service keeps exactly two in-memory maps shared between concurrent
requests and background jobs:

- ReloadingFlags: canonical token -> "a background refresh is in flight"
- TokenTracker: canonical token -> last access time (bounded, TTL-expired)

Both are guarded by a threading.Lock that is only ever held for the
dictionary update itself, never across I/O or an await. Instances are
created once by the service container and injected where needed.
"""

import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from threading import Lock

Clock = Callable[[], float]


class ReloadingFlags:
    """Per-key "refresh in flight" flags, never persisted."""

    def __init__(self):
        self._flags: dict[str, bool] = {}
        self._lock = Lock()

    def try_begin(self, key: str) -> bool:
        """Mark a refresh as started.

        Returns:
            True if the caller now owns the refresh, False if one was already running.
        """
        with self._lock:
            if self._flags.get(key):
                return False
            self._flags[key] = True
            return True

    def is_reloading(self, key: str) -> bool:
        with self._lock:
            return self._flags.get(key, False)

    def clear(self, key: str) -> None:
        with self._lock:
            self._flags.pop(key, None)

    def snapshot(self) -> dict[str, bool]:
        with self._lock:
            return dict(self._flags)


@dataclass(frozen=True)
class TrackedToken:
    """A recently-used album token."""

    token: str
    last_accessed: float


class TokenTracker:
    """Bounded set of recently-read album tokens.

    Eviction: when more than max_tokens are tracked, the entry with the
    oldest last access is dropped. Entries older than ttl_s are dropped by
    prune().

    Args:
        max_tokens: Capacity.
        ttl_s: Access TTL in seconds.
        clock: Time source returning epoch seconds.
    """

    def __init__(self, max_tokens: int, ttl_s: float, clock: Clock = time.time):
        self.max_tokens = max_tokens
        self.ttl_s = ttl_s
        self.clock = clock
        # Ordered oldest access first
        self._tokens: OrderedDict[str, float] = OrderedDict()
        self._lock = Lock()

    def touch(self, token: str) -> None:
        """Record an access, evicting the least recently used tokens over capacity."""
        now = self.clock()
        with self._lock:
            self._tokens[token] = now
            self._tokens.move_to_end(token)
            while len(self._tokens) > self.max_tokens:
                self._tokens.popitem(last=False)

    def prune(self) -> list[str]:
        """Drop tokens whose last access is older than the TTL.

        Returns:
            The tokens that were removed.
        """
        cutoff = self.clock() - self.ttl_s
        with self._lock:
            expired = [token for token, seen in self._tokens.items() if seen < cutoff]
            for token in expired:
                del self._tokens[token]
        return expired

    def active(self) -> list[TrackedToken]:
        """Tracked tokens, most recently accessed first."""
        with self._lock:
            items = list(self._tokens.items())
        return [TrackedToken(token=t, last_accessed=ts) for t, ts in reversed(items)]

    def discard(self, token: str) -> None:
        with self._lock:
            self._tokens.pop(token, None)

    def __contains__(self, token: str) -> bool:
        with self._lock:
            return token in self._tokens

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)
