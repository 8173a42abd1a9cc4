"""In-process read cache of blacklisted JTIs.

The database blacklist is the source of truth. This cache only remembers
jtis known to be revoked so repeated requests with a revoked token skip the
database round trip. It never caches "not blacklisted", so a miss always
falls through to the store. Entries auto-expire with the token they revoke.
"""

import threading
import time


class BlacklistCache:
    """Thread-safe jti -> token-expiry map."""

    def __init__(self, max_entries: int = 100000):
        self.max_entries = max_entries
        self._entries: dict[str, float] = {}
        self._lock = threading.Lock()

    def add(self, jti: str, exp: float) -> None:
        """Remember a revoked jti until the Unix timestamp exp."""
        if exp <= time.time():
            return
        with self._lock:
            if len(self._entries) >= self.max_entries and jti not in self._entries:
                self._evict_expired_locked()
                if len(self._entries) >= self.max_entries:
                    return
            self._entries[jti] = exp

    def contains(self, jti: str) -> bool:
        with self._lock:
            exp = self._entries.get(jti)
            if exp is None:
                return False
            if time.time() > exp:
                del self._entries[jti]
                return False
            return True

    def discard(self, jti: str) -> None:
        with self._lock:
            self._entries.pop(jti, None)

    def cleanup_expired(self) -> int:
        """Remove expired entries. Returns count removed."""
        with self._lock:
            return self._evict_expired_locked()

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _evict_expired_locked(self) -> int:
        now = time.time()
        expired = [jti for jti, exp in self._entries.items() if now > exp]
        for jti in expired:
            del self._entries[jti]
        return len(expired)


# Process-wide cache shared by every BlacklistService instance
blacklist_cache = BlacklistCache()
