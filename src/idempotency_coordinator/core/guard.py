"""Process-local in-flight guard.

The guard maps each idempotency key currently executing in this process to
its request fingerprint. It is consulted before the store so that duplicate
requests landing on the same process are detected without a store round
trip; the store's atomic begin() still decides across processes.
"""

import threading

from idempotency_coordinator.observability.metrics import set_inflight_keys


class InFlightGuard:
    """Mutually-exclusive key -> fingerprint map.

    All updates happen under a threading.Lock and never await, so the guard
    can be shared by coroutines on several event loops and by threads.

    Examples:
        >>> guard = InFlightGuard()
        >>> guard.claim("k", "a" * 64) is None
        True
        >>> guard.claim("k", "b" * 64) == "a" * 64
        True
        >>> guard.release("k", "a" * 64)
        True
    """

    def __init__(self) -> None:
        self._entries: dict[str, str] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def claim(self, key: str, fingerprint: str) -> str | None:
        """Register ``key`` for ``fingerprint`` if nobody holds it.

        Returns:
            None if the claim succeeded, otherwise the fingerprint of the
            request already holding the key.
        """
        with self._lock:
            holder = self._entries.get(key)
            if holder is not None:
                return holder
            self._entries[key] = fingerprint
            set_inflight_keys(len(self._entries))
            return None

    def peek(self, key: str) -> str | None:
        """Return the fingerprint holding ``key``, if any."""
        with self._lock:
            return self._entries.get(key)

    def release(self, key: str, fingerprint: str | None = None) -> bool:
        """Release ``key``.

        When ``fingerprint`` is given, only the matching holder is released.

        Returns:
            True if an entry was removed.
        """
        with self._lock:
            holder = self._entries.get(key)
            if holder is None:
                return False
            if fingerprint is not None and holder != fingerprint:
                return False
            del self._entries[key]
            set_inflight_keys(len(self._entries))
            return True
