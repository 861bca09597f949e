"""Per-user ledger of successful upstream calls.

Admission reserves a slot before the upstream is called; the slot is
committed when the call succeeds and released otherwise. Used counts only
ever go up, and only through ``commit``. The ledger lives in process
memory and is discarded on restart.
"""

import asyncio


class QuotaLedger:
    """In-memory cumulative usage counter keyed by user identity.

    A key is admitted only while ``used + in_flight < ceiling``, so
    concurrent requests can never be relayed past the ceiling.
    """

    def __init__(self) -> None:
        self._used: dict[str, int] = {}
        self._pending: dict[str, int] = {}
        self._lock = asyncio.Lock()

    @property
    def tracked_keys(self) -> int:
        return len(self._used)

    async def peek(self, key: str) -> int:
        """Return how many successful calls ``key`` has made so far."""
        return self._used.get(key, 0)

    def in_flight(self, key: str) -> int:
        """Reservations held by ``key`` that are not settled yet."""
        return self._pending.get(key, 0)

    async def try_reserve(self, key: str, ceiling: int) -> bool:
        """Hold one slot for ``key`` unless used plus in-flight reached ``ceiling``.

        Args:
            key: User identity
            ceiling: Count the key may not exceed

        Returns:
            True if a reservation is now held; the caller must then
            ``commit`` or ``release`` it exactly once
        """
        async with self._lock:
            if self._used.get(key, 0) + self._pending.get(key, 0) >= ceiling:
                return False
            self._pending[key] = self._pending.get(key, 0) + 1
            return True

    async def commit(self, key: str) -> int:
        """Turn a held reservation into one recorded successful call.

        Returns:
            The new used count for ``key``

        Raises:
            ValueError: ``key`` holds no reservation
        """
        async with self._lock:
            self._take_pending(key)
            used = self._used.get(key, 0) + 1
            self._used[key] = used
            return used

    def release(self, key: str) -> None:
        """Drop a held reservation without recording usage.

        Never awaits, so it completes inside cancellation cleanup.

        Raises:
            ValueError: ``key`` holds no reservation
        """
        self._take_pending(key)

    def _take_pending(self, key: str) -> None:
        pending = self._pending.get(key, 0)
        if pending < 1:
            raise ValueError(f"No reservation held for {key!r}")
        if pending == 1:
            del self._pending[key]
        else:
            self._pending[key] = pending - 1

    def snapshot(self) -> dict[str, int]:
        """Copy of the current used counts."""
        return dict(self._used)
