from __future__ import annotations

import threading
import time
from abc import ABC, abstractmethod
from collections import OrderedDict

from auth.models import PendingAuth

DEFAULT_PENDING_TTL_SECONDS = 600
DEFAULT_MAX_PENDING = 10_000


class PendingAuthStore(ABC):
    """Holds in-flight login attempts keyed by their state token.

    ``consume`` must remove and return the entry in one step: two callbacks
    presenting the same state can never both get it back.
    """

    @abstractmethod
    async def put(self, pending: PendingAuth) -> bool:
        """Store ``pending``. Returns False if its state is already taken."""
        raise NotImplementedError

    @abstractmethod
    async def consume(self, state: str) -> PendingAuth | None:
        raise NotImplementedError

    @abstractmethod
    async def size(self) -> int:
        raise NotImplementedError


class MemoryPendingAuthStore(PendingAuthStore):
    def __init__(
        self,
        *,
        ttl_seconds: int = DEFAULT_PENDING_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_PENDING,
        clock=time.time,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_entries = max(1, max_entries)
        self._clock = clock
        self._lock = threading.Lock()
        self._pending: OrderedDict[str, PendingAuth] = OrderedDict()

    async def put(self, pending: PendingAuth) -> bool:
        with self._lock:
            self._purge_expired()
            if pending.state in self._pending:
                return False
            # Oldest attempts go first when the cap is hit.
            while len(self._pending) >= self.max_entries:
                self._pending.popitem(last=False)
            self._pending[pending.state] = pending
            return True

    async def consume(self, state: str) -> PendingAuth | None:
        with self._lock:
            pending = self._pending.pop(state, None)
            if pending is None or self._is_expired(pending):
                return None
            return pending

    async def size(self) -> int:
        with self._lock:
            self._purge_expired()
            return len(self._pending)

    def _is_expired(self, pending: PendingAuth) -> bool:
        return self._clock() - pending.created_at > self.ttl_seconds

    def _purge_expired(self) -> None:
        # Insertion order is creation order, so expired entries sit at the front.
        while self._pending:
            state, pending = next(iter(self._pending.items()))
            if not self._is_expired(pending):
                break
            del self._pending[state]
