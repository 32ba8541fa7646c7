from __future__ import annotations

import asyncio

from .models import ActiveCall


class ActiveCalls:
    """In-memory registry of invocation id -> ActiveCall.

    Every access goes through one lock. The lock is only ever held for
    dict operations, never while reading output or waiting on a process.
    Lost on restart; nothing is persisted.
    """

    def __init__(self) -> None:
        self._store: dict[str, ActiveCall] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._store)

    async def insert(self, call: ActiveCall) -> bool:
        """Register ``call``. Returns False if its id is already taken."""
        async with self._lock:
            if call.call_id in self._store:
                return False
            self._store[call.call_id] = call
            return True

    async def remove(self, call: ActiveCall) -> bool:
        """Remove ``call`` if it is still the entry for its id."""
        async with self._lock:
            if self._store.get(call.call_id) is not call:
                return False
            del self._store[call.call_id]
            return True

    async def get(self, call_id: str) -> ActiveCall | None:
        async with self._lock:
            return self._store.get(call_id)

    async def snapshot(self) -> list[ActiveCall]:
        async with self._lock:
            return list(self._store.values())
