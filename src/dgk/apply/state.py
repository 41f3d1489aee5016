"""Remote state store protocol and an in-memory implementation.

The gatekeeper only needs two things from the store that holds a target's
persisted state: an atomic compare-and-swap on a lock record, and
read/write of the state blob.  Real backends (object storage plus a
conditional-write table, for instance) plug in through
:class:`StateStore`.
"""

from __future__ import annotations

import asyncio
from datetime import datetime  # noqa: TC003
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict


class LockRecord(BaseModel):
    """The value stored under a lock key while a run holds it."""

    model_config = ConfigDict(frozen=True)

    owner: str
    run_id: str = ""
    acquired_at: datetime
    expires_at: datetime

    def expired(self, now: datetime) -> bool:
        return now >= self.expires_at


@runtime_checkable
class StateStore(Protocol):
    """Transactional key-value store for lock records and state blobs."""

    async def get_lock(self, key: str) -> LockRecord | None:
        """Return the current lock record for *key*, if any."""
        ...

    async def compare_and_swap(
        self,
        key: str,
        expected: LockRecord | None,
        new: LockRecord | None,
    ) -> bool:
        """Atomically replace *expected* with *new*; ``None`` means absent.

        Returns ``False`` (and changes nothing) if the stored record is not
        *expected*.
        """
        ...

    async def read_state(self, key: str) -> bytes | None:
        """Return the persisted state blob for *key*, if any."""
        ...

    async def write_state(self, key: str, blob: bytes) -> None:
        """Persist *blob* under *key* (upsert semantics)."""
        ...


class InMemoryStateStore:
    """Dict-backed :class:`StateStore` for tests and single-process runs.

    An :class:`asyncio.Lock` makes each compare-and-swap atomic with respect
    to every coroutine sharing the store.
    """

    def __init__(self) -> None:
        self._locks: dict[str, LockRecord] = {}
        self._states: dict[str, bytes] = {}
        self._mutex = asyncio.Lock()

    async def get_lock(self, key: str) -> LockRecord | None:
        return self._locks.get(key)

    async def compare_and_swap(
        self,
        key: str,
        expected: LockRecord | None,
        new: LockRecord | None,
    ) -> bool:
        async with self._mutex:
            if self._locks.get(key) != expected:
                return False
            if new is None:
                self._locks.pop(key, None)
            else:
                self._locks[key] = new
            return True

    async def read_state(self, key: str) -> bytes | None:
        return self._states.get(key)

    async def write_state(self, key: str, blob: bytes) -> None:
        self._states[key] = blob
