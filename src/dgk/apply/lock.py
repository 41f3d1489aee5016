"""Distributed lock discipline over a :class:`~dgk.apply.state.StateStore`.

Strict mutual exclusion per ``<namespace>/<environment>`` key.  Every lock
record carries a TTL so a crashed holder cannot wedge the target forever;
the TTL is a safety net, and holders always release explicitly.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING
from uuid import uuid4

from dgk.apply.state import LockRecord
from dgk.core.errors import LockContentionError
from dgk.core.models import validate_environment

if TYPE_CHECKING:
    from dgk.apply.state import StateStore

logger = logging.getLogger(__name__)

_NAMESPACE_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,127}$")


@dataclass(frozen=True)
class LockKey:
    """Validated lock key; environments never share a namespace."""

    namespace: str
    environment: str

    def __post_init__(self) -> None:
        if not _NAMESPACE_RE.match(self.namespace):
            msg = f"invalid lock namespace: {self.namespace!r}"
            raise ValueError(msg)
        validate_environment(self.environment)

    def __str__(self) -> str:
        return f"{self.namespace}/{self.environment}"


@dataclass(frozen=True)
class LockHandle:
    """Proof that this run holds the mutation right for ``key``."""

    key: LockKey
    record: LockRecord

    @property
    def owner(self) -> str:
        return self.record.owner

    @property
    def expires_at(self) -> datetime:
        return self.record.expires_at


class LockManager:
    """Acquire and release locks with a bounded wait.

    Waiting polls the store with exponential backoff (capped at
    *max_poll_interval*) until *wait_timeout* elapses, then raises
    :class:`~dgk.core.errors.LockContentionError`.
    """

    def __init__(
        self,
        store: StateStore,
        *,
        ttl: timedelta = timedelta(hours=1),
        wait_timeout: float = 300.0,
        poll_interval: float = 0.5,
        max_poll_interval: float = 10.0,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._ttl = ttl
        self._wait_timeout = wait_timeout
        self._poll_interval = poll_interval
        self._max_poll_interval = max_poll_interval
        self._clock = clock or (lambda: datetime.now(UTC))

    @property
    def store(self) -> StateStore:
        return self._store

    async def acquire(self, key: LockKey, *, run_id: str = "") -> LockHandle:
        """Take the lock for *key*, waiting at most ``wait_timeout`` seconds."""
        rendered = str(key)
        owner = uuid4().hex
        deadline = time.monotonic() + self._wait_timeout
        delay = self._poll_interval

        while True:
            now = self._clock()
            current = await self._store.get_lock(rendered)
            if current is None or current.expired(now):
                record = LockRecord(owner=owner, run_id=run_id, acquired_at=now, expires_at=now + self._ttl)
                if await self._store.compare_and_swap(rendered, current, record):
                    if current is not None:
                        logger.warning(
                            "Took over expired lock %s from run %s",
                            rendered,
                            current.run_id or current.owner,
                        )
                    logger.info("Acquired lock %s", rendered)
                    return LockHandle(key=key, record=record)
                # Lost a race for the same record; re-read immediately.
                continue

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise LockContentionError(rendered, self._wait_timeout)
            logger.debug("Lock %s held by run %s; waiting", rendered, current.run_id or current.owner)
            await asyncio.sleep(min(delay, remaining))
            delay = min(delay * 2, self._max_poll_interval)

    async def release(self, handle: LockHandle) -> bool:
        """Release *handle*; returns ``False`` if the lock was no longer ours."""
        rendered = str(handle.key)
        released = await self._store.compare_and_swap(rendered, handle.record, None)
        if released:
            logger.info("Released lock %s", rendered)
        else:
            logger.warning("Lock %s was no longer held by this run at release time", rendered)
        return released

    @asynccontextmanager
    async def hold(self, key: LockKey, *, run_id: str = "") -> AsyncIterator[LockHandle]:
        """Hold the lock for the enclosed block; released on every exit path."""
        handle = await self.acquire(key, run_id=run_id)
        try:
            yield handle
        finally:
            await asyncio.shield(self.release(handle))
