"""FIFO admission gate bounding how many browser contexts are open at once.

Unlike ``asyncio.Semaphore``, a release with waiters queued hands the slot
straight to the longest waiter, so ``in_use`` never dips in between and a
newly arriving request cannot barge ahead of the queue.
"""
from __future__ import annotations

import asyncio
import itertools
import logging
from collections import deque
from contextlib import asynccontextmanager

from profile_harvest.config import settings
from profile_harvest.core.exceptions import GateMisuseError
from profile_harvest.core.metrics import admission_slots_in_use, admission_waiters
from profile_harvest.schemas.users import PoolStats

logger = logging.getLogger(__name__)

_token_ids = itertools.count(1)


class AdmissionToken:
    """Proof of a granted slot. Release it exactly once."""

    __slots__ = ("id", "_gate", "_released")

    def __init__(self, gate: AdmissionGate):
        self.id = next(_token_ids)
        self._gate = gate
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def __repr__(self) -> str:
        return f"<AdmissionToken #{self.id} released={self._released}>"


class AdmissionGate:
    """Counting gate with FIFO hand-off.

    Args:
        capacity: Maximum number of concurrent holders (must be positive).
        strict: Raise ``GateMisuseError`` on a release without a matching
            acquire. Defaults to ``settings.DEBUG``; when off the bad release
            is logged and ignored.
    """

    def __init__(self, capacity: int, strict: bool | None = None):
        if capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self._capacity = capacity
        self._in_use = 0
        self._waiters: deque[asyncio.Future] = deque()
        self._strict = settings.DEBUG if strict is None else strict

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def in_use(self) -> int:
        return self._in_use

    @property
    def waiting(self) -> int:
        return len(self._waiters)

    def stats(self) -> PoolStats:
        return PoolStats(capacity=self._capacity, in_use=self._in_use, waiting=self.waiting)

    async def acquire(self) -> AdmissionToken:
        """Wait for a slot. Never times out; wrap in a deadline if needed."""
        if not self._waiters and self._in_use < self._capacity:
            self._in_use += 1
            self._publish()
            return AdmissionToken(self)

        fut = asyncio.get_running_loop().create_future()
        self._waiters.append(fut)
        self._publish()
        try:
            await fut
        except asyncio.CancelledError:
            if fut.done() and not fut.cancelled():
                # Slot was handed to us right before the cancel landed; pass it on.
                self._hand_off()
            else:
                try:
                    self._waiters.remove(fut)
                except ValueError:
                    pass
                self._publish()
            raise
        return AdmissionToken(self)

    def release(self, token: AdmissionToken) -> None:
        if not isinstance(token, AdmissionToken) or token._gate is not self or token._released:
            msg = f"release() without matching acquire: {token!r}"
            if self._strict:
                raise GateMisuseError(msg)
            logger.error(msg)
            return
        token._released = True
        self._hand_off()

    def _hand_off(self) -> None:
        while self._waiters:
            fut = self._waiters.popleft()
            if not fut.done():
                # in_use stays the same: the slot moves to the waiter
                fut.set_result(None)
                self._publish()
                return
        self._in_use -= 1
        self._publish()

    @asynccontextmanager
    async def slot(self):
        token = await self.acquire()
        try:
            yield token
        finally:
            self.release(token)

    def _publish(self) -> None:
        admission_slots_in_use.set(self._in_use)
        admission_waiters.set(len(self._waiters))
