"""Single owned store for the player's token balance.

Readers get an immutable `BalanceSnapshot`; nobody holds a live reference.
Local deltas are applied optimistically and the next authoritative refresh
replaces them.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from .funding.base import FundingBackend, format_units


@dataclass(frozen=True)
class BalanceSnapshot:
    amount: int = 0
    authoritative: bool = False
    updated_at: float = 0.0

    @property
    def display(self) -> str:
        return f"{format_units(self.amount):.2f}"


class BalanceStore:
    def __init__(
        self,
        backend: FundingBackend,
        clock: Callable[[], float] = time.time,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._backend = backend
        self._clock = clock
        self._logger = logger or logging.getLogger("bingo.balance")
        self._snapshot = BalanceSnapshot()
        self._issued = 0
        self._applied = 0
        self._tasks: List[asyncio.Task] = []

    def snapshot(self) -> BalanceSnapshot:
        return self._snapshot

    def apply_delta(self, delta: int) -> BalanceSnapshot:
        amount = max(0, self._snapshot.amount + int(delta))
        self._snapshot = BalanceSnapshot(amount, authoritative=False, updated_at=self._clock())
        self._logger.debug("Optimistic balance delta %s -> %s", delta, amount)
        return self._snapshot

    async def refresh(self) -> BalanceSnapshot:
        self._issued += 1
        ticket = self._issued
        amount = await self._backend.get_balance()
        if ticket < self._applied:
            self._logger.debug("Discarding stale balance refresh #%s", ticket)
            return self._snapshot
        self._applied = ticket
        self._snapshot = BalanceSnapshot(int(amount), authoritative=True, updated_at=self._clock())
        return self._snapshot

    def request_refresh(self) -> Optional[asyncio.Task]:
        """Schedule a refresh without waiting for it."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._logger.debug("No running loop; balance refresh skipped")
            return None
        task = loop.create_task(self.refresh())
        self._tasks.append(task)
        task.add_done_callback(self._on_refresh_done)
        return task

    async def wait_idle(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _on_refresh_done(self, task: asyncio.Task) -> None:
        if task in self._tasks:
            self._tasks.remove(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._logger.warning("Balance refresh failed: %s", exc)
