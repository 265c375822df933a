from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from .datasource.base import RoundDataSource
from .errors import RoundNotFound
from .state_machine import EventKind, MachineEvent, RoundStateMachine
from .types import Card, GameState

# requests.RequestException derives from OSError; pydantic's ValidationError from ValueError.
TRANSIENT_ERRORS = (OSError, ValueError, asyncio.TimeoutError)


class PollReconciler:
    """Feeds fresh round snapshots into the state machine.

    Polls only while the machine wants snapshots (waiting and animation
    states, or a finished animation still missing results). A round change
    cancels the in-flight fetch, and any response that outlives its round is
    dropped by the machine's generation check.
    """

    def __init__(
        self,
        datasource: RoundDataSource,
        machine: RoundStateMachine,
        interval_seconds: float = 5.0,
        fetch_cards: bool = True,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._datasource = datasource
        self._machine = machine
        self._interval = interval_seconds
        self._fetch_cards = fetch_cards
        self._logger = logger or logging.getLogger("bingo.reconciler")
        self._inflight: Optional[asyncio.Task] = None
        machine.subscribe(self._on_machine_event)

    async def load_round(self, round_id: int, force: bool = False) -> GameState:
        """Fetch a round and make it the machine's selected round."""
        generation = self._machine.generation
        snapshot = await self._datasource.fetch_round(round_id)
        cards = await self._load_cards(round_id)
        if generation != self._machine.generation:
            self._logger.debug("Round %s load superseded by another selection", round_id)
            return self._machine.state
        return self._machine.select_round(snapshot, cards, force=force)

    async def poll_once(self) -> bool:
        machine = self._machine
        if not machine.wants_snapshot or machine.round_id is None:
            return False
        round_id = machine.round_id
        generation = machine.generation
        try:
            snapshot = await self._datasource.fetch_round(round_id)
            cards = None
            if machine.state is GameState.WAITING_CLOSE or not machine.my_cards:
                cards = await self._load_cards(round_id)
        except RoundNotFound:
            self._logger.warning("Round %s no longer exists", round_id)
            machine.round_expired(round_id, generation)
            return False
        except TRANSIENT_ERRORS as exc:
            self._logger.warning("Round %s poll failed: %s", round_id, exc)
            return False

        if generation != machine.generation:
            self._logger.debug("Dropping stale poll result for round %s", round_id)
            return False
        if cards:
            machine.set_my_cards(round_id, cards)
        return machine.apply_snapshot(snapshot, generation=generation)

    async def run_forever(self) -> None:
        self._logger.info("Round poller started; interval=%s", self._interval)
        while True:
            task = asyncio.ensure_future(self.poll_once())
            self._inflight = task
            try:
                await asyncio.wait({task})
            except asyncio.CancelledError:
                task.cancel()
                raise
            finally:
                self._inflight = None
            if task.cancelled():
                self._logger.debug("Poll cancelled by round change")
            elif task.exception() is not None:
                exc = task.exception()
                self._logger.error("Poll iteration failed: %s", exc, exc_info=exc)
            await asyncio.sleep(self._interval)

    async def _load_cards(self, round_id: int) -> List[Card]:
        if not self._fetch_cards:
            return []
        try:
            return await self._datasource.fetch_my_cards(round_id)
        except TRANSIENT_ERRORS as exc:
            self._logger.warning("Could not load cards for round %s: %s", round_id, exc)
            return []

    def _on_machine_event(self, event: MachineEvent) -> None:
        if event.kind in (EventKind.ROUND_SELECTED, EventKind.RESET):
            task = self._inflight
            if task is not None and not task.done():
                task.cancel()
