from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import replace
from typing import Callable, Iterable, List, Optional

from .datasource.base import RoundDataSource
from .errors import InvalidStateTransition, RoundNotFound
from .reconciler import TRANSIENT_ERRORS, PollReconciler
from .state_machine import EventKind, MachineEvent, RoundStateMachine
from .timeline import locate
from .types import BALL_COUNT, GameState, RoomInfo, RoomsOverview, RoundSnapshot, RoundStatus

DISCOVERY_STATES = frozenset({GameState.BROWSING, GameState.RESOLVED})


def merge_rounds(*groups: Iterable[RoundSnapshot]) -> List[RoundSnapshot]:
    """Dedupe by round id (first occurrence wins), newest first."""
    seen = set()
    merged: List[RoundSnapshot] = []
    for group in groups:
        for snapshot in group:
            if snapshot.round_id in seen:
                continue
            seen.add(snapshot.round_id)
            merged.append(snapshot)
    merged.sort(key=lambda s: s.round_id, reverse=True)
    return merged


def pick_default_round(
    rounds: Iterable[RoundSnapshot], player_known: bool = False
) -> Optional[RoundSnapshot]:
    rounds = list(rounds)
    preference = [RoundStatus.OPEN]
    if player_known:
        preference += [RoundStatus.DRAWING, RoundStatus.CLOSED]
    for status in preference:
        for snapshot in rounds:
            if snapshot.status is status:
                return snapshot
    return None


def room_countdown(room: RoomInfo, now: float) -> int:
    """Seconds left in the room's phase, or the 1-based ball number while drawing."""
    if room.phase == RoundStatus.DRAWING.value and room.draw_started_at is not None:
        elapsed_ms = (now - room.draw_started_at.timestamp()) * 1000.0
        return locate(elapsed_ms, 0, 0, BALL_COUNT).ball_index + 1
    if room.phase_end_time is None:
        return 0
    return max(0, int(room.phase_end_time.timestamp() - now))


class _Wakeable:
    """Sleep that a lobby-refresh event can cut short."""

    def __init__(self) -> None:
        self._wake = asyncio.Event()

    def request_refresh(self) -> None:
        self._wake.set()

    def watch(self, machine: RoundStateMachine) -> None:
        def on_event(event: MachineEvent) -> None:
            if event.kind is EventKind.LOBBY_REFRESH:
                self.request_refresh()

        machine.subscribe(on_event)

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._wake.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass
        self._wake.clear()


class RoundDiscovery(_Wakeable):
    """Keeps an idle client on the newest open round of its room."""

    def __init__(
        self,
        datasource: RoundDataSource,
        reconciler: PollReconciler,
        machine: RoundStateMachine,
        room: Optional[int] = None,
        interval_seconds: float = 10.0,
        player_known: bool = False,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        super().__init__()
        self._datasource = datasource
        self._reconciler = reconciler
        self._machine = machine
        self._room = room
        self._interval = interval_seconds
        self._player_known = player_known
        self._logger = logger or logging.getLogger("bingo.lobby")
        self.rounds: List[RoundSnapshot] = []

    async def refresh(self) -> List[RoundSnapshot]:
        open_rounds = await self._safe_fetch(RoundStatus.OPEN, None)
        recent = await self._safe_fetch(None, 10)
        self.rounds = merge_rounds(recent, open_rounds)
        return self.rounds

    async def _safe_fetch(self, status: Optional[RoundStatus], limit: Optional[int]) -> List[RoundSnapshot]:
        try:
            return await self._datasource.fetch_rounds(status=status, limit=limit, room=self._room)
        except TRANSIENT_ERRORS as exc:
            self._logger.warning("Round list fetch failed: %s", exc)
            return []

    async def discover_once(self) -> Optional[int]:
        """Select a round if the machine is idle; returns the selected id."""
        machine = self._machine
        if machine.state not in DISCOVERY_STATES:
            return None
        rounds = await self.refresh()

        if machine.round_id is None:
            target = pick_default_round(rounds, self._player_known)
        else:
            target = pick_default_round(rounds)
            if target is not None and target.round_id == machine.round_id:
                target = None
        if target is None or machine.state not in DISCOVERY_STATES:
            return None

        self._logger.info("Switching to round %s (%s)", target.round_id, target.status.value)
        try:
            await self._reconciler.load_round(target.round_id)
        except InvalidStateTransition as exc:
            self._logger.debug("Round switch skipped: %s", exc)
            return None
        except RoundNotFound:
            self._logger.warning("Round %s vanished before it could be loaded", target.round_id)
            return None
        return target.round_id

    async def run_forever(self) -> None:
        self._logger.info("Round discovery started; interval=%s", self._interval)
        while True:
            try:
                await self.discover_once()
            except TRANSIENT_ERRORS as exc:
                self._logger.warning("Round discovery failed: %s", exc)
            except Exception as exc:
                self._logger.exception("Round discovery iteration failed: %s", exc)
            await self._sleep(self._interval)


class RoomListPoller(_Wakeable):
    def __init__(
        self,
        datasource: RoundDataSource,
        interval_seconds: float = 3.0,
        clock: Callable[[], float] = time.time,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        super().__init__()
        self._datasource = datasource
        self._interval = interval_seconds
        self._clock = clock
        self._logger = logger or logging.getLogger("bingo.lobby")
        self._latest: Optional[RoomsOverview] = None

    @property
    def latest(self) -> Optional[RoomsOverview]:
        return self._latest

    async def poll_once(self) -> RoomsOverview:
        overview = await self._datasource.fetch_rooms()
        now = self._clock()
        rooms = tuple(replace(room, countdown=room_countdown(room, now)) for room in overview.rooms)
        self._latest = RoomsOverview(rooms=rooms, jackpot=overview.jackpot)
        return self._latest

    async def run_forever(self, on_update: Optional[Callable[[RoomsOverview], None]] = None) -> None:
        while True:
            try:
                overview = await self.poll_once()
                if on_update is not None:
                    on_update(overview)
            except TRANSIENT_ERRORS as exc:
                self._logger.warning("Room list poll failed: %s", exc)
            await self._sleep(self._interval)


def format_countdown(room: RoomInfo) -> str:
    if room.phase == RoundStatus.DRAWING.value:
        return f"ball {room.countdown}/{BALL_COUNT}"
    minutes, seconds = divmod(room.countdown, 60)
    return f"{minutes:02d}:{seconds:02d}"


def describe_room(room: RoomInfo) -> str:
    round_label = f"round {room.round_id}" if room.round_id is not None else "no round"
    return f"Room {room.room_number} | {room.phase:<8} | {round_label} | {format_countdown(room)}"
