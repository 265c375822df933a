import asyncio
import datetime as dt
import unittest
from typing import Dict, List, Optional

from bingo_engine.datasource.base import RoundDataSource
from bingo_engine.errors import RoundNotFound
from bingo_engine.reconciler import PollReconciler
from bingo_engine.shuffle import generate_ball_sequence
from bingo_engine.state_machine import EventKind, RoundStateMachine
from bingo_engine.types import Card, GameState, RoomsOverview, RoundSnapshot, RoundStatus

START = dt.datetime(2025, 6, 1, 12, 0, tzinfo=dt.timezone.utc)
BALLS = generate_ball_sequence(99)
CARD = Card(card_id=1, round_id=7, numbers=tuple(range(1, 8)) + (0,) + tuple(range(8, 15)))


def _round(round_id: int, status: RoundStatus, **kwargs) -> RoundSnapshot:
    return RoundSnapshot(round_id=round_id, status=status, **kwargs)


class FakeDataSource(RoundDataSource):
    def __init__(self) -> None:
        self.rounds: Dict[int, RoundSnapshot] = {}
        self.cards: Dict[int, List[Card]] = {}
        self.error: Optional[Exception] = None
        self.card_error: Optional[Exception] = None
        self.on_fetch = None
        self.fetches: List[int] = []

    async def fetch_round(self, round_id: int) -> RoundSnapshot:
        self.fetches.append(round_id)
        if self.on_fetch is not None:
            hook, self.on_fetch = self.on_fetch, None
            await hook()
        if self.error is not None:
            raise self.error
        if round_id not in self.rounds:
            raise RoundNotFound(round_id)
        return self.rounds[round_id]

    async def fetch_my_cards(self, round_id: int) -> List[Card]:
        if self.card_error is not None:
            raise self.card_error
        return list(self.cards.get(round_id, []))

    async def fetch_rounds(self, status=None, limit=None, room=None) -> List[RoundSnapshot]:
        return list(self.rounds.values())

    async def fetch_rooms(self) -> RoomsOverview:
        return RoomsOverview(rooms=())


class PollReconcilerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.datasource = FakeDataSource()
        self.machine = RoundStateMachine(clock=lambda: START.timestamp() + 3600)
        self.reconciler = PollReconciler(self.datasource, self.machine, interval_seconds=0.01)

    def test_load_round_selects_with_cards(self) -> None:
        self.datasource.rounds[7] = _round(7, RoundStatus.OPEN)
        self.datasource.cards[7] = [CARD]
        state = asyncio.run(self.reconciler.load_round(7))
        self.assertIs(state, GameState.WAITING_CLOSE)
        self.assertEqual(self.machine.my_cards, (CARD,))

    def test_poll_skipped_when_idle(self) -> None:
        self.datasource.rounds[7] = _round(7, RoundStatus.OPEN)
        asyncio.run(self.reconciler.load_round(7))
        self.assertFalse(asyncio.run(self.reconciler.poll_once()))
        self.assertEqual(self.datasource.fetches, [7])

    def test_poll_advances_waiting_round(self) -> None:
        self.datasource.rounds[7] = _round(7, RoundStatus.OPEN)
        self.datasource.cards[7] = [CARD]
        asyncio.run(self.reconciler.load_round(7))
        self.datasource.rounds[7] = _round(7, RoundStatus.CLOSED)
        self.assertTrue(asyncio.run(self.reconciler.poll_once()))
        self.assertIs(self.machine.state, GameState.WAITING_VRF)

    def test_poll_runs_draw_catch_up(self) -> None:
        self.datasource.rounds[7] = _round(7, RoundStatus.CLOSED)
        asyncio.run(self.reconciler.load_round(7))
        self.datasource.rounds[7] = _round(
            7, RoundStatus.DRAWING, ball_sequence=BALLS, draw_started_at=START, bingo_ball_pos=30
        )
        asyncio.run(self.reconciler.poll_once())
        # The draw ended an hour ago; it resolves straight away.
        self.assertIs(self.machine.state, GameState.RESOLVED)
        self.assertEqual(self.machine.view().revealed, BALLS[:30])
        self.assertTrue(self.machine.wants_snapshot)

    def test_missing_round_returns_to_lobby(self) -> None:
        self.datasource.rounds[3] = _round(3, RoundStatus.OPEN)
        self.datasource.cards[3] = [CARD]
        asyncio.run(self.reconciler.load_round(3))
        self.assertIs(self.machine.state, GameState.WAITING_CLOSE)
        refreshes = []
        self.machine.subscribe(
            lambda event: refreshes.append(event) if event.kind is EventKind.LOBBY_REFRESH else None
        )
        del self.datasource.rounds[3]
        with self.assertLogs("bingo.reconciler", level="WARNING") as logs:
            self.assertFalse(asyncio.run(self.reconciler.poll_once()))
        self.assertIn("no longer exists", logs.output[0])
        self.assertIs(self.machine.state, GameState.BROWSING)
        self.assertFalse(self.machine.wants_snapshot)
        self.assertIn("expired", self.machine.view().error)
        self.assertEqual([event.round_id for event in refreshes], [3])
        self.assertFalse(asyncio.run(self.reconciler.poll_once()))
        self.assertEqual(self.datasource.fetches, [3, 3])

    def test_transient_errors_are_retried_next_tick(self) -> None:
        self.datasource.rounds[7] = _round(7, RoundStatus.CLOSED)
        asyncio.run(self.reconciler.load_round(7))
        self.datasource.error = ConnectionError("api down")
        with self.assertLogs("bingo.reconciler", level="WARNING"):
            self.assertFalse(asyncio.run(self.reconciler.poll_once()))
        self.datasource.error = None
        self.assertTrue(asyncio.run(self.reconciler.poll_once()))

    def test_card_errors_do_not_block_selection(self) -> None:
        self.datasource.rounds[7] = _round(7, RoundStatus.OPEN)
        self.datasource.card_error = ValueError("bad card payload")
        with self.assertLogs("bingo.reconciler", level="WARNING"):
            state = asyncio.run(self.reconciler.load_round(7))
        self.assertIs(state, GameState.BROWSING)

    def test_result_of_superseded_poll_is_dropped(self) -> None:
        self.datasource.rounds[7] = _round(7, RoundStatus.CLOSED)
        self.datasource.rounds[8] = _round(8, RoundStatus.OPEN)
        asyncio.run(self.reconciler.load_round(7))

        async def switch_round() -> None:
            self.machine.select_round(self.datasource.rounds[8], force=True)

        self.datasource.on_fetch = switch_round
        self.datasource.rounds[7] = _round(
            7, RoundStatus.DRAWING, ball_sequence=BALLS, draw_started_at=START
        )
        self.assertFalse(asyncio.run(self.reconciler.poll_once()))
        self.assertEqual(self.machine.round_id, 8)
        self.assertIs(self.machine.state, GameState.BROWSING)

    def test_superseded_load_does_not_select(self) -> None:
        self.datasource.rounds[7] = _round(7, RoundStatus.OPEN)
        self.datasource.rounds[8] = _round(8, RoundStatus.OPEN)

        async def select_other() -> None:
            self.machine.select_round(self.datasource.rounds[8])

        self.datasource.on_fetch = select_other
        asyncio.run(self.reconciler.load_round(7))
        self.assertEqual(self.machine.round_id, 8)

    def test_round_change_cancels_inflight_poll(self) -> None:
        self.datasource.rounds[7] = _round(7, RoundStatus.CLOSED)
        asyncio.run(self.reconciler.load_round(7))
        entered = asyncio.Event()
        cancelled = asyncio.Event()

        async def block() -> None:
            entered.set()
            try:
                await asyncio.sleep(30)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        self.datasource.on_fetch = block

        async def scenario() -> None:
            runner = asyncio.ensure_future(self.reconciler.run_forever())
            await asyncio.wait_for(entered.wait(), timeout=1)
            self.machine.reset()
            await asyncio.wait_for(cancelled.wait(), timeout=1)
            runner.cancel()
            try:
                await runner
            except asyncio.CancelledError:
                pass

        asyncio.run(scenario())
        self.assertTrue(cancelled.is_set())
        self.assertIsNone(self.machine.round_id)


if __name__ == "__main__":
    unittest.main()
