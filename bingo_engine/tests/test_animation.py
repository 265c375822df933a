import asyncio
import datetime as dt
import unittest

from bingo_engine.animation import AnimationDriver, DriverEventKind
from bingo_engine.shuffle import generate_ball_sequence
from bingo_engine.timeline import DRAW_INTERVAL_MS, LINE_PAUSE_MS
from bingo_engine.types import Phase, RoundSnapshot, RoundStatus

START = dt.datetime(2025, 6, 1, 12, 0, tzinfo=dt.timezone.utc)
T0 = START.timestamp()
BALLS = generate_ball_sequence(2024)


def _at(ms: float) -> float:
    return T0 + ms / 1000.0


class AnimationDriverTests(unittest.TestCase):
    def test_first_tick_reveals_first_ball(self) -> None:
        driver = AnimationDriver(BALLS, START, clock=lambda: T0)
        events = driver.tick()
        self.assertEqual([e.kind for e in events], [DriverEventKind.REVEAL, DriverEventKind.PHASE])
        self.assertEqual(events[0].new_balls, (BALLS[0],))
        self.assertEqual(driver.revealed, (BALLS[0],))
        self.assertIs(driver.phase, Phase.DRAWING)

    def test_catch_up_reveals_prefix_at_once(self) -> None:
        driver = AnimationDriver(BALLS, START)
        events = driver.tick(_at(200000))
        reveal = events[0]
        self.assertEqual(reveal.ball_index, 44)
        self.assertEqual(reveal.new_balls, BALLS[:45])
        self.assertEqual(driver.revealed, BALLS[:45])

    def test_clock_jumping_backwards_never_hides_balls(self) -> None:
        driver = AnimationDriver(BALLS, START)
        driver.tick(_at(50000))
        revealed = driver.revealed
        self.assertEqual(driver.tick(_at(10000)), [])
        self.assertEqual(driver.revealed, revealed)

    def test_revealed_prefix_is_monotonic(self) -> None:
        driver = AnimationDriver(BALLS, START, line_ball_pos=6, bingo_ball_pos=40)
        previous = 0
        for ms in range(0, 250000, 900):
            driver.tick(_at(ms))
            self.assertGreaterEqual(len(driver.revealed), previous)
            previous = len(driver.revealed)

    def test_phase_events_fire_once(self) -> None:
        driver = AnimationDriver(BALLS, START, line_ball_pos=5, bingo_ball_pos=20)
        phase_events = []
        for ms in range(0, 150000, 500):
            for event in driver.tick(_at(ms)):
                if event.kind is not DriverEventKind.REVEAL:
                    phase_events.append(event.phase)
        self.assertEqual(
            phase_events,
            [Phase.DRAWING, Phase.LINE_PAUSE, Phase.DRAWING, Phase.BINGO_PAUSE, Phase.DONE],
        )
        self.assertTrue(driver.finished)
        self.assertEqual(driver.revealed, BALLS[:20])

    def test_line_announced(self) -> None:
        driver = AnimationDriver(BALLS, START, line_ball_pos=5)
        driver.tick(_at(DRAW_INTERVAL_MS * 4))
        self.assertFalse(driver.line_announced)
        driver.tick(_at(DRAW_INTERVAL_MS * 5 + 100))
        self.assertTrue(driver.line_announced)
        driver.tick(_at(DRAW_INTERVAL_MS * 5 + LINE_PAUSE_MS + 100))
        self.assertIs(driver.phase, Phase.DRAWING)
        self.assertTrue(driver.line_announced)

    def test_finished_driver_ignores_ticks(self) -> None:
        driver = AnimationDriver(BALLS, START, bingo_ball_pos=3)
        events = driver.tick(_at(600000))
        self.assertEqual(events[-1].kind, DriverEventKind.FINISHED)
        self.assertEqual(driver.tick(_at(700000)), [])

    def test_empty_sequence_rejected(self) -> None:
        with self.assertRaises(ValueError):
            AnimationDriver((), START)

    def test_from_snapshot_requires_draw_data(self) -> None:
        no_balls = RoundSnapshot(round_id=1, status=RoundStatus.DRAWING, draw_started_at=START)
        no_start = RoundSnapshot(round_id=1, status=RoundStatus.DRAWING, ball_sequence=BALLS)
        self.assertIsNone(AnimationDriver.from_snapshot(no_balls))
        self.assertIsNone(AnimationDriver.from_snapshot(no_start))
        full = RoundSnapshot(
            round_id=1, status=RoundStatus.DRAWING, draw_started_at=START, ball_sequence=BALLS
        )
        self.assertIsNotNone(AnimationDriver.from_snapshot(full))

    def test_run_until_finished(self) -> None:
        now = {"t": _at(0)}

        def clock() -> float:
            now["t"] += 60.0
            return now["t"]

        driver = AnimationDriver(BALLS, START, bingo_ball_pos=4, clock=clock, tick_interval=0)
        batches = []
        asyncio.run(driver.run(batches.append))
        self.assertTrue(driver.finished)
        self.assertEqual(batches[-1][-1].kind, DriverEventKind.FINISHED)

    def test_stop_ends_run(self) -> None:
        driver = AnimationDriver(BALLS, START, clock=lambda: T0, tick_interval=0)

        async def scenario() -> None:
            task = asyncio.ensure_future(driver.run(lambda events: None))
            await asyncio.sleep(0)
            driver.stop()
            await asyncio.wait_for(task, timeout=1)

        asyncio.run(scenario())
        self.assertFalse(driver.finished)


if __name__ == "__main__":
    unittest.main()
