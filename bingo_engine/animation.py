from __future__ import annotations

import asyncio
import datetime as dt
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple

from .timeline import locate
from .types import Phase, RoundSnapshot

Clock = Callable[[], float]


class DriverEventKind(str, Enum):
    REVEAL = "reveal"
    PHASE = "phase"
    FINISHED = "finished"


@dataclass(frozen=True)
class DriverEvent:
    kind: DriverEventKind
    ball_index: int
    phase: Phase
    revealed: Tuple[int, ...] = ()
    new_balls: Tuple[int, ...] = ()


class AnimationDriver:
    """Ticks the draw timeline and emits reveal/phase/finish events.

    State is never advanced on its own: every tick re-derives the position
    from `clock() - draw_started_at`. Elapsed time and the revealed prefix
    only move forward, so a clock that jumps backward cannot hide balls or
    replay an announcement.
    """

    def __init__(
        self,
        ball_sequence: Sequence[int],
        draw_started_at: dt.datetime,
        line_ball_pos: int = 0,
        bingo_ball_pos: int = 0,
        clock: Clock = time.time,
        tick_interval: float = 1.0,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if not ball_sequence:
            raise ValueError("AnimationDriver needs a ball sequence")
        self._balls = tuple(ball_sequence)
        self._started_at = draw_started_at.timestamp()
        self._line_pos = line_ball_pos
        self._bingo_pos = bingo_ball_pos
        self._clock = clock
        self._tick_interval = tick_interval
        self._logger = logger or logging.getLogger("bingo.animation")

        self._elapsed_ms = 0.0
        self._index = -1
        self._phase: Optional[Phase] = None
        self._finished = False
        self._stopped = False

    @classmethod
    def from_snapshot(
        cls,
        snapshot: RoundSnapshot,
        clock: Clock = time.time,
        tick_interval: float = 1.0,
        logger: Optional[logging.Logger] = None,
    ) -> Optional["AnimationDriver"]:
        """Build a driver, or return None when the snapshot lacks draw data."""
        if not snapshot.has_ball_sequence or not isinstance(snapshot.draw_started_at, dt.datetime):
            return None
        return cls(
            snapshot.ball_sequence,
            snapshot.draw_started_at,
            line_ball_pos=snapshot.line_ball_pos,
            bingo_ball_pos=snapshot.bingo_ball_pos,
            clock=clock,
            tick_interval=tick_interval,
            logger=logger,
        )

    @property
    def ball_sequence(self) -> Tuple[int, ...]:
        return self._balls

    @property
    def current_index(self) -> int:
        return self._index

    @property
    def revealed(self) -> Tuple[int, ...]:
        return self._balls[: self._index + 1]

    @property
    def phase(self) -> Optional[Phase]:
        return self._phase

    @property
    def finished(self) -> bool:
        return self._finished

    @property
    def line_announced(self) -> bool:
        if self._line_pos <= 0 or self._phase is None:
            return False
        return self._phase is not Phase.DRAWING or self._index >= self._line_pos

    def stop(self) -> None:
        self._stopped = True

    def tick(self, now: Optional[float] = None) -> List[DriverEvent]:
        if self._finished:
            return []
        current = self._clock() if now is None else now
        self._elapsed_ms = max(self._elapsed_ms, (current - self._started_at) * 1000.0)
        position = locate(self._elapsed_ms, self._line_pos, self._bingo_pos, len(self._balls))

        events: List[DriverEvent] = []
        index = max(self._index, position.ball_index)
        if index > self._index:
            new_balls = self._balls[self._index + 1 : index + 1]
            self._index = index
            events.append(
                DriverEvent(
                    DriverEventKind.REVEAL,
                    index,
                    position.phase,
                    revealed=self.revealed,
                    new_balls=new_balls,
                )
            )

        if position.phase is not self._phase:
            self._phase = position.phase
            if position.phase is Phase.DONE:
                self._finished = True
                self._logger.debug("Draw finished at ball index %s", self._index)
                events.append(DriverEvent(DriverEventKind.FINISHED, self._index, Phase.DONE, self.revealed))
            else:
                self._logger.debug("Draw phase -> %s at ball index %s", position.phase.value, self._index)
                events.append(DriverEvent(DriverEventKind.PHASE, self._index, position.phase, self.revealed))
        return events

    async def run(self, on_events: Callable[[List[DriverEvent]], None]) -> None:
        """Tick until the draw is done or `stop()` is called."""
        self._logger.debug("Animation ticker started; interval=%s", self._tick_interval)
        while not self._finished and not self._stopped:
            await asyncio.sleep(self._tick_interval)
            if self._stopped:
                break
            events = self.tick()
            if events:
                on_events(events)
        self._logger.debug("Animation ticker exited (finished=%s)", self._finished)
