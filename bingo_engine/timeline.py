"""Draw timeline: maps elapsed time since draw start to (ball index, phase).

Every client derives the same view from the same start timestamp, so this is
the only place that turns time into draw progress. Both the live ticker and
the one-shot catch-up after (re)loading a round call `locate`.
"""

from __future__ import annotations

from dataclasses import dataclass

from .types import Phase

DRAW_INTERVAL_MS = 4500
LINE_PAUSE_MS = 5000
BINGO_PAUSE_MS = 6000


@dataclass(frozen=True)
class TimelinePosition:
    ball_index: int
    phase: Phase


def locate(
    elapsed_ms: float,
    line_ball_pos: int,
    bingo_ball_pos: int,
    total_balls: int,
) -> TimelinePosition:
    if total_balls <= 0:
        return TimelinePosition(0, Phase.DRAWING)
    elapsed = max(0.0, float(elapsed_ms))
    line_pos = min(max(0, line_ball_pos), total_balls)
    bingo_pos = min(max(0, bingo_ball_pos), total_balls)

    last_index = (bingo_pos if bingo_pos > 0 else total_balls) - 1

    line_pause = 0
    if line_pos > 0:
        # The line pause opens once ball #line_pos has had its full interval.
        line_pause_start = line_pos * DRAW_INTERVAL_MS
        if elapsed < line_pause_start:
            index = min(int(elapsed // DRAW_INTERVAL_MS), last_index)
            return TimelinePosition(index, Phase.DRAWING)
        if elapsed < line_pause_start + LINE_PAUSE_MS:
            return TimelinePosition(line_pos - 1, Phase.LINE_PAUSE)
        line_pause = LINE_PAUSE_MS

    adjusted = elapsed - line_pause
    index = min(int(adjusted // DRAW_INTERVAL_MS), last_index)

    if bingo_pos > 0 and index >= bingo_pos - 1:
        bingo_pause_end = bingo_pos * DRAW_INTERVAL_MS + line_pause + BINGO_PAUSE_MS
        if elapsed < bingo_pause_end:
            return TimelinePosition(bingo_pos - 1, Phase.BINGO_PAUSE)
        return TimelinePosition(bingo_pos - 1, Phase.DONE)

    if index >= total_balls - 1:
        return TimelinePosition(total_balls - 1, Phase.DONE)

    return TimelinePosition(index, Phase.DRAWING)


def draw_duration_ms(line_ball_pos: int, bingo_ball_pos: int, total_balls: int) -> int:
    """Elapsed time at which `locate` first reports `Phase.DONE`."""
    if total_balls <= 0:
        return 0
    line_pause = LINE_PAUSE_MS if line_ball_pos > 0 else 0
    if bingo_ball_pos > 0:
        return bingo_ball_pos * DRAW_INTERVAL_MS + line_pause + BINGO_PAUSE_MS
    return max((total_balls - 1) * DRAW_INTERVAL_MS + line_pause, line_pause + line_ball_pos * DRAW_INTERVAL_MS)
