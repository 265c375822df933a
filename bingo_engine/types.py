from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple

BALL_COUNT = 75
CARD_ROWS = 3
CARD_COLUMNS = 5
CARD_SIZE = CARD_ROWS * CARD_COLUMNS
FREE_CELL = 0
ZERO_ADDRESS = "0x" + "0" * 40


class RoundStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"
    DRAWING = "drawing"
    RESOLVED = "resolved"

    @property
    def rank(self) -> int:
        return _STATUS_ORDER.index(self)


_STATUS_ORDER = (RoundStatus.OPEN, RoundStatus.CLOSED, RoundStatus.DRAWING, RoundStatus.RESOLVED)


class Phase(str, Enum):
    """Timeline phase of a draw, as computed from elapsed time."""

    DRAWING = "drawing"
    LINE_PAUSE = "line_pause"
    BINGO_PAUSE = "bingo_pause"
    DONE = "done"


class GameState(str, Enum):
    BROWSING = "browsing"
    BUYING = "buying"
    WAITING_CLOSE = "waiting_close"
    WAITING_VRF = "waiting_vrf"
    DRAWING = "drawing"
    LINE_PAUSE = "line_pause"
    BINGO_PAUSE = "bingo_pause"
    RESOLVED = "resolved"
    ERROR = "error"


class TxStep(str, Enum):
    APPROVING = "approving"
    BUYING = "buying"


@dataclass(frozen=True)
class Card:
    """A purchased ticket: 15 numbers in a 3x5 grid, 0 marks the free cell."""

    card_id: int
    round_id: int
    numbers: Tuple[int, ...]
    owner: Optional[str] = None
    is_line_winner: bool = False
    line_hit_ball: int = 0
    is_bingo_winner: bool = False
    bingo_hit_ball: int = 0

    def __post_init__(self) -> None:
        if len(self.numbers) != CARD_SIZE:
            raise ValueError(f"Card {self.card_id} must hold {CARD_SIZE} numbers")

    def row(self, index: int) -> Tuple[int, ...]:
        if not 0 <= index < CARD_ROWS:
            raise IndexError(f"Row index out of range: {index}")
        start = index * CARD_COLUMNS
        return self.numbers[start : start + CARD_COLUMNS]


@dataclass(frozen=True)
class RoundResults:
    line_winners: Tuple[str, ...] = ()
    bingo_winners: Tuple[str, ...] = ()
    line_prize: Decimal = Decimal(0)
    bingo_prize: Decimal = Decimal(0)
    jackpot_won: bool = False
    jackpot_paid: Decimal = Decimal(0)


@dataclass(frozen=True)
class RoundSnapshot:
    """Read-only view of a round as last reported by the backend."""

    round_id: int
    status: RoundStatus
    scheduled_close_at: Optional[dt.datetime] = None
    draw_started_at: Optional[dt.datetime] = None
    ball_sequence: Tuple[int, ...] = ()
    line_ball_pos: int = 0
    bingo_ball_pos: int = 0
    results: RoundResults = RoundResults()
    total_cards: int = 0
    total_revenue: Decimal = Decimal(0)
    room_number: Optional[int] = None
    random_word: Optional[int] = None
    cards: Tuple[Card, ...] = ()

    def __post_init__(self) -> None:
        if self.line_ball_pos < 0 or self.bingo_ball_pos < 0:
            raise ValueError("Winner ball positions cannot be negative")
        if self.line_ball_pos and self.bingo_ball_pos and self.bingo_ball_pos < self.line_ball_pos:
            raise ValueError(
                f"Round {self.round_id}: bingo ball {self.bingo_ball_pos} precedes "
                f"line ball {self.line_ball_pos}"
            )

    @property
    def has_ball_sequence(self) -> bool:
        return len(self.ball_sequence) > 0

    @property
    def final_ball_count(self) -> int:
        """Number of balls shown once the draw is over."""
        if self.bingo_ball_pos > 0:
            return min(self.bingo_ball_pos, len(self.ball_sequence))
        return len(self.ball_sequence)


@dataclass(frozen=True)
class RoomInfo:
    room_number: int
    phase: str
    round_id: Optional[int] = None
    phase_end_time: Optional[dt.datetime] = None
    draw_started_at: Optional[dt.datetime] = None
    jackpot: Decimal = Decimal(0)
    countdown: int = 0


@dataclass(frozen=True)
class RoomsOverview:
    rooms: Tuple[RoomInfo, ...]
    jackpot: Decimal = Decimal(0)


@dataclass(frozen=True)
class PurchaseReceipt:
    card_ids: Tuple[int, ...]
    tx_hash: Optional[str] = None
