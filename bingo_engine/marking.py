"""Card marking: pure functions of (revealed balls, manual marks, card)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import AbstractSet, Collection, FrozenSet, Tuple

from .types import CARD_ROWS, FREE_CELL, Card


def ball_column(number: int) -> str:
    if number <= 15:
        return "B"
    if number <= 30:
        return "I"
    if number <= 45:
        return "N"
    if number <= 60:
        return "G"
    return "O"


@dataclass(frozen=True)
class MarkContext:
    revealed: FrozenSet[int] = frozenset()
    manual_marks: FrozenSet[int] = frozenset()
    auto_mark: bool = True

    @classmethod
    def build(
        cls, revealed: Collection[int], manual_marks: Collection[int] = (), auto_mark: bool = True
    ) -> "MarkContext":
        return cls(frozenset(revealed), frozenset(manual_marks), auto_mark)


def is_marked(number: int, context: MarkContext) -> bool:
    if number == FREE_CELL:
        return True
    if context.auto_mark:
        return number in context.revealed
    return number in context.manual_marks


def check_line(card: Card, row_index: int, context: MarkContext) -> bool:
    return all(is_marked(n, context) for n in card.row(row_index))


def check_bingo(card: Card, context: MarkContext) -> bool:
    return all(is_marked(n, context) for n in card.numbers)


def has_any_line(card: Card, context: MarkContext) -> bool:
    return any(check_line(card, row, context) for row in range(CARD_ROWS))


def toggle_manual_mark(
    manual_marks: AbstractSet[int], revealed: Collection[int], number: int
) -> FrozenSet[int]:
    """Flip a manual mark; undrawn numbers cannot be marked."""
    if number not in revealed:
        return frozenset(manual_marks)
    if number in manual_marks:
        return frozenset(manual_marks) - {number}
    return frozenset(manual_marks) | {number}


@dataclass(frozen=True)
class CardMarks:
    card_id: int
    marked: Tuple[bool, ...]
    lines: Tuple[bool, ...]
    has_line: bool
    has_bingo: bool
    almost_line: bool
    almost_bingo: bool
    almost_line_row: int = -1


def card_marks(card: Card, context: MarkContext, line_announced: bool = False) -> CardMarks:
    """Marks, completed rows and one-away signals for a card."""
    marked = tuple(is_marked(n, context) for n in card.numbers)
    lines = tuple(check_line(card, row, context) for row in range(CARD_ROWS))
    has_line = any(lines)
    has_bingo = all(marked)

    missing_per_row = [
        sum(1 for n in card.row(row) if not is_marked(n, context)) for row in range(CARD_ROWS)
    ]
    total_missing = sum(missing_per_row)
    best_row = min(range(CARD_ROWS), key=lambda r: missing_per_row[r])

    almost_line = not line_announced and not has_line and missing_per_row[best_row] == 1
    almost_bingo = not has_bingo and total_missing == 1
    return CardMarks(
        card_id=card.card_id,
        marked=marked,
        lines=lines,
        has_line=has_line,
        has_bingo=has_bingo,
        almost_line=almost_line,
        almost_bingo=almost_bingo,
        almost_line_row=best_row if almost_line else -1,
    )
