from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Union

from .types import RoundResults

BPS_DENOMINATOR = 10000


@dataclass(frozen=True)
class PlayerOutcome:
    won_line: bool = False
    won_bingo: bool = False

    @property
    def won_any(self) -> bool:
        return self.won_line or self.won_bingo


def player_outcome(results: Optional[RoundResults], address: Optional[str]) -> PlayerOutcome:
    if results is None or not address:
        return PlayerOutcome()
    addr = address.lower()
    return PlayerOutcome(
        won_line=addr in results.line_winners,
        won_bingo=addr in results.bingo_winners,
    )


@dataclass(frozen=True)
class PrizeEstimate:
    revenue: Decimal
    winner_pot: Decimal
    line_prize: Decimal
    bingo_prize: Decimal


def estimate_prizes(
    total_revenue: Union[Decimal, int, str],
    fee_bps: int = 1000,
    reserve_bps: int = 1000,
    line_prize_bps: int = 1500,
    bingo_prize_bps: int = 8500,
) -> PrizeEstimate:
    """Split round revenue into line and bingo prizes (basis points)."""
    revenue = Decimal(str(total_revenue))
    winner_pot = revenue * (BPS_DENOMINATOR - fee_bps - reserve_bps) / BPS_DENOMINATOR
    return PrizeEstimate(
        revenue=revenue,
        winner_pot=winner_pot,
        line_prize=winner_pot * line_prize_bps / BPS_DENOMINATOR,
        bingo_prize=winner_pot * bingo_prize_bps / BPS_DENOMINATOR,
    )
