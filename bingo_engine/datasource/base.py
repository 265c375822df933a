from __future__ import annotations

import abc
from typing import List, Optional

from ..types import Card, RoomsOverview, RoundSnapshot, RoundStatus


class RoundDataSource(abc.ABC):
    """Abstract provider of round, card and room facts."""

    @abc.abstractmethod
    async def fetch_round(self, round_id: int) -> RoundSnapshot:
        """Return the latest snapshot of a round, cards included.

        Implementations raise `RoundNotFound` when the round no longer exists
        and `ValueError` when the payload fails validation. Must be
        idempotent and safe to poll.
        """

    @abc.abstractmethod
    async def fetch_my_cards(self, round_id: int) -> List[Card]:
        """Return the caller's cards for a round."""

    @abc.abstractmethod
    async def fetch_rounds(
        self,
        status: Optional[RoundStatus] = None,
        limit: Optional[int] = None,
        room: Optional[int] = None,
    ) -> List[RoundSnapshot]:
        """Return rounds, newest first, optionally filtered."""

    @abc.abstractmethod
    async def fetch_rooms(self) -> RoomsOverview:
        """Return the room list used by the lobby."""

    async def close(self) -> None:
        """Optional hook for connectors that require cleanup."""
        return None
