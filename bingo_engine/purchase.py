from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from .errors import InsufficientFunds, InvalidCardCount, PurchaseInProgress, PurchaseStepError
from .funding.base import FundingBackend
from .types import TxStep

StepCallback = Callable[[TxStep], None]


@dataclass(frozen=True)
class PurchaseResult:
    round_id: int
    card_ids: Tuple[int, ...]
    total_cost: int
    approved: bool
    tx_hash: Optional[str] = None


class PurchaseOrchestrator:
    """Runs the funds-commitment protocol for one card purchase at a time.

    Order: price, balance check, optional allowance + approve, buy. A balance
    shortfall is raised before anything touches the funding backend's write
    side. Failures of the approve and buy steps are wrapped in
    `PurchaseStepError` so callers can tell them apart. No retries.
    """

    def __init__(
        self,
        backend: FundingBackend,
        max_cards: int = 4,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._backend = backend
        self._max_cards = max_cards
        self._logger = logger or logging.getLogger("bingo.purchase")
        self._in_flight = False

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def max_cards(self) -> int:
        return self._max_cards

    async def purchase(
        self, round_id: int, count: int, on_step: Optional[StepCallback] = None
    ) -> PurchaseResult:
        if self._in_flight:
            raise PurchaseInProgress()
        if not 1 <= count <= self._max_cards:
            raise InvalidCardCount(count, self._max_cards)

        self._in_flight = True
        try:
            return await self._run(round_id, count, on_step or (lambda step: None))
        finally:
            self._in_flight = False

    async def _run(self, round_id: int, count: int, on_step: StepCallback) -> PurchaseResult:
        backend = self._backend
        price = await backend.get_card_price()
        total_cost = price * count

        balance = await backend.get_balance()
        if balance < total_cost:
            raise InsufficientFunds(required=total_cost, available=balance)

        approved = False
        if backend.requires_authorization:
            allowance = await backend.get_allowance()
            if allowance < total_cost:
                on_step(TxStep.APPROVING)
                self._logger.info("Approving %s for round %s", total_cost, round_id)
                try:
                    await backend.approve(total_cost)
                except Exception as exc:
                    raise PurchaseStepError("approve", exc) from exc
                approved = True

        on_step(TxStep.BUYING)
        self._logger.info("Buying %s card(s) for round %s", count, round_id)
        try:
            receipt = await backend.buy_cards(round_id, count)
        except Exception as exc:
            raise PurchaseStepError("buy", exc, approved=approved) from exc

        if not receipt.card_ids:
            self._logger.warning("Purchase for round %s confirmed without card ids", round_id)
        return PurchaseResult(
            round_id=round_id,
            card_ids=tuple(receipt.card_ids),
            total_cost=total_cost,
            approved=approved,
            tx_hash=receipt.tx_hash,
        )
