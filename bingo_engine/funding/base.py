from __future__ import annotations

import abc
from decimal import Decimal, ROUND_DOWN
from typing import Union

from ..types import PurchaseReceipt

TOKEN_DECIMALS = 6


def to_base_units(amount: Union[Decimal, int, str, float], decimals: int = TOKEN_DECIMALS) -> int:
    """Convert a human amount (e.g. "1.5") to integer token base units."""
    value = Decimal(str(amount)) * (Decimal(10) ** decimals)
    return int(value.quantize(Decimal(1), rounding=ROUND_DOWN))


def format_units(amount: int, decimals: int = TOKEN_DECIMALS) -> Decimal:
    return Decimal(int(amount)) / (Decimal(10) ** decimals)


class FundingBackend(abc.ABC):
    """Moves the player's funds for a card purchase.

    Amounts are integer token base units. Backends that need an ERC-20
    style pre-authorization report `requires_authorization = True`; the
    orchestrator then checks `get_allowance()` and calls `approve()` before
    `buy_cards()`.
    """

    requires_authorization: bool = False

    @abc.abstractmethod
    async def get_card_price(self) -> int:
        ...

    @abc.abstractmethod
    async def get_balance(self) -> int:
        ...

    async def get_allowance(self) -> int:
        return 0

    async def approve(self, amount: int) -> str:
        raise NotImplementedError("This funding backend has no authorization step")

    @abc.abstractmethod
    async def buy_cards(self, round_id: int, count: int) -> PurchaseReceipt:
        """Commit funds and return the newly issued card ids."""

    async def close(self) -> None:
        return None
