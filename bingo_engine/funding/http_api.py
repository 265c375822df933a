from __future__ import annotations

import asyncio
from typing import Any, Mapping, Optional

import requests

from ..config import ApiSettings
from ..errors import InsufficientFunds, RoundNotFound
from ..schemas import parse_cards, unwrap_envelope
from ..types import PurchaseReceipt
from .base import FundingBackend, to_base_units


class HttpFundingBackend(FundingBackend):
    """Off-chain purchases debited from the player's backend wallet."""

    requires_authorization = False

    def __init__(self, settings: ApiSettings, session: Optional[requests.Session] = None) -> None:
        self._settings = settings
        self._session = session or requests.Session()
        if settings.auth_token:
            self._session.headers["Authorization"] = f"Bearer {settings.auth_token}"

    async def get_card_price(self) -> int:
        payload = await asyncio.to_thread(self._request, "GET", "/bingo/config")
        config = unwrap_envelope(payload)
        if not isinstance(config, Mapping) or config.get("cardPrice") is None:
            raise ValueError("Game config is missing cardPrice")
        return to_base_units(config["cardPrice"])

    async def get_balance(self) -> int:
        payload = await asyncio.to_thread(self._request, "GET", "/wallet/balance")
        data = unwrap_envelope(payload)
        balance = data.get("balance") if isinstance(data, Mapping) else None
        return to_base_units(balance or 0)

    async def buy_cards(self, round_id: int, count: int) -> PurchaseReceipt:
        payload = await asyncio.to_thread(
            self._request,
            "POST",
            "/bingo/buy-cards",
            {"roundId": int(round_id), "count": int(count)},
            int(round_id),
        )
        cards = parse_cards(payload, round_id)
        return PurchaseReceipt(card_ids=tuple(c.card_id for c in cards))

    async def close(self) -> None:
        self._session.close()

    def _request(
        self,
        method: str,
        path: str,
        body: Optional[Mapping[str, Any]] = None,
        round_id: Optional[int] = None,
    ) -> Any:
        resp = self._session.request(
            method,
            f"{self._settings.base_url}{path}",
            json=body,
            timeout=self._settings.timeout_seconds,
        )
        if resp.status_code == 404 and round_id is not None:
            raise RoundNotFound(round_id)
        if resp.status_code in (400, 402) and "insufficient" in resp.text.lower():
            raise InsufficientFunds(required=0, available=0)
        resp.raise_for_status()
        return resp.json()
