from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Mapping, Optional

import requests

from ..config import ApiSettings
from ..errors import RoundNotFound
from ..schemas import parse_cards, parse_round_detail, parse_round_list, parse_rooms
from ..types import Card, RoomsOverview, RoundSnapshot, RoundStatus
from .base import RoundDataSource


class HttpJsonDataSource(RoundDataSource):
    """Read rounds, cards and rooms from the game backend's JSON API."""

    def __init__(self, settings: ApiSettings, session: Optional[requests.Session] = None) -> None:
        self._settings = settings
        self._session = session or requests.Session()
        if settings.auth_token:
            self._session.headers["Authorization"] = f"Bearer {settings.auth_token}"

    async def fetch_round(self, round_id: int) -> RoundSnapshot:
        payload = await asyncio.to_thread(
            self._get_json, f"/bingo/rounds/{int(round_id)}", None, round_id
        )
        return parse_round_detail(payload)

    async def fetch_my_cards(self, round_id: int) -> List[Card]:
        payload = await asyncio.to_thread(
            self._get_json, "/bingo/my-cards", {"roundId": int(round_id)}, round_id
        )
        return parse_cards(payload, round_id)

    async def fetch_rounds(
        self,
        status: Optional[RoundStatus] = None,
        limit: Optional[int] = None,
        room: Optional[int] = None,
    ) -> List[RoundSnapshot]:
        params: Dict[str, Any] = {}
        if status is not None:
            params["status"] = RoundStatus(status).value
        if limit is not None:
            params["limit"] = int(limit)
        if room is not None:
            params["room"] = int(room)
        payload = await asyncio.to_thread(self._get_json, "/bingo/rounds", params or None)
        return parse_round_list(payload)

    async def fetch_rooms(self) -> RoomsOverview:
        payload = await asyncio.to_thread(self._get_json, "/bingo/rooms", None)
        return parse_rooms(payload)

    async def close(self) -> None:
        self._session.close()

    def _get_json(
        self,
        path: str,
        params: Optional[Mapping[str, Any]] = None,
        round_id: Optional[int] = None,
    ) -> Any:
        resp = self._session.get(
            f"{self._settings.base_url}{path}",
            params=params,
            timeout=self._settings.timeout_seconds,
        )
        if resp.status_code == 404 and round_id is not None:
            raise RoundNotFound(round_id)
        resp.raise_for_status()
        return resp.json()
