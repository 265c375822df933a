"""Validation of backend payloads into the engine's immutable types.

All shape differences (camelCase vs snake_case, nested vs flat detail,
winner fields as address / list / JSON string) are resolved here so the rest
of the engine only ever sees `RoundSnapshot`, `Card` and `RoomsOverview`.
"""

from __future__ import annotations

import datetime as dt
import json
from decimal import Decimal
from typing import Any, List, Mapping, Optional, Tuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from .shuffle import generate_ball_sequence
from .types import (
    BALL_COUNT,
    CARD_SIZE,
    ZERO_ADDRESS,
    Card,
    RoomInfo,
    RoomsOverview,
    RoundResults,
    RoundSnapshot,
    RoundStatus,
)


def _aliases(*names: str) -> AliasChoices:
    return AliasChoices(*names)


def normalize_winners(raw: Any) -> List[str]:
    """Winner info as one canonical list of lower-cased addresses."""
    if raw is None:
        return []
    if isinstance(raw, str):
        text = raw.strip()
        if not text:
            return []
        if text.startswith("["):
            try:
                raw = json.loads(text)
            except json.JSONDecodeError:
                return []
        else:
            raw = [text]
    if not isinstance(raw, (list, tuple)):
        raise ValueError("winner field must be an address, a list or a JSON array")
    winners: List[str] = []
    for item in raw:
        if not item:
            continue
        address = str(item).strip().lower()
        if address and address != ZERO_ADDRESS and address not in winners:
            winners.append(address)
    return winners


def unwrap_envelope(payload: Any) -> Any:
    if isinstance(payload, Mapping) and "data" in payload and len(payload) <= 3:
        return payload["data"]
    return payload


def _as_utc(value: Optional[dt.datetime]) -> Optional[dt.datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc)


def _json_list(value: Any) -> Any:
    if isinstance(value, str):
        return json.loads(value)
    return value


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class CardPayload(_Payload):
    card_id: int = Field(validation_alias=_aliases("card_id", "cardId", "id"))
    round_id: Optional[int] = Field(None, validation_alias=_aliases("round_id", "roundId"))
    numbers: List[int] = Field(validation_alias=_aliases("numbers", "card_numbers", "cardNumbers"))
    owner: Optional[str] = Field(None, validation_alias=_aliases("owner", "user_address", "wallet_address"))
    is_line_winner: bool = Field(False, validation_alias=_aliases("is_line_winner", "isLineWinner"))
    line_hit_ball: int = Field(0, validation_alias=_aliases("line_hit_ball", "lineHitBall"))
    is_bingo_winner: bool = Field(False, validation_alias=_aliases("is_bingo_winner", "isBingoWinner"))
    bingo_hit_ball: int = Field(0, validation_alias=_aliases("bingo_hit_ball", "bingoHitBall"))

    @field_validator("numbers", mode="before")
    @classmethod
    def decode_numbers(cls, value: Any) -> Any:
        return _json_list(value)

    @field_validator("numbers")
    @classmethod
    def validate_numbers(cls, value: List[int]) -> List[int]:
        if len(value) != CARD_SIZE:
            raise ValueError(f"A card holds exactly {CARD_SIZE} numbers")
        for n in value:
            if not 0 <= n <= BALL_COUNT:
                raise ValueError(f"Card numbers must be between 0 and {BALL_COUNT}")
        return value

    @field_validator("line_hit_ball", "bingo_hit_ball", mode="before")
    @classmethod
    def default_zero(cls, value: Any) -> Any:
        return 0 if value is None else value

    @field_validator("owner")
    @classmethod
    def lower_owner(cls, value: Optional[str]) -> Optional[str]:
        return value.lower() if value else value

    def to_card(self, round_id: Optional[int] = None) -> Card:
        owner_round = self.round_id if self.round_id is not None else round_id
        return Card(
            card_id=self.card_id,
            round_id=owner_round or 0,
            numbers=tuple(self.numbers),
            owner=self.owner,
            is_line_winner=self.is_line_winner,
            line_hit_ball=self.line_hit_ball,
            is_bingo_winner=self.is_bingo_winner,
            bingo_hit_ball=self.bingo_hit_ball,
        )


class RoundPayload(_Payload):
    round_id: int = Field(validation_alias=_aliases("round_id", "roundId", "id"))
    status: RoundStatus
    scheduled_close: Optional[dt.datetime] = Field(
        None, validation_alias=_aliases("scheduled_close", "scheduledClose", "scheduled_close_at")
    )
    draw_started_at: Optional[dt.datetime] = Field(
        None, validation_alias=_aliases("draw_started_at", "drawStartedAt")
    )
    drawn_balls: Optional[List[int]] = Field(
        None, validation_alias=_aliases("drawn_balls", "drawnBalls", "ball_sequence")
    )
    line_winner: List[str] = Field(
        default_factory=list,
        validation_alias=_aliases("line_winner", "lineWinner", "line_winners", "lineWinners"),
    )
    bingo_winner: List[str] = Field(
        default_factory=list,
        validation_alias=_aliases("bingo_winner", "bingoWinner", "bingo_winners", "bingoWinners"),
    )
    line_winner_ball: int = Field(0, validation_alias=_aliases("line_winner_ball", "lineWinnerBall"))
    bingo_winner_ball: int = Field(0, validation_alias=_aliases("bingo_winner_ball", "bingoWinnerBall"))
    line_prize: Decimal = Field(Decimal(0), validation_alias=_aliases("line_prize", "linePrize"))
    bingo_prize: Decimal = Field(Decimal(0), validation_alias=_aliases("bingo_prize", "bingoPrize"))
    jackpot_won: bool = Field(False, validation_alias=_aliases("jackpot_won", "jackpotWon"))
    jackpot_paid: Decimal = Field(Decimal(0), validation_alias=_aliases("jackpot_paid", "jackpotPaid"))
    total_cards: int = Field(0, validation_alias=_aliases("total_cards", "totalCards"))
    total_revenue: Decimal = Field(Decimal(0), validation_alias=_aliases("total_revenue", "totalRevenue"))
    room_number: Optional[int] = Field(None, validation_alias=_aliases("room_number", "roomNumber", "room"))
    vrf_random_word: Optional[int] = Field(
        None, validation_alias=_aliases("vrf_random_word", "vrfRandomWord", "random_word")
    )

    @field_validator("status", mode="before")
    @classmethod
    def lower_status(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("drawn_balls", mode="before")
    @classmethod
    def decode_balls(cls, value: Any) -> Any:
        value = _json_list(value)
        if value is not None and len(value) == 0:
            return None
        return value

    @field_validator("drawn_balls")
    @classmethod
    def validate_balls(cls, value: Optional[List[int]]) -> Optional[List[int]]:
        if value is None:
            return value
        if len(value) != BALL_COUNT or set(value) != set(range(1, BALL_COUNT + 1)):
            raise ValueError(f"Ball sequence must be a permutation of 1..{BALL_COUNT}")
        return value

    @field_validator("line_winner", "bingo_winner", mode="before")
    @classmethod
    def parse_winners(cls, value: Any) -> List[str]:
        return normalize_winners(value)

    @field_validator(
        "line_winner_ball", "bingo_winner_ball", "total_cards", mode="before"
    )
    @classmethod
    def int_default_zero(cls, value: Any) -> Any:
        return 0 if value is None else value

    @field_validator("line_prize", "bingo_prize", "jackpot_paid", "total_revenue", mode="before")
    @classmethod
    def decimal_default_zero(cls, value: Any) -> Any:
        return 0 if value is None else value

    @field_validator("jackpot_won", mode="before")
    @classmethod
    def bool_default_false(cls, value: Any) -> Any:
        return False if value is None else value

    @field_validator("vrf_random_word", mode="before")
    @classmethod
    def parse_random_word(cls, value: Any) -> Any:
        if isinstance(value, str) and value.lower().startswith("0x"):
            return int(value, 16)
        return value

    @field_validator("scheduled_close", "draw_started_at")
    @classmethod
    def to_utc(cls, value: Optional[dt.datetime]) -> Optional[dt.datetime]:
        return _as_utc(value)

    def to_snapshot(self, cards: Tuple[Card, ...] = ()) -> RoundSnapshot:
        balls = tuple(self.drawn_balls or ())
        if not balls and self.vrf_random_word is not None:
            balls = generate_ball_sequence(self.vrf_random_word)
        line_pos = self.line_winner_ball or _first_hit(cards, "line")
        bingo_pos = self.bingo_winner_ball or _first_hit(cards, "bingo")
        return RoundSnapshot(
            round_id=self.round_id,
            status=self.status,
            scheduled_close_at=self.scheduled_close,
            draw_started_at=self.draw_started_at,
            ball_sequence=balls,
            line_ball_pos=line_pos,
            bingo_ball_pos=bingo_pos,
            results=RoundResults(
                line_winners=tuple(self.line_winner),
                bingo_winners=tuple(self.bingo_winner),
                line_prize=self.line_prize,
                bingo_prize=self.bingo_prize,
                jackpot_won=self.jackpot_won,
                jackpot_paid=self.jackpot_paid,
            ),
            total_cards=self.total_cards,
            total_revenue=self.total_revenue,
            room_number=self.room_number,
            random_word=self.vrf_random_word,
            cards=cards,
        )


def _first_hit(cards: Tuple[Card, ...], kind: str) -> int:
    if kind == "line":
        hits = [c.line_hit_ball for c in cards if c.is_line_winner and c.line_hit_ball > 0]
    else:
        hits = [c.bingo_hit_ball for c in cards if c.is_bingo_winner and c.bingo_hit_ball > 0]
    return min(hits) if hits else 0


class RoundDetailPayload(_Payload):
    round: RoundPayload
    cards: List[CardPayload] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def merge_sections(cls, data: Any) -> Any:
        if not isinstance(data, Mapping):
            raise ValueError("Round detail must be an object")
        round_data = data.get("round")
        if not isinstance(round_data, Mapping):
            round_data = data
        merged = dict(round_data)
        results = data.get("results")
        if isinstance(results, Mapping):
            merged.update(results)
        cards = data.get("cards")
        if cards is None:
            cards = round_data.get("cards") or []
        return {"round": merged, "cards": cards}

    def to_snapshot(self) -> RoundSnapshot:
        cards = tuple(c.to_card(self.round.round_id) for c in self.cards)
        return self.round.to_snapshot(cards)


class RoomPayload(_Payload):
    room_number: int = Field(validation_alias=_aliases("room_number", "roomNumber", "room"))
    phase: str = "open"
    round_id: Optional[int] = Field(
        None, validation_alias=_aliases("round_id", "roundId", "current_round_id", "currentRoundId")
    )
    phase_end_time: Optional[dt.datetime] = Field(
        None,
        validation_alias=_aliases("phase_end_time", "phaseEndTime", "scheduled_close", "scheduledClose"),
    )
    draw_started_at: Optional[dt.datetime] = Field(
        None, validation_alias=_aliases("draw_started_at", "drawStartedAt")
    )
    jackpot: Decimal = Decimal(0)

    @field_validator("phase_end_time", "draw_started_at")
    @classmethod
    def to_utc(cls, value: Optional[dt.datetime]) -> Optional[dt.datetime]:
        return _as_utc(value)

    @field_validator("jackpot", mode="before")
    @classmethod
    def decimal_default_zero(cls, value: Any) -> Any:
        return 0 if value is None else value

    def to_room(self) -> RoomInfo:
        return RoomInfo(
            room_number=self.room_number,
            phase=self.phase.lower(),
            round_id=self.round_id,
            phase_end_time=self.phase_end_time,
            draw_started_at=self.draw_started_at,
            jackpot=self.jackpot,
        )


class RoomsPayload(_Payload):
    rooms: List[RoomPayload] = Field(default_factory=list)
    jackpot: Decimal = Decimal(0)

    @model_validator(mode="before")
    @classmethod
    def accept_bare_list(cls, data: Any) -> Any:
        if isinstance(data, list):
            return {"rooms": data}
        return data

    @field_validator("jackpot", mode="before")
    @classmethod
    def decimal_default_zero(cls, value: Any) -> Any:
        return 0 if value is None else value


def parse_round_detail(payload: Any) -> RoundSnapshot:
    return RoundDetailPayload.model_validate(unwrap_envelope(payload)).to_snapshot()


def parse_round_list(payload: Any) -> List[RoundSnapshot]:
    items = unwrap_envelope(payload)
    if isinstance(items, Mapping):
        items = items.get("rounds", [])
    if not isinstance(items, list):
        raise ValueError("Round list must be an array")
    return [RoundPayload.model_validate(item).to_snapshot() for item in items]


def parse_cards(payload: Any, round_id: Optional[int] = None) -> List[Card]:
    items = unwrap_envelope(payload)
    if items is None:
        return []
    if isinstance(items, Mapping):
        items = items.get("cards", [])
    if not isinstance(items, list):
        raise ValueError("Card list must be an array")
    return [CardPayload.model_validate(item).to_card(round_id) for item in items]


def parse_rooms(payload: Any) -> RoomsOverview:
    parsed = RoomsPayload.model_validate(unwrap_envelope(payload))
    return RoomsOverview(rooms=tuple(r.to_room() for r in parsed.rooms), jackpot=parsed.jackpot)
