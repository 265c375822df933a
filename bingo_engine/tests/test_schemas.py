import datetime as dt
import json
import unittest
from decimal import Decimal

from bingo_engine.schemas import (
    normalize_winners,
    parse_cards,
    parse_round_detail,
    parse_round_list,
    parse_rooms,
    unwrap_envelope,
)
from bingo_engine.shuffle import generate_ball_sequence
from bingo_engine.types import RoundStatus

ALICE = "0x" + "A" * 40
BOB = "0x" + "b" * 40
ZERO = "0x" + "0" * 40
BALLS = list(generate_ball_sequence(77))
CARD_NUMBERS = [1, 16, 0, 46, 61, 2, 17, 31, 47, 62, 3, 18, 32, 48, 63]


class WinnerNormalizationTests(unittest.TestCase):
    def test_shapes(self) -> None:
        self.assertEqual(normalize_winners(ALICE), [ALICE.lower()])
        self.assertEqual(normalize_winners([ALICE, BOB]), [ALICE.lower(), BOB])
        self.assertEqual(normalize_winners(json.dumps([ALICE, ZERO])), [ALICE.lower()])
        self.assertEqual(normalize_winners(None), [])
        self.assertEqual(normalize_winners(""), [])
        self.assertEqual(normalize_winners(ZERO), [])

    def test_duplicates_removed(self) -> None:
        self.assertEqual(normalize_winners([BOB, BOB.upper().replace("0X", "0x")]), [BOB])

    def test_malformed_json_array_is_empty(self) -> None:
        self.assertEqual(normalize_winners("[not json"), [])

    def test_unsupported_type(self) -> None:
        with self.assertRaises(ValueError):
            normalize_winners(12)


class RoundDetailTests(unittest.TestCase):
    def test_nested_detail_with_results(self) -> None:
        payload = {
            "success": True,
            "data": {
                "round": {
                    "round_id": 5,
                    "status": "drawing",
                    "draw_started_at": "2025-06-01T12:00:00",
                    "drawn_balls": json.dumps(BALLS),
                    "room_number": 2,
                    "total_cards": 8,
                },
                "results": {"lineWinners": [ALICE], "lineWinnerBall": 9, "bingoWinnerBall": 33},
                "cards": [{"card_id": 1, "numbers": CARD_NUMBERS, "owner": ALICE}],
            },
        }
        snapshot = parse_round_detail(payload)
        self.assertEqual(snapshot.round_id, 5)
        self.assertIs(snapshot.status, RoundStatus.DRAWING)
        self.assertEqual(snapshot.ball_sequence, tuple(BALLS))
        self.assertEqual(snapshot.line_ball_pos, 9)
        self.assertEqual(snapshot.bingo_ball_pos, 33)
        self.assertEqual(snapshot.results.line_winners, (ALICE.lower(),))
        self.assertEqual(snapshot.draw_started_at.tzinfo, dt.timezone.utc)
        self.assertEqual(snapshot.cards[0].round_id, 5)
        self.assertEqual(snapshot.cards[0].owner, ALICE.lower())
        self.assertEqual(snapshot.room_number, 2)

    def test_flat_camel_case_detail(self) -> None:
        payload = {
            "roundId": 6,
            "status": "RESOLVED",
            "drawStartedAt": 1748779200,
            "drawnBalls": BALLS,
            "bingoWinner": json.dumps([BOB]),
            "totalRevenue": "12.5",
            "jackpotWon": None,
        }
        snapshot = parse_round_detail(payload)
        self.assertIs(snapshot.status, RoundStatus.RESOLVED)
        self.assertEqual(snapshot.results.bingo_winners, (BOB,))
        self.assertEqual(snapshot.total_revenue, Decimal("12.5"))
        self.assertFalse(snapshot.results.jackpot_won)
        self.assertEqual(
            snapshot.draw_started_at, dt.datetime(2025, 6, 1, 12, 0, tzinfo=dt.timezone.utc)
        )

    def test_positions_fall_back_to_winning_cards(self) -> None:
        cards = [
            {"cardId": 1, "cardNumbers": CARD_NUMBERS, "isLineWinner": True, "lineHitBall": 12},
            {"cardId": 2, "cardNumbers": CARD_NUMBERS, "isBingoWinner": True, "bingoHitBall": 40},
            {"cardId": 3, "cardNumbers": CARD_NUMBERS, "isLineWinner": True, "lineHitBall": 14},
        ]
        snapshot = parse_round_detail({"round": {"id": 7, "status": "drawing"}, "cards": cards})
        self.assertEqual(snapshot.line_ball_pos, 12)
        self.assertEqual(snapshot.bingo_ball_pos, 40)
        self.assertFalse(snapshot.has_ball_sequence)

    def test_empty_ball_list_is_absent(self) -> None:
        snapshot = parse_round_detail({"round_id": 8, "status": "drawing", "drawn_balls": []})
        self.assertEqual(snapshot.ball_sequence, ())

    def test_sequence_derived_from_random_word(self) -> None:
        snapshot = parse_round_detail({"round_id": 8, "status": "drawing", "vrf_random_word": "77"})
        self.assertEqual(snapshot.ball_sequence, tuple(BALLS))
        hex_word = parse_round_detail({"round_id": 8, "status": "drawing", "vrfRandomWord": hex(77)})
        self.assertEqual(hex_word.random_word, 77)

    def test_rejects_bad_sequences(self) -> None:
        with self.assertRaises(ValueError):
            parse_round_detail({"round_id": 9, "status": "drawing", "drawn_balls": BALLS[:74]})
        with self.assertRaises(ValueError):
            parse_round_detail(
                {"round_id": 9, "status": "drawing", "drawn_balls": [1] * 75}
            )

    def test_rejects_bingo_before_line(self) -> None:
        with self.assertRaises(ValueError):
            parse_round_detail(
                {"round_id": 9, "status": "resolved", "line_winner_ball": 20, "bingo_winner_ball": 10}
            )

    def test_rejects_unknown_status(self) -> None:
        with self.assertRaises(ValueError):
            parse_round_detail({"round_id": 9, "status": "cancelled"})


class ListPayloadTests(unittest.TestCase):
    def test_round_list(self) -> None:
        rounds = parse_round_list({"data": [{"id": 3, "status": "open"}, {"id": 2, "status": "resolved"}]})
        self.assertEqual([r.round_id for r in rounds], [3, 2])

    def test_round_list_must_be_array(self) -> None:
        with self.assertRaises(ValueError):
            parse_round_list({"data": "nope"})

    def test_cards(self) -> None:
        cards = parse_cards({"data": [{"id": 4, "card_numbers": json.dumps(CARD_NUMBERS)}]}, round_id=3)
        self.assertEqual(cards[0].card_id, 4)
        self.assertEqual(cards[0].round_id, 3)
        self.assertEqual(cards[0].numbers, tuple(CARD_NUMBERS))

    def test_card_layout_validated(self) -> None:
        with self.assertRaises(ValueError):
            parse_cards([{"id": 4, "numbers": CARD_NUMBERS[:14]}])
        with self.assertRaises(ValueError):
            parse_cards([{"id": 4, "numbers": CARD_NUMBERS[:14] + [76]}])

    def test_rooms(self) -> None:
        overview = parse_rooms(
            {
                "data": {
                    "rooms": [
                        {"roomNumber": 1, "phase": "open", "roundId": 11, "phaseEndTime": "2025-06-01T12:05:00Z"},
                        {"roomNumber": 2, "phase": "drawing", "drawStartedAt": "2025-06-01T12:00:00Z"},
                    ],
                    "jackpot": "250.5",
                }
            }
        )
        self.assertEqual(len(overview.rooms), 2)
        self.assertEqual(overview.rooms[0].round_id, 11)
        self.assertEqual(overview.jackpot, Decimal("250.5"))
        self.assertIsNone(overview.rooms[1].phase_end_time)

    def test_unwrap_envelope_leaves_plain_payloads(self) -> None:
        self.assertEqual(unwrap_envelope({"round_id": 1}), {"round_id": 1})
        self.assertEqual(unwrap_envelope({"success": True, "data": [1]}), [1])


if __name__ == "__main__":
    unittest.main()
