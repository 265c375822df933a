"""Round lifecycle owner.

`RoundStateMachine` is the only holder of mutable round state on a client:
the selected round, the revealed prefix, manual marks and the purchase step.
Poll snapshots (via `apply_snapshot`) and animation ticks (via `tick` or the
background ticker) both route through it on the event loop, so updates never
interleave. Everything else reads an immutable `GameView`.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, FrozenSet, List, Mapping, Optional, Sequence, Tuple

from .animation import AnimationDriver, DriverEvent, DriverEventKind
from .balance import BalanceStore
from .errors import (
    ROUND_EXPIRED_MESSAGE,
    BingoError,
    InvalidStateTransition,
    PurchaseErrorKind,
    PurchaseFailure,
    classify_purchase_error,
)
from .marking import CardMarks, MarkContext, card_marks, toggle_manual_mark
from .purchase import PurchaseOrchestrator, PurchaseResult
from .results import PlayerOutcome, player_outcome
from .types import Card, GameState, Phase, RoundResults, RoundSnapshot, RoundStatus, TxStep


class EventKind(str, Enum):
    ROUND_SELECTED = "round_selected"
    RESET = "reset"
    STATE_CHANGED = "state_changed"
    BALL_REVEALED = "ball_revealed"
    LINE_ANNOUNCED = "line_announced"
    BINGO_ANNOUNCED = "bingo_announced"
    RESOLVED = "resolved"
    PURCHASE_STEP = "purchase_step"
    PURCHASE_COMPLETED = "purchase_completed"
    PURCHASE_FAILED = "purchase_failed"
    LOBBY_REFRESH = "lobby_refresh"


@dataclass(frozen=True)
class MachineEvent:
    kind: EventKind
    round_id: Optional[int]
    payload: Mapping[str, Any] = field(default_factory=dict)


Listener = Callable[[MachineEvent], None]


@dataclass(frozen=True)
class GameView:
    state: GameState
    round_id: Optional[int]
    status: Optional[RoundStatus]
    revealed: Tuple[int, ...]
    current_ball: Optional[int]
    current_index: int
    progress: float
    tx_step: Optional[TxStep]
    error: Optional[str]
    auto_mark: bool
    manual_marks: FrozenSet[int]
    cards: Tuple[CardMarks, ...]
    line_announced: bool
    bingo_announced: bool
    results: Optional[RoundResults]
    outcome: PlayerOutcome


ANIMATION_STATES = frozenset({GameState.DRAWING, GameState.LINE_PAUSE, GameState.BINGO_PAUSE})
WAITING_STATES = frozenset({GameState.WAITING_CLOSE, GameState.WAITING_VRF})
POLLING_STATES = WAITING_STATES | ANIMATION_STATES
FREE_SELECT_STATES = frozenset({GameState.BROWSING, GameState.RESOLVED, GameState.ERROR})

_PHASE_STATES = {
    Phase.DRAWING: GameState.DRAWING,
    Phase.LINE_PAUSE: GameState.LINE_PAUSE,
    Phase.BINGO_PAUSE: GameState.BINGO_PAUSE,
}


class RoundStateMachine:
    def __init__(
        self,
        orchestrator: Optional[PurchaseOrchestrator] = None,
        balance: Optional[BalanceStore] = None,
        *,
        auto_mark: bool = True,
        clock: Callable[[], float] = time.time,
        tick_interval: float = 1.0,
        player_address: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._balance = balance
        self._clock = clock
        self._tick_interval = tick_interval
        self._player_address = player_address.lower() if player_address else None
        self._logger = logger or logging.getLogger("bingo.engine")
        self._listeners: List[Listener] = []

        self._auto_mark = auto_mark
        self._generation = 0
        self._state = GameState.BROWSING
        self._clear_round()

    def _clear_round(self) -> None:
        self._round_id: Optional[int] = None
        self._snapshot: Optional[RoundSnapshot] = None
        self._status_rank = -1
        self._my_cards: Tuple[Card, ...] = ()
        self._driver: Optional[AnimationDriver] = None
        self._ticker: Optional[asyncio.Task] = None
        self._revealed: Tuple[int, ...] = ()
        self._current_index = -1
        self._manual_marks: FrozenSet[int] = frozenset()
        self._tx_step: Optional[TxStep] = None
        self._error: Optional[str] = None
        self._line_announced = False
        self._bingo_announced = False

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def state(self) -> GameState:
        return self._state

    @property
    def round_id(self) -> Optional[int]:
        return self._round_id

    @property
    def generation(self) -> int:
        """Bumped on every select/reset; stale fetches compare against it."""
        return self._generation

    @property
    def snapshot(self) -> Optional[RoundSnapshot]:
        return self._snapshot

    @property
    def my_cards(self) -> Tuple[Card, ...]:
        return self._my_cards

    @property
    def wants_snapshot(self) -> bool:
        if self._round_id is None:
            return False
        if self._state in POLLING_STATES:
            return True
        # Animation finished before the backend published results.
        return (
            self._state is GameState.RESOLVED
            and self._snapshot is not None
            and self._snapshot.status is not RoundStatus.RESOLVED
        )

    def view(self) -> GameView:
        snapshot = self._snapshot
        total = len(snapshot.ball_sequence) if snapshot else 0
        progress = (self._current_index + 1) / total if total and self._current_index >= 0 else 0.0
        context = MarkContext.build(self._revealed, self._manual_marks, self._auto_mark)
        results = snapshot.results if snapshot and self._state is GameState.RESOLVED else None
        return GameView(
            state=self._state,
            round_id=self._round_id,
            status=snapshot.status if snapshot else None,
            revealed=self._revealed,
            current_ball=self._revealed[-1] if self._revealed else None,
            current_index=self._current_index,
            progress=progress,
            tx_step=self._tx_step,
            error=self._error,
            auto_mark=self._auto_mark,
            manual_marks=self._manual_marks,
            cards=tuple(card_marks(c, context, self._line_announced) for c in self._my_cards),
            line_announced=self._line_announced,
            bingo_announced=self._bingo_announced,
            results=results,
            outcome=player_outcome(results, self._player_address),
        )

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event_kind: EventKind, **payload: Any) -> None:
        event = MachineEvent(event_kind, self._round_id, payload)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as exc:
                self._logger.error("Listener for %s failed: %s", event_kind.value, exc)

    def _set_state(self, state: GameState) -> None:
        if state is self._state:
            return
        previous = self._state
        self._state = state
        self._logger.info(
            "Round %s: %s -> %s", self._round_id, previous.value, state.value
        )
        self._emit(EventKind.STATE_CHANGED, previous=previous, state=state)

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def select_round(
        self,
        snapshot: RoundSnapshot,
        my_cards: Sequence[Card] = (),
        *,
        force: bool = False,
        now: Optional[float] = None,
    ) -> GameState:
        """Make `snapshot`'s round the active one, after a full local reset."""
        if self._state is GameState.BUYING:
            raise InvalidStateTransition("Cannot switch rounds while a purchase is in progress")
        if self._state not in FREE_SELECT_STATES and not force:
            raise InvalidStateTransition(
                f"Cannot select a round while {self._state.value}; reset first"
            )
        self._teardown()
        self._state = GameState.BROWSING
        self._round_id = snapshot.round_id
        self._snapshot = snapshot
        self._status_rank = snapshot.status.rank
        self._my_cards = tuple(my_cards)
        self._logger.info("Selected round %s (status=%s)", snapshot.round_id, snapshot.status.value)
        self._emit(EventKind.ROUND_SELECTED, status=snapshot.status)
        self._enter_from_snapshot(snapshot, now)
        return self._state

    def reset(self) -> None:
        if self._state is GameState.BUYING:
            raise InvalidStateTransition("Cannot reset while a purchase is in progress")
        self._teardown()
        self._state = GameState.BROWSING
        self._emit(EventKind.RESET)

    def round_expired(self, round_id: int, generation: Optional[int] = None) -> bool:
        """Drop a round the server no longer knows and ask the lobby to refresh."""
        if generation is not None and generation != self._generation:
            return False
        if round_id != self._round_id or self._state is GameState.BUYING:
            return False
        self._logger.warning("Round %s expired; returning to the lobby", round_id)
        self._emit(EventKind.LOBBY_REFRESH, expired=round_id)
        self._teardown()
        self._set_state(GameState.BROWSING)
        self._error = ROUND_EXPIRED_MESSAGE
        return True

    def set_my_cards(self, round_id: int, cards: Sequence[Card]) -> bool:
        if round_id != self._round_id:
            return False
        self._my_cards = tuple(cards)
        return True

    def toggle_auto_mark(self) -> bool:
        self._auto_mark = not self._auto_mark
        return self._auto_mark

    def toggle_manual_mark(self, number: int) -> bool:
        """Flip a manual mark and return whether the number is now marked."""
        self._manual_marks = toggle_manual_mark(self._manual_marks, self._revealed, number)
        return number in self._manual_marks

    def skip_to_results(self) -> None:
        if self._state not in ANIMATION_STATES or self._snapshot is None:
            raise InvalidStateTransition(f"Nothing to skip while {self._state.value}")
        self._logger.info("Round %s: skipping animation", self._round_id)
        self._resolve(self._snapshot)

    async def buy_cards(self, count: int) -> Optional[PurchaseResult]:
        """Purchase cards for the selected open round.

        Returns the result on success and None on a handled failure; the
        failure is reported through `view().error` and a PURCHASE_FAILED
        event.
        """
        if self._orchestrator is None:
            raise BingoError("No funding backend configured")
        snapshot = self._snapshot
        if (
            self._state is not GameState.BROWSING
            or snapshot is None
            or snapshot.status is not RoundStatus.OPEN
        ):
            raise InvalidStateTransition("Cards can only be bought for a selected open round")

        round_id = snapshot.round_id
        self._error = None
        self._set_state(GameState.BUYING)
        try:
            result = await self._orchestrator.purchase(round_id, count, on_step=self._on_tx_step)
        except Exception as exc:
            self._handle_purchase_failure(classify_purchase_error(exc), exc)
            return None

        self._tx_step = None
        self._logger.info(
            "Round %s: bought cards %s (tx=%s)", round_id, list(result.card_ids), result.tx_hash
        )
        if self._balance is not None:
            self._balance.apply_delta(-result.total_cost)
            self._balance.request_refresh()
        self._emit(
            EventKind.PURCHASE_COMPLETED,
            card_ids=result.card_ids,
            tx_hash=result.tx_hash,
            total_cost=result.total_cost,
        )
        self._set_state(GameState.WAITING_CLOSE)
        if self._snapshot is not None and self._snapshot.status is not RoundStatus.OPEN:
            self._advance_waiting(self._snapshot, None)
        return result

    def _on_tx_step(self, step: TxStep) -> None:
        self._tx_step = step
        self._emit(EventKind.PURCHASE_STEP, step=step)

    def _handle_purchase_failure(self, failure: PurchaseFailure, exc: BaseException) -> None:
        self._tx_step = None
        if failure.kind is PurchaseErrorKind.UNKNOWN:
            self._logger.exception("Card purchase failed: %s", exc)
        else:
            self._logger.warning("Card purchase failed (%s): %s", failure.kind.value, exc)

        self._error = failure.message
        self._emit(
            EventKind.PURCHASE_FAILED,
            kind=failure.kind,
            message=failure.message,
            step=failure.step,
        )
        if failure.kind is PurchaseErrorKind.ROUND_EXPIRED:
            self._emit(EventKind.LOBBY_REFRESH)
        self._set_state(GameState.BROWSING if failure.recoverable else GameState.ERROR)

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def apply_snapshot(
        self,
        snapshot: RoundSnapshot,
        generation: Optional[int] = None,
        now: Optional[float] = None,
    ) -> bool:
        """Feed a polled snapshot; returns False when it was discarded."""
        if generation is not None and generation != self._generation:
            self._logger.debug("Discarding snapshot from generation %s", generation)
            return False
        if snapshot.round_id != self._round_id:
            self._logger.debug(
                "Discarding snapshot for round %s (selected %s)", snapshot.round_id, self._round_id
            )
            return False
        if snapshot.status.rank < self._status_rank:
            self._logger.debug(
                "Discarding regressed snapshot for round %s (%s)", snapshot.round_id, snapshot.status.value
            )
            return False

        if self._state in ANIMATION_STATES:
            # The running animation owns the timeline until it finishes.
            self._status_rank = snapshot.status.rank
            self._snapshot = self._merge_results(snapshot)
            return False

        previous = self._snapshot
        self._status_rank = snapshot.status.rank
        self._snapshot = snapshot
        if self._state is GameState.RESOLVED:
            if previous is not None and previous.status is not RoundStatus.RESOLVED:
                if snapshot.status is RoundStatus.RESOLVED:
                    self._emit_resolved(snapshot)
            return True
        if self._state in WAITING_STATES:
            self._advance_waiting(snapshot, now)
        return True

    def _merge_results(self, snapshot: RoundSnapshot) -> RoundSnapshot:
        current = self._snapshot
        if current is None or not current.has_ball_sequence:
            return snapshot
        # Keep the sequence and winner positions the animation was started with.
        return replace(
            snapshot,
            ball_sequence=current.ball_sequence,
            draw_started_at=current.draw_started_at,
            line_ball_pos=current.line_ball_pos,
            bingo_ball_pos=current.bingo_ball_pos,
        )

    def _enter_from_snapshot(self, snapshot: RoundSnapshot, now: Optional[float]) -> None:
        status = snapshot.status
        if status is RoundStatus.RESOLVED and snapshot.has_ball_sequence:
            self._resolve(snapshot)
        elif status in (RoundStatus.CLOSED, RoundStatus.DRAWING, RoundStatus.RESOLVED):
            self._set_state(GameState.WAITING_VRF)
            self._advance_waiting(snapshot, now)
        elif self._my_cards:
            self._set_state(GameState.WAITING_CLOSE)

    def _advance_waiting(self, snapshot: RoundSnapshot, now: Optional[float]) -> None:
        status = snapshot.status
        if status is RoundStatus.RESOLVED and snapshot.has_ball_sequence:
            # Replay is skipped for a race that is already over.
            self._resolve(snapshot)
            return
        if status is RoundStatus.OPEN:
            return
        if self._state is GameState.WAITING_CLOSE:
            self._set_state(GameState.WAITING_VRF)
        if status is RoundStatus.DRAWING:
            if not self._start_animation(snapshot, now):
                self._logger.debug(
                    "Round %s is drawing but draw data is not ready yet", snapshot.round_id
                )

    # ------------------------------------------------------------------
    # Animation
    # ------------------------------------------------------------------

    def _start_animation(self, snapshot: RoundSnapshot, now: Optional[float]) -> bool:
        driver = AnimationDriver.from_snapshot(
            snapshot, clock=self._clock, tick_interval=self._tick_interval
        )
        if driver is None:
            return False
        self._driver = driver
        self._logger.info(
            "Round %s: draw started at %s (line=%s bingo=%s)",
            snapshot.round_id,
            snapshot.draw_started_at,
            snapshot.line_ball_pos,
            snapshot.bingo_ball_pos,
        )
        self._handle_driver_events(driver, driver.tick(now))
        if not driver.finished:
            self._schedule_ticker(driver)
        return True

    def tick(self, now: Optional[float] = None) -> List[DriverEvent]:
        """Advance the animation once; used when no background ticker runs."""
        driver = self._driver
        if driver is None or driver.finished or self._state not in ANIMATION_STATES:
            return []
        events = driver.tick(now)
        self._handle_driver_events(driver, events)
        return events

    def _schedule_ticker(self, driver: AnimationDriver) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._ticker = loop.create_task(
            driver.run(lambda events: self._handle_driver_events(driver, events))
        )

    def _handle_driver_events(self, driver: AnimationDriver, events: List[DriverEvent]) -> None:
        if driver is not self._driver:
            return
        for event in events:
            if event.kind is DriverEventKind.REVEAL:
                self._revealed = event.revealed
                self._current_index = event.ball_index
                self._emit(
                    EventKind.BALL_REVEALED,
                    index=event.ball_index,
                    balls=event.new_balls,
                )
                continue
            if event.kind is DriverEventKind.PHASE:
                self._set_state(_PHASE_STATES[event.phase])
            # Announcements follow the phase change so listeners see the pause state.
            if driver.line_announced and not self._line_announced:
                self._line_announced = True
                self._emit(EventKind.LINE_ANNOUNCED, index=driver.current_index)
            if event.phase is Phase.BINGO_PAUSE and not self._bingo_announced:
                self._bingo_announced = True
                self._emit(EventKind.BINGO_ANNOUNCED, index=driver.current_index)
            if event.kind is DriverEventKind.FINISHED and self._snapshot is not None:
                self._resolve(self._snapshot)

    def _resolve(self, snapshot: RoundSnapshot) -> None:
        self._stop_ticker()
        final = snapshot.ball_sequence[: snapshot.final_ball_count]
        self._revealed = final
        self._current_index = len(final) - 1
        if snapshot.line_ball_pos > 0:
            self._line_announced = True
        if snapshot.bingo_ball_pos > 0:
            self._bingo_announced = True
        self._set_state(GameState.RESOLVED)
        if snapshot.status is RoundStatus.RESOLVED:
            self._emit_resolved(snapshot)
        if self._balance is not None:
            self._balance.request_refresh()

    def _emit_resolved(self, snapshot: RoundSnapshot) -> None:
        outcome = player_outcome(snapshot.results, self._player_address)
        self._emit(
            EventKind.RESOLVED,
            results=snapshot.results,
            won_line=outcome.won_line,
            won_bingo=outcome.won_bingo,
        )

    def _stop_ticker(self) -> None:
        if self._driver is not None:
            self._driver.stop()
        ticker, self._ticker = self._ticker, None
        if ticker is None or ticker.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if ticker is not current:
            ticker.cancel()

    def _teardown(self) -> None:
        self._stop_ticker()
        self._generation += 1
        self._clear_round()
