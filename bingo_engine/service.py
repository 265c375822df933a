from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from .balance import BalanceStore
from .config import EngineSettings, load_config
from .datasource.http_api import HttpJsonDataSource
from .funding.base import FundingBackend, format_units
from .funding.http_api import HttpFundingBackend
from .funding.web3_backend import Web3FundingBackend
from .lobby import RoomListPoller, RoundDiscovery, describe_room
from .purchase import PurchaseOrchestrator
from .reconciler import PollReconciler
from .shuffle import generate_ball_sequence, verify_ball_sequence
from .state_machine import EventKind, MachineEvent, RoundStateMachine
from .types import GameState


def configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stdout,
    )


def build_datasource(settings: EngineSettings) -> HttpJsonDataSource:
    if not settings.api.base_url:
        raise RuntimeError("BINGO_API__BASE_URL is not configured.")
    return HttpJsonDataSource(settings.api)


def build_funding_backend(settings: EngineSettings) -> FundingBackend:
    if settings.chain.on_chain:
        return Web3FundingBackend.from_settings(settings.chain)
    return HttpFundingBackend(settings.api)


def build_machine(
    settings: EngineSettings, backend: Optional[FundingBackend]
) -> RoundStateMachine:
    orchestrator = balance = None
    if backend is not None:
        orchestrator = PurchaseOrchestrator(backend, max_cards=settings.max_cards_per_purchase)
        balance = BalanceStore(backend)
    return RoundStateMachine(
        orchestrator,
        balance,
        auto_mark=settings.auto_mark,
        tick_interval=settings.tick_interval_seconds,
        player_address=settings.player_address,
    )


def log_events(logger: logging.Logger):
    def listener(event: MachineEvent) -> None:
        payload = event.payload
        if event.kind is EventKind.BALL_REVEALED:
            logger.info("Round %s ball #%s: %s", event.round_id, payload["index"] + 1, list(payload["balls"]))
        elif event.kind is EventKind.LINE_ANNOUNCED:
            logger.info("Round %s: LINE!", event.round_id)
        elif event.kind is EventKind.BINGO_ANNOUNCED:
            logger.info("Round %s: BINGO!", event.round_id)
        elif event.kind is EventKind.RESOLVED:
            results = payload["results"]
            logger.info(
                "Round %s resolved: line=%s bingo=%s jackpot=%s (you: line=%s bingo=%s)",
                event.round_id,
                list(results.line_winners),
                list(results.bingo_winners),
                results.jackpot_won,
                payload["won_line"],
                payload["won_bingo"],
            )
        elif event.kind is EventKind.PURCHASE_STEP:
            logger.info("Purchase step: %s", payload["step"].value)
        elif event.kind is EventKind.PURCHASE_FAILED and payload["message"]:
            logger.warning("Purchase failed: %s", payload["message"])

    return listener


async def run_watch(args: argparse.Namespace, settings: EngineSettings) -> None:
    logger = logging.getLogger("bingo.engine")
    datasource = build_datasource(settings)
    machine = build_machine(settings, None)
    machine.subscribe(log_events(logger))
    reconciler = PollReconciler(
        datasource,
        machine,
        interval_seconds=settings.round_poll_interval_seconds,
        fetch_cards=bool(settings.api.auth_token),
    )

    done = asyncio.Event()
    if args.exit_on_resolve:
        def on_resolved(event: MachineEvent) -> None:
            if event.kind is EventKind.RESOLVED:
                done.set()

        machine.subscribe(on_resolved)

    tasks = [asyncio.ensure_future(reconciler.run_forever())]
    try:
        if args.round is not None:
            await reconciler.load_round(args.round)
        else:
            discovery = RoundDiscovery(
                datasource,
                reconciler,
                machine,
                room=args.room if args.room is not None else settings.room_number,
                interval_seconds=settings.discovery_interval_seconds,
                player_known=bool(settings.player_address),
            )
            discovery.watch(machine)
            tasks.append(asyncio.ensure_future(discovery.run_forever()))
        await done.wait()
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await datasource.close()


async def run_buy(args: argparse.Namespace, settings: EngineSettings) -> int:
    logger = logging.getLogger("bingo.purchase")
    datasource = build_datasource(settings)
    backend = build_funding_backend(settings)
    machine = build_machine(settings, backend)
    machine.subscribe(log_events(logger))
    reconciler = PollReconciler(datasource, machine, fetch_cards=bool(settings.api.auth_token))
    try:
        state = await reconciler.load_round(args.round)
        if state is not GameState.BROWSING:
            logger.error("Round %s is not open for purchases (state=%s)", args.round, state.value)
            return 1
        result = await machine.buy_cards(args.count)
        if result is None:
            return 1
        logger.info(
            "Bought %s card(s) for %s USDT: %s",
            len(result.card_ids),
            format_units(result.total_cost),
            list(result.card_ids),
        )
        return 0
    finally:
        await backend.close()
        await datasource.close()


async def run_rooms(args: argparse.Namespace, settings: EngineSettings) -> None:
    datasource = build_datasource(settings)
    try:
        overview = await RoomListPoller(datasource).poll_once()
    finally:
        await datasource.close()
    for room in overview.rooms:
        print(describe_room(room))
    print(f"Jackpot: {overview.jackpot}")


def run_verify(args: argparse.Namespace) -> int:
    if args.balls:
        ok = verify_ball_sequence(args.seed, args.balls)
        print("sequence matches seed" if ok else "sequence does NOT match seed")
        return 0 if ok else 1
    print(" ".join(str(ball) for ball in generate_ball_sequence(args.seed)))
    return 0


async def run(args: argparse.Namespace) -> int:
    settings = load_config(args.env_file)
    configure_logging(args.verbose)

    if args.command == "watch":
        await run_watch(args, settings)
        return 0
    if args.command == "buy":
        return await run_buy(args, settings)
    if args.command == "rooms":
        await run_rooms(args, settings)
        return 0
    raise ValueError(f"Unknown command: {args.command}")


def _seed(value: str) -> int:
    return int(value, 16) if value.lower().startswith("0x") else int(value)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Bingo round synchronization client")
    parser.add_argument("--env-file", type=str, default=None, help="Path to .env file with credentials")
    parser.add_argument(
        "--verbose", action="store_true", help="Enable debug logging (default INFO)."
    )
    sub = parser.add_subparsers(dest="command", required=True)

    watch = sub.add_parser("watch", help="Follow a round (or the room's newest round) and log the draw.")
    watch.add_argument("--round", type=int, default=None)
    watch.add_argument("--room", type=int, default=None)
    watch.add_argument(
        "--exit-on-resolve", action="store_true", help="Stop once a round publishes its results."
    )

    buy = sub.add_parser("buy", help="Buy cards for an open round.")
    buy.add_argument("--round", type=int, required=True)
    buy.add_argument("--count", type=int, default=1)

    sub.add_parser("rooms", help="Print the room list once.")

    verify = sub.add_parser("verify", help="Print or check the ball sequence for a random word.")
    verify.add_argument("--seed", type=_seed, required=True)
    verify.add_argument("--balls", type=int, nargs="*", default=None)
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    if args.command == "verify":
        sys.exit(run_verify(args))
    try:
        sys.exit(asyncio.run(run(args)))
    except KeyboardInterrupt:
        print("Bingo client stopped by user.")


if __name__ == "__main__":
    main()
