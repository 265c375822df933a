from __future__ import annotations

import os
import pathlib
from dataclasses import dataclass, replace
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

from .types import ZERO_ADDRESS


def _bool_from_env(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _int_from_env(value: Optional[str], default: int) -> int:
    if value is None or value == "":
        return default
    return int(value)


def _float_from_env(value: Optional[str], default: float) -> float:
    if value is None or value == "":
        return default
    return float(value)


def _require_env(key: str) -> str:
    value = os.getenv(key)
    if value is None or value == "":
        raise RuntimeError(f"Missing required environment variable: {key}")
    return value


def is_unset_address(address: Optional[str]) -> bool:
    return not address or address.lower() == ZERO_ADDRESS


@dataclass(frozen=True)
class ApiSettings:
    base_url: str
    timeout_seconds: int = 10
    auth_token: Optional[str] = None


@dataclass(frozen=True)
class ChainSettings:
    rpc_url: str = ""
    private_key: str = ""
    bingo_address: str = ZERO_ADDRESS
    token_address: str = ZERO_ADDRESS
    abi_path: str = "artifacts/contracts/BingoGame.sol/BingoGame.json"
    confirmations: int = 1
    chain_id: Optional[int] = None
    min_priority_fee_gwei: int = 30
    max_fee_gwei: int = 35

    @property
    def on_chain(self) -> bool:
        return not is_unset_address(self.bingo_address)


@dataclass(frozen=True)
class EngineSettings:
    api: ApiSettings
    chain: ChainSettings = ChainSettings()
    room_number: Optional[int] = None
    player_address: Optional[str] = None
    auto_mark: bool = True
    max_cards_per_purchase: int = 4
    tick_interval_seconds: float = 1.0
    round_poll_interval_seconds: float = 5.0
    discovery_interval_seconds: float = 10.0
    rooms_poll_interval_seconds: float = 3.0

    def copy(self, **updates) -> "EngineSettings":
        return replace(self, **updates)


def load_from_environment() -> EngineSettings:
    api = ApiSettings(
        base_url=_require_env("BINGO_API__BASE_URL").rstrip("/"),
        timeout_seconds=_int_from_env(os.getenv("BINGO_API__TIMEOUT_SECONDS"), 10),
        auth_token=os.getenv("BINGO_API__AUTH_TOKEN") or None,
    )

    bingo_address = os.getenv("BINGO_CONTRACT__ADDRESS", "")
    if is_unset_address(bingo_address):
        chain = ChainSettings(rpc_url=os.getenv("RPC_URL", ""))
    else:
        chain_id = os.getenv("CHAIN_ID")
        chain = ChainSettings(
            rpc_url=_require_env("RPC_URL"),
            private_key=_require_env("WALLET_PRIVATE_KEY"),
            bingo_address=bingo_address,
            token_address=_require_env("BINGO_CONTRACT__TOKEN_ADDRESS"),
            abi_path=os.getenv(
                "BINGO_CONTRACT__ABI_PATH", "artifacts/contracts/BingoGame.sol/BingoGame.json"
            ),
            confirmations=_int_from_env(os.getenv("BINGO_CONTRACT__CONFIRMATIONS"), 1),
            chain_id=int(chain_id) if chain_id else None,
            min_priority_fee_gwei=_int_from_env(os.getenv("MIN_PRIORITY_FEE_GWEI"), 30),
            max_fee_gwei=_int_from_env(os.getenv("MAX_FEE_GWEI"), 35),
        )

    room = os.getenv("BINGO_ROOM")
    return EngineSettings(
        api=api,
        chain=chain,
        room_number=int(room) if room else None,
        player_address=(os.getenv("PLAYER_ADDRESS") or None),
        auto_mark=_bool_from_env(os.getenv("AUTO_MARK"), True),
        max_cards_per_purchase=_int_from_env(os.getenv("MAX_CARDS_PER_PURCHASE"), 4),
        tick_interval_seconds=_float_from_env(os.getenv("TICK_INTERVAL_SECONDS"), 1.0),
        round_poll_interval_seconds=_float_from_env(os.getenv("ROUND_POLL_INTERVAL_SECONDS"), 5.0),
        discovery_interval_seconds=_float_from_env(os.getenv("DISCOVERY_INTERVAL_SECONDS"), 10.0),
        rooms_poll_interval_seconds=_float_from_env(os.getenv("ROOMS_POLL_INTERVAL_SECONDS"), 3.0),
    )


@lru_cache(maxsize=1)
def load_config(dotenv_path: Optional[str] = None) -> EngineSettings:
    if dotenv_path:
        load_dotenv(dotenv_path)
    else:
        default_path = pathlib.Path(".env")
        if default_path.exists():
            load_dotenv(default_path)
    return load_from_environment()
