from __future__ import annotations

import asyncio
import json
import logging
import math
import time
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Optional, Sequence, Tuple

from ..config import ChainSettings
from ..types import PurchaseReceipt
from .base import FundingBackend

if TYPE_CHECKING:  # pragma: no cover
    from web3 import Web3
    from web3.contract import Contract

GWEI = 10**9

ERC20_ABI = [
    {
        "name": "balanceOf",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "allowance",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "spender", "type": "address"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "approve",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "spender", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
]


class Web3FundingBackend(FundingBackend):
    """Buys cards on the BingoGame contract, paying in an ERC-20 token."""

    requires_authorization = True

    def __init__(
        self,
        web3: "Web3",
        game: "Contract",
        token: "Contract",
        private_key: str,
        settings: ChainSettings,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._web3 = web3
        self._game = game
        self._token = token
        self._account = web3.eth.account.from_key(private_key)
        self._settings = settings
        self._logger = logger or logging.getLogger("bingo.purchase")

    @classmethod
    def from_settings(
        cls, settings: ChainSettings, logger: Optional[logging.Logger] = None
    ) -> "Web3FundingBackend":
        from web3 import Web3
        from web3.middleware import ExtraDataToPOAMiddleware

        abi = cls._load_abi(settings.abi_path)
        web3 = Web3(Web3.HTTPProvider(settings.rpc_url))
        if not web3.is_connected():
            raise ConnectionError(f"Cannot connect to RPC endpoint: {settings.rpc_url}")

        # Polygon and Amoy return PoA-style extraData in block headers.
        web3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)

        game = web3.eth.contract(address=Web3.to_checksum_address(settings.bingo_address), abi=abi)
        token = web3.eth.contract(
            address=Web3.to_checksum_address(settings.token_address), abi=ERC20_ABI
        )
        return cls(web3, game, token, settings.private_key, settings, logger=logger)

    @staticmethod
    def _load_abi(path: str) -> Sequence[Dict[str, Any]]:
        artifact_path = Path(path)
        if not artifact_path.exists():
            raise FileNotFoundError(f"Contract artifact not found: {artifact_path}")
        with artifact_path.open("r", encoding="utf-8") as fh:
            artifact = json.load(fh)
        abi = artifact.get("abi") if isinstance(artifact, dict) else artifact
        if not isinstance(abi, list):
            raise ValueError("Invalid artifact file: missing ABI")
        return abi

    @property
    def address(self) -> str:
        return self._account.address

    async def get_card_price(self) -> int:
        return int(await asyncio.to_thread(self._game.functions.cardPrice().call))

    async def get_balance(self) -> int:
        fn = self._token.functions.balanceOf(self._account.address)
        return int(await asyncio.to_thread(fn.call))

    async def get_allowance(self) -> int:
        fn = self._token.functions.allowance(self._account.address, self._game.address)
        return int(await asyncio.to_thread(fn.call))

    async def approve(self, amount: int) -> str:
        return await asyncio.to_thread(self._approve_sync, int(amount))

    async def buy_cards(self, round_id: int, count: int) -> PurchaseReceipt:
        return await asyncio.to_thread(self._buy_cards_sync, int(round_id), int(count))

    # --------------------------------------------------------------------- #
    # Internal helpers
    # --------------------------------------------------------------------- #

    def _approve_sync(self, amount: int) -> str:
        # Exact amount only; never an unlimited allowance.
        fn = self._token.functions.approve(self._game.address, amount)
        meta = self._send_transaction(fn)
        self._logger.info("approve confirmed: %s (amount=%s)", meta["tx_hash"], amount)
        return meta["tx_hash"]

    def _buy_cards_sync(self, round_id: int, count: int) -> PurchaseReceipt:
        fn = self._game.functions.buyCards(round_id, count)
        meta = self._send_transaction(fn)
        card_ids = self._extract_card_ids(meta["receipt"])
        self._logger.info("buyCards confirmed: %s cards=%s", meta["tx_hash"], card_ids)
        return PurchaseReceipt(card_ids=card_ids, tx_hash=meta["tx_hash"])

    def fee_overrides(self) -> Dict[str, int]:
        """EIP-1559 fees with the configured floors applied."""
        min_priority = self._settings.min_priority_fee_gwei * GWEI
        try:
            priority = int(self._web3.eth.max_priority_fee)
        except Exception:  # pragma: no cover - some RPCs lack eth_maxPriorityFeePerGas
            priority = 0
        base_fee = int(self._web3.eth.get_block("latest").get("baseFeePerGas", 0) or 0)
        max_fee = base_fee * 2 + priority
        if max_fee <= min_priority:
            max_fee = self._settings.max_fee_gwei * GWEI
        priority = max(priority, min_priority)
        return {"maxPriorityFeePerGas": priority, "maxFeePerGas": max(max_fee, priority)}

    def _send_transaction(self, fn) -> Dict[str, Any]:
        account = self._account
        tx_params: Dict[str, Any] = {"from": account.address}

        gas_estimate = fn.estimate_gas(tx_params)
        gas_limit = int(math.ceil(gas_estimate * 1.2))
        nonce = self._web3.eth.get_transaction_count(account.address)

        tx = fn.build_transaction(
            {**tx_params, "nonce": nonce, "gas": gas_limit, **self.fee_overrides()}
        )
        if self._settings.chain_id is not None:
            tx["chainId"] = self._settings.chain_id

        signed = account.sign_transaction(tx)
        tx_hash = self._web3.eth.send_raw_transaction(signed.raw_transaction)
        receipt = self._web3.eth.wait_for_transaction_receipt(tx_hash, timeout=180, poll_latency=2)
        if receipt["status"] != 1:
            raise RuntimeError(f"Transaction reverted: {tx_hash.hex()}")
        self._wait_for_confirmations(receipt["blockNumber"])
        return {"tx_hash": tx_hash.hex(), "receipt": receipt}

    def _wait_for_confirmations(self, block_number: int) -> None:
        target = block_number + max(self._settings.confirmations, 1) - 1
        while self._web3.eth.block_number < target:
            time.sleep(2)

    def _extract_card_ids(self, receipt) -> Tuple[int, ...]:
        from web3.logs import DISCARD

        # Other contracts' logs (token Transfer) share the receipt.
        events = self._game.events.CardsPurchased().process_receipt(receipt, errors=DISCARD)
        for event in events:
            return tuple(int(card_id) for card_id in event["args"]["cardIds"])
        return ()
