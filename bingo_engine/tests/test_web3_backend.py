import asyncio
import json
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from bingo_engine.config import ChainSettings
from bingo_engine.funding.web3_backend import GWEI, Web3FundingBackend

SETTINGS = ChainSettings(
    rpc_url="http://localhost:8545",
    private_key="0x" + "1" * 64,
    bingo_address="0x" + "2" * 40,
    token_address="0x" + "3" * 40,
    chain_id=80002,
)


def _backend(settings: ChainSettings = SETTINGS, status: int = 1):
    web3 = mock.MagicMock()
    web3.eth.account.from_key.return_value = mock.Mock(address="0xPlayer")
    web3.eth.max_priority_fee = 2 * GWEI
    web3.eth.get_block.return_value = {"baseFeePerGas": 50 * GWEI}
    web3.eth.get_transaction_count.return_value = 7
    tx_hash = mock.Mock()
    tx_hash.hex.return_value = "0xhash"
    web3.eth.send_raw_transaction.return_value = tx_hash
    web3.eth.wait_for_transaction_receipt.return_value = {"status": status, "blockNumber": 100}
    web3.eth.block_number = 100

    game = mock.MagicMock(address="0xGame")
    token = mock.MagicMock(address="0xToken")
    backend = Web3FundingBackend(web3, game, token, settings.private_key, settings)
    return backend, web3, game, token


def _contract_fn(gas: int = 100_000) -> mock.Mock:
    fn = mock.Mock()
    fn.estimate_gas.return_value = gas
    fn.build_transaction.side_effect = lambda params: dict(params)
    return fn


class FeeOverrideTests(unittest.TestCase):
    def test_priority_floor(self) -> None:
        backend, _, _, _ = _backend()
        fees = backend.fee_overrides()
        self.assertEqual(fees["maxPriorityFeePerGas"], 30 * GWEI)
        self.assertEqual(fees["maxFeePerGas"], 102 * GWEI)

    def test_low_base_fee_uses_fallback_max(self) -> None:
        backend, web3, _, _ = _backend()
        web3.eth.get_block.return_value = {"baseFeePerGas": 1 * GWEI}
        fees = backend.fee_overrides()
        self.assertEqual(fees["maxFeePerGas"], 35 * GWEI)
        self.assertEqual(fees["maxPriorityFeePerGas"], 30 * GWEI)

    def test_max_fee_never_below_priority(self) -> None:
        settings = ChainSettings(
            private_key=SETTINGS.private_key, min_priority_fee_gwei=40, max_fee_gwei=35
        )
        backend, web3, _, _ = _backend(settings)
        web3.eth.get_block.return_value = {"baseFeePerGas": 0}
        fees = backend.fee_overrides()
        self.assertGreaterEqual(fees["maxFeePerGas"], fees["maxPriorityFeePerGas"])


class TransactionTests(unittest.TestCase):
    def test_approve_exact_amount(self) -> None:
        backend, web3, game, token = _backend()
        fn = _contract_fn()
        token.functions.approve.return_value = fn
        tx_hash = asyncio.run(backend.approve(2_000_000))
        self.assertEqual(tx_hash, "0xhash")
        token.functions.approve.assert_called_once_with("0xGame", 2_000_000)
        tx = backend._account.sign_transaction.call_args[0][0]
        self.assertEqual(tx["gas"], 120_000)
        self.assertEqual(tx["nonce"], 7)
        self.assertEqual(tx["chainId"], 80002)
        self.assertEqual(tx["from"], "0xPlayer")

    def test_buy_cards_reads_purchase_event(self) -> None:
        backend, web3, game, token = _backend()
        game.functions.buyCards.return_value = _contract_fn()
        game.events.CardsPurchased.return_value.process_receipt.return_value = [
            {"args": {"cardIds": [41, 42]}}
        ]
        receipt = asyncio.run(backend.buy_cards(3, 2))
        self.assertEqual(receipt.card_ids, (41, 42))
        self.assertEqual(receipt.tx_hash, "0xhash")
        game.functions.buyCards.assert_called_once_with(3, 2)

    def test_reverted_transaction_raises(self) -> None:
        backend, web3, game, token = _backend(status=0)
        game.functions.buyCards.return_value = _contract_fn()
        with self.assertRaises(RuntimeError):
            asyncio.run(backend.buy_cards(3, 1))

    def test_reads(self) -> None:
        backend, web3, game, token = _backend()
        game.functions.cardPrice.return_value.call.return_value = 1_000_000
        token.functions.balanceOf.return_value.call.return_value = 5_000_000
        token.functions.allowance.return_value.call.return_value = 0
        self.assertEqual(asyncio.run(backend.get_card_price()), 1_000_000)
        self.assertEqual(asyncio.run(backend.get_balance()), 5_000_000)
        self.assertEqual(asyncio.run(backend.get_allowance()), 0)
        token.functions.allowance.assert_called_once_with("0xPlayer", "0xGame")


class AbiLoadingTests(unittest.TestCase):
    def test_artifact_and_bare_list(self) -> None:
        abi = [{"name": "cardPrice", "type": "function"}]
        with tempfile.TemporaryDirectory() as tmp:
            artifact = Path(tmp) / "BingoGame.json"
            artifact.write_text(json.dumps({"abi": abi}), encoding="utf-8")
            self.assertEqual(Web3FundingBackend._load_abi(str(artifact)), abi)
            bare = Path(tmp) / "abi.json"
            bare.write_text(json.dumps(abi), encoding="utf-8")
            self.assertEqual(Web3FundingBackend._load_abi(str(bare)), abi)

    def test_missing_artifact(self) -> None:
        with self.assertRaises(FileNotFoundError):
            Web3FundingBackend._load_abi("/nonexistent/BingoGame.json")


if __name__ == "__main__":
    unittest.main()
