"""web3-backed on-chain gateway: token approval, raw transactions, receipts.

web3's HTTP provider is synchronous; every call runs in a worker thread so
the session read loop is never blocked.
"""

import asyncio
import logging
from typing import Any

from web3 import Web3
from web3.exceptions import TimeExhausted

from src.pm_channel.domain.ports import TxReceipt
from src.pm_common.errors import RequestTimeoutError

logger = logging.getLogger(__name__)

_ERC20_APPROVE_ABI: list[dict[str, Any]] = [
    {
        "name": "approve",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "spender", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    }
]


class Web3OnChainGateway:
    def __init__(self, rpc_url: str, private_key: bytes | str, chain_id: int,
                 web3: Web3 | None = None) -> None:
        self._web3 = web3 or Web3(Web3.HTTPProvider(rpc_url))
        self._account = self._web3.eth.account.from_key(private_key)
        self._chain_id = chain_id

    @property
    def address(self) -> str:
        return self._account.address

    async def approve_token(self, token: str, spender: str, amount: int) -> str:
        return await asyncio.to_thread(self._approve, token, spender, amount)

    async def submit_transaction(self, to: str, data: bytes) -> str:
        return await asyncio.to_thread(self._send, {"to": Web3.to_checksum_address(to),
                                                     "data": data})

    async def await_confirmation(self, tx_hash: str, timeout: float) -> TxReceipt:
        try:
            receipt = await asyncio.to_thread(
                self._web3.eth.wait_for_transaction_receipt, tx_hash, timeout
            )
        except TimeExhausted as exc:
            raise RequestTimeoutError("await_confirmation", 0, timeout) from exc
        result = TxReceipt(
            tx_hash=tx_hash,
            status=int(receipt["status"]),
            block_number=int(receipt["blockNumber"]),
        )
        logger.info("Tx %s confirmed in block %d (status=%d)", tx_hash, result.block_number,
                    result.status)
        return result

    def _approve(self, token: str, spender: str, amount: int) -> str:
        contract = self._web3.eth.contract(
            address=Web3.to_checksum_address(token), abi=_ERC20_APPROVE_ABI
        )
        fn = contract.functions.approve(Web3.to_checksum_address(spender), amount)
        tx = fn.build_transaction(self._base_params())
        return self._sign_and_send(tx)

    def _send(self, tx: dict[str, Any]) -> str:
        params = {**self._base_params(), **tx}
        params["gas"] = self._web3.eth.estimate_gas(params)
        return self._sign_and_send(params)

    def _base_params(self) -> dict[str, Any]:
        gas_price = self._web3.eth.gas_price
        return {
            "from": self._account.address,
            "nonce": self._web3.eth.get_transaction_count(self._account.address, "pending"),
            "gasPrice": max(gas_price * 2, gas_price + 1),
            "chainId": self._chain_id,
        }

    def _sign_and_send(self, tx: dict[str, Any]) -> str:
        signed = self._account.sign_transaction(tx)
        tx_hash = self._web3.eth.send_raw_transaction(signed.raw_transaction)
        hex_hash = "0x" + bytes(tx_hash).hex()
        logger.info("Submitted tx %s", hex_hash)
        return hex_hash
