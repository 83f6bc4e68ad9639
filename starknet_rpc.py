"""
Starknet RPC provider.
Contract reads, balance queries and transaction execution through starknet-py.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence, Union

from starknet_py.hash.selector import get_selector_from_name
from starknet_py.net.account.account import Account
from starknet_py.net.client_models import Call
from starknet_py.net.full_node_client import FullNodeClient
from starknet_py.net.models import StarknetChainId
from starknet_py.net.signer.stark_curve_signer import KeyPair

from utils import normalize_address

logger = logging.getLogger(__name__)

Felt = Union[int, str]


class AccountNotConfigured(Exception):
    """Raised when a write operation is attempted without a signing account."""


def to_felt(value: Felt) -> int:
    """Convert calldata (int, hex string or decimal string) to a felt."""
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if text[:2].lower() == "0x":
        return int(text, 16)
    return int(text)


def to_call(call: Dict[str, Any]) -> Call:
    """Convert an avnu call dict ({contractAddress, entrypoint, calldata}) to a Call."""
    return Call(
        to_addr=to_felt(call["contractAddress"]),
        selector=get_selector_from_name(call["entrypoint"]),
        calldata=[to_felt(x) for x in call.get("calldata", [])],
    )


def uint256_from_felts(low: int, high: int) -> int:
    return low + (high << 128)


def uint256_to_felts(value: int) -> List[int]:
    return [value & ((1 << 128) - 1), value >> 128]


class StarknetProvider:
    """Read and write access to Starknet for the MCP tools."""

    def __init__(self, client: FullNodeClient, account: Optional[Account] = None,
                 balance_checker_address: Optional[str] = None):
        self.client = client
        self.account = account
        self.balance_checker_address = balance_checker_address

    @classmethod
    def from_config(cls, rpc_url: str, account_address: Optional[str] = None,
                    private_key: Optional[str] = None,
                    balance_checker_address: Optional[str] = None) -> "StarknetProvider":
        client = FullNodeClient(node_url=rpc_url)
        account = None
        if account_address and private_key:
            account = Account(
                address=account_address,
                client=client,
                key_pair=KeyPair.from_private_key(to_felt(private_key)),
                chain=StarknetChainId.MAINNET,
            )
        return cls(client, account, balance_checker_address)

    @property
    def address(self) -> str:
        if self.account is None:
            raise AccountNotConfigured("No Starknet account configured")
        return normalize_address(hex(self.account.address))

    async def call(self, contract_address: str, entrypoint: str,
                   calldata: Optional[Sequence[Felt]] = None) -> List[int]:
        """Call a read-only contract function."""
        call = Call(
            to_addr=to_felt(contract_address),
            selector=get_selector_from_name(entrypoint),
            calldata=[to_felt(x) for x in calldata or []],
        )
        return await self.client.call_contract(call=call, block_number="latest")

    async def get_decimals(self, token_address: str) -> int:
        result = await self.call(token_address, "decimals")
        return int(result[0])

    async def balance_of(self, token_address: str, owner: str) -> int:
        result = await self.call(token_address, "balance_of", [owner])
        if len(result) >= 2:
            return uint256_from_felts(result[0], result[1])
        return int(result[0])

    async def get_balances_via_checker(self, owner: str, token_addresses: List[str]) -> List[int]:
        """Read all balances in one call to the BalanceChecker contract.

        The contract returns [n, (token, low, high) * n]. Balances are returned
        in the order of token_addresses, duplicates included.
        """
        if not self.balance_checker_address:
            raise RuntimeError("BalanceChecker contract not configured")

        unique = list(dict.fromkeys(token_addresses))
        result = await self.call(
            self.balance_checker_address, "get_balances",
            [owner, len(unique), *unique],
        )

        count = int(result[0]) if result else 0
        if count != len(unique) or len(result) != 1 + 3 * count:
            raise ValueError(f"Unexpected BalanceChecker response length {len(result)} for {len(unique)} tokens")

        balances: Dict[int, int] = {}
        for i in range(count):
            token, low, high = result[1 + 3 * i: 4 + 3 * i]
            balances[token] = uint256_from_felts(low, high)

        return [balances[to_felt(address)] for address in token_addresses]

    async def get_balances_batch_rpc(self, owner: str, token_addresses: List[str]) -> List[int]:
        """Read balances with one balance_of call per token, run concurrently."""
        return list(await asyncio.gather(
            *(self.balance_of(address, owner) for address in token_addresses)
        ))

    def _require_account(self) -> Account:
        if self.account is None:
            raise AccountNotConfigured("No Starknet account configured for signing")
        return self.account

    async def execute(self, calls: List[Call]) -> str:
        """Sign, submit and wait for a multicall. Returns the transaction hash."""
        account = self._require_account()
        response = await account.execute_v3(calls=calls, auto_estimate=True)
        tx_hash = hex(response.transaction_hash)
        logger.info(f"Submitted transaction {tx_hash}")
        await self.client.wait_for_tx(response.transaction_hash)
        return tx_hash

    async def execute_via_paymaster(self, calls: List[Call], paymaster: Any, gas_token: str) -> str:
        """Execute a multicall through a paymaster, paying fees in gas_token."""
        account = self._require_account()
        build = await paymaster.build_invoke(self.address, calls, gas_token)
        typed_data = build["typed_data"]
        signature = account.sign_message(typed_data)

        tx_hash = await paymaster.execute_invoke(self.address, typed_data, signature, gas_token)
        logger.info(f"Submitted sponsored transaction {tx_hash} (gas token {gas_token})")
        await self.client.wait_for_tx(to_felt(tx_hash))
        return hex(to_felt(tx_hash))

    async def estimate_fee(self, calls: List[Call]) -> Dict[str, Any]:
        account = self._require_account()
        invoke = await account.sign_invoke_v3(calls=calls, auto_estimate=True)
        fee = await account.estimate_fee(invoke)
        unit = getattr(fee, "unit", None)
        return {
            "overall_fee": int(fee.overall_fee),
            "unit": getattr(unit, "value", unit) or "FRI",
        }
