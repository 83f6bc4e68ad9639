"""
Balance fetching for multiple tokens.

Balances are read through the BalanceChecker contract when available and
through per-token RPC calls otherwise.
"""

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from token_service import get_token_service, resolve_token_address
from utils import format_amount

logger = logging.getLogger(__name__)

# Limited by BalanceChecker contract capacity
MAX_BATCH_TOKENS = 200

METHOD_BALANCE_CHECKER = "balance_checker"
METHOD_BATCH_RPC = "batch_rpc"

# (owner, token_addresses) -> raw balances in the same order
BalancePath = Callable[[str, List[str]], Awaitable[List[int]]]


class BalanceFetchFailed(Exception):
    def __init__(self, primary_error: Optional[Exception], fallback_error: Exception):
        self.primary_error = primary_error
        self.fallback_error = fallback_error
        if primary_error is None:
            message = f"Balance fetch failed: {fallback_error}"
        else:
            message = (f"Balance fetch failed. {METHOD_BALANCE_CHECKER}: {primary_error}; "
                       f"{METHOD_BATCH_RPC}: {fallback_error}")
        super().__init__(message)


@dataclass
class TokenBalance:
    token: str  # as supplied by the caller
    token_address: str
    balance: int
    decimals: int


@dataclass
class BalanceFetchResult:
    balances: List[TokenBalance]
    method: str


def validate_tokens_input(tokens: Optional[List[str]], allow_duplicates: bool = True) -> List[str]:
    """Validate and resolve a token list for batch balance queries.

    Order and duplicates are preserved unless allow_duplicates is False.

    Args:
        tokens: Token symbols or addresses

    Returns:
        Normalized token addresses, one per input token.
    """
    if not tokens:
        raise ValueError("At least one token is required")
    if len(tokens) > MAX_BATCH_TOKENS:
        raise ValueError(f"Maximum {MAX_BATCH_TOKENS} tokens per request")

    token_addresses = [resolve_token_address(token) for token in tokens]
    if not allow_duplicates and len(set(token_addresses)) != len(token_addresses):
        raise ValueError("Duplicate tokens in request")
    return token_addresses


async def _read_balances(path: BalancePath, owner: str, token_addresses: List[str]) -> List[int]:
    raw_balances = list(await path(owner, token_addresses))
    if len(raw_balances) != len(token_addresses):
        raise ValueError(f"Expected {len(token_addresses)} balances, got {len(raw_balances)}")
    return raw_balances


async def _with_decimals(tokens: List[str], token_addresses: List[str],
                         raw_balances: List[int]) -> List[TokenBalance]:
    service = get_token_service()
    decimals: Dict[str, int] = {}
    for address in token_addresses:
        if address not in decimals:
            decimals[address] = await service.get_decimals_async(address)

    return [
        TokenBalance(token=token, token_address=address, balance=int(raw), decimals=decimals[address])
        for token, address, raw in zip(tokens, token_addresses, raw_balances)
    ]


async def fetch_token_balances(owner: str, tokens: List[str], token_addresses: List[str],
                               balance_checker: Optional[BalancePath] = None,
                               batch_rpc: Optional[BalancePath] = None) -> BalanceFetchResult:
    """Fetch balances through the BalanceChecker path, falling back to batch RPC.

    Raises:
        BalanceFetchFailed: if both paths fail.
    """
    raw: Optional[List[int]] = None
    method = METHOD_BALANCE_CHECKER
    primary_error = None

    if balance_checker is not None:
        try:
            raw = await _read_balances(balance_checker, owner, token_addresses)
        except Exception as e:
            primary_error = e
            logger.warning(f"BalanceChecker failed, falling back to batch RPC (degraded mode): {e}")

    if raw is None:
        if batch_rpc is None:
            raise BalanceFetchFailed(primary_error, RuntimeError("No batch RPC path configured"))
        method = METHOD_BATCH_RPC
        try:
            raw = await _read_balances(batch_rpc, owner, token_addresses)
        except Exception as e:
            raise BalanceFetchFailed(primary_error, e) from e

    balances = await _with_decimals(tokens, token_addresses, raw)
    return BalanceFetchResult(balances=balances, method=method)


Fetcher = Callable[[str, List[str], List[str]], Awaitable[BalanceFetchResult]]


async def get_balances_result(address: str, tokens: Optional[List[str]],
                              fetcher: Optional[Fetcher] = None,
                              provider: Any = None) -> Dict[str, Any]:
    """Validate tokens, fetch balances and shape the tool response.

    Args:
        address: Owner address
        tokens: Token symbols or addresses, order and duplicates preserved
        fetcher: Override for the fetch step, defaults to the provider's paths
        provider: StarknetProvider used when no fetcher is given
    """
    token_addresses = validate_tokens_input(tokens)

    if fetcher is None:
        if provider is None:
            raise ValueError("A provider or fetcher is required to fetch balances")

        async def fetcher(owner: str, token_list: List[str], addresses: List[str]) -> BalanceFetchResult:
            checker = provider.get_balances_via_checker if provider.balance_checker_address else None
            return await fetch_token_balances(
                owner, token_list, addresses,
                balance_checker=checker,
                batch_rpc=provider.get_balances_batch_rpc,
            )

    result = await fetcher(address, list(tokens), token_addresses)

    return {
        "address": address,
        "balances": [
            {
                "token": b.token,
                "token_address": b.token_address,
                "balance": format_amount(b.balance, b.decimals),
                "raw": str(b.balance),
                "decimals": b.decimals,
            }
            for b in result.balances
        ],
        "tokens_queried": len(token_addresses),
        "method": result.method,
    }
