"""
avnu REST API client.
Token metadata, swap quotes and staking endpoints used by the Starknet MCP server.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)

DEFAULT_AVNU_BASE_URL = "https://starknet.api.avnu.fi"


class AvnuAPIError(Exception):
    """Non-success response from the avnu API."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        super().__init__(f"avnu API error {status_code}: {message}")


def parse_int(value: Any) -> int:
    """Parse an avnu amount (hex string, decimal string or number)."""
    if value is None:
        return 0
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    text = str(value).strip()
    if text[:2].lower() == "0x":
        return int(text, 16)
    return int(text)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp into an aware UTC datetime."""
    if not value:
        return None
    if isinstance(value, (int, float)):
        # epoch milliseconds
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _optional_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    return float(value)


@dataclass
class RemoteToken:
    """Token metadata as returned by the avnu tokens endpoint."""
    address: str
    symbol: str
    name: str
    decimals: int
    logo_uri: Optional[str] = None
    daily_volume_usd: float = 0.0
    tags: List[str] = field(default_factory=list)
    extensions: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "RemoteToken":
        return cls(
            address=data["address"],
            symbol=data["symbol"],
            name=data.get("name") or data["symbol"],
            decimals=int(data["decimals"]),
            logo_uri=data.get("logoUri"),
            daily_volume_usd=float(data.get("lastDailyVolumeUsd") or 0),
            tags=list(data.get("tags") or []),
            extensions=dict(data.get("extensions") or {}),
        )


@dataclass
class Route:
    name: str
    percent: float

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Route":
        return cls(name=data.get("name", "Unknown"), percent=float(data.get("percent", 0)))


@dataclass
class Quote:
    """Swap quote from the liquidity aggregator."""
    quote_id: str
    sell_token_address: str
    buy_token_address: str
    sell_amount: int
    buy_amount: int
    sell_amount_in_usd: Optional[float] = None
    buy_amount_in_usd: Optional[float] = None
    price_impact: Optional[float] = None  # basis points
    gas_fees_in_usd: Optional[float] = None
    routes: List[Route] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Quote":
        return cls(
            quote_id=data["quoteId"],
            sell_token_address=data["sellTokenAddress"],
            buy_token_address=data["buyTokenAddress"],
            sell_amount=parse_int(data.get("sellAmount")),
            buy_amount=parse_int(data.get("buyAmount")),
            sell_amount_in_usd=_optional_float(data.get("sellAmountInUsd")),
            buy_amount_in_usd=_optional_float(data.get("buyAmountInUsd")),
            price_impact=_optional_float(data.get("priceImpact")),
            gas_fees_in_usd=_optional_float(data.get("gasFeesInUsd")),
            routes=[Route.from_api(r) for r in data.get("routes") or []],
        )


@dataclass
class DelegationPool:
    pool_address: str
    token_address: str
    staked_amount: int
    staked_amount_in_usd: Optional[float]
    apr: float

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "DelegationPool":
        return cls(
            pool_address=data["poolAddress"],
            token_address=data["tokenAddress"],
            staked_amount=parse_int(data.get("stakedAmount")),
            staked_amount_in_usd=_optional_float(data.get("stakedAmountInUsd")),
            apr=float(data.get("apr") or 0),
        )


@dataclass
class StakingInfo:
    """avnu staking pool information."""
    delegation_pools: List[DelegationPool]
    self_staked_amount: int = 0
    commission: Optional[float] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "StakingInfo":
        return cls(
            delegation_pools=[DelegationPool.from_api(p) for p in data.get("delegationPools") or []],
            self_staked_amount=parse_int(data.get("selfStakedAmount")),
            commission=_optional_float(data.get("commission")),
        )

    def find_pool(self, token_address: str) -> Optional[DelegationPool]:
        """Find the delegation pool for a token, comparing addresses numerically."""
        target = int(token_address, 16)
        for pool in self.delegation_pools:
            if int(pool.token_address, 16) == target:
                return pool
        return None


@dataclass
class UserStakingInfo:
    """A user's position in an avnu staking pool."""
    token_address: str
    pool_address: str
    user_address: str
    amount: int
    unclaimed_rewards: int
    unpool_amount: int
    unpool_time: Optional[datetime] = None
    amount_in_usd: Optional[float] = None
    unclaimed_rewards_in_usd: Optional[float] = None
    unpool_amount_in_usd: Optional[float] = None
    expected_yearly_strk_rewards: int = 0

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "UserStakingInfo":
        return cls(
            token_address=data.get("tokenAddress", ""),
            pool_address=data.get("poolAddress", ""),
            user_address=data.get("userAddress", ""),
            amount=parse_int(data.get("amount")),
            unclaimed_rewards=parse_int(data.get("unclaimedRewards")),
            unpool_amount=parse_int(data.get("unpoolAmount")),
            unpool_time=parse_timestamp(data.get("unpoolTime")),
            amount_in_usd=_optional_float(data.get("amountInUsd")),
            unclaimed_rewards_in_usd=_optional_float(data.get("unclaimedRewardsInUsd")),
            unpool_amount_in_usd=_optional_float(data.get("unpoolAmountInUsd")),
            expected_yearly_strk_rewards=parse_int(data.get("expectedYearlyStrkRewards")),
        )


class AvnuClient:
    """Async client for the avnu API.

    Uses the shared http client when one is given, otherwise opens a
    short-lived client per request.
    """

    def __init__(self, base_url: str = DEFAULT_AVNU_BASE_URL,
                 http_client: Optional[httpx.AsyncClient] = None, timeout: float = 30.0):
        self.base_url = base_url.rstrip('/')
        self.http_client = http_client
        self.timeout = timeout

    async def _request(self, method: str, path: str, params: Optional[Dict] = None,
                       json_body: Optional[Dict] = None) -> Any:
        url = f"{self.base_url}{path}"
        logger.debug(f"avnu {method} {url} params={params}")

        if self.http_client is not None:
            response = await self.http_client.request(method, url, params=params, json=json_body)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(method, url, params=params, json=json_body)

        if response.status_code != 200:
            raise AvnuAPIError(response.status_code, response.text)
        return response.json()

    # Tokens

    async def fetch_token_by_address(self, address: str) -> RemoteToken:
        data = await self._request("GET", f"/v1/starknet/tokens/{address}")
        return RemoteToken.from_api(data)

    async def fetch_verified_token_by_symbol(self, symbol: str) -> RemoteToken:
        """Find a verified token by exact symbol. Unverified tokens are never returned."""
        data = await self._request(
            "GET", "/v1/starknet/tokens",
            params={"search": symbol, "tag": "Verified", "size": 50},
        )
        candidates = data.get("content", []) if isinstance(data, dict) else data
        for candidate in candidates:
            tags = candidate.get("tags") or []
            if candidate.get("symbol", "").upper() == symbol.upper() and "Verified" in tags:
                return RemoteToken.from_api(candidate)
        raise AvnuAPIError(404, f"No verified token found for symbol {symbol}")

    # Swaps

    async def get_quotes(self, sell_token_address: str, buy_token_address: str,
                         sell_amount: int, taker_address: Optional[str] = None) -> List[Quote]:
        params = {
            "sellTokenAddress": sell_token_address,
            "buyTokenAddress": buy_token_address,
            "sellAmount": hex(sell_amount),
        }
        if taker_address:
            params["takerAddress"] = taker_address
        data = await self._request("GET", "/swap/v2/quotes", params=params)
        return [Quote.from_api(q) for q in data or []]

    async def build_swap_calls(self, quote_id: str, taker_address: str, slippage: float) -> List[Dict]:
        data = await self._request("POST", "/swap/v2/build", json_body={
            "quoteId": quote_id,
            "takerAddress": taker_address,
            "slippage": slippage,
            "includeApprove": True,
        })
        return data.get("calls", [])

    # Staking

    async def get_staking_info(self) -> StakingInfo:
        data = await self._request("GET", "/staking/v1")
        return StakingInfo.from_api(data)

    async def get_user_staking_info(self, token_address: str, user_address: str) -> UserStakingInfo:
        data = await self._request("GET", f"/staking/v1/pools/{token_address}/members/{user_address}")
        return UserStakingInfo.from_api(data)

    async def _staking_calls(self, pool_address: str, user_address: str, action: str, body: Dict) -> List[Dict]:
        data = await self._request(
            "POST", f"/staking/v1/pools/{pool_address}/members/{user_address}/{action}",
            json_body=body,
        )
        return data.get("calls", [])

    async def stake_to_calls(self, pool_address: str, user_address: str, amount: int) -> List[Dict]:
        return await self._staking_calls(pool_address, user_address, "stake", {"amount": hex(amount)})

    async def initiate_unstake_to_calls(self, pool_address: str, user_address: str, amount: int) -> List[Dict]:
        return await self._staking_calls(pool_address, user_address, "initiate-withdraw", {"amount": hex(amount)})

    async def unstake_to_calls(self, pool_address: str, user_address: str) -> List[Dict]:
        return await self._staking_calls(pool_address, user_address, "claim-withdraw", {})

    async def claim_rewards_to_calls(self, pool_address: str, user_address: str, restake: bool) -> List[Dict]:
        return await self._staking_calls(pool_address, user_address, "claim-rewards", {"restake": restake})
