"""
Token Service for the Starknet MCP server.

Resolves token symbols and addresses to normalized addresses and decimals.
Built-in tokens are trusted and never expire; other tokens are fetched lazily
from avnu, cached for TOKEN_TTL_MS, and as a last resort read on-chain.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Protocol, Tuple

from avnu import DEFAULT_AVNU_BASE_URL, AvnuClient, RemoteToken
from utils import InvalidAddress, is_address_like, normalize_address, short_address

logger = logging.getLogger(__name__)

TOKEN_TTL_MS = 24 * 60 * 60 * 1000  # 24 hours

STATIC_LAST_UPDATED = 0


class TokenError(Exception):
    """Base class for token resolution failures."""


class UnknownToken(TokenError):
    def __init__(self, token: str):
        self.token = token
        super().__init__(f"Unknown token: {token}")


class RemoteFetchFailed(TokenError):
    pass


class NoProviderConfigured(TokenError):
    def __init__(self, address: str):
        self.address = address
        super().__init__(
            f"Token {address} not found and no RPC provider configured for on-chain fallback"
        )


class OnChainFetchFailed(TokenError):
    pass


class RemoteTokenSource(Protocol):
    async def fetch_token_by_address(self, address: str) -> RemoteToken: ...

    async def fetch_verified_token_by_symbol(self, symbol: str) -> RemoteToken: ...


class DecimalsProvider(Protocol):
    async def get_decimals(self, token_address: str) -> int: ...


@dataclass(frozen=True)
class TokenRecord(ABC):
    """One token's identity and display metadata."""
    address: str
    symbol: str
    name: str
    decimals: int
    logo_uri: Optional[str] = None
    daily_volume_usd: float = 0.0
    tags: Tuple[str, ...] = ()
    extensions: Dict[str, Any] = field(default_factory=dict)
    last_updated: int = STATIC_LAST_UPDATED

    is_static = False

    @abstractmethod
    def is_expired(self, now_ms: int, ttl_ms: int) -> bool:
        ...

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "symbol": self.symbol,
            "name": self.name,
            "decimals": self.decimals,
            "logo_uri": self.logo_uri,
            "daily_volume_usd": self.daily_volume_usd,
            "tags": list(self.tags),
            "is_static": self.is_static,
            "last_updated": self.last_updated,
        }


@dataclass(frozen=True)
class StaticToken(TokenRecord):
    """Built-in trusted token. Never expires and is never replaced."""

    is_static = True

    def is_expired(self, now_ms: int, ttl_ms: int) -> bool:
        return False


@dataclass(frozen=True)
class DynamicToken(TokenRecord):
    """Token fetched from avnu or read on-chain."""

    def is_expired(self, now_ms: int, ttl_ms: int) -> bool:
        return now_ms - self.last_updated > ttl_ms

    @classmethod
    def from_remote(cls, token: RemoteToken, now_ms: int) -> "DynamicToken":
        return cls(
            address=normalize_address(token.address),
            symbol=token.symbol,
            name=token.name,
            decimals=int(token.decimals),
            logo_uri=token.logo_uri,
            daily_volume_usd=token.daily_volume_usd,
            tags=tuple(token.tags),
            extensions=dict(token.extensions),
            last_updated=now_ms,
        )


# Only the fields that differ per token
STATIC_TOKEN_DATA = [
    {"address": "0x049d36570d4e46f48e99674bd3fcc84644ddd6b96f7c741b1562b82f9e004dc7", "symbol": "ETH", "name": "Ether", "decimals": 18},
    {"address": "0x04718f5a0fc34cc1af16a1cdee98ffb20c31f5cd61d6ab07201858f4287c938d", "symbol": "STRK", "name": "Starknet Token", "decimals": 18},
    {"address": "0x053c91253bc9682c04929ca02ed00b3e423f6710d2ee7e0d5ebb06f3ecf368a8", "symbol": "USDC", "name": "USD Coin", "decimals": 6},
    {"address": "0x068f5c6a61780768455de69077e07e89787839bf8166decfbf92b645209c0fb8", "symbol": "USDT", "name": "Tether USD", "decimals": 6},
]

# Shared by all static tokens
STATIC_TOKEN_DEFAULTS = {
    "logo_uri": None,
    "daily_volume_usd": 0.0,
    "tags": ("Verified",),
    "last_updated": STATIC_LAST_UPDATED,
}

# Single source of truth for trusted token addresses and decimals
STATIC_TOKENS: Tuple[StaticToken, ...] = tuple(
    StaticToken(**{**STATIC_TOKEN_DEFAULTS, **data}) for data in STATIC_TOKEN_DATA
)

TOKENS: Dict[str, str] = {token.symbol: token.address for token in STATIC_TOKENS}


class TokenCache:
    """Token records keyed by normalized address plus an upper-case symbol index.

    Static and dynamic entries are held in separate stores. Lookups consult the
    static store first and writes only ever reach the dynamic store.
    """

    def __init__(self):
        self._static: MappingProxyType = MappingProxyType({})
        self._static_symbols: MappingProxyType = MappingProxyType({})
        self._dynamic: Dict[str, DynamicToken] = {}
        self._dynamic_symbols: Dict[str, str] = {}
        self._static_loaded = False

    def load_static(self, tokens: Iterable[StaticToken]) -> None:
        if self._static_loaded:
            raise RuntimeError("Static tokens are already loaded")

        records: Dict[str, StaticToken] = {}
        symbols: Dict[str, str] = {}
        for token in tokens:
            normalized = normalize_address(token.address)
            records[normalized] = replace(token, address=normalized)
            symbols[token.symbol.upper()] = normalized

        self._static = MappingProxyType(records)
        self._static_symbols = MappingProxyType(symbols)
        self._static_loaded = True

    def get(self, address: str) -> Optional[TokenRecord]:
        return self._static.get(address) or self._dynamic.get(address)

    def address_for_symbol(self, symbol: str) -> Optional[str]:
        upper = symbol.upper()
        return self._static_symbols.get(upper) or self._dynamic_symbols.get(upper)

    def upsert_dynamic(self, record: DynamicToken) -> TokenRecord:
        """Insert or refresh a dynamic record. A static record at the same address wins."""
        static = self._static.get(record.address)
        if static is not None:
            logger.debug(f"Ignoring remote data for static token {static.symbol} ({record.address})")
            return static

        self._dynamic[record.address] = record

        upper = record.symbol.upper()
        if upper not in self._static_symbols:
            self._dynamic_symbols[upper] = record.address
        return record

    def insert_if_absent(self, record: DynamicToken) -> TokenRecord:
        """Write only when the address has no entry at all, fresh or expired."""
        existing = self.get(record.address)
        if existing is not None:
            return existing
        self._dynamic[record.address] = record
        return record

    def clear_dynamic(self) -> None:
        self._dynamic.clear()
        for symbol, address in list(self._dynamic_symbols.items()):
            if self.get(address) is None:
                del self._dynamic_symbols[symbol]

    def size(self) -> int:
        return len(self._static) + len(self._dynamic)

    def all(self) -> List[TokenRecord]:
        return list(self._static.values()) + list(self._dynamic.values())


class TokenService:
    """Token resolution and caching.

    Synchronous methods only read the cache. Asynchronous methods fetch unknown
    or expired tokens from avnu and, for decimals, fall back to an on-chain read.
    """

    def __init__(self, base_url: str = DEFAULT_AVNU_BASE_URL,
                 remote: Optional[RemoteTokenSource] = None,
                 provider: Optional[DecimalsProvider] = None,
                 ttl_ms: int = TOKEN_TTL_MS,
                 clock: Callable[[], float] = time.time):
        self.base_url = base_url
        self.remote = remote if remote is not None else AvnuClient(base_url)
        self.provider = provider
        self.ttl_ms = ttl_ms
        self._clock = clock
        self._cache = TokenCache()
        self._cache.load_static(STATIC_TOKENS)

    def set_remote(self, remote: RemoteTokenSource) -> None:
        """Replace the token metadata source, e.g. with a client on a shared http pool."""
        self.remote = remote

    def set_provider(self, provider: DecimalsProvider) -> None:
        """Set the RPC provider used when avnu cannot resolve a token."""
        self.provider = provider

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _fresh(self, address: str) -> Optional[TokenRecord]:
        cached = self._cache.get(address)
        if cached is None or cached.is_expired(self._now_ms(), self.ttl_ms):
            return None
        return cached

    # Synchronous methods (cache only)

    def resolve_symbol(self, symbol_or_address: str) -> str:
        """Resolve a token symbol or address to a normalized address.

        Raises:
            UnknownToken: symbol not cached and value is not a hex address.
            InvalidAddress: value looks like an address but is malformed.
        """
        indexed = self._cache.address_for_symbol(symbol_or_address)
        if indexed:
            return indexed

        if is_address_like(symbol_or_address):
            return normalize_address(symbol_or_address)

        raise UnknownToken(symbol_or_address)

    def get_decimals(self, address: str) -> Optional[int]:
        """Cached decimals, or None if the token is missing or expired."""
        cached = self._fresh(normalize_address(address))
        return cached.decimals if cached else None

    def get_token_info(self, symbol_or_address: str) -> Optional[TokenRecord]:
        if is_address_like(symbol_or_address):
            normalized = normalize_address(symbol_or_address)
        else:
            normalized = self._cache.address_for_symbol(symbol_or_address)
            if not normalized:
                return None
        return self._fresh(normalized)

    # Asynchronous methods (avnu fetch)

    async def get_token_by_address(self, address: str) -> TokenRecord:
        normalized = normalize_address(address)
        cached = self._fresh(normalized)
        if cached:
            return cached

        logger.debug(f"Fetching token {normalized} from avnu")
        try:
            token = await self.remote.fetch_token_by_address(address)
            record = DynamicToken.from_remote(token, self._now_ms())
        except Exception as e:
            raise RemoteFetchFailed(f"Failed to fetch token by address {address}: {e}") from e

        if record.address != normalized:
            raise RemoteFetchFailed(
                f"Failed to fetch token by address {address}: avnu returned token {record.address}"
            )
        return self._cache.upsert_dynamic(record)

    async def get_token_by_symbol(self, symbol: str) -> TokenRecord:
        """Get a token by symbol. Only verified avnu tokens are fetched."""
        address = self._cache.address_for_symbol(symbol)
        if address:
            cached = self._fresh(address)
            if cached:
                return cached

        logger.debug(f"Fetching verified token {symbol!r} from avnu")
        try:
            token = await self.remote.fetch_verified_token_by_symbol(symbol)
            record = DynamicToken.from_remote(token, self._now_ms())
        except Exception as e:
            raise RemoteFetchFailed(f'Failed to fetch token by symbol "{symbol}": {e}') from e

        return self._cache.upsert_dynamic(record)

    async def resolve_symbol_async(self, symbol_or_address: str) -> str:
        try:
            return self.resolve_symbol(symbol_or_address)
        except UnknownToken:
            if is_address_like(symbol_or_address):
                raise
        token = await self.get_token_by_symbol(symbol_or_address)
        return token.address

    async def get_token_info_async(self, symbol_or_address: str) -> TokenRecord:
        if is_address_like(symbol_or_address):
            return await self.get_token_by_address(symbol_or_address)
        return await self.get_token_by_symbol(symbol_or_address)

    async def get_decimals_async(self, address: str) -> int:
        """Get decimals, trying cache, then avnu, then an on-chain call.

        Raises:
            NoProviderConfigured: avnu failed and no provider is set.
            OnChainFetchFailed: avnu failed and the on-chain call failed too.
        """
        normalized = normalize_address(address)
        strategies: List[Tuple[str, Callable[[str], Awaitable[Optional[int]]]]] = [
            ("cache", self._decimals_from_cache),
            ("avnu", self._decimals_from_remote),
            ("on-chain", self._decimals_from_chain),
        ]

        failures: List[TokenError] = []
        for tier, strategy in strategies:
            try:
                decimals = await strategy(normalized)
            except TokenError as e:
                logger.debug(f"Decimals lookup for {normalized} failed at {tier} tier: {e}")
                failures.append(e)
                continue
            if decimals is not None:
                return decimals

        # last tier's error, chained to the tier before it
        if len(failures) > 1:
            raise failures[-1] from failures[-2]
        raise failures[-1]

    async def _decimals_from_cache(self, address: str) -> Optional[int]:
        return self.get_decimals(address)

    async def _decimals_from_remote(self, address: str) -> Optional[int]:
        token = await self.get_token_by_address(address)
        return token.decimals

    async def _decimals_from_chain(self, address: str) -> Optional[int]:
        if self.provider is None:
            raise NoProviderConfigured(address)

        logger.warning(f"avnu unavailable for {address}, reading decimals on-chain")
        try:
            decimals = int(await self.provider.get_decimals(address))
        except Exception as e:
            raise OnChainFetchFailed(f"Failed to read decimals on-chain for {address}: {e}") from e

        record = DynamicToken(
            address=address,
            symbol=short_address(address),
            name="Unknown Token",
            decimals=decimals,
            last_updated=self._now_ms(),
        )
        self._cache.insert_if_absent(record)
        return decimals

    # Cache management

    def clear_dynamic_cache(self) -> None:
        """Clear all non-static tokens from the cache."""
        self._cache.clear_dynamic()

    def get_all_cached(self) -> List[TokenRecord]:
        return self._cache.all()

    def get_cache_size(self) -> int:
        return self._cache.size()


_token_service: Optional[TokenService] = None


def get_token_service(base_url: Optional[str] = None) -> TokenService:
    """Shared TokenService for the process. Created on first use.

    base_url only applies when the instance is created.
    """
    global _token_service
    if _token_service is None:
        _token_service = TokenService(base_url or DEFAULT_AVNU_BASE_URL)
    return _token_service


def reset_token_service() -> None:
    """Drop the shared instance so the next call builds a fresh one."""
    global _token_service
    _token_service = None


def resolve_token_address(token: str) -> str:
    """Resolve a symbol (case-insensitive) or hex address to a normalized address."""
    return get_token_service().resolve_symbol(token)


async def resolve_token_address_async(token: str) -> str:
    return await get_token_service().resolve_symbol_async(token)


def get_cached_decimals(token_address: str) -> Optional[int]:
    return get_token_service().get_decimals(token_address)


async def get_decimals_async(token_address: str) -> int:
    return await get_token_service().get_decimals_async(token_address)


__all__ = [
    "DynamicToken",
    "InvalidAddress",
    "NoProviderConfigured",
    "OnChainFetchFailed",
    "RemoteFetchFailed",
    "STATIC_TOKENS",
    "StaticToken",
    "TOKENS",
    "TOKEN_TTL_MS",
    "TokenCache",
    "TokenError",
    "TokenRecord",
    "TokenService",
    "UnknownToken",
    "get_cached_decimals",
    "get_decimals_async",
    "get_token_service",
    "reset_token_service",
    "resolve_token_address",
    "resolve_token_address_async",
]
