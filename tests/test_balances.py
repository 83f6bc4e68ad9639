"""
Tests for batch balance fetching.
"""

import logging

import pytest
from unittest.mock import AsyncMock, MagicMock

from conftest import LORDS_ADDRESS
from balances import (
    MAX_BATCH_TOKENS,
    METHOD_BALANCE_CHECKER,
    METHOD_BATCH_RPC,
    BalanceFetchFailed,
    fetch_token_balances,
    get_balances_result,
    validate_tokens_input,
)
from token_service import TOKENS, NoProviderConfigured, UnknownToken, get_token_service


OWNER = "0x" + "0" * 60 + "beef"
ETH = TOKENS["ETH"]
USDC = TOKENS["USDC"]


# =============================================================================
# Input validation
# =============================================================================

def test_empty_tokens_rejected():
    with pytest.raises(ValueError, match="At least one token is required"):
        validate_tokens_input([])
    with pytest.raises(ValueError, match="At least one token is required"):
        validate_tokens_input(None)


def test_too_many_tokens_rejected():
    with pytest.raises(ValueError, match=f"Maximum {MAX_BATCH_TOKENS} tokens per request"):
        validate_tokens_input(["ETH"] * (MAX_BATCH_TOKENS + 1))


def test_max_tokens_accepted():
    assert len(validate_tokens_input(["ETH"] * MAX_BATCH_TOKENS)) == MAX_BATCH_TOKENS


def test_mixed_symbols_and_addresses():
    assert validate_tokens_input(["eth", USDC.upper().replace("0X", "0x"), "0x1"]) == [
        ETH, USDC, "0x" + "0" * 63 + "1"
    ]


def test_duplicates_preserved_by_default():
    assert validate_tokens_input(["ETH", "eth", ETH]) == [ETH, ETH, ETH]


def test_duplicates_rejected_when_disallowed():
    with pytest.raises(ValueError, match="Duplicate tokens in request"):
        validate_tokens_input(["ETH", ETH], allow_duplicates=False)


def test_unknown_symbol_rejected():
    with pytest.raises(UnknownToken):
        validate_tokens_input(["ETH", "NOTATOKEN"])


# =============================================================================
# Fetch paths
# =============================================================================

@pytest.mark.asyncio
async def test_balance_checker_path():
    checker = AsyncMock(return_value=[10**18, 5_000_000])
    batch = AsyncMock()

    result = await fetch_token_balances(OWNER, ["ETH", "USDC"], [ETH, USDC], checker, batch)

    assert result.method == METHOD_BALANCE_CHECKER
    assert [b.balance for b in result.balances] == [10**18, 5_000_000]
    assert [b.decimals for b in result.balances] == [18, 6]
    batch.assert_not_awaited()


@pytest.mark.asyncio
async def test_fallback_to_batch_rpc(caplog):
    checker = AsyncMock(side_effect=Exception("contract reverted"))
    batch = AsyncMock(return_value=[1, 2])

    with caplog.at_level(logging.WARNING):
        result = await fetch_token_balances(OWNER, ["ETH", "USDC"], [ETH, USDC], checker, batch)

    assert result.method == METHOD_BATCH_RPC
    assert [b.balance for b in result.balances] == [1, 2]
    assert "falling back to batch RPC" in caplog.text


@pytest.mark.asyncio
async def test_short_checker_response_falls_back():
    checker = AsyncMock(return_value=[1])
    batch = AsyncMock(return_value=[1, 2])

    result = await fetch_token_balances(OWNER, ["ETH", "USDC"], [ETH, USDC], checker, batch)
    assert result.method == METHOD_BATCH_RPC


@pytest.mark.asyncio
async def test_both_paths_fail():
    checker = AsyncMock(side_effect=Exception("checker down"))
    batch = AsyncMock(side_effect=Exception("rpc down"))

    with pytest.raises(BalanceFetchFailed) as exc_info:
        await fetch_token_balances(OWNER, ["ETH"], [ETH], checker, batch)

    message = str(exc_info.value)
    assert "checker down" in message
    assert "rpc down" in message


@pytest.mark.asyncio
async def test_no_checker_uses_batch_rpc():
    batch = AsyncMock(return_value=[7])

    result = await fetch_token_balances(OWNER, ["ETH"], [ETH], batch_rpc=batch)
    assert result.method == METHOD_BATCH_RPC
    batch.assert_awaited_once_with(OWNER, [ETH])


@pytest.mark.asyncio
async def test_decimals_failure_does_not_trigger_fallback():
    service = get_token_service()
    service.remote = AsyncMock()
    service.remote.fetch_token_by_address.side_effect = Exception("avnu down")

    checker = AsyncMock(return_value=[1])
    batch = AsyncMock(return_value=[1])

    with pytest.raises(NoProviderConfigured):
        await fetch_token_balances(OWNER, [LORDS_ADDRESS], [LORDS_ADDRESS], checker, batch)
    batch.assert_not_awaited()


# =============================================================================
# Tool response
# =============================================================================

@pytest.mark.asyncio
async def test_result_preserves_order_and_duplicates():
    provider = MagicMock()
    provider.balance_checker_address = None
    provider.get_balances_batch_rpc = AsyncMock(return_value=[1_500_000, 10**18, 1_500_000])

    result = await get_balances_result(OWNER, ["USDC", "ETH", "usdc"], provider=provider)

    assert result["address"] == OWNER
    assert result["tokens_queried"] == 3
    assert result["method"] == METHOD_BATCH_RPC
    assert [b["token"] for b in result["balances"]] == ["USDC", "ETH", "usdc"]
    assert [b["balance"] for b in result["balances"]] == ["1.5", "1", "1.5"]
    assert result["balances"][1] == {
        "token": "ETH",
        "token_address": ETH,
        "balance": "1",
        "raw": str(10**18),
        "decimals": 18,
    }


@pytest.mark.asyncio
async def test_result_uses_checker_when_configured():
    provider = MagicMock()
    provider.balance_checker_address = "0x" + "0" * 63 + "c"
    provider.get_balances_via_checker = AsyncMock(return_value=[3])
    provider.get_balances_batch_rpc = AsyncMock()

    result = await get_balances_result(OWNER, ["ETH"], provider=provider)

    assert result["method"] == METHOD_BALANCE_CHECKER
    provider.get_balances_via_checker.assert_awaited_once_with(OWNER, [ETH])
    provider.get_balances_batch_rpc.assert_not_awaited()


@pytest.mark.asyncio
async def test_result_requires_provider_or_fetcher():
    with pytest.raises(ValueError, match="provider or fetcher"):
        await get_balances_result(OWNER, ["ETH"])
