#!/usr/bin/env python3
"""
Starknet MCP Server (FastMCP Implementation)
Provides AI agents with tools for Starknet balances, transfers, contract calls,
avnu swaps and avnu staking.
"""

import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from contextlib import asynccontextmanager
from collections.abc import AsyncIterator

import httpx
from dotenv import load_dotenv

from mcp.server.fastmcp import FastMCP, Context

from avnu import DEFAULT_AVNU_BASE_URL, AvnuClient, Quote, UserStakingInfo
from balances import get_balances_result
from paymaster import DEFAULT_PAYMASTER_URL, PaymasterClient
from starknet_rpc import StarknetProvider, to_call, uint256_to_felts
from token_service import TOKENS, TokenService, get_token_service
from utils import format_amount, normalize_address, parse_amount

# Load environment variables
load_dotenv()

# Configure logging
logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger(__name__)

# Stakeable tokens with unbonding periods
STAKEABLE_TOKENS = {
    "STRK": {"address": TOKENS["STRK"], "unbonding_days": 21},
    "WBTC": {"address": "0x03fe2b97c1fd336e750087d68b9b867997fd64a2661ff3ca5a7c771641e8e7ac", "unbonding_days": 7},
    "TBTC": {"address": "0x05958238523c56709bff7a99567939bbba64718daa527571789f1ee5e66c7f85", "unbonding_days": 7},
    "SOLVBTC": {"address": "0x0153b21b6b1d1b36d5b43c6bcffabb0c22e8d17e1a61f79d4e9aa6b1a03c7e8d", "unbonding_days": 7},
    "LBTC": {"address": "0x025fcc7ed5e0a5d5f0b4c3c2a9da34c6a5cca2a0b1b5e4b3c2a1d0e9f8c7b6a5", "unbonding_days": 7},
}
DEFAULT_UNBONDING_DAYS = 21

# Fees are denominated in STRK (fri) for v3 transactions
FEE_DECIMALS = 18

@dataclass
class ServerConfig:
    """Environment configuration for the Starknet MCP server"""
    rpc_url: str
    account_address: str
    private_key: str
    avnu_base_url: str = DEFAULT_AVNU_BASE_URL
    paymaster_url: str = DEFAULT_PAYMASTER_URL
    balance_checker_address: Optional[str] = None
    transport: str = "stdio"

def load_config(env: Optional[Dict[str, str]] = None) -> ServerConfig:
    """Build the server configuration from environment variables."""
    env = os.environ if env is None else env

    missing = [name for name in ("STARKNET_RPC_URL", "STARKNET_ACCOUNT_ADDRESS", "STARKNET_PRIVATE_KEY")
               if not env.get(name)]
    if missing:
        raise ValueError(f"Missing required environment variables: {', '.join(missing)}")

    rpc_url = env["STARKNET_RPC_URL"]
    if not rpc_url.startswith(("http://", "https://")):
        raise ValueError(f"STARKNET_RPC_URL must be an http(s) URL: {rpc_url}")

    for name in ("STARKNET_ACCOUNT_ADDRESS", "STARKNET_PRIVATE_KEY"):
        if not env[name].startswith("0x"):
            raise ValueError(f"{name} must start with 0x")

    balance_checker = env.get("BALANCE_CHECKER_ADDRESS") or None
    return ServerConfig(
        rpc_url=rpc_url,
        account_address=normalize_address(env["STARKNET_ACCOUNT_ADDRESS"]),
        private_key=env["STARKNET_PRIVATE_KEY"],
        avnu_base_url=env.get("AVNU_BASE_URL") or DEFAULT_AVNU_BASE_URL,
        paymaster_url=env.get("AVNU_PAYMASTER_URL") or DEFAULT_PAYMASTER_URL,
        balance_checker_address=normalize_address(balance_checker) if balance_checker else None,
        transport=env.get("TRANSPORT", "stdio"),
    )

@dataclass
class StarknetContext:
    """Context for the Starknet MCP server."""
    address: str
    config: ServerConfig
    http_client: httpx.AsyncClient
    avnu: AvnuClient
    provider: StarknetProvider
    token_service: TokenService
    paymaster: Optional[PaymasterClient] = None

@asynccontextmanager
async def starknet_lifespan(server: FastMCP) -> AsyncIterator[StarknetContext]:
    """Manages the Starknet client lifecycle."""
    config = load_config()

    http_client = httpx.AsyncClient(timeout=30.0)
    avnu = AvnuClient(config.avnu_base_url, http_client)
    paymaster = PaymasterClient(config.paymaster_url, http_client)

    provider = StarknetProvider.from_config(
        config.rpc_url,
        account_address=config.account_address,
        private_key=config.private_key,
        balance_checker_address=config.balance_checker_address,
    )
    logger.info(f"Initialized Starknet MCP server for address: {config.account_address}")
    if not config.balance_checker_address:
        logger.info("BALANCE_CHECKER_ADDRESS not set, batch balances use per-token RPC calls")

    token_service = get_token_service(config.avnu_base_url)
    token_service.set_remote(avnu)
    token_service.set_provider(provider)

    try:
        yield StarknetContext(
            address=config.account_address,
            config=config,
            http_client=http_client,
            avnu=avnu,
            provider=provider,
            token_service=token_service,
            paymaster=paymaster,
        )
    finally:
        await http_client.aclose()
        logger.info("Starknet MCP server shutdown complete")

# Initialize FastMCP server
mcp = FastMCP(
    "starknet-mcp-server",
    instructions="MCP server for Starknet wallets, avnu swaps and avnu staking",
    lifespan=starknet_lifespan
)

def get_unbonding_days(token_address: str) -> int:
    """Unbonding period in days for a stakeable token (STRK period if unknown)."""
    normalized = normalize_address(token_address)
    for info in STAKEABLE_TOKENS.values():
        if normalize_address(info["address"]) == normalized:
            return info["unbonding_days"]
    return DEFAULT_UNBONDING_DAYS

def unbonding_status(user_info: UserStakingInfo, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Classify an unstake request as none, cooldown or ready."""
    now = now or datetime.now(timezone.utc)

    if user_info.unpool_amount == 0:
        return {
            "status": "none",
            "time_remaining": None,
            "next_action": "No active unstake. Use starknet_initiate_unstake to start.",
        }

    if user_info.unpool_time and user_info.unpool_time > now:
        remaining = user_info.unpool_time - now
        hours, rest = divmod(remaining.seconds, 3600)
        return {
            "status": "cooldown",
            "time_remaining": f"{remaining.days}d {hours}h {rest // 60}m",
            "next_action": f"Wait for cooldown to complete on {user_info.unpool_time.date().isoformat()}.",
        }

    return {
        "status": "ready",
        "time_remaining": None,
        "next_action": "Use starknet_complete_unstake to claim your tokens.",
    }

# Known failure messages and the text shown to the agent
FRIENDLY_ERRORS = [
    (("INSUFFICIENT_LIQUIDITY", "insufficient liquidity"),
     "Insufficient liquidity for this swap. Try a smaller amount or different token pair."),
    (("SLIPPAGE", "slippage", "Insufficient tokens received"),
     "Slippage exceeded. Try increasing slippage tolerance."),
    (("QUOTE_EXPIRED", "quote expired"),
     "Quote expired. Please retry the operation."),
    (("INSUFFICIENT_BALANCE", "insufficient balance"),
     "Insufficient token balance for this operation."),
    (("No quotes available",),
     "No swap routes available for this token pair. The pair may not have liquidity."),
    (("No rewards available",),
     "No staking rewards available to claim. Stake tokens first to earn rewards."),
]

def friendly_error_message(message: str) -> str:
    for needles, friendly in FRIENDLY_ERRORS:
        if any(needle in message for needle in needles):
            return friendly
    return message

def error_response(tool: str, error: Exception) -> str:
    """JSON error payload returned to the agent."""
    message = str(error)
    user_message = friendly_error_message(message)
    logger.error(f"Error in {tool}: {message}")
    return json.dumps({
        "error": True,
        "message": user_message,
        "original_error": message if message != user_message else None,
        "tool": tool
    }, indent=2)

def quote_summary(quote: Quote, buy_decimals: int) -> Dict[str, Any]:
    return {
        "buy_amount": format_amount(quote.buy_amount, buy_decimals),
        "sell_amount_usd": f"{quote.sell_amount_in_usd:.2f}" if quote.sell_amount_in_usd is not None else None,
        "buy_amount_usd": f"{quote.buy_amount_in_usd:.2f}" if quote.buy_amount_in_usd is not None else None,
        "price_impact": f"{quote.price_impact / 100:.2f}%" if quote.price_impact else None,
        "gas_fees_usd": f"{quote.gas_fees_in_usd:.4f}" if quote.gas_fees_in_usd is not None else None,
        "routes": [{"name": r.name, "percent": f"{r.percent * 100:.1f}%"} for r in quote.routes],
    }

async def _best_quote(starknet_ctx: StarknetContext, sell_token: str, buy_token: str, amount: str):
    service = starknet_ctx.token_service
    sell_token_address = await service.resolve_symbol_async(sell_token)
    buy_token_address = await service.resolve_symbol_async(buy_token)
    sell_amount = parse_amount(amount, await service.get_decimals_async(sell_token_address))

    quotes = await starknet_ctx.avnu.get_quotes(
        sell_token_address, buy_token_address, sell_amount, taker_address=starknet_ctx.address
    )
    if not quotes:
        raise ValueError("No quotes available for this swap")

    buy_decimals = await service.get_decimals_async(buy_token_address)
    return quotes[0], buy_decimals

async def _find_pool(starknet_ctx: StarknetContext, token: str):
    token_address = await starknet_ctx.token_service.resolve_symbol_async(token)
    staking_info = await starknet_ctx.avnu.get_staking_info()
    pool = staking_info.find_pool(token_address)
    if not pool:
        raise ValueError(f"No staking pool found for token {token}")
    return token_address, pool

@mcp.tool()
async def starknet_get_balance(ctx: Context, token: str, address: Optional[str] = None) -> str:
    """Get token balance for an address on Starknet.

    Args:
        token: Token symbol (ETH, STRK, USDC, USDT) or contract address
        address: Address to check (defaults to the agent's address)

    Returns:
        JSON string with the formatted and raw balance.
    """
    try:
        starknet_ctx = ctx.request_context.lifespan_context
        owner = normalize_address(address) if address else starknet_ctx.address

        token_address = await starknet_ctx.token_service.resolve_symbol_async(token)
        raw = await starknet_ctx.provider.balance_of(token_address, owner)
        decimals = await starknet_ctx.token_service.get_decimals_async(token_address)

        return json.dumps({
            "address": owner,
            "token": token,
            "token_address": token_address,
            "balance": format_amount(raw, decimals),
            "raw": str(raw),
            "decimals": decimals
        }, indent=2)

    except Exception as e:
        return error_response("starknet_get_balance", e)

@mcp.tool()
async def starknet_get_balances(ctx: Context, tokens: List[str], address: Optional[str] = None) -> str:
    """Get balances for several tokens in one request.

    Args:
        tokens: Token symbols or addresses (max 200), order and duplicates preserved
        address: Address to check (defaults to the agent's address)

    Returns:
        JSON string with one balance entry per requested token and the fetch method used.
    """
    try:
        starknet_ctx = ctx.request_context.lifespan_context
        owner = normalize_address(address) if address else starknet_ctx.address

        result = await get_balances_result(owner, tokens, provider=starknet_ctx.provider)
        return json.dumps(result, indent=2)

    except Exception as e:
        return error_response("starknet_get_balances", e)

@mcp.tool()
async def starknet_get_token_info(ctx: Context, token: str) -> str:
    """Get token metadata (address, symbol, name, decimals).

    Args:
        token: Token symbol or contract address

    Returns:
        JSON string with token metadata.
    """
    try:
        starknet_ctx = ctx.request_context.lifespan_context
        record = await starknet_ctx.token_service.get_token_info_async(token)
        return json.dumps(record.to_dict(), indent=2)

    except Exception as e:
        return error_response("starknet_get_token_info", e)

@mcp.tool()
async def starknet_transfer(ctx: Context, recipient: str, token: str, amount: str) -> str:
    """Transfer tokens to another address on Starknet.

    Args:
        recipient: Recipient address (must start with 0x)
        token: Token symbol or contract address
        amount: Amount in human-readable format (e.g. '1.5')

    Returns:
        JSON string with the transaction hash.
    """
    try:
        starknet_ctx = ctx.request_context.lifespan_context
        recipient_address = normalize_address(recipient)

        token_address = await starknet_ctx.token_service.resolve_symbol_async(token)
        decimals = await starknet_ctx.token_service.get_decimals_async(token_address)
        amount_wei = parse_amount(amount, decimals)

        call = to_call({
            "contractAddress": token_address,
            "entrypoint": "transfer",
            "calldata": [recipient_address, *uint256_to_felts(amount_wei)],
        })
        tx_hash = await starknet_ctx.provider.execute([call])

        return json.dumps({
            "success": True,
            "transaction_hash": tx_hash,
            "recipient": recipient_address,
            "token": token,
            "amount": amount
        }, indent=2)

    except Exception as e:
        return error_response("starknet_transfer", e)

@mcp.tool()
async def starknet_call_contract(ctx: Context, contract_address: str, entrypoint: str,
                                 calldata: Optional[List[str]] = None) -> str:
    """Call a read-only contract function on Starknet.

    Args:
        contract_address: Contract address
        entrypoint: Function name
        calldata: Function arguments as strings

    Returns:
        JSON string with the raw result felts.
    """
    try:
        starknet_ctx = ctx.request_context.lifespan_context
        result = await starknet_ctx.provider.call(contract_address, entrypoint, calldata or [])

        return json.dumps({
            "result": [hex(felt) for felt in result],
            "contract_address": contract_address,
            "entrypoint": entrypoint
        }, indent=2)

    except Exception as e:
        return error_response("starknet_call_contract", e)

@mcp.tool()
async def starknet_invoke_contract(ctx: Context, contract_address: str, entrypoint: str,
                                   calldata: Optional[List[str]] = None) -> str:
    """Invoke a state-changing contract function on Starknet.

    Args:
        contract_address: Contract address
        entrypoint: Function name
        calldata: Function arguments as strings

    Returns:
        JSON string with the transaction hash.
    """
    try:
        starknet_ctx = ctx.request_context.lifespan_context
        call = to_call({"contractAddress": contract_address, "entrypoint": entrypoint, "calldata": calldata or []})
        tx_hash = await starknet_ctx.provider.execute([call])

        return json.dumps({
            "success": True,
            "transaction_hash": tx_hash,
            "contract_address": contract_address,
            "entrypoint": entrypoint
        }, indent=2)

    except Exception as e:
        return error_response("starknet_invoke_contract", e)

@mcp.tool()
async def starknet_estimate_fee(ctx: Context, contract_address: str, entrypoint: str,
                                calldata: Optional[List[str]] = None) -> str:
    """Estimate the transaction fee for a contract invocation.

    Args:
        contract_address: Contract address
        entrypoint: Function name
        calldata: Function arguments as strings

    Returns:
        JSON string with the overall fee and its unit.
    """
    try:
        starknet_ctx = ctx.request_context.lifespan_context
        call = to_call({"contractAddress": contract_address, "entrypoint": entrypoint, "calldata": calldata or []})
        fee = await starknet_ctx.provider.estimate_fee([call])

        return json.dumps({
            "overall_fee": format_amount(fee["overall_fee"], FEE_DECIMALS),
            "overall_fee_raw": str(fee["overall_fee"]),
            "unit": fee["unit"]
        }, indent=2)

    except Exception as e:
        return error_response("starknet_estimate_fee", e)

@mcp.tool()
async def starknet_get_quote(ctx: Context, sell_token: str, buy_token: str, amount: str) -> str:
    """Get a swap quote from avnu without executing the trade.

    Args:
        sell_token: Token to sell (symbol or address)
        buy_token: Token to buy (symbol or address)
        amount: Amount to sell in human-readable format

    Returns:
        JSON string with the best quote.
    """
    try:
        starknet_ctx = ctx.request_context.lifespan_context
        quote, buy_decimals = await _best_quote(starknet_ctx, sell_token, buy_token, amount)

        return json.dumps({
            "sell_token": sell_token,
            "buy_token": buy_token,
            "sell_amount": amount,
            **quote_summary(quote, buy_decimals),
            "quote_id": quote.quote_id
        }, indent=2)

    except Exception as e:
        return error_response("starknet_get_quote", e)

@mcp.tool()
async def starknet_swap(ctx: Context, sell_token: str, buy_token: str, amount: str, slippage: float = 0.01,
                        gasless: bool = False) -> str:
    """Execute a token swap on Starknet using the avnu aggregator.

    Args:
        sell_token: Token to sell (symbol or address)
        buy_token: Token to buy (symbol or address)
        amount: Amount to sell in human-readable format
        slippage: Maximum slippage tolerance (0.01 = 1%)
        gasless: Pay gas in the sell token through the avnu paymaster instead of STRK

    Returns:
        JSON string with the transaction hash and executed quote.
    """
    try:
        starknet_ctx = ctx.request_context.lifespan_context
        quote, buy_decimals = await _best_quote(starknet_ctx, sell_token, buy_token, amount)

        calls = [to_call(c) for c in
                 await starknet_ctx.avnu.build_swap_calls(quote.quote_id, starknet_ctx.address, slippage)]
        if gasless:
            # fees paid in the token being sold
            tx_hash = await starknet_ctx.provider.execute_via_paymaster(
                calls, starknet_ctx.paymaster, normalize_address(quote.sell_token_address)
            )
        else:
            tx_hash = await starknet_ctx.provider.execute(calls)

        return json.dumps({
            "success": True,
            "transaction_hash": tx_hash,
            "sell_token": sell_token,
            "buy_token": buy_token,
            "sell_amount": amount,
            **quote_summary(quote, buy_decimals),
            "slippage": slippage,
            "gasless": gasless
        }, indent=2)

    except Exception as e:
        return error_response("starknet_swap", e)

@mcp.tool()
async def starknet_get_staking_info(ctx: Context, token: str = "STRK", user_address: Optional[str] = None) -> str:
    """Get staking pool information (APR, total staked) and the user's staking position.

    Args:
        token: Token to check (STRK, WBTC, TBTC, SOLVBTC, LBTC). Defaults to STRK.
        user_address: Address to check (defaults to the agent's address)

    Returns:
        JSON string with pool and position details.
    """
    try:
        starknet_ctx = ctx.request_context.lifespan_context
        user = normalize_address(user_address) if user_address else starknet_ctx.address

        token_address, pool = await _find_pool(starknet_ctx, token)
        user_info = await starknet_ctx.avnu.get_user_staking_info(token_address, user)
        decimals = await starknet_ctx.token_service.get_decimals_async(token_address)

        return json.dumps({
            "pool": {
                "token_address": pool.token_address,
                "pool_address": pool.pool_address,
                "apr": f"{pool.apr * 100:.2f}%",
                "total_staked": format_amount(pool.staked_amount, decimals),
                "total_staked_usd": f"{pool.staked_amount_in_usd:.2f}" if pool.staked_amount_in_usd is not None else None
            },
            "user": {
                "address": user,
                "staked_amount": format_amount(user_info.amount, decimals),
                "staked_amount_usd": f"{user_info.amount_in_usd:.2f}" if user_info.amount_in_usd is not None else None,
                "unclaimed_rewards": format_amount(user_info.unclaimed_rewards, decimals),
                "unclaimed_rewards_usd": f"{user_info.unclaimed_rewards_in_usd:.2f}" if user_info.unclaimed_rewards_in_usd is not None else None,
                "expected_yearly_rewards": format_amount(user_info.expected_yearly_strk_rewards, decimals)
            },
            "token": token,
            "unbonding_period_days": get_unbonding_days(token_address)
        }, indent=2)

    except Exception as e:
        return error_response("starknet_get_staking_info", e)

@mcp.tool()
async def starknet_stake(ctx: Context, token: str, amount: str) -> str:
    """Stake tokens to earn rewards via avnu staking. Rewards start immediately.

    Args:
        token: Token to stake (STRK, WBTC, TBTC, SOLVBTC, LBTC)
        amount: Amount in human-readable format (e.g. '100')

    Returns:
        JSON string with the transaction hash and pool address.
    """
    try:
        starknet_ctx = ctx.request_context.lifespan_context
        token_address, pool = await _find_pool(starknet_ctx, token)
        amount_wei = parse_amount(amount, await starknet_ctx.token_service.get_decimals_async(token_address))

        calls = await starknet_ctx.avnu.stake_to_calls(pool.pool_address, starknet_ctx.address, amount_wei)
        tx_hash = await starknet_ctx.provider.execute([to_call(c) for c in calls])

        return json.dumps({
            "success": True,
            "transaction_hash": tx_hash,
            "token": token,
            "amount": amount,
            "pool_address": pool.pool_address,
            "message": f"Successfully staked {amount} {token}. Tokens are now earning rewards."
        }, indent=2)

    except Exception as e:
        return error_response("starknet_stake", e)

@mcp.tool()
async def starknet_claim_staking_rewards(ctx: Context, token: str = "STRK", restake: bool = False) -> str:
    """Claim accumulated staking rewards, either to the wallet or restaked (compounded).

    Args:
        token: Token to claim rewards for. Defaults to STRK.
        restake: Restake rewards instead of withdrawing them

    Returns:
        JSON string with the transaction hash and claimed amount.
    """
    try:
        starknet_ctx = ctx.request_context.lifespan_context
        token_address, pool = await _find_pool(starknet_ctx, token)

        user_info = await starknet_ctx.avnu.get_user_staking_info(token_address, starknet_ctx.address)
        if user_info.unclaimed_rewards == 0:
            raise ValueError("No rewards available to claim")

        calls = await starknet_ctx.avnu.claim_rewards_to_calls(pool.pool_address, starknet_ctx.address, restake)
        tx_hash = await starknet_ctx.provider.execute([to_call(c) for c in calls])
        decimals = await starknet_ctx.token_service.get_decimals_async(token_address)

        return json.dumps({
            "success": True,
            "transaction_hash": tx_hash,
            "token": token,
            "rewards_claimed": format_amount(user_info.unclaimed_rewards, decimals),
            "rewards_claimed_usd": f"{user_info.unclaimed_rewards_in_usd:.2f}" if user_info.unclaimed_rewards_in_usd is not None else None,
            "restaked": restake,
            "message": "Rewards restaked (compounded) to earn more." if restake else "Rewards withdrawn to wallet."
        }, indent=2)

    except Exception as e:
        return error_response("starknet_claim_staking_rewards", e)

@mcp.tool()
async def starknet_initiate_unstake(ctx: Context, token: str, amount: str) -> str:
    """Start unstaking. Begins the cooldown (21 days for STRK, 7 days for BTC variants).

    Tokens stop earning rewards during cooldown. Only one unstake can be active at a time.

    Args:
        token: Token to unstake (STRK, WBTC, TBTC, SOLVBTC, LBTC)
        amount: Amount in human-readable format

    Returns:
        JSON string with the transaction hash and cooldown end time.
    """
    try:
        starknet_ctx = ctx.request_context.lifespan_context
        token_address, pool = await _find_pool(starknet_ctx, token)
        decimals = await starknet_ctx.token_service.get_decimals_async(token_address)
        amount_wei = parse_amount(amount, decimals)

        user_info = await starknet_ctx.avnu.get_user_staking_info(token_address, starknet_ctx.address)
        if user_info.unpool_amount > 0:
            raise ValueError(
                f"Already have an active unstake of {format_amount(user_info.unpool_amount, decimals)} {token}. "
                f"Only one unstake can be active at a time. Complete the current unstake first."
            )
        if user_info.amount < amount_wei:
            raise ValueError(
                f"Insufficient staked balance. You have {format_amount(user_info.amount, decimals)} {token} staked."
            )

        calls = await starknet_ctx.avnu.initiate_unstake_to_calls(pool.pool_address, starknet_ctx.address, amount_wei)
        tx_hash = await starknet_ctx.provider.execute([to_call(c) for c in calls])

        unbonding_days = get_unbonding_days(token_address)
        cooldown_end = datetime.now(timezone.utc) + timedelta(days=unbonding_days)

        return json.dumps({
            "success": True,
            "transaction_hash": tx_hash,
            "token": token,
            "amount": amount,
            "pool_address": pool.pool_address,
            "cooldown_days": unbonding_days,
            "cooldown_ends_at": cooldown_end.isoformat(),
            "warnings": [
                f"Tokens will NOT earn rewards during the {unbonding_days}-day cooldown period.",
                f"Use starknet_complete_unstake after {cooldown_end.date().isoformat()} to claim tokens.",
                "Only one unstake can be active at a time."
            ]
        }, indent=2)

    except Exception as e:
        return error_response("starknet_initiate_unstake", e)

@mcp.tool()
async def starknet_complete_unstake(ctx: Context, token: str = "STRK") -> str:
    """Complete unstaking and claim tokens after the cooldown period.

    Args:
        token: Token to complete unstaking for. Defaults to STRK.

    Returns:
        JSON string with the transaction hash and claimed amount.
    """
    try:
        starknet_ctx = ctx.request_context.lifespan_context
        token_address, pool = await _find_pool(starknet_ctx, token)

        user_info = await starknet_ctx.avnu.get_user_staking_info(token_address, starknet_ctx.address)
        status = unbonding_status(user_info)
        if status["status"] == "none":
            raise ValueError("No active unstake request. Use starknet_initiate_unstake first.")
        if status["status"] == "cooldown":
            raise ValueError(
                f"Cooldown not complete. {status['time_remaining']} remaining. "
                f"Ready to claim on {user_info.unpool_time.date().isoformat()}."
            )

        calls = await starknet_ctx.avnu.unstake_to_calls(pool.pool_address, starknet_ctx.address)
        tx_hash = await starknet_ctx.provider.execute([to_call(c) for c in calls])
        decimals = await starknet_ctx.token_service.get_decimals_async(token_address)

        return json.dumps({
            "success": True,
            "transaction_hash": tx_hash,
            "token": token,
            "amount_claimed": format_amount(user_info.unpool_amount, decimals),
            "message": "Unstake complete. Tokens have been returned to your wallet."
        }, indent=2)

    except Exception as e:
        return error_response("starknet_complete_unstake", e)

@mcp.tool()
async def starknet_get_unbonding_status(ctx: Context, token: str = "STRK", user_address: Optional[str] = None) -> str:
    """Check the status of an unstaking request: none, cooldown or ready.

    Args:
        token: Token to check. Defaults to STRK.
        user_address: Address to check (defaults to the agent's address)

    Returns:
        JSON string with the unbonding status and next action.
    """
    try:
        starknet_ctx = ctx.request_context.lifespan_context
        user = normalize_address(user_address) if user_address else starknet_ctx.address

        token_address = await starknet_ctx.token_service.resolve_symbol_async(token)
        user_info = await starknet_ctx.avnu.get_user_staking_info(token_address, user)
        decimals = await starknet_ctx.token_service.get_decimals_async(token_address)
        status = unbonding_status(user_info)

        return json.dumps({
            "status": status["status"],
            "token": token,
            "user_address": user,
            "unbonding_amount": format_amount(user_info.unpool_amount, decimals),
            "unbonding_amount_usd": f"{user_info.unpool_amount_in_usd:.2f}" if user_info.unpool_amount_in_usd is not None else None,
            "cooldown_ends_at": user_info.unpool_time.isoformat() if user_info.unpool_time else None,
            "time_remaining": status["time_remaining"],
            "next_action": status["next_action"]
        }, indent=2)

    except Exception as e:
        return error_response("starknet_get_unbonding_status", e)

async def main():
    """Main function to run the MCP server."""
    transport = os.getenv("TRANSPORT", "stdio")

    if transport == "stdio":
        await mcp.run_stdio_async()
    elif transport == "sse":
        await mcp.run_sse_async()
    else:
        logger.error(f"Unsupported transport: {transport}")
        return

if __name__ == "__main__":
    import asyncio
    asyncio.run(main())
