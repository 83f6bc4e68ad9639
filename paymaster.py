"""
Paymaster JSON-RPC client (SNIP-29).
Builds and executes sponsored invoke transactions whose fees are paid in an ERC-20 gas token.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx
from starknet_py.net.client_models import Call

logger = logging.getLogger(__name__)

DEFAULT_PAYMASTER_URL = "https://starknet.paymaster.avnu.fi"
PAYMASTER_PARAMS_VERSION = "0x1"


class PaymasterError(Exception):
    """JSON-RPC error or transport failure from the paymaster."""

    def __init__(self, method: str, message: str, code: Optional[int] = None):
        self.method = method
        self.code = code
        super().__init__(f"Paymaster {method} failed: {message}")


def call_to_paymaster(call: Call) -> Dict[str, Any]:
    return {
        "to": hex(call.to_addr),
        "selector": hex(call.selector),
        "calldata": [hex(x) for x in call.calldata],
    }


def default_fee_mode(gas_token: str) -> Dict[str, Any]:
    """Execution parameters for paying fees in gas_token."""
    return {
        "version": PAYMASTER_PARAMS_VERSION,
        "fee_mode": {"mode": "default", "gas_token": gas_token},
    }


class PaymasterClient:
    def __init__(self, url: str = DEFAULT_PAYMASTER_URL,
                 http_client: Optional[httpx.AsyncClient] = None, timeout: float = 30.0):
        self.url = url
        self.http_client = http_client
        self.timeout = timeout
        self._request_id = 0

    async def _rpc(self, method: str, params: Dict[str, Any]) -> Any:
        self._request_id += 1
        payload = {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params}
        logger.debug(f"paymaster {method}")

        if self.http_client is not None:
            response = await self.http_client.post(self.url, json=payload)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.url, json=payload)

        if response.status_code != 200:
            raise PaymasterError(method, f"HTTP {response.status_code}: {response.text}")

        body = response.json()
        if body.get("error"):
            error = body["error"]
            raise PaymasterError(method, error.get("message", str(error)), error.get("code"))
        return body["result"]

    async def build_invoke(self, user_address: str, calls: List[Call], gas_token: str) -> Dict[str, Any]:
        """Returns the paymaster's build result, including the typed data to sign."""
        return await self._rpc("paymaster_buildTransaction", {
            "transaction": {
                "type": "invoke",
                "invoke": {"user_address": user_address, "calls": [call_to_paymaster(c) for c in calls]},
            },
            "parameters": default_fee_mode(gas_token),
        })

    async def execute_invoke(self, user_address: str, typed_data: Dict[str, Any],
                             signature: List[int], gas_token: str) -> str:
        result = await self._rpc("paymaster_executeTransaction", {
            "transaction": {
                "type": "invoke",
                "invoke": {
                    "user_address": user_address,
                    "typed_data": typed_data,
                    "signature": [hex(s) for s in signature],
                },
            },
            "parameters": default_fee_mode(gas_token),
        })
        return result["transaction_hash"]
