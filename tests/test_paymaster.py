import json

import httpx
import pytest

from starknet_py.hash.selector import get_selector_from_name
from starknet_py.net.client_models import Call

from paymaster import DEFAULT_PAYMASTER_URL, PaymasterClient, PaymasterError, call_to_paymaster


USER = "0x" + "0" * 60 + "a11e"
STRK = "0x04718f5a0fc34cc1af16a1cdee98ffb20c31f5cd61d6ab07201858f4287c938d"


def make_client(handler) -> PaymasterClient:
    return PaymasterClient(DEFAULT_PAYMASTER_URL, httpx.AsyncClient(transport=httpx.MockTransport(handler)))


def test_call_to_paymaster():
    call = Call(to_addr=0x10, selector=get_selector_from_name("approve"), calldata=[1, 255])
    assert call_to_paymaster(call) == {
        "to": "0x10",
        "selector": hex(get_selector_from_name("approve")),
        "calldata": ["0x1", "0xff"],
    }


@pytest.mark.asyncio
async def test_build_invoke_pays_in_gas_token():
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        assert body["method"] == "paymaster_buildTransaction"
        assert body["params"]["parameters"] == {
            "version": "0x1",
            "fee_mode": {"mode": "default", "gas_token": STRK},
        }
        invoke = body["params"]["transaction"]["invoke"]
        assert invoke["user_address"] == USER
        assert invoke["calls"][0]["to"] == "0x10"
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": {"typed_data": {"domain": {}}}})

    result = await make_client(handler).build_invoke(USER, [Call(to_addr=0x10, selector=1, calldata=[])], STRK)
    assert result["typed_data"] == {"domain": {}}


@pytest.mark.asyncio
async def test_execute_invoke_returns_hash():
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        assert body["method"] == "paymaster_executeTransaction"
        assert body["params"]["transaction"]["invoke"]["signature"] == ["0x1", "0x2"]
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"],
                                         "result": {"transaction_hash": "0xabc", "tracking_id": "0x1"}})

    assert await make_client(handler).execute_invoke(USER, {}, [1, 2], STRK) == "0xabc"


@pytest.mark.asyncio
async def test_rpc_error_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1,
                                         "error": {"code": 151, "message": "Token not supported"}})

    with pytest.raises(PaymasterError, match="Token not supported") as exc_info:
        await make_client(handler).build_invoke(USER, [], STRK)
    assert exc_info.value.code == 151


@pytest.mark.asyncio
async def test_http_error_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="unavailable")

    with pytest.raises(PaymasterError, match="HTTP 503"):
        await make_client(handler).execute_invoke(USER, {}, [], STRK)
