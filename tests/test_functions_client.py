import json

import httpx
import pytest

from shared.functions.client import (
    BackendFunctionsClient,
    FunctionsHttpError,
    FunctionsTransportError,
    succeeded,
)


def client_for(handler) -> BackendFunctionsClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return BackendFunctionsClient(http, "https://project.supabase.co/", anon_key="anon")


async def test_invoke_posts_json_with_auth_headers():
    seen = {}

    def handler(request: httpx.Request):
        seen["url"] = str(request.url)
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"ok": True, "purchase_tx_hash": "0xabc"})

    client = client_for(handler)
    data = await client.invoke("gasless-purchase", {"event_id": "e1"}, access_token="privy-token")

    assert data["purchase_tx_hash"] == "0xabc"
    assert seen["url"] == "https://project.supabase.co/functions/v1/gasless-purchase"
    assert seen["headers"]["apikey"] == "anon"
    assert seen["headers"]["authorization"] == "Bearer anon"
    assert seen["headers"]["x-privy-authorization"] == "Bearer privy-token"
    assert seen["body"] == {"event_id": "e1"}


async def test_structured_error_body_is_returned_on_non_2xx():
    def handler(request):
        return httpx.Response(429, json={"error": "limit_exceeded"})

    data = await client_for(handler).invoke("gasless-purchase", {})

    assert data == {"error": "limit_exceeded", "ok": False}


async def test_unstructured_failure_raises_http_error():
    def handler(request):
        return httpx.Response(502, text="Bad Gateway")

    with pytest.raises(FunctionsHttpError) as exc_info:
        await client_for(handler).invoke("register-ticket", {})

    assert exc_info.value.status_code == 502
    assert exc_info.value.function_name == "register-ticket"


async def test_transport_error_raises():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(FunctionsTransportError):
        await client_for(handler).invoke("get-transaction-status", {"reference": "r"})


def test_succeeded_accepts_ok_or_success():
    assert succeeded({"ok": True})
    assert succeeded({"success": True, "message": "Ticket already registered"})
    assert not succeeded({"ok": False, "error": "x"})
    assert not succeeded(None)
