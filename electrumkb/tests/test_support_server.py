from aiohttp import web
from aiohttp import ClientSession
import pytest

from electrumkb.support_server import SupportServerClient


TX_HASH = "ab" * 32


def create_app() -> tuple[web.Application, list]:
    requests = []

    async def mock_create_support_request(request: web.Request) -> web.Response:
        body = await request.json()
        requests.append(body)
        return web.json_response({ "status": True, "id": 7 })

    async def mock_get_support_request(request: web.Request) -> web.Response:
        tx_hash = request.match_info["tx_hash"]
        if tx_hash != TX_HASH:
            return web.json_response({ "status": False, "tickets": [] }, status=404)
        return web.json_response({ "status": True, "tickets": [ { "worker": "02" + "11" * 32 } ] })

    async def mock_get_difficulties(request: web.Request) -> web.Response:
        return web.Response(text="<html>not json</html>", content_type="text/html")

    app = web.Application()
    app.add_routes([
        web.post("/support/request", mock_create_support_request),
        web.get("/support/request/{tx_hash}", mock_get_support_request),
        web.get("/support/difficulties", mock_get_difficulties),
    ])
    return app, requests


async def _client_for(aiohttp_server) -> tuple[SupportServerClient, list]:
    app, requests = create_app()
    server = await aiohttp_server(app)
    return SupportServerClient(f"{server.host}:{server.port}"), requests


@pytest.mark.asyncio
async def test_create_support_request(aiohttp_server) -> None:
    client, requests = await _client_for(aiohttp_server)
    result = await client.create_support_request("00ff", "kc1qexample", 1.5)
    assert result == { "status": True, "id": 7 }
    assert requests == [ { "tx": "00ff", "address": "kc1qexample", "reward": 1.5 } ]


@pytest.mark.asyncio
async def test_get_support_request_status(aiohttp_server) -> None:
    client, _requests = await _client_for(aiohttp_server)
    result = await client.get_support_request_status(TX_HASH)
    assert result["status"] is True
    assert len(result["tickets"]) == 1

    # Error statuses still pass the server's JSON body through.
    result = await client.get_support_request_status("cd" * 32)
    assert result == { "status": False, "tickets": [] }


@pytest.mark.asyncio
async def test_undecodable_response_is_a_failure(aiohttp_server) -> None:
    client, _requests = await _client_for(aiohttp_server)
    assert await client.get_available_difficulties() == { "status": False, "tickets": [] }


@pytest.mark.asyncio
async def test_shared_session_is_left_open(aiohttp_server) -> None:
    app, _requests = create_app()
    server = await aiohttp_server(app)
    async with ClientSession() as session:
        client = SupportServerClient(f"{server.host}:{server.port}", session)
        result = await client.get_support_request_status(TX_HASH)
        assert result["status"] is True
        assert not session.closed


@pytest.mark.asyncio
async def test_unreachable_server() -> None:
    # Nothing listens on port 1.
    client = SupportServerClient("127.0.0.1:1")
    assert await client.create_support_request("00", "addr", 1) == { "status": False }
    assert await client.get_support_request_status(TX_HASH) == \
        { "status": False, "tickets": [] }
    assert await client.get_available_difficulties() == { "status": False, "tickets": [] }


@pytest.mark.asyncio
async def test_failed_responses_are_not_shared() -> None:
    client = SupportServerClient("127.0.0.1:1")
    first = await client.create_support_request("00", "addr", 1)
    first["status"] = True
    assert await client.create_support_request("00", "addr", 1) == { "status": False }
