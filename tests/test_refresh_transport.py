import asyncio
import json

import httpx
import pytest

from auth.coordinator import RefreshState, SessionExpiredError
from auth.token_store import TokenPair
from sellsync.constants import RETRIED_EXTENSION
from sellsync.http import attach_access_token, mark_retried
from tests.api_helpers import FakeSellSyncApi, build_client


def test_attach_access_token_sets_bearer_header() -> None:
    request = httpx.Request("GET", "https://sellsync.example.com/api/orders")

    attach_access_token(request, "access-1")

    assert request.headers["Authorization"] == "Bearer access-1"


def test_attach_access_token_without_token_leaves_request_unauthenticated() -> None:
    request = httpx.Request("GET", "https://sellsync.example.com/api/orders")

    attach_access_token(request, None)

    assert "Authorization" not in request.headers


@pytest.mark.asyncio
async def test_request_carries_stored_access_token() -> None:
    api = FakeSellSyncApi(valid_token="access-1")
    client, _, _ = build_client(api)

    response = await client.http.get("/orders")

    assert response.status_code == 200
    assert api.calls == [("/api/orders", "Bearer access-1")]
    assert api.refresh_calls == []


@pytest.mark.asyncio
async def test_single_401_refreshes_and_replays() -> None:
    api = FakeSellSyncApi()
    client, coordinator, navigate = build_client(api)

    response = await client.http.get("/orders")

    assert response.status_code == 200
    assert api.refresh_calls == [{"refreshToken": "refresh-1"}]
    assert api.calls_with("access-2") == ["/api/orders"]
    assert await client.token_store.get() == TokenPair("access-2", "refresh-2")
    assert coordinator.state is RefreshState.IDLE
    assert navigate.reasons == []


@pytest.mark.asyncio
async def test_concurrent_401s_share_one_refresh() -> None:
    api = FakeSellSyncApi(expected_failures=5)
    client, coordinator, navigate = build_client(api)
    paths = [f"/orders/{index}" for index in range(5)]

    responses = await asyncio.gather(*(client.http.get(path) for path in paths))

    assert [response.status_code for response in responses] == [200] * 5
    assert len(api.refresh_calls) == 1
    assert sorted(api.calls_with("access-2")) == sorted(f"/api{path}" for path in paths)
    assert coordinator.state is RefreshState.IDLE
    assert coordinator.pending == 0
    assert navigate.reasons == []


@pytest.mark.asyncio
async def test_rejected_refresh_fails_every_request_and_terminates_once() -> None:
    api = FakeSellSyncApi(refresh_status=403, expected_failures=5)
    client, coordinator, navigate = build_client(api)

    results = await asyncio.gather(
        *(client.http.get(f"/postings/{index}") for index in range(5)),
        return_exceptions=True,
    )

    assert all(isinstance(result, SessionExpiredError) for result in results)
    assert {result.reason for result in results} == {"refresh_rejected"}
    assert len(api.refresh_calls) == 1
    assert api.calls_with("access-2") == []
    assert navigate.reasons == ["refresh_rejected"]
    assert await client.token_store.get() is None
    assert coordinator.state is RefreshState.IDLE


@pytest.mark.asyncio
async def test_retried_request_is_never_refreshed() -> None:
    api = FakeSellSyncApi()
    client, _, navigate = build_client(api)
    request = mark_retried(client.http.build_request("GET", "/shipments"))

    with pytest.raises(SessionExpiredError) as excinfo:
        await client.http.send(request)

    assert excinfo.value.reason == "retry_rejected"
    assert excinfo.value.status_code == 401
    assert api.refresh_calls == []
    assert navigate.reasons == ["retry_rejected"]
    assert await client.token_store.get() is None


@pytest.mark.asyncio
async def test_replayed_request_rejected_again_terminates() -> None:
    api = FakeSellSyncApi(valid_token="never-valid")
    client, coordinator, navigate = build_client(api)

    with pytest.raises(SessionExpiredError) as excinfo:
        await client.http.get("/orders")

    assert excinfo.value.reason == "retry_rejected"
    assert len(api.refresh_calls) == 1
    assert api.calls == [("/api/orders", "Bearer access-1"), ("/api/orders", "Bearer access-2")]
    assert navigate.reasons == ["retry_rejected"]
    assert coordinator.state is RefreshState.IDLE


@pytest.mark.asyncio
async def test_concurrent_replays_rejected_again_terminate_once() -> None:
    api = FakeSellSyncApi(valid_token="never-valid", expected_failures=5)
    client, coordinator, navigate = build_client(api)

    results = await asyncio.gather(
        *(client.http.get(f"/orders/{index}") for index in range(5)),
        return_exceptions=True,
    )

    assert all(isinstance(result, SessionExpiredError) for result in results)
    assert {result.reason for result in results} == {"retry_rejected"}
    assert len(api.refresh_calls) == 1
    assert len(api.calls_with("access-2")) == 5
    assert navigate.reasons == ["retry_rejected"]
    assert await client.token_store.get() is None
    assert coordinator.state is RefreshState.IDLE


@pytest.mark.asyncio
async def test_missing_refresh_token_terminates_without_network_call() -> None:
    api = FakeSellSyncApi()
    client, _, navigate = build_client(api, tokens=None)

    with pytest.raises(SessionExpiredError) as excinfo:
        await client.http.get("/orders")

    assert excinfo.value.reason == "missing_refresh_token"
    assert api.calls == [("/api/orders", None)]
    assert api.refresh_calls == []
    assert navigate.reasons == ["missing_refresh_token"]


@pytest.mark.asyncio
async def test_401_from_refresh_endpoint_never_refreshes() -> None:
    api = FakeSellSyncApi(refresh_status=401)
    api.all_failed.set()
    client, _, navigate = build_client(api)

    with pytest.raises(SessionExpiredError) as excinfo:
        await client.http.post("/auth/refresh", json={"refreshToken": "refresh-1"})

    assert excinfo.value.reason == "refresh_endpoint_rejected"
    assert len(api.refresh_calls) == 1
    assert navigate.reasons == ["refresh_endpoint_rejected"]


@pytest.mark.asyncio
async def test_request_after_refresh_uses_new_token() -> None:
    api = FakeSellSyncApi()
    client, coordinator, _ = build_client(api)
    await client.http.get("/orders")

    response = await client.http.get("/mappings")

    assert response.status_code == 200
    assert api.calls[-1] == ("/api/mappings", "Bearer access-2")
    assert len(api.refresh_calls) == 1
    assert coordinator.pending == 0


@pytest.mark.asyncio
async def test_replay_preserves_method_and_body() -> None:
    seen: list[httpx.Request] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.headers.get("authorization") != "Bearer access-2":
            return httpx.Response(401)
        return httpx.Response(201, json={"ok": True, "data": {"id": "posting-1"}})

    api = FakeSellSyncApi()
    api.all_failed.set()
    client, _, _ = build_client(api, transport=httpx.MockTransport(handler))

    response = await client.http.post("/postings", json={"orderId": "order-1"})

    assert response.status_code == 201
    assert [request.method for request in seen] == ["POST", "POST"]
    assert [request.headers["authorization"] for request in seen] == [
        "Bearer access-1",
        "Bearer access-2",
    ]
    assert seen[0].content == seen[1].content
    assert json.loads(seen[1].content) == {"orderId": "order-1"}
    assert [request.extensions[RETRIED_EXTENSION] for request in seen] == [False, True]
