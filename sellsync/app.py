from __future__ import annotations

import asyncio
import json
import os
from functools import partial

import httpx

from auth.coordinator import RefreshCoordinator
from auth.session_api import refresh_tokens
from auth.terminator import Navigate, SessionTerminator
from auth.token_store import FileTokenStore, TokenStore

from .client import SellSyncClient
from .constants import LOGGER
from .env import get_api_url, get_env_float, load_env, setup_logging, validate_env
from .http import TokenRefreshTransport, log_request, log_response


def create_client(
    *,
    api_url: str | None = None,
    token_store: TokenStore | None = None,
    navigate: Navigate | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    debug_enabled: bool = False,
) -> SellSyncClient:
    api_url = (api_url or get_api_url()).rstrip("/")
    timeout = get_env_float("SELLSYNC_TIMEOUT", 30.0)
    refresh_timeout = get_env_float("SELLSYNC_REFRESH_TIMEOUT", 10.0)

    if token_store is None:
        token_store = FileTokenStore(os.getenv("SELLSYNC_TOKEN_STORE_PATH", ".tokens.json"))
    event_hooks: dict[str, list] = {"request": [], "response": []}
    if debug_enabled:
        event_hooks = {"request": [log_request], "response": [log_response]}

    # Login and refresh bypass the refreshing transport.
    auth_client = httpx.AsyncClient(timeout=timeout, event_hooks=event_hooks)
    terminator = SessionTerminator(token_store, navigate=navigate, logger=LOGGER)
    coordinator = RefreshCoordinator(
        token_store,
        terminator,
        partial(refresh_tokens, api_url, client=auth_client),
        timeout=refresh_timeout,
        logger=LOGGER,
    )

    refresh_transport = TokenRefreshTransport(
        transport or httpx.AsyncHTTPTransport(),
        token_store=token_store,
        coordinator=coordinator,
        logger=LOGGER,
    )
    http = httpx.AsyncClient(
        base_url=api_url,
        headers={"Content-Type": "application/json"},
        timeout=timeout,
        transport=refresh_transport,
        event_hooks=event_hooks,
    )
    return SellSyncClient(
        http,
        api_url=api_url,
        token_store=token_store,
        terminator=terminator,
        auth_client=auth_client,
    )


async def whoami(client: SellSyncClient) -> dict:
    email = os.getenv("SELLSYNC_EMAIL", "").strip()
    password = os.getenv("SELLSYNC_PASSWORD", "")
    if email and await client.token_store.get() is None:
        await client.login(email, password)
    return await client.me()


async def _run() -> None:
    load_env()
    debug_enabled = setup_logging()
    validate_env()

    async with create_client(debug_enabled=debug_enabled) as client:
        user = await whoami(client)
    print(json.dumps(user, indent=2, ensure_ascii=False))


def main() -> None:
    asyncio.run(_run())


if __name__ == "__main__":
    main()
