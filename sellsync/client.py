from __future__ import annotations

from typing import Any

import httpx

from auth import session_api
from auth.terminator import SessionTerminator
from auth.token_store import TokenPair, TokenStore

from .constants import LOGGER, LOGOUT_PATH, ME_PATH, REGISTER_PATH
from .http import unwrap_api_response


class SellSyncClient:
    """Authenticated SellSync dashboard API client.

    ``http`` must be built on a TokenRefreshTransport sharing ``token_store``
    and ``terminator``; see ``sellsync.app.create_client``.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        api_url: str,
        token_store: TokenStore,
        terminator: SessionTerminator,
        auth_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.http = http
        self.api_url = api_url.rstrip("/")
        self.token_store = token_store
        self.terminator = terminator
        self.auth_client = auth_client

    async def __aenter__(self) -> "SellSyncClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.http.aclose()
        if self.auth_client is not None:
            await self.auth_client.aclose()

    async def request(self, method: str, path: str, **kwargs: Any) -> Any:
        response = await self.http.request(method, path, **kwargs)
        return unwrap_api_response(response)

    async def get(self, path: str, **kwargs: Any) -> Any:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs: Any) -> Any:
        return await self.request("POST", path, **kwargs)

    async def register(
        self, email: str, password: str, username: str, company_name: str
    ) -> dict:
        """Create an account; returns ``{"userId": ...}``. Does not sign in."""
        return await self.post(
            REGISTER_PATH,
            json={
                "email": email,
                "password": password,
                "username": username,
                "companyName": company_name,
            },
        )

    async def login(self, email: str, password: str) -> TokenPair:
        pair = await session_api.login(
            self.api_url, email, password, client=self.auth_client
        )
        await self.token_store.set(pair)
        LOGGER.info("Logged in as %s", email)
        return pair

    async def me(self) -> dict:
        return await self.get(ME_PATH)

    async def logout(self) -> None:
        try:
            await self.post(LOGOUT_PATH)
        finally:
            await self.terminator.terminate("logout")
