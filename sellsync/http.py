from __future__ import annotations

import logging
from typing import Any

import httpx

from auth.coordinator import RefreshCoordinator, SessionExpiredError
from auth.token_store import TokenStore

from .constants import LOGGER, REFRESH_PATH, RETRIED_EXTENSION


class ApiError(RuntimeError):
    def __init__(
        self,
        message: str,
        *,
        code: str = "HTTP_ERROR",
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code


def attach_access_token(request: httpx.Request, access_token: str | None) -> None:
    if access_token:
        request.headers["Authorization"] = f"Bearer {access_token}"


async def authorize_request(request: httpx.Request, token_store: TokenStore) -> str | None:
    pair = await token_store.get()
    access_token = pair.access_token if pair is not None else None
    attach_access_token(request, access_token)
    return access_token


def mark_retried(request: httpx.Request) -> httpx.Request:
    """Opt a request out of refresh: a 401 on it ends the session."""
    request.extensions[RETRIED_EXTENSION] = True
    return request


class TokenRefreshTransport(httpx.AsyncBaseTransport):
    def __init__(
        self,
        transport: httpx.AsyncBaseTransport,
        *,
        token_store: TokenStore,
        coordinator: RefreshCoordinator,
        refresh_path: str = REFRESH_PATH,
        logger: logging.Logger | None = None,
    ) -> None:
        self._transport = transport
        self._token_store = token_store
        self._coordinator = coordinator
        self._refresh_path = refresh_path.rstrip("/")
        self._logger = logger or LOGGER

    def is_refresh_request(self, request: httpx.Request) -> bool:
        return request.url.path.rstrip("/").endswith(self._refresh_path)

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        body = request.content
        retried = bool(request.extensions.get(RETRIED_EXTENSION))
        access_token = await authorize_request(request, self._token_store)

        while True:
            next_request = httpx.Request(
                method=request.method,
                url=request.url,
                headers=request.headers,
                content=body,
                extensions={**request.extensions, RETRIED_EXTENSION: retried},
            )
            attach_access_token(next_request, access_token)
            response = await self._transport.handle_async_request(next_request)

            if response.status_code != 401:
                return response
            await response.aclose()

            if self.is_refresh_request(request):
                await self._reject(request, "refresh_endpoint_rejected", access_token)
            if retried:
                await self._reject(request, "retry_rejected", access_token)

            retried = True
            self._logger.info("Received 401, refreshing (%s %s)", request.method, request.url)
            access_token = await self._coordinator.refresh(access_token)

    async def _reject(
        self, request: httpx.Request, reason: str, access_token: str | None
    ) -> None:
        self._logger.warning(
            "Unrecoverable 401 reason=%s (%s %s)", reason, request.method, request.url
        )
        await self._coordinator.end_session(reason, access_token)
        raise SessionExpiredError(
            f"Authentication rejected for {request.method} {request.url.path}.",
            reason=reason,
        )

    async def aclose(self) -> None:
        await self._transport.aclose()


def _safe_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def unwrap_api_response(response: httpx.Response) -> Any:
    """Return ``data`` from the ``{ok, data, error}`` envelope or raise ApiError."""
    payload = _safe_json(response)
    error = payload.get("error") if isinstance(payload, dict) else None
    if not isinstance(error, dict):
        error = {}

    if response.status_code >= 400 or (isinstance(payload, dict) and payload.get("ok") is False):
        raise ApiError(
            error.get("message") or f"SellSync API request failed with status {response.status_code}.",
            code=error.get("code") or "HTTP_ERROR",
            status_code=response.status_code,
        )

    if isinstance(payload, dict) and "ok" in payload:
        return payload.get("data")
    return payload


async def log_request(request: httpx.Request) -> None:
    LOGGER.info("SellSync API request %s %s", request.method, request.url)


async def log_response(response: httpx.Response) -> None:
    LOGGER.info(
        "SellSync API response %s %s -> %s",
        response.request.method,
        response.request.url,
        response.status_code,
    )
    if response.status_code >= 400:
        body = await response.aread()
        text = body.decode("utf-8", errors="replace")
        if len(text) > 1000:
            text = text[:1000] + "...<truncated>"
        LOGGER.warning("SellSync API error body: %s", text)
