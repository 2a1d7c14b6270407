from __future__ import annotations

import httpx

from auth.token_store import TokenPair
from sellsync.constants import LOGIN_PATH, REFRESH_PATH


class RefreshFailedError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def unwrap_envelope(payload) -> dict:
    """Return the ``data`` member of an ``{ok, data, error}`` body, or the body itself."""
    if not isinstance(payload, dict):
        raise RefreshFailedError("Token response must be a JSON object.")
    if "ok" not in payload:
        return payload

    if payload.get("ok") is not True:
        error = payload.get("error") or {}
        message = error.get("message") if isinstance(error, dict) else None
        raise RefreshFailedError(f"Token request rejected: {message or 'unknown error'}")

    data = payload.get("data")
    if not isinstance(data, dict):
        raise RefreshFailedError("Token response envelope is missing data.")
    return data


def token_pair_from_payload(payload) -> TokenPair:
    data = unwrap_envelope(payload)
    access_token = data.get("accessToken")
    refresh_token = data.get("refreshToken")

    if not isinstance(access_token, str) or not access_token:
        raise RefreshFailedError("Token response missing accessToken.")
    if not isinstance(refresh_token, str) or not refresh_token:
        raise RefreshFailedError("Token response missing refreshToken.")

    return TokenPair(access_token=access_token, refresh_token=refresh_token)


async def _token_request(
    url: str,
    payload: dict[str, str],
    *,
    client: httpx.AsyncClient | None = None,
) -> TokenPair:
    own_client = client is None
    http_client = client or httpx.AsyncClient()

    try:
        response = await http_client.post(url, json=payload)
        response.raise_for_status()
    except httpx.HTTPStatusError as error:
        detail = error.response.text
        raise RefreshFailedError(
            f"Token request failed with status {error.response.status_code}: {detail}",
            status_code=error.response.status_code,
        ) from error
    finally:
        if own_client:
            await http_client.aclose()

    try:
        body = response.json()
    except ValueError as error:
        raise RefreshFailedError("Token response is not valid JSON.") from error
    return token_pair_from_payload(body)


async def login(
    api_url: str,
    email: str,
    password: str,
    *,
    client: httpx.AsyncClient | None = None,
) -> TokenPair:
    return await _token_request(
        f"{api_url.rstrip('/')}{LOGIN_PATH}",
        {"email": email, "password": password},
        client=client,
    )


async def refresh_tokens(
    api_url: str,
    refresh_token: str,
    *,
    client: httpx.AsyncClient | None = None,
) -> TokenPair:
    return await _token_request(
        f"{api_url.rstrip('/')}{REFRESH_PATH}",
        {"refreshToken": refresh_token},
        client=client,
    )
