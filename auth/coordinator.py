from __future__ import annotations

import asyncio
import logging
from collections import deque
from enum import Enum
from typing import Awaitable, Callable

from auth.terminator import SessionTerminator
from auth.token_store import TokenPair, TokenStore
from sellsync.constants import LOGGER

RefreshFn = Callable[[str], Awaitable[TokenPair]]


class SessionExpiredError(RuntimeError):
    def __init__(
        self,
        message: str = "Session expired.",
        *,
        reason: str = "session_expired",
    ) -> None:
        super().__init__(message)
        self.reason = reason
        self.status_code = 401


class RefreshState(str, Enum):
    IDLE = "idle"
    REFRESHING = "refreshing"


class RefreshCoordinator:
    """Single-flight token refresh shared by every request of one client.

    The first caller to arrive while IDLE runs the exchange; callers arriving
    while REFRESHING wait on a future and receive the same outcome. State checks
    and queue mutations never straddle an ``await``.
    """

    def __init__(
        self,
        token_store: TokenStore,
        terminator: SessionTerminator,
        refresh_fn: RefreshFn,
        *,
        timeout: float | None = 10.0,
        logger: logging.Logger | None = None,
    ) -> None:
        self._token_store = token_store
        self._terminator = terminator
        self._refresh_fn = refresh_fn
        self._timeout = timeout or None
        self._logger = logger or LOGGER

        self._state = RefreshState.IDLE
        self._waiters: deque[asyncio.Future[str]] = deque()
        self._rejected_token: str | None = None

    @property
    def state(self) -> RefreshState:
        return self._state

    @property
    def pending(self) -> int:
        return len(self._waiters)

    async def refresh(self, stale_access_token: str | None = None) -> str:
        """Return a fresh access token, or raise SessionExpiredError.

        ``stale_access_token`` is the token the failing request was sent with.
        """
        if self._state is RefreshState.REFRESHING:
            waiter: asyncio.Future[str] = asyncio.get_running_loop().create_future()
            self._waiters.append(waiter)
            self._logger.debug("Joined in-flight token refresh waiters=%s", len(self._waiters))
            return await waiter

        self._state = RefreshState.REFRESHING
        self._logger.info("Refreshing access token")
        try:
            access_token = await self._exchange(stale_access_token)
        except asyncio.CancelledError:
            self._settle(cancelled=True)
            raise
        except SessionExpiredError as error:
            await self._fail(error)
            raise
        except Exception as error:
            failure = SessionExpiredError(
                f"Token refresh failed: {error}",
                reason="refresh_rejected",
            )
            await self._fail(failure)
            raise failure from error

        self._settle(access_token=access_token)
        return access_token

    async def _fail(self, error: SessionExpiredError) -> None:
        self._logger.warning(
            "Token refresh failed reason=%s waiters=%s", error.reason, len(self._waiters)
        )
        self._settle(error=error)
        await self._terminator.terminate(error.reason)

    async def end_session(self, reason: str, access_token: str | None = None) -> bool:
        """Terminate the session after an unrecoverable 401.

        Replays of one refresh cycle all carry the same access token, so the
        session is terminated once per rejected token. Returns False when the
        token was already rejected.
        """
        if access_token is not None and access_token == self._rejected_token:
            self._logger.debug("Session already terminated for this token reason=%s", reason)
            return False
        self._rejected_token = access_token
        await self._terminator.terminate(reason)
        return True

    async def _exchange(self, stale_access_token: str | None) -> str:
        pair = await self._token_store.get()
        if pair is None or not pair.refresh_token:
            raise SessionExpiredError(
                "No refresh token available; sign in again.",
                reason="missing_refresh_token",
            )
        if pair.access_token and pair.access_token != stale_access_token:
            self._logger.info("Access token already rotated; reusing stored token")
            return pair.access_token

        try:
            new_pair = await asyncio.wait_for(
                self._refresh_fn(pair.refresh_token), timeout=self._timeout
            )
        except asyncio.TimeoutError as error:
            raise SessionExpiredError(
                f"Token refresh timed out after {self._timeout}s.",
                reason="refresh_timeout",
            ) from error

        await self._token_store.set(new_pair)
        self._logger.info("Access token refreshed waiters=%s", len(self._waiters))
        return new_pair.access_token

    def _settle(
        self,
        *,
        access_token: str | None = None,
        error: BaseException | None = None,
        cancelled: bool = False,
    ) -> None:
        waiters = self._waiters
        self._waiters = deque()
        self._state = RefreshState.IDLE

        while waiters:
            waiter = waiters.popleft()
            if waiter.done():
                continue
            if cancelled:
                waiter.cancel()
            elif error is not None:
                waiter.set_exception(error)
            else:
                waiter.set_result(access_token)
