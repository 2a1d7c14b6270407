from __future__ import annotations

import inspect
import logging
from typing import Awaitable, Callable

from auth.token_store import TokenStore
from sellsync.constants import LOGGER

Navigate = Callable[[str], "Awaitable[None] | None"]


class SessionTerminator:
    """Ends the authenticated session when tokens can no longer be recovered.

    Clearing the store is idempotent, and ``navigate`` receives the reason so the
    caller can route the user back to the login boundary.
    """

    def __init__(
        self,
        token_store: TokenStore,
        *,
        navigate: Navigate | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._token_store = token_store
        self._navigate = navigate
        self._logger = logger or LOGGER

    async def terminate(self, reason: str = "session_expired") -> None:
        await self._token_store.clear()
        self._logger.warning("Session terminated reason=%s", reason)

        if self._navigate is None:
            return
        result = self._navigate(reason)
        if inspect.isawaitable(result):
            await result
