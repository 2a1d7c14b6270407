from __future__ import annotations

import logging

LOGGER = logging.getLogger("sellsync.client")

DEFAULT_API_URL = "http://localhost:8080/api"
LOGIN_PATH = "/auth/login"
REFRESH_PATH = "/auth/refresh"
ME_PATH = "/auth/me"
LOGOUT_PATH = "/auth/logout"
REGISTER_PATH = "/auth/register"

# Request extension key holding the retry-once flag.
RETRIED_EXTENSION = "sellsync_retried"
