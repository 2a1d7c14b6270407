from __future__ import annotations

import json
import os
import tempfile
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from pathlib import Path


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str


class TokenStore(ABC):
    @abstractmethod
    async def get(self) -> TokenPair | None:
        raise NotImplementedError

    @abstractmethod
    async def set(self, pair: TokenPair) -> None:
        raise NotImplementedError

    @abstractmethod
    async def clear(self) -> None:
        """Drop both tokens. Must be safe to call on an empty store."""
        raise NotImplementedError


class MemoryTokenStore(TokenStore):
    def __init__(self, pair: TokenPair | None = None) -> None:
        self._pair = pair

    async def get(self) -> TokenPair | None:
        return self._pair

    async def set(self, pair: TokenPair) -> None:
        self._pair = pair

    async def clear(self) -> None:
        self._pair = None


class FileTokenStore(TokenStore):
    def __init__(self, path: str | Path = ".tokens.json") -> None:
        self._path = Path(path)

    async def get(self) -> TokenPair | None:
        if not self._path.exists():
            return None

        raw = json.loads(self._path.read_text(encoding="utf-8"))
        if not isinstance(raw, dict):
            raise RuntimeError("Token store file is invalid; expected top-level JSON object.")
        access_token = raw.get("access_token")
        refresh_token = raw.get("refresh_token")
        if not isinstance(access_token, str) or not isinstance(refresh_token, str):
            raise RuntimeError("Token store file is invalid; expected string tokens.")
        return TokenPair(access_token=access_token, refresh_token=refresh_token)

    async def set(self, pair: TokenPair) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(
            prefix=f"{self._path.name}.",
            suffix=".tmp",
            dir=self._path.parent,
        )
        tmp_path = Path(tmp_name)

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(asdict(pair), handle, indent=2, sort_keys=True)
            os.replace(tmp_path, self._path)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()

    async def clear(self) -> None:
        self._path.unlink(missing_ok=True)
