from __future__ import annotations

import json
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING

from auth.credentials import LOGGER, TokenPair

if TYPE_CHECKING:
    from auth.credentials import SaveCallback, TokenManager


class TokenStore(ABC):
    @abstractmethod
    async def get(self, account_id: str) -> TokenPair | None:
        raise NotImplementedError

    @abstractmethod
    async def set(self, account_id: str, tokens: TokenPair) -> None:
        raise NotImplementedError

    @abstractmethod
    async def delete(self, account_id: str) -> None:
        raise NotImplementedError

    def saver(self, account_id: str) -> "SaveCallback":
        """Adapt this store to the ``on_save`` hook of a ``TokenManager``."""

        async def save(manager: "TokenManager") -> bool:
            try:
                await self.set(account_id, manager.tokens)
            except (OSError, RuntimeError, ValueError) as error:
                LOGGER.error("Could not save tokens for %s: %s", account_id, error)
                return False
            return True

        return save


class MemoryTokenStore(TokenStore):
    def __init__(self) -> None:
        self._tokens: dict[str, str] = {}

    async def get(self, account_id: str) -> TokenPair | None:
        raw = self._tokens.get(account_id)
        if raw is None:
            return None
        return TokenPair.from_json(raw)

    async def set(self, account_id: str, tokens: TokenPair) -> None:
        self._tokens[account_id] = tokens.to_json()

    async def delete(self, account_id: str) -> None:
        self._tokens.pop(account_id, None)


class FileTokenStore(TokenStore):
    def __init__(self, path: str | Path = ".tokens.json") -> None:
        self._path = Path(path)

    async def get(self, account_id: str) -> TokenPair | None:
        all_tokens = self._read_all()
        raw = all_tokens.get(account_id)
        if raw is None:
            return None
        return TokenPair.from_json(raw)

    async def set(self, account_id: str, tokens: TokenPair) -> None:
        all_tokens = self._read_all()
        all_tokens[account_id] = tokens.to_json()
        self._write_all(all_tokens)

    async def delete(self, account_id: str) -> None:
        all_tokens = self._read_all()
        all_tokens.pop(account_id, None)
        self._write_all(all_tokens)

    def _read_all(self) -> dict[str, str]:
        if not self._path.exists():
            return {}

        raw = json.loads(self._path.read_text(encoding="utf-8"))
        if not isinstance(raw, dict):
            raise RuntimeError("Token store file is invalid; expected top-level JSON object.")
        return raw

    def _write_all(self, payload: dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(
            prefix=f"{self._path.name}.",
            suffix=".tmp",
            dir=self._path.parent,
        )
        tmp_path = Path(tmp_name)

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2, sort_keys=True)
            os.replace(tmp_path, self._path)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()
