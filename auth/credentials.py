from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

import httpx

from auth import ms_oauth2

LOGGER = logging.getLogger("graphdrive.auth")

ACCESS_TOKEN_KEY = "accessToken"
REFRESH_TOKEN_KEY = "refreshToken"


class ConfigurationError(RuntimeError):
    pass


@dataclass(frozen=True)
class ClientIdentity:
    client_id: str
    client_secret: str

    @classmethod
    def create(cls, client_id: str | None, client_secret: str | None) -> "ClientIdentity":
        if not client_id or not client_secret:
            raise ConfigurationError("No Microsoft client id or secret configured.")
        return cls(client_id=client_id, client_secret=client_secret)

    def __repr__(self) -> str:
        return f"ClientIdentity(client_id={self.client_id!r}, client_secret='***')"


@dataclass
class TokenPair:
    access_token: str | None = None
    refresh_token: str | None = None

    def to_json(self) -> str:
        payload: dict[str, str] = {}
        if self.access_token is not None:
            payload[ACCESS_TOKEN_KEY] = self.access_token
        if self.refresh_token is not None:
            payload[REFRESH_TOKEN_KEY] = self.refresh_token
        return json.dumps(payload, sort_keys=True)

    @classmethod
    def from_json(cls, raw: str) -> "TokenPair":
        payload = json.loads(raw)
        if not isinstance(payload, dict):
            raise ValueError("Stored tokens must be a JSON object.")
        access_token = payload.get(ACCESS_TOKEN_KEY)
        if not isinstance(access_token, str):
            raise ValueError(f"Stored tokens missing {ACCESS_TOKEN_KEY}.")
        refresh_token = payload.get(REFRESH_TOKEN_KEY)
        if refresh_token is not None and not isinstance(refresh_token, str):
            raise ValueError(f"{REFRESH_TOKEN_KEY} must be a string.")
        return cls(access_token=access_token, refresh_token=refresh_token)


SaveCallback = Callable[["TokenManager"], Awaitable[bool]]


class TokenManager:
    """Owns the Microsoft token pair for one account.

    Every successful exchange replaces the tokens in memory first and then
    calls ``on_save``. If saving reports failure the exchange raises
    ``PersistenceFailed`` but the new tokens stay in place.
    """

    def __init__(
        self,
        identity: ClientIdentity | None,
        tokens: TokenPair | None = None,
        *,
        on_save: SaveCallback | None = None,
        scopes: list[str] | None = None,
        http_client: httpx.AsyncClient | None = None,
        exchange_on_behalf_of_fn=ms_oauth2.exchange_on_behalf_of,
        refresh_token_fn=ms_oauth2.refresh_token,
    ) -> None:
        if identity is None:
            raise ConfigurationError("No Microsoft client id or secret configured.")
        self.identity = identity
        self.tokens = tokens or TokenPair()
        self.scopes = scopes or list(ms_oauth2.DEFAULT_SCOPES)
        self._on_save = on_save
        self._http_client = http_client
        self._exchange_on_behalf_of_fn = exchange_on_behalf_of_fn
        self._refresh_token_fn = refresh_token_fn
        self._lock = asyncio.Lock()

    @property
    def access_token(self) -> str | None:
        return self.tokens.access_token

    @property
    def refresh_token(self) -> str | None:
        return self.tokens.refresh_token

    def need_to_generate_tokens(self) -> bool:
        # Access token expiry is not tracked, so always exchange.
        return True

    async def exchange_on_behalf_of(self, assertion: str | None) -> None:
        """Trade a client id token for a Graph access/refresh token pair.

        ``assertion`` must be the JWT id token issued to the client app; the
        client's own (opaque) access token is rejected by the identity platform.
        """
        if not assertion:
            LOGGER.info("No assertion token from client.")
            raise ms_oauth2.NoAssertionToken()

        async with self._lock:
            try:
                exchanged = await self._exchange_on_behalf_of_fn(
                    self.identity.client_id,
                    self.identity.client_secret,
                    assertion,
                    scopes=self.scopes,
                    client=self._http_client,
                )
            except ms_oauth2.TokenError as error:
                LOGGER.error("On-behalf-of exchange failed: %s", error)
                raise
            await self._store(exchanged)

    async def exchange_refresh_token(self) -> None:
        """Swap the refresh token for a new token pair.

        Callers queued behind a running refresh reuse its result instead of
        sending the refresh token it already rotated out.
        """
        seen = self.tokens.refresh_token
        async with self._lock:
            refresh_token = self.tokens.refresh_token
            if not refresh_token:
                raise ms_oauth2.NoRefreshToken()
            if seen is not None and refresh_token != seen:
                LOGGER.info("Tokens were refreshed while waiting; skipping exchange.")
                return
            try:
                refreshed = await self._refresh_token_fn(
                    self.identity.client_id,
                    self.identity.client_secret,
                    refresh_token,
                    scopes=self.scopes,
                    client=self._http_client,
                )
            except ms_oauth2.TokenError as error:
                LOGGER.error("Refresh token exchange failed: %s", error)
                raise
            await self._store(refreshed)

    def merge(self, newer: "TokenManager") -> None:
        if newer.tokens.refresh_token is not None:
            self.tokens.refresh_token = newer.tokens.refresh_token
        if newer.tokens.access_token is not None:
            self.tokens.access_token = newer.tokens.access_token

    async def _store(self, exchanged: ms_oauth2.TokenResponse) -> None:
        self.tokens.access_token = exchanged.access_token
        self.tokens.refresh_token = exchanged.refresh_token

        if self._on_save is None:
            LOGGER.warning("No save callback configured; refreshed tokens are only in memory.")
            return
        if not await self._on_save(self):
            LOGGER.error("Saving refreshed tokens failed.")
            raise ms_oauth2.PersistenceFailed()
