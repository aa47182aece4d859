from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from auth.credentials import TokenManager
from auth.ms_oauth2 import TokenError

from .constants import GRAPH_BASE_URL, INVALID_AUTH_TOKEN_CODE, LOGGER


@dataclass(frozen=True)
class GraphError:
    code: str
    message: str = ""

    @classmethod
    def from_response(cls, response: httpx.Response) -> "GraphError | None":
        """Extract the ``{"error": {"code": ..., "message": ...}}`` body, if any.

        Graph sometimes reports failures with a 2xx status, so the body is
        inspected regardless of the status code.
        """
        if not response.content:
            return None
        try:
            payload = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return None
        if not isinstance(payload, dict):
            return None
        error = payload.get("error")
        if not isinstance(error, dict):
            return None
        code = error.get("code")
        if not isinstance(code, str):
            return None
        message = error.get("message")
        return cls(code=code, message=message if isinstance(message, str) else "")

    def to_payload(self) -> dict[str, Any]:
        return {"error": {"code": self.code, "message": self.message}}


def access_token_revoked_or_expired(response: httpx.Response) -> bool:
    error = GraphError.from_response(response)
    return error is not None and error.code == INVALID_AUTH_TOKEN_CODE


class RefreshGuard:
    """Allows at most one token refresh for one top-level operation."""

    def __init__(self) -> None:
        self.attempted = False

    def claim(self) -> bool:
        if self.attempted:
            return False
        self.attempted = True
        return True


class AuthenticatedClient:
    def __init__(
        self,
        tokens: TokenManager,
        client: httpx.AsyncClient,
        *,
        base_url: str = GRAPH_BASE_URL,
        logger: logging.Logger | None = None,
    ) -> None:
        self.tokens = tokens
        self._client = client
        self._base_url = base_url.rstrip("/")
        self._logger = logger or LOGGER

    def url(self, path_or_url: str) -> str:
        if path_or_url.startswith(("https://", "http://")):
            return path_or_url
        return f"{self._base_url}/{path_or_url.lstrip('/')}"

    async def request(
        self,
        method: str,
        path_or_url: str,
        *,
        guard: RefreshGuard | None = None,
        headers: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
        content: bytes | None = None,
        json: Any = None,
    ) -> httpx.Response:
        guard = guard or RefreshGuard()
        url = self.url(path_or_url)

        response = await self._send(method, url, headers, params, content, json)
        if not access_token_revoked_or_expired(response) or not guard.claim():
            return response

        self._logger.info("Attempting to refresh Microsoft access token (%s %s)", method, url)
        try:
            await self.tokens.exchange_refresh_token()
        except TokenError as error:
            message = f"Failed refreshing access token: {error}"
            self._logger.error(message)
            return httpx.Response(
                401,
                json=GraphError(INVALID_AUTH_TOKEN_CODE, message).to_payload(),
                request=response.request,
            )

        self._logger.info("Successfully refreshed access token; retrying %s %s", method, url)
        return await self._send(method, url, headers, params, content, json)

    async def _send(
        self,
        method: str,
        url: str,
        headers: dict[str, str] | None,
        params: dict[str, str] | None,
        content: bytes | None,
        json: Any,
    ) -> httpx.Response:
        request_headers = dict(headers or {})
        request_headers["Authorization"] = f"Bearer {self.tokens.access_token}"
        return await self._client.request(
            method,
            url,
            headers=request_headers,
            params=params,
            content=content,
            json=json,
        )

    async def aclose(self) -> None:
        await self._client.aclose()
