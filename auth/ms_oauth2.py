from __future__ import annotations

import json
import urllib.parse
from dataclasses import dataclass

import httpx

MS_LOGIN_BASE_URL = "https://login.microsoftonline.com/common"
MS_TOKEN_URL = f"{MS_LOGIN_BASE_URL}/oauth2/v2.0/token"

JWT_BEARER_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:jwt-bearer"
DEFAULT_SCOPES = [
    "https://graph.microsoft.com/user.read",
    "https://graph.microsoft.com/Files.ReadWrite.AppFolder",
    "offline_access",
]

# The identity platform rejects a client secret that is only query-encoded
# (AADSTS7000215), so these are escaped on top of the usual set.
SECRET_EXTRA_ESCAPED = ",/?:@&=+$#"
_QUERY_ALLOWED_PUNCTUATION = "!$&'()*+,-./:;=?@_~"
_SECRET_SAFE = "".join(
    char for char in _QUERY_ALLOWED_PUNCTUATION if char not in SECRET_EXTRA_ESCAPED
)


class TokenError(RuntimeError):
    pass


class NoAssertionToken(TokenError):
    def __init__(self) -> None:
        super().__init__("No assertion (id) token available for the on-behalf-of exchange.")


class NoRefreshToken(TokenError):
    def __init__(self) -> None:
        super().__init__("No refresh token available.")


class UnexpectedStatus(TokenError):
    def __init__(self, status_code: int, detail: str = "") -> None:
        message = f"Token request failed with status {status_code}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.status_code = status_code


class EmptyResponse(TokenError):
    def __init__(self) -> None:
        super().__init__("Token response had no body.")


class MalformedTokenResponse(TokenError):
    pass


class PersistenceFailed(TokenError):
    def __init__(self) -> None:
        super().__init__("Tokens were updated but could not be saved.")


def encode_client_secret(secret: str) -> str:
    return urllib.parse.quote(secret, safe=_SECRET_SAFE)


@dataclass
class TokenResponse:
    token_type: str
    scope: str
    expires_in: int
    ext_expires_in: int
    access_token: str
    refresh_token: str

    @classmethod
    def from_payload(cls, payload: dict) -> "TokenResponse":
        if not isinstance(payload, dict):
            raise MalformedTokenResponse("Token response must be a JSON object.")

        access_token = payload.get("access_token")
        refresh_token = payload.get("refresh_token")
        token_type = payload.get("token_type")
        expires_in = payload.get("expires_in")
        ext_expires_in = payload.get("ext_expires_in", expires_in)
        scope = payload.get("scope", "")

        if not isinstance(access_token, str) or not access_token:
            raise MalformedTokenResponse("Token response missing access_token.")
        if not isinstance(refresh_token, str) or not refresh_token:
            raise MalformedTokenResponse("Token response missing refresh_token.")
        if not isinstance(token_type, str):
            raise MalformedTokenResponse("Token response missing token_type.")
        if not isinstance(expires_in, int):
            raise MalformedTokenResponse("Token response missing expires_in.")
        if not isinstance(ext_expires_in, int):
            raise MalformedTokenResponse("Token response ext_expires_in must be an integer.")
        if not isinstance(scope, str):
            raise MalformedTokenResponse("Token response scope must be a string.")

        return cls(
            token_type=token_type,
            scope=scope,
            expires_in=expires_in,
            ext_expires_in=ext_expires_in,
            access_token=access_token,
            refresh_token=refresh_token,
        )


def build_token_request_body(fields: dict[str, str], client_secret: str) -> str:
    """Form-encode ``fields`` and append the separately escaped client secret."""
    body = urllib.parse.urlencode(fields)
    return f"{body}&client_secret={encode_client_secret(client_secret)}"


def parse_token_response(response: httpx.Response) -> TokenResponse:
    if response.status_code != 200:
        raise UnexpectedStatus(response.status_code, response.text)
    if not response.content:
        raise EmptyResponse()
    try:
        payload = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as error:
        raise MalformedTokenResponse(f"Token response is not valid JSON: {error}") from error
    return TokenResponse.from_payload(payload)


async def _token_request(
    fields: dict[str, str],
    client_secret: str,
    *,
    client: httpx.AsyncClient | None = None,
) -> TokenResponse:
    own_client = client is None
    http_client = client or httpx.AsyncClient()

    try:
        response = await http_client.post(
            MS_TOKEN_URL,
            content=build_token_request_body(fields, client_secret),
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
    finally:
        if own_client:
            await http_client.aclose()

    return parse_token_response(response)


async def exchange_on_behalf_of(
    client_id: str,
    client_secret: str,
    assertion: str,
    *,
    scopes: list[str] | None = None,
    client: httpx.AsyncClient | None = None,
) -> TokenResponse:
    return await _token_request(
        {
            "grant_type": JWT_BEARER_GRANT_TYPE,
            "client_id": client_id,
            "assertion": assertion,
            "scope": " ".join(scopes or DEFAULT_SCOPES),
            "requested_token_use": "on_behalf_of",
        },
        client_secret,
        client=client,
    )


async def refresh_token(
    client_id: str,
    client_secret: str,
    refresh_token: str,
    *,
    scopes: list[str] | None = None,
    client: httpx.AsyncClient | None = None,
) -> TokenResponse:
    return await _token_request(
        {
            "grant_type": "refresh_token",
            "client_id": client_id,
            "scope": " ".join(scopes or DEFAULT_SCOPES),
            "refresh_token": refresh_token,
        },
        client_secret,
        client=client,
    )
