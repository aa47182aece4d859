from __future__ import annotations

import httpx

from auth.credentials import ClientIdentity, TokenManager
from auth.token_store import FileTokenStore, MemoryTokenStore, TokenStore

from .constants import LOGGER
from .env import Settings, load_client_identity, load_env, load_settings
from .http import AuthenticatedClient
from .onedrive import OneDriveStorage


def build_http_client(settings: Settings) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=settings.timeout_seconds)


def default_token_store(settings: Settings) -> TokenStore:
    if settings.token_file is None:
        return MemoryTokenStore()
    return FileTokenStore(settings.token_file)


async def open_storage(
    account_id: str,
    *,
    assertion: str | None = None,
    identity: ClientIdentity | None = None,
    settings: Settings | None = None,
    store: TokenStore | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> OneDriveStorage:
    """Build a ready-to-use ``OneDriveStorage`` for ``account_id``.

    Stored tokens are loaded from ``store``. When ``assertion`` (the client's id
    token) is given, it is exchanged on-behalf-of first, which also saves the
    resulting tokens.
    """
    load_env()
    settings = settings or load_settings()
    identity = identity or load_client_identity()
    store = store or default_token_store(settings)
    http_client = http_client or build_http_client(settings)

    manager = TokenManager(
        identity,
        await store.get(account_id),
        on_save=store.saver(account_id),
        http_client=http_client,
    )
    if assertion:
        await manager.exchange_on_behalf_of(assertion)
    elif manager.access_token is None:
        LOGGER.warning("No stored tokens for account %s; requests will be unauthenticated.", account_id)

    return OneDriveStorage(AuthenticatedClient(manager, http_client), settings)
