from __future__ import annotations

import json
import logging
import urllib.parse

import httpx

from .constants import APP_FOLDER_PATH, CONFLICT_BEHAVIOR_PARAM, LOGGER
from .env import Settings
from .http import AuthenticatedClient, GraphError, RefreshGuard, access_token_revoked_or_expired
from .results import (
    AccessTokenRevokedOrExpired,
    AlreadyUploaded,
    DownloadedFile,
    DownloadOutcome,
    DriveItem,
    EmptyUpload,
    Failure,
    FileFound,
    FileNotFound,
    LookupOutcome,
    MalformedResponse,
    Outcome,
    Success,
    UnexpectedStatus,
    UploadSession,
    sha1_checksum,
)
from .upload_state import InvalidBlockSize, UploadState

CONFLICT_CODE = "nameAlreadyExists"
NOT_FOUND_CODE = "itemNotFound"


def _item_path(name: str, suffix: str = "") -> str:
    quoted = urllib.parse.quote(name, safe="")
    return f"{APP_FOLDER_PATH}:/{quoted}:{suffix}"


def _json_body(response: httpx.Response) -> dict:
    try:
        payload = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as error:
        raise MalformedResponse(f"Response body is not valid JSON: {error}") from error
    if not isinstance(payload, dict):
        raise MalformedResponse("Response body must be a JSON object.")
    return payload


def _failure(response: httpx.Response) -> Failure | AccessTokenRevokedOrExpired:
    if access_token_revoked_or_expired(response):
        return AccessTokenRevokedOrExpired()
    error = GraphError.from_response(response)
    if error is None:
        return Failure(UnexpectedStatus(response.status_code))
    return Failure(UnexpectedStatus(response.status_code, error.code, error.message))


def _is_conflict(response: httpx.Response) -> bool:
    if response.status_code == 409:
        return True
    error = GraphError.from_response(response)
    return error is not None and error.code == CONFLICT_CODE


def _is_not_found(response: httpx.Response) -> bool:
    if response.status_code == 404:
        return True
    error = GraphError.from_response(response)
    return error is not None and error.code == NOT_FOUND_CODE


def _checksum_result(response: httpx.Response) -> Outcome[str]:
    try:
        payload = _json_body(response)
    except MalformedResponse as error:
        return Failure(error)
    checksum = sha1_checksum(payload)
    if checksum is None:
        return Failure(MalformedResponse("Upload response missing file.hashes.sha1Hash."))
    return Success(checksum)


class OneDriveStorage:
    """File operations on the app folder of one OneDrive account.

    Each public method is one top-level operation and gets its own
    ``RefreshGuard``; every request it makes shares that guard, so an operation
    refreshes the access token at most once.
    """

    def __init__(
        self,
        client: AuthenticatedClient,
        settings: Settings | None = None,
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        self.client = client
        self.settings = settings or Settings()
        self._logger = logger or LOGGER

    async def create_app_folder(self) -> Outcome[DriveItem]:
        response = await self.client.request("GET", APP_FOLDER_PATH)
        if access_token_revoked_or_expired(response):
            return AccessTokenRevokedOrExpired()
        if response.status_code != 200:
            return _failure(response)
        try:
            return Success(DriveItem.from_payload(_json_body(response)))
        except MalformedResponse as error:
            return Failure(error)

    async def lookup_file(self, name: str) -> LookupOutcome:
        return await self._lookup(name, RefreshGuard())

    async def _lookup(self, name: str, guard: RefreshGuard) -> LookupOutcome:
        response = await self.client.request("GET", _item_path(name), guard=guard)
        if access_token_revoked_or_expired(response):
            return AccessTokenRevokedOrExpired()
        if response.status_code == 200:
            try:
                return Success(FileFound(DriveItem.from_payload(_json_body(response))))
            except MalformedResponse as error:
                return Failure(error)
        if _is_not_found(response):
            return Success(FileNotFound())
        return _failure(response)

    async def download_file(self, name: str) -> DownloadOutcome:
        guard = RefreshGuard()
        looked_up = await self._lookup(name, guard)
        if not isinstance(looked_up, Success):
            return looked_up
        if isinstance(looked_up.value, FileNotFound):
            return FileNotFound()

        item = looked_up.value.item
        response = await self.client.request("GET", f"/me/drive/items/{item.id}/content", guard=guard)
        if access_token_revoked_or_expired(response):
            return AccessTokenRevokedOrExpired()
        if response.status_code == 200:
            return Success(DownloadedFile(data=response.content, checksum=item.checksum))
        if _is_not_found(response):
            return FileNotFound()
        return _failure(response)

    async def delete_file(self, name: str) -> Outcome[None]:
        response = await self.client.request("DELETE", _item_path(name))
        return self._deleted(response)

    async def delete_item(self, item_id: str) -> Outcome[None]:
        response = await self.client.request("DELETE", f"/me/drive/items/{item_id}")
        return self._deleted(response)

    def _deleted(self, response: httpx.Response) -> Outcome[None]:
        if response.status_code == 204:
            return Success(None)
        return _failure(response)

    async def upload_file(
        self, name: str, data: bytes, mime_type: str = "application/octet-stream"
    ) -> Outcome[str]:
        """Upload ``data`` and return its SHA1 checksum.

        Payloads up to ``settings.simple_upload_limit`` bytes go in one PUT;
        anything larger goes through an upload session.
        """
        if len(data) <= self.settings.simple_upload_limit:
            return await self.upload_file_direct(name, data, mime_type)
        return await self.upload_file_using_session(name, data, mime_type)

    async def upload_file_direct(
        self, name: str, data: bytes, mime_type: str = "application/octet-stream"
    ) -> Outcome[str]:
        response = await self.client.request(
            "PUT",
            _item_path(name, "/content"),
            headers={"Content-Type": mime_type},
            params={CONFLICT_BEHAVIOR_PARAM: "fail"},
            content=data,
        )
        if access_token_revoked_or_expired(response):
            return AccessTokenRevokedOrExpired()
        if response.status_code in (200, 201):
            return _checksum_result(response)
        if _is_conflict(response):
            return Failure(AlreadyUploaded(name))
        return _failure(response)

    async def create_upload_session(self, name: str) -> Outcome[UploadSession]:
        return await self._create_upload_session(name, RefreshGuard())

    async def _create_upload_session(self, name: str, guard: RefreshGuard) -> Outcome[UploadSession]:
        response = await self.client.request(
            "POST",
            _item_path(name, "/createUploadSession"),
            guard=guard,
            json={"item": {CONFLICT_BEHAVIOR_PARAM: "fail"}},
        )
        if access_token_revoked_or_expired(response):
            return AccessTokenRevokedOrExpired()
        if response.status_code == 200:
            try:
                return Success(UploadSession.from_payload(_json_body(response)))
            except MalformedResponse as error:
                return Failure(error)
        if _is_conflict(response):
            return Failure(AlreadyUploaded(name))
        return _failure(response)

    async def upload_bytes(
        self, session: UploadSession, state: UploadState, data: bytes
    ) -> Outcome[str]:
        return await self._upload_bytes(session, state, data, RefreshGuard())

    async def _upload_bytes(
        self,
        session: UploadSession,
        state: UploadState,
        data: bytes,
        guard: RefreshGuard,
    ) -> Outcome[str]:
        if state.total_bytes == 0:
            return Failure(EmptyUpload())
        if len(data) != state.total_bytes:
            return Failure(ValueError("Upload state does not match the length of data."))

        while True:
            content_range = state.content_range()
            self._logger.debug("Uploading block %s", content_range)
            response = await self.client.request(
                "PUT",
                session.upload_url,
                guard=guard,
                headers={"Content-Range": content_range},
                content=state.block(data),
            )

            if access_token_revoked_or_expired(response):
                return AccessTokenRevokedOrExpired()
            if _is_conflict(response):
                return Failure(AlreadyUploaded())
            if response.status_code not in (200, 201, 202):
                return _failure(response)

            if not state.advance():
                break

        if response.status_code == 202:
            return Failure(MalformedResponse("Upload session did not complete after the last block."))
        return _checksum_result(response)

    async def upload_file_using_session(
        self, name: str, data: bytes, mime_type: str = "application/octet-stream"
    ) -> Outcome[str]:
        # Graph infers the content type from the name; mime_type is only logged.
        guard = RefreshGuard()
        try:
            state = UploadState.from_data(self.settings.block_size, data)
        except InvalidBlockSize as error:
            self._logger.error("Cannot upload %s: %s", name, error)
            return Failure(error)
        if state.total_bytes == 0:
            return Failure(EmptyUpload())

        created = await self._create_upload_session(name, guard)
        if not isinstance(created, Success):
            return created

        self._logger.info(
            "Uploading %s (%s, %s bytes) in blocks of %s",
            name,
            mime_type,
            state.total_bytes,
            state.block_size,
        )
        return await self._upload_bytes(created.value, state, data, guard)
