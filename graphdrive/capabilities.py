from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .results import DownloadOutcome, DriveItem, LookupOutcome, Outcome, UploadSession
    from .upload_state import UploadState


@runtime_checkable
class TokenRefreshable(Protocol):
    """An account credential that can trade its refresh token for new tokens."""

    @property
    def access_token(self) -> str | None: ...

    async def exchange_refresh_token(self) -> None: ...

    def merge(self, newer: "TokenRefreshable") -> None: ...


@runtime_checkable
class ChunkedUploader(Protocol):
    """A provider that accepts large payloads as a sequence of blocks."""

    async def create_upload_session(self, name: str) -> "Outcome[UploadSession]": ...

    async def upload_bytes(
        self, session: "UploadSession", state: "UploadState", data: bytes
    ) -> "Outcome[str]": ...


@runtime_checkable
class CloudStorage(Protocol):
    async def upload_file(self, name: str, data: bytes, mime_type: str = ...) -> "Outcome[str]": ...

    async def download_file(self, name: str) -> "DownloadOutcome": ...

    async def delete_file(self, name: str) -> "Outcome[None]": ...

    async def lookup_file(self, name: str) -> "LookupOutcome": ...

    async def create_app_folder(self) -> "Outcome[DriveItem]": ...
