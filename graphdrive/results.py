from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar, Union

T = TypeVar("T")


class CloudStorageError(RuntimeError):
    pass


class AlreadyUploaded(CloudStorageError):
    def __init__(self, name: str = "") -> None:
        super().__init__(f"A file named {name!r} already exists." if name else "File already exists.")
        self.name = name


class UnexpectedStatus(CloudStorageError):
    def __init__(self, status_code: int, code: str | None = None, message: str | None = None) -> None:
        detail = f"Graph request failed with status {status_code}"
        if code:
            detail = f"{detail} ({code})"
        if message:
            detail = f"{detail}: {message}"
        super().__init__(detail)
        self.status_code = status_code
        self.code = code


class MalformedResponse(CloudStorageError):
    pass


class EmptyUpload(CloudStorageError):
    def __init__(self) -> None:
        super().__init__("Upload sessions need at least one byte of data.")


@dataclass(frozen=True)
class Success(Generic[T]):
    value: T


@dataclass(frozen=True)
class Failure:
    error: Exception


@dataclass(frozen=True)
class AccessTokenRevokedOrExpired:
    pass


@dataclass(frozen=True)
class FileNotFound:
    pass


@dataclass(frozen=True)
class DriveItem:
    id: str
    name: str
    size: int | None = None
    checksum: str | None = None

    @classmethod
    def from_payload(cls, payload: dict) -> "DriveItem":
        item_id = payload.get("id")
        name = payload.get("name")
        if not isinstance(item_id, str) or not isinstance(name, str):
            raise MalformedResponse("Drive item is missing id or name.")
        size = payload.get("size")
        return cls(
            id=item_id,
            name=name,
            size=size if isinstance(size, int) else None,
            checksum=sha1_checksum(payload),
        )


@dataclass(frozen=True)
class FileFound:
    item: DriveItem


@dataclass(frozen=True)
class DownloadedFile:
    data: bytes
    checksum: str | None


@dataclass(frozen=True)
class UploadSession:
    upload_url: str
    expiration: str | None = None

    @classmethod
    def from_payload(cls, payload: dict) -> "UploadSession":
        upload_url = payload.get("uploadUrl")
        if not isinstance(upload_url, str) or not upload_url:
            raise MalformedResponse("Upload session response missing uploadUrl.")
        expiration = payload.get("expirationDateTime")
        return cls(upload_url=upload_url, expiration=expiration if isinstance(expiration, str) else None)


def sha1_checksum(payload: dict) -> str | None:
    hashes = (payload.get("file") or {}).get("hashes") or {}
    checksum = hashes.get("sha1Hash")
    return checksum if isinstance(checksum, str) else None


Outcome = Union[Success[T], Failure, AccessTokenRevokedOrExpired]
LookupOutcome = Union[Success[Union[FileFound, FileNotFound]], Failure, AccessTokenRevokedOrExpired]
DownloadOutcome = Union[Success[DownloadedFile], FileNotFound, Failure, AccessTokenRevokedOrExpired]
