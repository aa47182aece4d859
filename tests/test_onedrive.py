import json
import urllib.parse

import httpx
import pytest

from graphdrive.constants import BLOCK_MULTIPLE_BYTES
from graphdrive.env import Settings
from graphdrive.results import (
    AccessTokenRevokedOrExpired,
    AlreadyUploaded,
    DownloadedFile,
    DriveItem,
    EmptyUpload,
    Failure,
    FileFound,
    FileNotFound,
    MalformedResponse,
    Success,
    UnexpectedStatus,
    UploadSession,
)
from graphdrive.upload_state import InvalidBlockSize, UploadState
from tests.graph_helpers import RefreshRecorder, build_manager, build_storage, drive_item, expired

SHA1 = "0A4D55A8D778E5022FAB701977C5D840BBC486D0"
UPLOAD_URL = "https://api.onedrive.com/rup/session-1"
NOT_FOUND = {"error": {"code": "itemNotFound", "message": "The resource could not be found."}}
CONFLICT = {"error": {"code": "nameAlreadyExists", "message": "Name already exists"}}


def _session_response() -> httpx.Response:
    return httpx.Response(
        200,
        json={"uploadUrl": UPLOAD_URL, "expirationDateTime": "2026-10-20T00:00:00Z"},
    )


def _accepted(next_start: int) -> httpx.Response:
    return httpx.Response(202, json={"nextExpectedRanges": [f"{next_start}-"]})


@pytest.mark.asyncio
async def test_lookup_file_found() -> None:
    storage, stub = build_storage([httpx.Response(200, json=drive_item("known.txt"))])

    result = await storage.lookup_file("known.txt")

    assert result == Success(FileFound(DriveItem("item-1", "known.txt", 11, SHA1)))
    assert stub.requests[0].url.path == "/v1.0/me/drive/special/approot:/known.txt:"


@pytest.mark.asyncio
async def test_lookup_file_not_found() -> None:
    storage, _ = build_storage([httpx.Response(404, json=NOT_FOUND)])

    assert await storage.lookup_file("Markwa.Farkwa.Blarkwa") == Success(FileNotFound())


@pytest.mark.asyncio
async def test_lookup_quotes_name() -> None:
    storage, stub = build_storage([httpx.Response(404, json=NOT_FOUND)])

    await storage.lookup_file("a b/c.txt")

    assert stub.requests[0].url.raw_path.decode().endswith("approot:/a%20b%2Fc.txt:")


@pytest.mark.asyncio
async def test_lookup_with_revoked_token() -> None:
    storage, stub = build_storage(
        [expired()],
        manager=build_manager(refresh_fn=RefreshRecorder(fail=True)),
    )

    assert await storage.lookup_file("known.txt") == AccessTokenRevokedOrExpired()
    assert len(stub.requests) == 1


@pytest.mark.asyncio
async def test_lookup_refreshes_expired_token() -> None:
    storage, stub = build_storage([expired(), httpx.Response(200, json=drive_item())])

    result = await storage.lookup_file("file.txt")

    assert isinstance(result, Success)
    assert stub.authorizations == ["Bearer access-1", "Bearer access-2"]


@pytest.mark.asyncio
async def test_lookup_other_error_is_failure() -> None:
    storage, _ = build_storage(
        [httpx.Response(403, json={"error": {"code": "accessDenied", "message": "Denied"}})]
    )

    result = await storage.lookup_file("file.txt")

    assert isinstance(result, Failure)
    assert isinstance(result.error, UnexpectedStatus)
    assert result.error.status_code == 403
    assert result.error.code == "accessDenied"


@pytest.mark.asyncio
async def test_download_file() -> None:
    storage, stub = build_storage(
        [httpx.Response(200, json=drive_item()), httpx.Response(200, content=b"Hello World")]
    )

    result = await storage.download_file("file.txt")

    assert result == Success(DownloadedFile(data=b"Hello World", checksum=SHA1))
    assert stub.requests[1].url.path == "/v1.0/me/drive/items/item-1/content"


@pytest.mark.asyncio
async def test_download_missing_file() -> None:
    storage, stub = build_storage([httpx.Response(404, json=NOT_FOUND)])

    assert await storage.download_file("missing.txt") == FileNotFound()
    assert len(stub.requests) == 1


@pytest.mark.asyncio
async def test_download_refreshes_at_most_once() -> None:
    refresh = RefreshRecorder()
    storage, stub = build_storage(
        [expired(), httpx.Response(200, json=drive_item()), expired()],
        manager=build_manager(refresh_fn=refresh),
    )

    assert await storage.download_file("file.txt") == AccessTokenRevokedOrExpired()
    assert len(stub.requests) == 3
    assert refresh.calls == ["refresh-1"]


@pytest.mark.asyncio
async def test_delete_file() -> None:
    storage, stub = build_storage([httpx.Response(204)])

    assert await storage.delete_file("file.txt") == Success(None)
    assert stub.requests[0].method == "DELETE"


@pytest.mark.asyncio
async def test_delete_missing_file_fails() -> None:
    storage, _ = build_storage([httpx.Response(404, json=NOT_FOUND)])

    result = await storage.delete_file("missing.txt")

    assert isinstance(result, Failure)
    assert result.error.status_code == 404


@pytest.mark.asyncio
async def test_delete_item_with_expired_token() -> None:
    storage, stub = build_storage([expired(), expired()])

    assert await storage.delete_item("item-1") == AccessTokenRevokedOrExpired()
    assert stub.requests[0].url.path == "/v1.0/me/drive/items/item-1"
    assert len(stub.requests) == 2


@pytest.mark.asyncio
async def test_create_app_folder() -> None:
    storage, stub = build_storage([httpx.Response(200, json={"id": "approot-id", "name": "Neebla"})])

    result = await storage.create_app_folder()

    assert result == Success(DriveItem("approot-id", "Neebla"))
    assert stub.requests[0].url.path == "/v1.0/me/drive/special/approot"


@pytest.mark.asyncio
async def test_upload_file_direct() -> None:
    storage, stub = build_storage([httpx.Response(201, json=drive_item())])

    result = await storage.upload_file("file.txt", b"Hello World", "text/plain")

    assert result == Success(SHA1)
    request = stub.requests[0]
    assert request.method == "PUT"
    assert request.url.path == "/v1.0/me/drive/special/approot:/file.txt:/content"
    assert request.url.params["@microsoft.graph.conflictBehavior"] == "fail"
    assert request.headers["content-type"] == "text/plain"
    assert request.content == b"Hello World"


@pytest.mark.asyncio
async def test_upload_file_direct_conflict() -> None:
    storage, _ = build_storage([httpx.Response(409, json=CONFLICT)])

    result = await storage.upload_file("file.txt", b"Hello World", "text/plain")

    assert isinstance(result, Failure)
    assert isinstance(result.error, AlreadyUploaded)


@pytest.mark.asyncio
async def test_upload_file_direct_with_revoked_token() -> None:
    storage, _ = build_storage(
        [expired()],
        manager=build_manager(refresh_fn=RefreshRecorder(fail=True)),
    )

    assert await storage.upload_file("file.txt", b"data") == AccessTokenRevokedOrExpired()


@pytest.mark.asyncio
async def test_upload_file_direct_missing_checksum() -> None:
    storage, _ = build_storage([httpx.Response(201, json={"id": "item-1", "name": "file.txt"})])

    result = await storage.upload_file("file.txt", b"data")

    assert isinstance(result, Failure)
    assert isinstance(result.error, MalformedResponse)


@pytest.mark.asyncio
async def test_create_upload_session() -> None:
    storage, stub = build_storage([_session_response()])

    result = await storage.create_upload_session("big.bin")

    assert result == Success(UploadSession(UPLOAD_URL, "2026-10-20T00:00:00Z"))
    request = stub.requests[0]
    assert request.method == "POST"
    assert request.url.path == "/v1.0/me/drive/special/approot:/big.bin:/createUploadSession"
    assert json.loads(request.content) == {"item": {"@microsoft.graph.conflictBehavior": "fail"}}


@pytest.mark.asyncio
async def test_create_upload_session_conflict() -> None:
    storage, _ = build_storage([httpx.Response(409, json=CONFLICT)])

    result = await storage.create_upload_session("big.bin")

    assert isinstance(result, Failure)
    assert isinstance(result.error, AlreadyUploaded)


@pytest.mark.asyncio
async def test_create_upload_session_with_expired_token() -> None:
    storage, _ = build_storage([expired(), expired()])

    assert await storage.create_upload_session("big.bin") == AccessTokenRevokedOrExpired()


@pytest.mark.asyncio
async def test_upload_bytes_single_partial_block() -> None:
    data = bytes(BLOCK_MULTIPLE_BYTES // 2)
    state = UploadState.from_data(BLOCK_MULTIPLE_BYTES, data)
    storage, stub = build_storage([httpx.Response(201, json=drive_item())])

    result = await storage.upload_bytes(UploadSession(UPLOAD_URL), state, data)

    assert result == Success(SHA1)
    assert len(stub.requests) == 1
    assert str(stub.requests[0].url) == UPLOAD_URL
    assert stub.requests[0].headers["content-range"] == f"bytes 0-{len(data) - 1}/{len(data)}"


@pytest.mark.asyncio
async def test_upload_bytes_two_blocks_and_a_partial() -> None:
    block = BLOCK_MULTIPLE_BYTES
    data = bytes(range(256)) * ((2 * block + 100) // 256) + bytes(range((2 * block + 100) % 256))
    state = UploadState.from_data(block, data)
    storage, stub = build_storage(
        [_accepted(block), _accepted(2 * block), httpx.Response(201, json=drive_item())]
    )

    result = await storage.upload_bytes(UploadSession(UPLOAD_URL), state, data)

    assert result == Success(SHA1)
    total = len(data)
    assert [request.headers["content-range"] for request in stub.requests] == [
        f"bytes 0-{block - 1}/{total}",
        f"bytes {block}-{2 * block - 1}/{total}",
        f"bytes {2 * block}-{total - 1}/{total}",
    ]
    assert b"".join(request.content for request in stub.requests) == data


@pytest.mark.asyncio
async def test_upload_bytes_aborts_on_expiry_mid_sequence() -> None:
    block = BLOCK_MULTIPLE_BYTES
    data = bytes(3 * block)
    refresh = RefreshRecorder()
    storage, stub = build_storage(
        [_accepted(block), expired(), expired()],
        manager=build_manager(refresh_fn=refresh),
    )

    result = await storage.upload_bytes(
        UploadSession(UPLOAD_URL), UploadState.from_data(block, data), data
    )

    assert result == AccessTokenRevokedOrExpired()
    assert len(stub.requests) == 3
    assert refresh.calls == ["refresh-1"]


@pytest.mark.asyncio
async def test_upload_bytes_recovers_from_one_expiry() -> None:
    block = BLOCK_MULTIPLE_BYTES
    data = bytes(2 * block)
    storage, stub = build_storage([_accepted(block), expired(), httpx.Response(201, json=drive_item())])

    result = await storage.upload_bytes(
        UploadSession(UPLOAD_URL), UploadState.from_data(block, data), data
    )

    assert result == Success(SHA1)
    assert stub.authorizations == ["Bearer access-1", "Bearer access-1", "Bearer access-2"]


@pytest.mark.asyncio
async def test_upload_bytes_stops_on_failure() -> None:
    block = BLOCK_MULTIPLE_BYTES
    data = bytes(3 * block)
    storage, stub = build_storage([httpx.Response(416, json={"error": {"code": "invalidRange"}})])

    result = await storage.upload_bytes(
        UploadSession(UPLOAD_URL), UploadState.from_data(block, data), data
    )

    assert isinstance(result, Failure)
    assert result.error.status_code == 416
    assert len(stub.requests) == 1


@pytest.mark.asyncio
async def test_upload_bytes_conflict_on_completion() -> None:
    data = bytes(100)
    storage, _ = build_storage([httpx.Response(409, json=CONFLICT)])

    result = await storage.upload_bytes(
        UploadSession(UPLOAD_URL), UploadState.from_data(BLOCK_MULTIPLE_BYTES, data), data
    )

    assert isinstance(result, Failure)
    assert isinstance(result.error, AlreadyUploaded)


@pytest.mark.asyncio
async def test_upload_bytes_empty_payload() -> None:
    storage, stub = build_storage([])

    result = await storage.upload_bytes(
        UploadSession(UPLOAD_URL), UploadState(BLOCK_MULTIPLE_BYTES, 0), b""
    )

    assert isinstance(result, Failure)
    assert isinstance(result.error, EmptyUpload)
    assert stub.requests == []


@pytest.mark.asyncio
async def test_upload_bytes_incomplete_session() -> None:
    data = bytes(100)
    storage, _ = build_storage([_accepted(100)])

    result = await storage.upload_bytes(
        UploadSession(UPLOAD_URL), UploadState.from_data(BLOCK_MULTIPLE_BYTES, data), data
    )

    assert isinstance(result, Failure)
    assert isinstance(result.error, MalformedResponse)


@pytest.mark.asyncio
async def test_upload_file_uses_session_above_limit() -> None:
    block = BLOCK_MULTIPLE_BYTES
    settings = Settings(block_size=block, simple_upload_limit=block)
    data = bytes(block + 10)
    storage, stub = build_storage(
        [_session_response(), _accepted(block), httpx.Response(201, json=drive_item())],
        settings=settings,
    )

    result = await storage.upload_file("big.bin", data, "image/jpeg")

    assert result == Success(SHA1)
    assert [request.method for request in stub.requests] == ["POST", "PUT", "PUT"]
    assert urllib.parse.unquote(stub.requests[0].url.path).endswith("big.bin:/createUploadSession")


@pytest.mark.asyncio
async def test_upload_file_using_session_shares_one_refresh() -> None:
    block = BLOCK_MULTIPLE_BYTES
    refresh = RefreshRecorder()
    storage, stub = build_storage(
        [expired(), _session_response(), expired()],
        manager=build_manager(refresh_fn=refresh),
        settings=Settings(block_size=block),
    )

    result = await storage.upload_file_using_session("big.bin", bytes(block))

    assert result == AccessTokenRevokedOrExpired()
    assert len(stub.requests) == 3
    assert refresh.calls == ["refresh-1"]


@pytest.mark.asyncio
async def test_upload_file_using_session_conflict() -> None:
    storage, stub = build_storage([httpx.Response(409, json=CONFLICT)])

    result = await storage.upload_file_using_session("big.bin", b"data")

    assert isinstance(result, Failure)
    assert isinstance(result.error, AlreadyUploaded)
    assert len(stub.requests) == 1


@pytest.mark.asyncio
async def test_upload_file_using_session_rejects_unaligned_block_size() -> None:
    storage, stub = build_storage([], settings=Settings(block_size=1000))

    result = await storage.upload_file_using_session("big.bin", b"x" * 5000)

    assert isinstance(result, Failure)
    assert isinstance(result.error, InvalidBlockSize)
    assert stub.requests == []
