"""Remote object store backend tests."""

from __future__ import annotations

import hashlib
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Dict, List

import google.auth.exceptions
import httpx
import pytest

from Snapshotter.errors import ConfigError, NetworkError
from Snapshotter.settings import StorageSettings
from Snapshotter.storage import (
    GcsObjectStore,
    GoogleCredentialsProvider,
    LocalObjectStore,
    build_remote_store,
)
from Snapshotter.upload.chunked import ChunkedUploader
from Snapshotter.upload.sessions import UploadSessionStore

_NS = "http://s3.amazonaws.com/doc/2006-03-01/"


class FakeGcs:
    """Minimal XML multipart API served through ``httpx.MockTransport``."""

    def __init__(self) -> None:
        self.objects: Dict[str, bytes] = {}
        self.uploads: Dict[str, Dict[int, bytes]] = {}
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        _, bucket, key = request.url.path.split("/", 2)
        assert bucket == "snapshots"
        params = request.url.params
        if request.method == "HEAD":
            data = self.objects.get(key)
            if data is None:
                return httpx.Response(404)
            return httpx.Response(200, headers={"Content-Length": str(len(data)), "ETag": '"e"'})
        if request.method == "POST" and "uploads" in params:
            upload_id = f"u{len(self.uploads) + 1}"
            self.uploads[upload_id] = {}
            body = (
                f'<InitiateMultipartUploadResult xmlns="{_NS}"><Bucket>snapshots</Bucket>'
                f"<Key>{key}</Key><UploadId>{upload_id}</UploadId></InitiateMultipartUploadResult>"
            )
            return httpx.Response(200, content=body.encode())
        if request.method == "PUT" and "partNumber" in params:
            parts = self.uploads.get(params["uploadId"])
            if parts is None:
                return httpx.Response(404)
            parts[int(params["partNumber"])] = request.content
            return httpx.Response(200, headers={"ETag": f'"{hashlib.md5(request.content).hexdigest()}"'})
        if request.method == "GET" and "uploadId" in params:
            return httpx.Response(200 if params["uploadId"] in self.uploads else 404)
        if request.method == "POST" and "uploadId" in params:
            parts = self.uploads.pop(params["uploadId"])
            manifest = ET.fromstring(request.content)
            numbers = [int(p.findtext("PartNumber")) for p in manifest.iter("Part")]
            self.objects[key] = b"".join(parts[n] for n in numbers)
            return httpx.Response(
                200, content=b"<CompleteMultipartUploadResult><ETag>\"final\"</ETag></CompleteMultipartUploadResult>"
            )
        if request.method == "PUT":
            self.objects[key] = request.content
            return httpx.Response(200, headers={"ETag": '"doc"'})
        if request.method == "DELETE":
            if self.objects.pop(key, None) is None:
                return httpx.Response(404)
            return httpx.Response(204)
        return httpx.Response(405)


@pytest.fixture
def fake_gcs() -> FakeGcs:
    return FakeGcs()


@pytest.fixture
def gcs_store(fake_gcs: FakeGcs) -> GcsObjectStore:
    client = httpx.Client(transport=httpx.MockTransport(fake_gcs))
    return GcsObjectStore(
        "snapshots", access_token="secret-token", endpoint="https://gcs.test", client=client
    )


def test_gcs_multipart_publish(gcs_store: GcsObjectStore, fake_gcs: FakeGcs, tmp_path: Path) -> None:
    """A chunked upload through the XML API assembles the original bytes."""

    payload = bytes(range(256)) * 3
    local = tmp_path / "reth_snapshot_01-05-24_12-00.tar.lz4"
    local.write_bytes(payload)
    uploader = ChunkedUploader(
        gcs_store, UploadSessionStore(tmp_path / "state"), chunk_size=200, max_concurrent=2
    )

    result = uploader.publish(local, "reth/" + local.name)

    assert fake_gcs.objects["reth/" + local.name] == payload
    assert result.ref.etag == '"final"'
    assert result.parts_uploaded == 4
    assert all(r.headers["Authorization"] == "Bearer secret-token" for r in fake_gcs.requests)


def test_gcs_head_missing_returns_none(gcs_store: GcsObjectStore) -> None:
    assert gcs_store.head("beacond/missing.tar.lz4") is None


def test_gcs_head_existing(gcs_store: GcsObjectStore, fake_gcs: FakeGcs) -> None:
    fake_gcs.objects["beacond/a.tar.lz4"] = b"abc"

    ref = gcs_store.head("beacond/a.tar.lz4")

    assert ref is not None
    assert ref.size == 3
    assert ref.url == "https://gcs.test/snapshots/beacond/a.tar.lz4"


def test_gcs_session_survives_in_handle(gcs_store: GcsObjectStore) -> None:
    session = gcs_store.create_session("beacond/a.tar.lz4")

    assert "uploadId=u1" in session
    assert gcs_store.session_active(session)
    assert not gcs_store.session_active(session.replace("u1", "u9"))
    assert not gcs_store.session_active("https://gcs.test/snapshots/beacond/a.tar.lz4")


def test_gcs_errors_carry_status_without_session_url(fake_gcs: FakeGcs) -> None:
    def failing(request: httpx.Request) -> httpx.Response:
        if "partNumber" in request.url.params:
            return httpx.Response(503)
        return fake_gcs(request)

    store = GcsObjectStore(
        "snapshots", endpoint="https://gcs.test", client=httpx.Client(transport=httpx.MockTransport(failing))
    )
    session = store.create_session("beacond/a.tar.lz4")

    with pytest.raises(NetworkError) as excinfo:
        store.upload_part(session, 1, b"data")

    assert excinfo.value.status_code == 503
    assert "uploadId" not in str(excinfo.value)
    assert "beacond/a.tar.lz4" in str(excinfo.value)


def test_gcs_transport_error_becomes_network_error() -> None:
    def broken(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    store = GcsObjectStore(
        "snapshots", endpoint="https://gcs.test", client=httpx.Client(transport=httpx.MockTransport(broken))
    )

    with pytest.raises(NetworkError):
        store.head("beacond/a.tar.lz4")


def test_gcs_delete_and_put(gcs_store: GcsObjectStore, fake_gcs: FakeGcs) -> None:
    gcs_store.put_bytes("metadata.json", b"{}")
    assert fake_gcs.objects["metadata.json"] == b"{}"

    gcs_store.delete("metadata.json")
    gcs_store.delete("metadata.json")
    assert "metadata.json" not in fake_gcs.objects


def test_local_store_multipart(tmp_path: Path) -> None:
    store = LocalObjectStore(tmp_path / "remote")
    session = store.create_session("beacond/a.tar.lz4")
    tags = [(1, store.upload_part(session, 1, b"hello ")), (2, store.upload_part(session, 2, b"world"))]

    ref = store.complete_session(session, "beacond/a.tar.lz4", tags)

    assert (tmp_path / "remote" / "beacond" / "a.tar.lz4").read_bytes() == b"hello world"
    assert ref.size == 11
    assert not store.session_active(session)
    assert store.head("beacond/a.tar.lz4") is not None


def test_local_store_rejects_tampered_part(tmp_path: Path) -> None:
    store = LocalObjectStore(tmp_path)
    session = store.create_session("reth/a")
    store.upload_part(session, 1, b"data")

    with pytest.raises(NetworkError):
        store.complete_session(session, "reth/a", [(1, "0" * 32)])


def test_local_store_rejects_traversal(tmp_path: Path) -> None:
    store = LocalObjectStore(tmp_path)

    with pytest.raises(ValueError):
        store.put_bytes("../escape", b"x")


def test_local_store_unknown_session(tmp_path: Path) -> None:
    store = LocalObjectStore(tmp_path)

    assert not store.session_active("local-multipart://deadbeef")
    with pytest.raises(NetworkError) as excinfo:
        store.upload_part("local-multipart://deadbeef", 1, b"x")
    assert excinfo.value.status_code == 404


def test_build_remote_store_selects_backend(tmp_path: Path) -> None:
    local = build_remote_store(StorageSettings(backend="local", root=tmp_path / "r"))
    assert isinstance(local, LocalObjectStore)
    assert (tmp_path / "r").is_dir()

    gcs = build_remote_store(StorageSettings(bucket="b"))
    assert isinstance(gcs, GcsObjectStore)
    gcs.close()

    with pytest.raises(ConfigError):
        build_remote_store(StorageSettings())


class _ExpiringCredentials:
    """Stand-in for google-auth credentials whose token the test can expire."""

    def __init__(self, fail: bool = False) -> None:
        self.token = None
        self.valid = False
        self.refreshes = 0
        self.fail = fail

    def refresh(self, request) -> None:
        if self.fail:
            raise google.auth.exceptions.RefreshError("invalid_grant")
        self.refreshes += 1
        self.token = f"token-{self.refreshes}"
        self.valid = True


def test_expired_credentials_are_refreshed_between_requests(fake_gcs: FakeGcs) -> None:
    credentials = _ExpiringCredentials()
    provider = GoogleCredentialsProvider(credentials, request_factory=lambda: "transport")
    store = GcsObjectStore(
        "snapshots",
        token_provider=provider,
        endpoint="https://gcs.test",
        client=httpx.Client(transport=httpx.MockTransport(fake_gcs)),
    )

    store.head("beacond/a.tar.lz4")
    store.head("beacond/a.tar.lz4")
    credentials.valid = False
    store.head("beacond/a.tar.lz4")

    assert [r.headers["Authorization"] for r in fake_gcs.requests] == [
        "Bearer token-1",
        "Bearer token-1",
        "Bearer token-2",
    ]
    assert credentials.refreshes == 2


def test_failed_refresh_is_a_network_error() -> None:
    provider = GoogleCredentialsProvider(_ExpiringCredentials(fail=True), request_factory=object)

    with pytest.raises(NetworkError, match="credential refresh failed"):
        provider()
