# === NAVMAP v1 ===
# {
#   "module": "Snapshotter.storage.gcs",
#   "purpose": "Google Cloud Storage XML multipart-upload backend over HTTPX.",
#   "sections": [
#     {
#       "id": "gcsobjectstore",
#       "name": "GcsObjectStore",
#       "anchor": "class-gcsobjectstore",
#       "kind": "class"
#     },
#     {
#       "id": "find-text",
#       "name": "_find_text",
#       "anchor": "function-find-text",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""Google Cloud Storage backend using the XML multipart-upload API.

Key design:
- **Sessions**: ``POST <object>?uploads`` negotiates an upload id; the session
  handle is the object URL carrying ``uploadId``. The handle survives process
  restarts, which is what makes resumption possible.
- **Parts**: ``PUT <object>?partNumber=N&uploadId=...``; the returned ETag is
  the part tag recorded in the upload session file.
- **Completion**: ``POST <object>?uploadId=...`` with the ordered part list.
- **No retries**: every transport or HTTP error becomes a
  :class:`~Snapshotter.errors.NetworkError`; retrying is the next scheduled
  run's job.
- Error messages name the object key, never the session handle or token.
"""

from __future__ import annotations

import logging
import threading
import xml.etree.ElementTree as ET
from typing import Dict, Optional, Sequence
from urllib.parse import quote

import httpx

from ..errors import NetworkError
from .auth import TokenProvider, static_token
from .base import PartTag, RemoteObjectRef, RemoteObjectStore

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://storage.googleapis.com"


def _find_text(document: bytes, tag: str) -> Optional[str]:
    """Return the text of the first element named ``tag`` regardless of namespace."""

    try:
        root = ET.fromstring(document)
    except ET.ParseError:
        return None
    for element in root.iter():
        if element.tag == tag or element.tag.endswith("}" + tag):
            return (element.text or "").strip()
    return None


class GcsObjectStore(RemoteObjectStore):
    """Object store backed by a GCS bucket.

    Args:
        bucket: Bucket name.
        access_token: Fixed OAuth2 bearer token, used when no ``token_provider`` is given.
        token_provider: Called before every request for the current bearer
            token; ``None`` from either source sends unauthenticated requests.
        endpoint: API endpoint, overridable for emulators.
        client: Pre-configured HTTPX client (tests inject a MockTransport).
        timeout: Request timeout in seconds when the store builds its own client.
        max_connections: Connection pool size; should cover upload concurrency.
    """

    def __init__(
        self,
        bucket: str,
        *,
        access_token: Optional[str] = None,
        token_provider: Optional[TokenProvider] = None,
        endpoint: str = DEFAULT_ENDPOINT,
        client: Optional[httpx.Client] = None,
        timeout: float = 300.0,
        max_connections: int = 16,
    ) -> None:
        self.bucket = bucket
        self.endpoint = endpoint.rstrip("/")
        self._token = token_provider or static_token(access_token)
        self._owns_client = client is None
        self._client = client or httpx.Client(
            timeout=httpx.Timeout(timeout, connect=10.0),
            limits=httpx.Limits(
                max_connections=max_connections, max_keepalive_connections=max_connections
            ),
            follow_redirects=False,
        )
        self._lock = threading.Lock()

    def close(self) -> None:
        """Close the HTTP client when this store created it."""
        with self._lock:
            if self._owns_client:
                self._client.close()

    def base_url(self) -> str:
        return f"{self.endpoint}/{self.bucket}"

    def _object_url(self, key: str) -> str:
        return f"{self.base_url()}/{quote(key, safe='/')}"

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers: Dict[str, str] = {}
        token = self._token()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        if extra:
            headers.update(extra)
        return headers

    def _send(
        self,
        method: str,
        url: httpx.URL | str,
        *,
        operation: str,
        key: str,
        content: Optional[bytes] = None,
        headers: Optional[Dict[str, str]] = None,
        ok: Sequence[int] = (200,),
    ) -> httpx.Response:
        try:
            response = self._client.request(
                method, url, content=content, headers=self._headers(headers)
            )
        except httpx.HTTPError as exc:
            raise NetworkError(f"{operation} {key}: {type(exc).__name__}: {exc}") from exc
        if response.status_code not in ok:
            raise NetworkError(
                f"{operation} {key}: HTTP {response.status_code}",
                status_code=response.status_code,
            )
        return response

    @staticmethod
    def _session_url(session: str, **params: str) -> httpx.URL:
        url = httpx.URL(session)
        if "uploadId" not in url.params:
            raise NetworkError("unrecognised upload session handle")
        return url.copy_merge_params(params) if params else url

    @staticmethod
    def _session_key(session: str) -> str:
        path = httpx.URL(session).path
        return path.split("/", 2)[-1] if path.count("/") >= 2 else path

    def head(self, key: str) -> Optional[RemoteObjectRef]:
        response = self._send(
            "HEAD", self._object_url(key), operation="look up", key=key, ok=(200, 404)
        )
        if response.status_code == 404:
            return None
        size = response.headers.get("Content-Length")
        return RemoteObjectRef(
            key=key,
            size=int(size) if size and size.isdigit() else None,
            etag=response.headers.get("ETag"),
            url=self._object_url(key),
        )

    def create_session(self, key: str) -> str:
        url = httpx.URL(self._object_url(key)).copy_merge_params({"uploads": ""})
        response = self._send(
            "POST",
            url,
            operation="initiate upload",
            key=key,
            headers={"Content-Type": "application/octet-stream", "Content-Length": "0"},
        )
        upload_id = _find_text(response.content, "UploadId")
        if not upload_id:
            raise NetworkError(f"initiate upload {key}: response carried no UploadId")
        session = httpx.URL(self._object_url(key)).copy_merge_params({"uploadId": upload_id})
        logger.debug("negotiated multipart session", extra={"stage": "upload", "key": key})
        return str(session)

    def session_active(self, session: str) -> bool:
        try:
            url = self._session_url(session)
        except NetworkError:
            return False
        response = self._send(
            "GET",
            url,
            operation="list parts",
            key=self._session_key(session),
            ok=(200, 400, 404),
        )
        return response.status_code == 200

    def upload_part(self, session: str, part_number: int, data: bytes) -> str:
        url = self._session_url(session, partNumber=str(part_number))
        response = self._send(
            "PUT",
            url,
            operation=f"upload part {part_number} of",
            key=self._session_key(session),
            content=data,
            headers={"Content-Length": str(len(data))},
        )
        etag = response.headers.get("ETag")
        if not etag:
            raise NetworkError(
                f"upload part {part_number} of {self._session_key(session)}: missing ETag"
            )
        return etag

    def complete_session(
        self, session: str, key: str, parts: Sequence[PartTag]
    ) -> RemoteObjectRef:
        manifest = ET.Element("CompleteMultipartUpload")
        for part_number, etag in sorted(parts):
            part = ET.SubElement(manifest, "Part")
            ET.SubElement(part, "PartNumber").text = str(part_number)
            ET.SubElement(part, "ETag").text = etag
        body = ET.tostring(manifest, encoding="utf-8")
        response = self._send(
            "POST",
            self._session_url(session),
            operation="complete upload",
            key=key,
            content=body,
            headers={"Content-Type": "application/xml"},
        )
        return RemoteObjectRef(
            key=key,
            size=None,
            etag=_find_text(response.content, "ETag") or response.headers.get("ETag"),
            url=self._object_url(key),
        )

    def put_bytes(self, key: str, data: bytes) -> RemoteObjectRef:
        response = self._send(
            "PUT",
            self._object_url(key),
            operation="write",
            key=key,
            content=data,
            headers={"Content-Type": "application/json", "Content-Length": str(len(data))},
        )
        return RemoteObjectRef(
            key=key, size=len(data), etag=response.headers.get("ETag"), url=self._object_url(key)
        )

    def delete(self, key: str) -> None:
        self._send("DELETE", self._object_url(key), operation="delete", key=key, ok=(200, 204, 404))
