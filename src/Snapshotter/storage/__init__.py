"""Remote object store backends for published artifacts."""

from __future__ import annotations

from ..errors import ConfigError
from ..settings import StorageSettings
from .auth import GoogleCredentialsProvider, TokenProvider, static_token
from .base import PartTag, RemoteObjectRef, RemoteObjectStore
from .gcs import GcsObjectStore
from .localfs import LocalObjectStore

__all__ = [
    "PartTag",
    "RemoteObjectRef",
    "RemoteObjectStore",
    "GcsObjectStore",
    "LocalObjectStore",
    "GoogleCredentialsProvider",
    "TokenProvider",
    "build_remote_store",
]


def build_remote_store(
    settings: StorageSettings, *, max_connections: int = 16
) -> RemoteObjectStore:
    """Instantiate the object store selected by ``settings.backend``."""

    if settings.backend == "local":
        if settings.root is None:
            raise ConfigError("storage.root is required for the local backend")
        root = settings.root.expanduser()
        root.mkdir(parents=True, exist_ok=True)
        return LocalObjectStore(root)
    if not settings.bucket:
        raise ConfigError("a GCS bucket is required (storage.bucket or GCS_BUCKET)")
    return GcsObjectStore(
        settings.bucket,
        token_provider=_token_provider(settings),
        endpoint=settings.endpoint,
        timeout=settings.timeout_sec,
        max_connections=max_connections,
    )


def _token_provider(settings: StorageSettings) -> TokenProvider:
    if settings.access_token:
        return static_token(settings.access_token)
    if settings.auth == "anonymous":
        return static_token(None)
    return GoogleCredentialsProvider()
