"""Resumable chunked uploads to remote object stores."""

from .chunked import ChunkedUploader, PublishResult
from .sessions import UploadSession, UploadSessionStore

__all__ = ["ChunkedUploader", "PublishResult", "UploadSession", "UploadSessionStore"]
