"""Bearer tokens for the GCS backend.

A token provider is a zero-argument callable returning the token to send, or
``None`` for anonymous requests. :class:`GcsObjectStore` calls it for every
request, so providers backed by refreshable credentials keep a long-running
scheduler authenticated.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Optional, Sequence

import google.auth
import google.auth.exceptions
import google.auth.transport.requests

from ..errors import ConfigError, NetworkError

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], Optional[str]]

STORAGE_SCOPES = ("https://www.googleapis.com/auth/devstorage.read_write",)


def static_token(token: Optional[str]) -> TokenProvider:
    """Return a provider that always yields ``token``."""

    return lambda: token


class GoogleCredentialsProvider:
    """Tokens from google-auth credentials, refreshed whenever they are not valid.

    Args:
        credentials: Credentials object; Application Default Credentials are
            resolved on first use when omitted.
        scopes: OAuth scopes requested for default credentials.
        request_factory: Builds the transport request used for refreshes.
    """

    def __init__(
        self,
        credentials: Optional[Any] = None,
        *,
        scopes: Sequence[str] = STORAGE_SCOPES,
        request_factory: Callable[[], Any] = google.auth.transport.requests.Request,
    ) -> None:
        self._credentials = credentials
        self._scopes = tuple(scopes)
        self._request_factory = request_factory
        self._lock = threading.Lock()

    def _resolve(self) -> Any:
        if self._credentials is None:
            try:
                self._credentials, project = google.auth.default(scopes=self._scopes)
            except google.auth.exceptions.DefaultCredentialsError as exc:
                raise ConfigError(f"no Google credentials available: {exc}") from exc
            logger.info(
                "using application default credentials",
                extra={"stage": "auth", "project": project},
            )
        return self._credentials

    def __call__(self) -> Optional[str]:
        with self._lock:
            credentials = self._resolve()
            if not credentials.valid:
                try:
                    credentials.refresh(self._request_factory())
                except google.auth.exceptions.GoogleAuthError as exc:
                    raise NetworkError(f"credential refresh failed: {exc}") from exc
                logger.debug("access token refreshed", extra={"stage": "auth"})
            return credentials.token
