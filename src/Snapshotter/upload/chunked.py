# === NAVMAP v1 ===
# {
#   "module": "Snapshotter.upload.chunked",
#   "purpose": "Resumable, bounded-concurrency chunked upload with streaming SHA-256",
#   "sections": [
#     {
#       "id": "publishresult",
#       "name": "PublishResult",
#       "anchor": "class-publishresult",
#       "kind": "class"
#     },
#     {
#       "id": "chunkeduploader",
#       "name": "ChunkedUploader",
#       "anchor": "class-chunkeduploader",
#       "kind": "class"
#     }
#   ]
# }
# === /NAVMAP ===

"""Chunked uploader.

Responsibilities:
- Skip the transfer when the destination object already exists
- Read the local file in fixed-size chunks, strictly in file order, feeding
  each chunk to a SHA-256 accumulator as it is submitted
- Keep at most ``max_concurrent`` chunk transfers in flight
- Checkpoint the contiguous acknowledged prefix after every acknowledgement
- Resume from the persisted checkpoint after a crash

Errors are never retried here. The checkpoint left behind lets the next
scheduled run continue where this one stopped.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Deque, Optional, Tuple

from ..cancellation import CancellationToken
from ..errors import ArtifactIOError, PublicationCancelled
from ..io_safe import hash_prefix, sha256_file
from ..settings import CHUNK_SIZE, MAX_CONCURRENT_UPLOADS, PROGRESS_LOG_INTERVAL_SEC
from ..storage.base import RemoteObjectRef, RemoteObjectStore
from .sessions import UploadSession, UploadSessionStore

logger = logging.getLogger(__name__)

_InFlight = Tuple[int, int, "Future[str]"]


@dataclass(frozen=True)
class PublishResult:
    """Outcome of :meth:`ChunkedUploader.publish`.

    Attributes:
        ref: Reference to the stored object.
        sha256: Hex digest of the local file content.
        size: Local file size in bytes.
        skipped: ``True`` when the object already existed and nothing was sent.
        resumed_from: Offset the transfer resumed from (0 for a fresh upload).
        parts_uploaded: Number of chunks transferred by this call.
        created_at: Publication time recorded with the transfer; for a resumed
            transfer this is the time of the run that started it.
    """

    ref: RemoteObjectRef
    sha256: str
    size: int
    skipped: bool = False
    resumed_from: int = 0
    parts_uploaded: int = 0
    created_at: Optional[datetime] = None


class ChunkedUploader:
    """Publish local files to a :class:`RemoteObjectStore` in resumable chunks."""

    def __init__(
        self,
        store: RemoteObjectStore,
        sessions: UploadSessionStore,
        *,
        chunk_size: int = CHUNK_SIZE,
        max_concurrent: int = MAX_CONCURRENT_UPLOADS,
        progress_interval: float = PROGRESS_LOG_INTERVAL_SEC,
        token: Optional[CancellationToken] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be positive")
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be positive")
        self.store = store
        self.sessions = sessions
        self.chunk_size = chunk_size
        self.max_concurrent = max_concurrent
        self.progress_interval = progress_interval
        self.token = token or CancellationToken()
        self._clock = clock

    def publish(
        self,
        local_file: Path,
        destination_key: str,
        *,
        created_at: Optional[datetime] = None,
    ) -> PublishResult:
        """Upload ``local_file`` to ``destination_key`` and return its reference.

        ``created_at`` is stored with a new checkpoint; a resumed checkpoint
        keeps the time it was started with.

        Raises:
            ArtifactIOError: Reading the local file or persisting the checkpoint failed.
            NetworkError: The remote store rejected or dropped a request.
            PublicationCancelled: Cancellation was requested between chunks.
        """

        local_file = Path(local_file)
        try:
            size = local_file.stat().st_size
        except OSError as exc:
            raise ArtifactIOError(f"cannot stat {local_file.name}: {exc}") from exc

        existing = self.store.head(destination_key)
        if existing is not None:
            logger.info(
                "destination already exists; skipping upload",
                extra={"stage": "upload", "key": destination_key},
            )
            prior = self.sessions.load(local_file, destination_key)
            self.sessions.delete(local_file)
            return PublishResult(
                ref=existing,
                sha256=self._digest(local_file),
                size=size,
                skipped=True,
                created_at=(prior.started_at() if prior is not None else None) or created_at,
            )

        session = self._open_session(local_file, destination_key, size, created_at)
        resumed_from = session.committed_offset
        start = self._clock()
        logger.info(
            "starting upload",
            extra={
                "stage": "upload",
                "key": destination_key,
                "size_bytes": size,
                "resumed_from": resumed_from,
            },
        )

        session, uploaded, digest = self._transfer(local_file, session, size)

        ref = self.store.complete_session(session.url, destination_key, session.parts)
        self.sessions.delete(local_file)
        logger.info(
            "upload completed",
            extra={
                "stage": "upload",
                "key": destination_key,
                "parts": uploaded,
                "elapsed_sec": round(self._clock() - start, 3),
            },
        )
        return PublishResult(
            ref=ref,
            sha256=digest,
            size=size,
            resumed_from=resumed_from,
            parts_uploaded=uploaded,
            created_at=session.started_at() or created_at,
        )

    def _digest(self, local_file: Path) -> str:
        try:
            return sha256_file(local_file)
        except OSError as exc:
            raise ArtifactIOError(f"cannot read {local_file.name}: {exc}") from exc

    def _open_session(
        self,
        local_file: Path,
        destination_key: str,
        size: int,
        created_at: Optional[datetime],
    ) -> UploadSession:
        session = self.sessions.load(local_file, destination_key)
        if session is not None:
            if session.committed_offset > size:
                logger.warning(
                    "checkpoint is beyond end of file; starting over",
                    extra={"stage": "upload", "key": destination_key},
                )
                session = None
            elif not self.store.session_active(session.url):
                logger.warning(
                    "remote upload session expired; starting over",
                    extra={"stage": "upload", "key": destination_key},
                )
                session = None
            else:
                logger.info(
                    "resuming upload",
                    extra={
                        "stage": "upload",
                        "key": destination_key,
                        "committed_offset": session.committed_offset,
                        "next_part": session.next_part,
                    },
                )
                return session

        session = UploadSession(
            url=self.store.create_session(destination_key),
            destination_key=destination_key,
            created_at=created_at.isoformat() if created_at is not None else None,
        )
        self.sessions.save(local_file, session)
        return session

    def _transfer(
        self, local_file: Path, session: UploadSession, size: int
    ) -> Tuple[UploadSession, int, str]:
        pending: Deque[_InFlight] = deque()
        uploaded = 0
        part_number = session.next_part
        offset = session.committed_offset
        last_log = self._clock()
        cancelled = False

        try:
            hasher = hash_prefix(local_file, session.committed_offset)
            stream = local_file.open("rb")
        except OSError as exc:
            raise ArtifactIOError(f"cannot read {local_file.name}: {exc}") from exc

        with stream, ThreadPoolExecutor(
            max_workers=self.max_concurrent, thread_name_prefix="snapshot-upload"
        ) as pool:
            try:
                stream.seek(session.committed_offset)
                while True:
                    if self.token.is_cancelled():
                        cancelled = True
                        break
                    while len(pending) >= self.max_concurrent:
                        session = self._commit_oldest(local_file, session, pending)
                        uploaded += 1

                    try:
                        chunk = stream.read(self.chunk_size)
                    except OSError as exc:
                        raise ArtifactIOError(f"cannot read {local_file.name}: {exc}") from exc
                    # A zero-length file still needs one (empty) part.
                    if not chunk and part_number > 1:
                        break

                    hasher.update(chunk)
                    future = pool.submit(self.store.upload_part, session.url, part_number, chunk)
                    pending.append((part_number, len(chunk), future))
                    part_number += 1
                    offset += len(chunk)

                    now = self._clock()
                    if now - last_log >= self.progress_interval:
                        logger.info(
                            "upload progress: %.2f%%",
                            (offset / size * 100.0) if size else 100.0,
                            extra={"stage": "upload", "key": session.destination_key},
                        )
                        last_log = now
                    if not chunk:
                        break

                while pending:
                    session = self._commit_oldest(local_file, session, pending)
                    uploaded += 1
            except BaseException:
                for _, _, future in pending:
                    future.cancel()
                raise

        if cancelled:
            raise PublicationCancelled(
                f"upload of {session.destination_key} cancelled at offset "
                f"{session.committed_offset}"
            )
        return session, uploaded, hasher.hexdigest()

    def _commit_oldest(
        self, local_file: Path, session: UploadSession, pending: Deque[_InFlight]
    ) -> UploadSession:
        """Wait for the oldest in-flight chunk and checkpoint it."""

        part_number, length, future = pending[0]
        tag = future.result()
        pending.popleft()
        session = session.advance(part_number, length, tag)
        self.sessions.save(local_file, session)
        return session
