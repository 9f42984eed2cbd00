# === NAVMAP v1 ===
# {
#   "module": "Snapshotter.pipeline",
#   "purpose": "One publication run: pause, archive, upload, record in the catalog, resume",
#   "sections": [
#     {
#       "id": "categoryoutcome",
#       "name": "CategoryOutcome",
#       "anchor": "class-categoryoutcome",
#       "kind": "class"
#     },
#     {
#       "id": "pipelinereport",
#       "name": "PipelineReport",
#       "anchor": "class-pipelinereport",
#       "kind": "class"
#     },
#     {
#       "id": "run-publication",
#       "name": "run_publication",
#       "anchor": "function-run-publication",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""Publication pipeline.

A run holds a non-blocking lock beside the artifact directory; a trigger
that finds the lock taken is reported as skipped. Inside the lock the node
service is paused, every configured category is archived, uploaded and
recorded in the catalog, and the service is resumed whatever happened.

Before pausing, uploads that an earlier run left unfinished are resumed
from their checkpoints and catalogued under their original time.

A failure in one category stops that category's remaining stages only.
Categories already published stay published. A name that is already
catalogued fails the category without touching the catalog.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Tuple

from filelock import FileLock, Timeout

from .archive import Archiver, artifact_name
from .cancellation import CancellationToken
from .catalog.records import ArtifactRecord
from .catalog.store import CatalogStore
from .categories import Category
from .errors import (
    ArtifactIOError,
    PublicationCancelled,
    PublicationFailure,
    ServiceControlError,
    SnapshotterError,
)
from .io_safe import generate_correlation_id
from .lifecycle import NullServiceController, ServiceController
from .settings import CategoryPaths, RunConfiguration
from .storage.base import RemoteObjectStore
from .upload.chunked import ChunkedUploader
from .upload.sessions import UploadSessionStore

logger = logging.getLogger(__name__)

__all__ = ["CategoryOutcome", "PipelineReport", "run_publication"]


@dataclass(frozen=True)
class CategoryOutcome:
    """Result of publishing one category.

    Attributes:
        category: Category that was processed.
        artifact: Artifact file name, once the archive exists.
        sha256: Content digest of the artifact.
        remote_key: Object key of the published artifact.
        upload_skipped: The remote object already existed.
        evicted: Names evicted from the catalog by this publication.
        failure: Set when a stage failed.
    """

    category: Category
    artifact: Optional[str] = None
    sha256: Optional[str] = None
    remote_key: Optional[str] = None
    upload_skipped: bool = False
    evicted: Tuple[str, ...] = ()
    failure: Optional[PublicationFailure] = None

    @property
    def ok(self) -> bool:
        return self.failure is None


@dataclass
class PipelineReport:
    """Summary of one :func:`run_publication` call."""

    run_id: str
    started_at: datetime
    outcomes: List[CategoryOutcome] = field(default_factory=list)
    recovered: List[CategoryOutcome] = field(default_factory=list)
    skipped: bool = False
    resume_error: Optional[str] = None

    @property
    def success(self) -> bool:
        """``True`` when the run executed and every category was published.

        Interrupted transfers finished by this run count too.
        """

        return (
            not self.skipped
            and bool(self.outcomes)
            and all(o.ok for o in (*self.recovered, *self.outcomes))
        )

    @property
    def failures(self) -> List[PublicationFailure]:
        return [o.failure for o in (*self.recovered, *self.outcomes) if o.failure is not None]


def run_publication(
    config: RunConfiguration,
    now: datetime,
    *,
    store: RemoteObjectStore,
    controller: Optional[ServiceController] = None,
    token: Optional[CancellationToken] = None,
    archiver: Optional[Archiver] = None,
) -> PipelineReport:
    """Execute one publication run at time ``now``.

    Args:
        config: Frozen run inputs.
        now: Timestamp used for artifact names and catalog entries.
        store: Destination object store.
        controller: Pauses the node service around the run.
        token: Cancels the run between upload chunks.
        archiver: Archive builder; defaults to one over ``config.node_path``.

    Returns:
        Report with one outcome per category, or ``skipped`` set when another
        run holds the run lock.
    """

    run_id = generate_correlation_id()
    report = PipelineReport(run_id=run_id, started_at=now)
    log_extra = {"stage": "pipeline", "run_id": run_id}

    try:
        config.artifact_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ArtifactIOError(f"cannot create artifact directory: {exc}") from exc

    run_lock = FileLock(str(config.run_lock_path))
    try:
        run_lock.acquire(timeout=0)
    except Timeout:
        logger.warning("another publication run is active; skipping", extra=log_extra)
        report.skipped = True
        return report

    try:
        _execute(config, now, report, store, controller or NullServiceController(), token, archiver)
    finally:
        run_lock.release()

    logger.info(
        "publication run finished",
        extra={
            **log_extra,
            "success": report.success,
            "failed_categories": [f.category for f in report.failures],
        },
    )
    return report


def _execute(
    config: RunConfiguration,
    now: datetime,
    report: PipelineReport,
    store: RemoteObjectStore,
    controller: ServiceController,
    token: Optional[CancellationToken],
    archiver: Optional[Archiver],
) -> None:
    token = token or CancellationToken()
    archiver = archiver or Archiver(config.node_path, config.artifact_dir)
    sessions = UploadSessionStore(config.upload_state_dir)
    uploader = ChunkedUploader(
        store,
        sessions,
        chunk_size=config.chunk_size,
        max_concurrent=config.max_concurrent_uploads,
        progress_interval=config.progress_log_interval,
        token=token,
    )
    catalog = CatalogStore(
        config.catalog_path,
        keep=config.keep,
        artifact_dir=config.artifact_dir,
        remote=store,
        mirror_key=config.catalog_path.name if config.mirror_catalog else None,
    )

    # Finished archives need no paused service.
    report.recovered = _recover_interrupted(
        config, now, sessions, uploader, catalog, token, report.run_id
    )

    try:
        try:
            controller.pause()
        except ServiceControlError as exc:
            logger.error(
                "failed to pause node service; not archiving",
                extra={"stage": "lifecycle", "run_id": report.run_id, "error": str(exc)},
            )
            report.outcomes = [
                CategoryOutcome(
                    category=paths.category,
                    failure=PublicationFailure(paths.category.value, "pause", exc),
                )
                for paths in config.categories
            ]
            return

        for paths in config.categories:
            if token.is_cancelled():
                report.outcomes.append(
                    CategoryOutcome(
                        category=paths.category,
                        failure=PublicationFailure(
                            paths.category.value,
                            "archive",
                            PublicationCancelled("run cancelled before category started"),
                        ),
                    )
                )
                continue
            report.outcomes.append(
                _publish_category(paths, now, archiver, uploader, catalog, report.run_id)
            )
    finally:
        try:
            controller.resume()
        except ServiceControlError as exc:
            report.resume_error = str(exc)
            logger.error(
                "failed to resume node service",
                extra={"stage": "lifecycle", "run_id": report.run_id, "error": str(exc)},
            )


def _recover_interrupted(
    config: RunConfiguration,
    now: datetime,
    sessions: UploadSessionStore,
    uploader: ChunkedUploader,
    catalog: CatalogStore,
    token: CancellationToken,
    run_id: str,
) -> List[CategoryOutcome]:
    """Finish transfers that an earlier run left behind.

    The artifact this run is about to build is left to the normal flow, which
    reuses the file and resumes its checkpoint. Checkpoints whose artifact is
    gone are discarded.
    """

    current = {artifact_name(paths.category, now) for paths in config.categories}
    outcomes: List[CategoryOutcome] = []
    try:
        interrupted = sessions.interrupted()
    except ArtifactIOError as exc:
        logger.warning(
            "cannot read upload checkpoints; not resuming",
            extra={"stage": "recover", "run_id": run_id, "error": str(exc)},
        )
        return outcomes
    for file_name, session in interrupted:
        if file_name in current:
            continue
        paths = next(
            (
                p
                for p in config.categories
                if p.category.destination_key(file_name) == session.destination_key
            ),
            None,
        )
        extra = {"stage": "recover", "run_id": run_id, "artifact": file_name}
        if paths is None:
            logger.info("interrupted upload is not for a configured category; leaving it", extra=extra)
            continue
        artifact = config.artifact_dir / file_name
        if not artifact.is_file():
            logger.warning("artifact of interrupted upload is gone; discarding checkpoint", extra=extra)
            try:
                sessions.delete(artifact)
            except ArtifactIOError as exc:
                logger.warning("cannot discard checkpoint", extra={**extra, "error": str(exc)})
            continue
        if token.is_cancelled():
            break

        started = session.started_at() or _modified_at(artifact) or now
        logger.info(
            "resuming interrupted upload",
            extra={**extra, "committed_offset": session.committed_offset},
        )
        outcomes.append(
            _deliver(paths.category, artifact, started, uploader, catalog, run_id)
        )
    return outcomes


def _modified_at(path: Path) -> Optional[datetime]:
    try:
        return datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
    except OSError:
        return None


def _publish_category(
    paths: CategoryPaths,
    now: datetime,
    archiver: Archiver,
    uploader: ChunkedUploader,
    catalog: CatalogStore,
    run_id: str,
) -> CategoryOutcome:
    category = paths.category
    try:
        artifact = archiver.build(category, paths.include_paths, paths.exclude_patterns, now)
    except SnapshotterError as exc:
        return _failed(category, "archive", exc, run_id)
    return _deliver(category, artifact, now, uploader, catalog, run_id)


def _deliver(
    category: Category,
    artifact: Path,
    created_at: datetime,
    uploader: ChunkedUploader,
    catalog: CatalogStore,
    run_id: str,
) -> CategoryOutcome:
    """Upload ``artifact`` and record it in the catalog."""

    stage = "upload"
    sha256: Optional[str] = None
    try:
        result = uploader.publish(
            artifact, category.destination_key(artifact.name), created_at=created_at
        )
        sha256 = result.sha256

        stage = "catalog"
        record = ArtifactRecord(
            name=artifact.name,
            content_hash=result.sha256,
            category=category,
            created_at=result.created_at or created_at,
            location=result.ref.key,
        )
        recorded = catalog.record_publication(record)
    except SnapshotterError as exc:
        return _failed(category, stage, exc, run_id, artifact=artifact.name, sha256=sha256)

    logger.info(
        "category published",
        extra={
            "stage": "pipeline",
            "run_id": run_id,
            "category": category.value,
            "artifact": artifact.name,
        },
    )
    return CategoryOutcome(
        category=category,
        artifact=artifact.name,
        sha256=sha256,
        remote_key=result.ref.key,
        upload_skipped=result.skipped,
        evicted=tuple(r.name for r in recorded.evicted),
    )


def _failed(
    category: Category,
    stage: str,
    exc: SnapshotterError,
    run_id: str,
    *,
    artifact: Optional[str] = None,
    sha256: Optional[str] = None,
) -> CategoryOutcome:
    logger.error(
        "category publication failed",
        extra={
            "stage": "pipeline",
            "run_id": run_id,
            "category": category.value,
            "failed_stage": stage,
            "error": f"{type(exc).__name__}: {exc}",
        },
    )
    return CategoryOutcome(
        category=category,
        artifact=artifact,
        sha256=sha256,
        failure=PublicationFailure(category.value, stage, exc),
    )
