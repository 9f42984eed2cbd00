"""Shared fixtures for the snapshotter test suite."""

from __future__ import annotations

import hashlib
import os
import threading
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Set

import pytest

from Snapshotter.catalog.records import ArtifactRecord
from Snapshotter.categories import Category
from Snapshotter.errors import NetworkError
from Snapshotter.storage.base import PartTag, RemoteObjectRef
from Snapshotter.upload.sessions import UploadSessionStore

BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def set_local_timezone(zone: Optional[str]) -> None:
    """Switch the process time zone (POSIX ``TZ`` syntax); ``None`` clears it."""

    if zone is None:
        os.environ.pop("TZ", None)
    else:
        os.environ["TZ"] = zone
    time.tzset()


@pytest.fixture(autouse=True)
def utc_local_time():
    """Artifact names use local time; pin it so expected names are stable."""

    previous = os.environ.get("TZ")
    set_local_timezone("UTC")
    yield
    set_local_timezone(previous)


@pytest.fixture
def local_timezone() -> Callable[[Optional[str]], None]:
    return set_local_timezone


class MemoryObjectStore:
    """In-memory object store with failure injection.

    ``fail_parts`` lists part numbers whose transfer raises ``NetworkError``;
    ``on_part`` is called with each part number before it is stored.
    """

    def __init__(self, *, part_delay: float = 0.0) -> None:
        self.objects: Dict[str, bytes] = {}
        self.sessions: Dict[str, Dict[int, bytes]] = {}
        self.part_calls: List[int] = []
        self.deleted: List[str] = []
        self.fail_parts: Set[int] = set()
        self.fail_deletes = False
        self.on_part: Optional[Callable[[int], None]] = None
        self.part_delay = part_delay
        self.in_flight = 0
        self.max_in_flight = 0
        self._counter = 0
        self._lock = threading.Lock()

    def base_url(self) -> str:
        return "memory://bucket"

    def _ref(self, key: str, data: bytes) -> RemoteObjectRef:
        return RemoteObjectRef(
            key=key, size=len(data), etag=hashlib.md5(data).hexdigest(), url=f"memory://bucket/{key}"
        )

    def head(self, key: str) -> Optional[RemoteObjectRef]:
        data = self.objects.get(key)
        return None if data is None else self._ref(key, data)

    def create_session(self, key: str) -> str:
        with self._lock:
            self._counter += 1
            session = f"memory://sessions/{self._counter}?key={key}"
            self.sessions[session] = {}
        return session

    def session_active(self, session: str) -> bool:
        return session in self.sessions

    def upload_part(self, session: str, part_number: int, data: bytes) -> str:
        with self._lock:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
            self.part_calls.append(part_number)
        try:
            if self.part_delay:
                time.sleep(self.part_delay)
            if self.on_part is not None:
                self.on_part(part_number)
            if part_number in self.fail_parts:
                raise NetworkError(f"injected failure on part {part_number}", status_code=503)
            if session not in self.sessions:
                raise NetworkError("no such upload session", status_code=404)
            self.sessions[session][part_number] = bytes(data)
            return hashlib.md5(data).hexdigest()
        finally:
            with self._lock:
                self.in_flight -= 1

    def complete_session(self, session: str, key: str, parts: Sequence[PartTag]) -> RemoteObjectRef:
        staged = self.sessions.pop(session)
        numbers = [number for number, _ in parts]
        assert numbers == list(range(1, len(parts) + 1))
        for number, tag in parts:
            assert hashlib.md5(staged[number]).hexdigest() == tag
        data = b"".join(staged[number] for number in numbers)
        self.objects[key] = data
        return self._ref(key, data)

    def put_bytes(self, key: str, data: bytes) -> RemoteObjectRef:
        self.objects[key] = bytes(data)
        return self._ref(key, data)

    def delete(self, key: str) -> None:
        if self.fail_deletes:
            raise NetworkError(f"delete {key}: HTTP 500", status_code=500)
        self.deleted.append(key)
        self.objects.pop(key, None)


@pytest.fixture
def memory_store() -> MemoryObjectStore:
    return MemoryObjectStore()


@pytest.fixture
def session_store(tmp_path: Path) -> UploadSessionStore:
    return UploadSessionStore(tmp_path / "state")


@pytest.fixture
def make_file(tmp_path: Path) -> Callable[..., Path]:
    """Create a file of deterministic content under ``tmp_path/artifacts``."""

    def _make(name: str = "artifact.tar.lz4", size: int = 300, content: Optional[bytes] = None) -> Path:
        directory = tmp_path / "artifacts"
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / name
        path.write_bytes(content if content is not None else bytes(i % 251 for i in range(size)))
        return path

    return _make


def make_record(
    name: str,
    category: Category = Category.BEACOND,
    minutes: int = 0,
    content: bytes = b"",
) -> ArtifactRecord:
    """Return a record created ``minutes`` after :data:`BASE_TIME`."""

    return ArtifactRecord(
        name=name,
        content_hash=hashlib.sha256(content or name.encode()).hexdigest(),
        category=category,
        created_at=BASE_TIME + timedelta(minutes=minutes),
    )


@pytest.fixture
def make_entry() -> Callable[..., ArtifactRecord]:
    return make_record


@pytest.fixture
def base_time() -> datetime:
    return BASE_TIME


@pytest.fixture
def store_factory() -> Callable[..., MemoryObjectStore]:
    return MemoryObjectStore
