# === NAVMAP v1 ===
# {
#   "module": "Snapshotter.settings",
#   "purpose": "Configuration models, YAML loading, environment overrides, and run configuration",
#   "sections": [
#     {
#       "id": "loggingconfiguration",
#       "name": "LoggingConfiguration",
#       "anchor": "class-loggingconfiguration",
#       "kind": "class"
#     },
#     {
#       "id": "servicesettings",
#       "name": "ServiceSettings",
#       "anchor": "class-servicesettings",
#       "kind": "class"
#     },
#     {
#       "id": "storagesettings",
#       "name": "StorageSettings",
#       "anchor": "class-storagesettings",
#       "kind": "class"
#     },
#     {
#       "id": "uploadsettings",
#       "name": "UploadSettings",
#       "anchor": "class-uploadsettings",
#       "kind": "class"
#     },
#     {
#       "id": "catalogsettings",
#       "name": "CatalogSettings",
#       "anchor": "class-catalogsettings",
#       "kind": "class"
#     },
#     {
#       "id": "schedulesettings",
#       "name": "ScheduleSettings",
#       "anchor": "class-schedulesettings",
#       "kind": "class"
#     },
#     {
#       "id": "apisettings",
#       "name": "ApiSettings",
#       "anchor": "class-apisettings",
#       "kind": "class"
#     },
#     {
#       "id": "snapshottersettings",
#       "name": "SnapshotterSettings",
#       "anchor": "class-snapshottersettings",
#       "kind": "class"
#     },
#     {
#       "id": "environmentoverrides",
#       "name": "EnvironmentOverrides",
#       "anchor": "class-environmentoverrides",
#       "kind": "class"
#     },
#     {
#       "id": "runconfiguration",
#       "name": "RunConfiguration",
#       "anchor": "class-runconfiguration",
#       "kind": "class"
#     },
#     {
#       "id": "load-settings",
#       "name": "load_settings",
#       "anchor": "function-load-settings",
#       "kind": "function"
#     },
#     {
#       "id": "build-run-configuration",
#       "name": "build_run_configuration",
#       "anchor": "function-build-run-configuration",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""Configuration models for the snapshot publisher.

Settings are read from an optional YAML document, overlaid with environment
variables, and validated with Pydantic. The scheduler never hands mutable
settings to a run: each invocation receives a frozen
:class:`RunConfiguration` built by :func:`build_run_configuration`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, Optional, Tuple

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .categories import Category
from .errors import ConfigError

__all__ = [
    "CHUNK_SIZE",
    "MAX_CONCURRENT_UPLOADS",
    "LoggingConfiguration",
    "ServiceSettings",
    "StorageSettings",
    "UploadSettings",
    "CatalogSettings",
    "ScheduleSettings",
    "ApiSettings",
    "SnapshotterSettings",
    "EnvironmentOverrides",
    "CategoryPaths",
    "RunConfiguration",
    "load_raw_yaml",
    "load_settings",
    "build_run_configuration",
]

CHUNK_SIZE = 128 * 1024 * 1024
MAX_CONCURRENT_UPLOADS = 12
PROGRESS_LOG_INTERVAL_SEC = 300.0


def _normalize_path(value: Any) -> Path:
    if isinstance(value, str):
        return Path(value).expanduser().resolve()
    if isinstance(value, Path):
        return value.expanduser().resolve()
    raise ValueError("path must be string or Path")


class LoggingConfiguration(BaseModel):
    """Logging-related configuration."""

    level: str = Field(default="INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR)")
    max_log_size_mb: int = Field(default=100, gt=0, description="Maximum size of rotated log files")
    backup_count: int = Field(default=5, ge=0, description="Rotated log files kept beside the live one")
    log_dir: Optional[Path] = Field(default=None, description="Directory for JSON log files")

    @field_validator("level")
    @classmethod
    def validate_level(cls, value: str) -> str:
        """Normalise logging levels and ensure they match the supported set."""

        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR"}
        upper = value.upper()
        if upper not in valid_levels:
            raise ValueError(f"level must be one of {valid_levels}")
        return upper

    model_config = {"validate_assignment": True}


class ServiceSettings(BaseModel):
    """Location of the node data and the compose project that runs it."""

    node_path: Path = Field(default_factory=Path.cwd, description="Node data root")
    compose_file: Optional[Path] = Field(
        default=None, description="docker compose file; when unset the service is not paused"
    )

    @field_validator("node_path", mode="before")
    @classmethod
    def normalize_node_path(cls, v: Any) -> Path:
        return _normalize_path(v)

    model_config = {"validate_assignment": True, "extra": "forbid"}


class StorageSettings(BaseModel):
    """Remote object store destination."""

    backend: Literal["gcs", "local"] = Field(default="gcs")
    bucket: Optional[str] = Field(default=None, description="GCS bucket name")
    endpoint: str = Field(default="https://storage.googleapis.com")
    access_token: Optional[str] = Field(
        default=None, description="Fixed OAuth bearer token; overrides credential lookup"
    )
    auth: Literal["adc", "anonymous"] = Field(
        default="adc",
        description="adc: refreshable Application Default Credentials; anonymous: no token",
    )
    root: Optional[Path] = Field(default=None, description="Root directory for the local backend")
    timeout_sec: float = Field(default=300.0, gt=0.0, le=3600.0)

    model_config = {"validate_assignment": True, "extra": "forbid"}


class UploadSettings(BaseModel):
    """Chunked upload tuning."""

    chunk_size_bytes: int = Field(default=CHUNK_SIZE, ge=1)
    max_concurrent_uploads: int = Field(default=MAX_CONCURRENT_UPLOADS, ge=1, le=64)
    progress_log_interval_sec: float = Field(default=PROGRESS_LOG_INTERVAL_SEC, gt=0.0)
    state_dir: Optional[Path] = Field(
        default=None, description="Directory for in-flight upload sessions"
    )

    model_config = {"validate_assignment": True, "extra": "forbid"}


class CatalogSettings(BaseModel):
    """Catalog document and retention policy."""

    artifact_dir: Path = Field(
        default_factory=lambda: Path.cwd() / "snapshots",
        description="Directory holding local artifact copies and the catalog document",
    )
    document_name: str = Field(default="metadata.json")
    keep: Optional[int] = Field(default=None, description="Artifacts retained per category")
    mirror_remote: bool = Field(default=True, description="Mirror the catalog to remote storage")

    @field_validator("artifact_dir", mode="before")
    @classmethod
    def normalize_artifact_dir(cls, v: Any) -> Path:
        return _normalize_path(v)

    @field_validator("document_name")
    @classmethod
    def validate_document_name(cls, v: str) -> str:
        """Ensure document_name is a plain filename."""
        if "/" in v or "\\" in v:
            raise ValueError("document_name must be a filename, not a path")
        if not v.strip():
            raise ValueError("document_name cannot be empty")
        return v.strip()

    model_config = {"validate_assignment": True, "extra": "forbid"}


class ScheduleSettings(BaseModel):
    """When to run and what to archive."""

    cron: Optional[str] = Field(default=None, description="Cron expression for runs")
    categories: List[Category] = Field(default_factory=lambda: list(Category))
    include_paths: Dict[Category, List[str]] = Field(default_factory=dict)
    exclude_patterns: Dict[Category, List[str]] = Field(default_factory=dict)

    @field_validator("categories", mode="before")
    @classmethod
    def parse_categories(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = [item for item in v.split(",") if item.strip()]
        return [Category.parse(item) if isinstance(item, str) else item for item in v]

    model_config = {"validate_assignment": True, "extra": "forbid"}


class ApiSettings(BaseModel):
    """Read-only distribution API."""

    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8080, ge=1, le=65535)
    timeout_sec: float = Field(default=30.0, gt=0.0)

    model_config = {"validate_assignment": True, "extra": "forbid"}


class SnapshotterSettings(BaseModel):
    """Top-level configuration document."""

    service: ServiceSettings = Field(default_factory=ServiceSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    upload: UploadSettings = Field(default_factory=UploadSettings)
    catalog: CatalogSettings = Field(default_factory=CatalogSettings)
    schedule: ScheduleSettings = Field(default_factory=ScheduleSettings)
    api: ApiSettings = Field(default_factory=ApiSettings)
    logging: LoggingConfiguration = Field(default_factory=LoggingConfiguration)

    model_config = {"validate_assignment": True, "extra": "forbid"}


class EnvironmentOverrides(BaseSettings):
    """Pydantic settings model exposing environment-derived overrides."""

    node_path: Optional[Path] = Field(default=None, alias="NODE_PATH")
    compose_file: Optional[Path] = Field(default=None, alias="DOCKER_COMPOSE_FILE")
    cron: Optional[str] = Field(default=None, alias="CRON_JOB_TIME")
    bucket: Optional[str] = Field(default=None, alias="GCS_BUCKET")
    access_token: Optional[str] = Field(default=None, alias="GCS_ACCESS_TOKEN")
    storage_backend: Optional[str] = Field(default=None, alias="SNAPSHOTTER_STORAGE_BACKEND")
    storage_root: Optional[Path] = Field(default=None, alias="SNAPSHOTTER_STORAGE_ROOT")
    storage_auth: Optional[str] = Field(default=None, alias="SNAPSHOTTER_STORAGE_AUTH")
    artifact_dir: Optional[Path] = Field(default=None, alias="SNAPSHOTTER_ARTIFACT_DIR")
    keep: Optional[int] = Field(default=None, alias="SNAPSHOTTER_KEEP")
    api_port: Optional[int] = Field(default=None, alias="SNAPSHOTTER_API_PORT")
    log_level: Optional[str] = Field(default=None, alias="SNAPSHOTTER_LOG_LEVEL")

    model_config = SettingsConfigDict(
        env_prefix="SNAPSHOTTER_", case_sensitive=False, extra="ignore"
    )


def _apply_env_overrides(settings: SnapshotterSettings) -> None:
    """Mutate ``settings`` in-place using values from :class:`EnvironmentOverrides`."""

    env = EnvironmentOverrides()
    logger = logging.getLogger("Snapshotter")

    overrides = (
        ("node_path", settings.service, "node_path"),
        ("compose_file", settings.service, "compose_file"),
        ("cron", settings.schedule, "cron"),
        ("bucket", settings.storage, "bucket"),
        ("access_token", settings.storage, "access_token"),
        ("storage_backend", settings.storage, "backend"),
        ("storage_root", settings.storage, "root"),
        ("storage_auth", settings.storage, "auth"),
        ("artifact_dir", settings.catalog, "artifact_dir"),
        ("keep", settings.catalog, "keep"),
        ("api_port", settings.api, "port"),
        ("log_level", settings.logging, "level"),
    )
    for env_name, section, attribute in overrides:
        value = getattr(env, env_name)
        if value is None:
            continue
        setattr(section, attribute, value)
        shown = "***masked***" if env_name == "access_token" else value
        logger.info(
            "Config overridden: %s=%s", attribute, shown, extra={"stage": "config"}
        )


def load_raw_yaml(config_path: Path) -> Mapping[str, object]:
    """Read a YAML configuration file and return its top-level mapping."""

    normalized_path = Path(config_path).expanduser()
    if not normalized_path.exists():
        raise ConfigError(f"Configuration file not found: {normalized_path}")

    try:
        with normalized_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Configuration file '{normalized_path}' contains invalid YAML") from exc

    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ConfigError("Configuration file must contain a mapping at the root")
    return data


def load_settings(config_path: Optional[Path] = None) -> SnapshotterSettings:
    """Load settings from ``config_path`` (if any) and the environment.

    Raises:
        ConfigError: If the YAML is unreadable or fails validation.
    """

    raw = load_raw_yaml(config_path) if config_path is not None else {}
    try:
        settings = SnapshotterSettings.model_validate(dict(raw))
        _apply_env_overrides(settings)
    except PydanticValidationError as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc
    return settings


@dataclass(frozen=True)
class CategoryPaths:
    """Include paths and exclude patterns for one category."""

    category: Category
    include_paths: Tuple[str, ...]
    exclude_patterns: Tuple[str, ...]


@dataclass(frozen=True)
class RunConfiguration:
    """Immutable inputs for one publication run.

    Attributes:
        categories: Categories archived by the run, in publication order.
        node_path: Root directory that include paths are relative to.
        artifact_dir: Local directory for artifacts and the catalog document.
        catalog_path: Catalog document path.
        keep: Artifacts retained per category.
        chunk_size: Bytes per uploaded chunk.
        max_concurrent_uploads: Chunk transfers allowed in flight.
        progress_log_interval: Seconds between upload progress log lines.
        upload_state_dir: Directory for persisted upload sessions.
        mirror_catalog: Whether to mirror the catalog document remotely.
    """

    categories: Tuple[CategoryPaths, ...]
    node_path: Path
    artifact_dir: Path
    catalog_path: Path
    keep: int
    chunk_size: int = CHUNK_SIZE
    max_concurrent_uploads: int = MAX_CONCURRENT_UPLOADS
    progress_log_interval: float = PROGRESS_LOG_INTERVAL_SEC
    upload_state_dir: Path = field(default_factory=lambda: Path.cwd() / ".uploads")
    mirror_catalog: bool = True

    @property
    def run_lock_path(self) -> Path:
        return self.artifact_dir / ".publication.lock"


def build_run_configuration(settings: SnapshotterSettings) -> RunConfiguration:
    """Validate required destination/retention settings and freeze them.

    Raises:
        ConfigError: When the destination or retention count is missing.
    """

    storage = settings.storage
    if storage.backend == "gcs" and not storage.bucket:
        raise ConfigError("a GCS bucket is required (storage.bucket or GCS_BUCKET)")
    if storage.backend == "local" and storage.root is None:
        raise ConfigError("storage.root is required for the local backend")
    keep = settings.catalog.keep
    if keep is None:
        raise ConfigError("catalog.keep (retention count) is required")
    if keep < 1:
        raise ConfigError(f"catalog.keep must be at least 1, got {keep}")
    if not settings.schedule.categories:
        raise ConfigError("at least one category must be configured")

    schedule = settings.schedule
    categories = []
    for category in dict.fromkeys(schedule.categories):
        layout = category.layout
        include = schedule.include_paths.get(category) or list(layout.include_paths)
        exclude = schedule.exclude_patterns.get(category)
        if exclude is None:
            exclude = list(layout.exclude_patterns)
        categories.append(
            CategoryPaths(
                category=category,
                include_paths=tuple(include),
                exclude_patterns=tuple(exclude),
            )
        )

    artifact_dir = settings.catalog.artifact_dir
    state_dir = settings.upload.state_dir or artifact_dir / ".uploads"
    return RunConfiguration(
        categories=tuple(categories),
        node_path=settings.service.node_path,
        artifact_dir=artifact_dir,
        catalog_path=artifact_dir / settings.catalog.document_name,
        keep=keep,
        chunk_size=settings.upload.chunk_size_bytes,
        max_concurrent_uploads=settings.upload.max_concurrent_uploads,
        progress_log_interval=settings.upload.progress_log_interval_sec,
        upload_state_dir=Path(state_dir),
        mirror_catalog=settings.catalog.mirror_remote,
    )
