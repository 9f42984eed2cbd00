"""
Distribution API

Read-only HTTP surface over the catalog and local artifact copies.

Endpoints:
    GET /catalog           - Current catalog document
    GET /artifacts/{name}  - Artifact download (404 when no local copy)
    GET /health            - Liveness check
"""

from __future__ import annotations

import logging
from typing import Any, Dict

import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.responses import FileResponse

from .distribution import DistributionService
from .errors import ArtifactNotFoundError

logger = logging.getLogger(__name__)


def create_app(service: DistributionService) -> FastAPI:
    """Build the FastAPI application serving ``service``."""

    app = FastAPI(title="Snapshotter", docs_url=None, redoc_url=None)

    @app.get("/health")
    def health() -> Dict[str, Any]:
        return {"status": "ok"}

    @app.get("/catalog")
    def list_catalog() -> Dict[str, Any]:
        return service.list().to_document()

    @app.get("/artifacts/{name}")
    def download_artifact(name: str) -> FileResponse:
        try:
            path = service.fetch(name)
        except ArtifactNotFoundError:
            raise HTTPException(status_code=404, detail="Artifact not found")
        return FileResponse(
            str(path), media_type="application/octet-stream", filename=path.name
        )

    return app


def serve(service: DistributionService, *, host: str, port: int, timeout: float = 30.0) -> None:
    """Run the API with uvicorn until interrupted."""

    logger.info("Listening on %s:%s", host, port, extra={"stage": "api"})
    uvicorn.run(
        create_app(service),
        host=host,
        port=port,
        timeout_keep_alive=int(timeout),
        log_config=None,
    )
