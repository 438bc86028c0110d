"""Main entry point for the dualstore HTTP surface."""

from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from dualstore.api.v1 import sync_router, system_router
from dualstore.core.container import Container, build_container
from dualstore.core.settings import settings

logger = logging.getLogger(__name__)

RUN_WORKER_FLAG = "SYNC_WORKER_IN_PROCESS"


def create_app(container: Container | None = None, *, run_worker: bool | None = None) -> FastAPI:
    """Build the FastAPI app around a wired container.

    Tests pass their own container; production builds one from settings.
    """
    app = FastAPI(
        title=settings.app_name,
        description="Dual-store synchronization engine",
        version=settings.app_version,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
    )
    app.add_middleware(GZipMiddleware)

    app.include_router(sync_router, prefix="/api/v1")
    app.include_router(system_router)

    app.state.container = container or build_container()

    @app.on_event("startup")
    async def on_startup() -> None:
        wired: Container = app.state.container
        start_worker = (
            run_worker if run_worker is not None else wired.selector.flag(RUN_WORKER_FLAG)
        )
        if start_worker and wired.relational is not None:
            await wired.relational.worker.start()
            logger.info("Sync worker started in-process")

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        wired: Container = app.state.container
        if wired.relational is not None:
            await wired.relational.worker.stop()
        await wired.close()

    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint with basic information about the API."""
        return {"name": settings.app_name, "version": settings.app_version, "docs": "/docs"}

    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("dualstore.main:create_app", factory=True, host="0.0.0.0", port=8000)
