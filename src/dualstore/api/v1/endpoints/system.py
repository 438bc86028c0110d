"""Health endpoint for the sync engine."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, status

from dualstore.api.v1.dependencies import ContainerDep
from dualstore.errors import StoreUnavailableError
from dualstore.schemas.health import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["system"])


@router.get("/health", response_model=HealthResponse)
async def get_health(container: ContainerDep) -> HealthResponse:
    """Relational reachability plus outbox and notification backlog.

    Reports ``unavailable`` without a configured relational store and
    responds 503 when the configured store cannot be reached.
    """
    try:
        return container.health.check()
    except StoreUnavailableError as exc:
        logger.warning("Health check failed: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Relational store unreachable",
        ) from exc
