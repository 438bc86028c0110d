"""Inbound webhook, inbound batch and dead-letter replay endpoints."""

from __future__ import annotations

import logging
import time
from typing import Annotated

from fastapi import APIRouter, Header, HTTPException, Request, status
from pydantic import ValidationError

from dualstore.api.v1.dependencies import ContainerDep, RelationalDep
from dualstore.core.security import secrets_match, verify_hmac_signature
from dualstore.errors import LegacyStoreError
from dualstore.repositories.user_repo import LegacyUserProfile
from dualstore.schemas.sync import (
    InboundBatchRequest,
    InboundBatchResponse,
    ReplayResponse,
    UserWebhookPayload,
    WebhookResponse,
)
from dualstore.services.inbound import profile_from_batch_record

logger = logging.getLogger(__name__)

USER_WEBHOOK_FLAG = "USER_WEBHOOK_SYNC_ENABLED"

router = APIRouter(prefix="/sync", tags=["sync"])


@router.post("/users/webhook", response_model=WebhookResponse, response_model_by_alias=True)
async def receive_user_webhook(
    request: Request,
    container: ContainerDep,
    x_signature: Annotated[str | None, Header()] = None,
) -> WebhookResponse:
    """Apply a signed legacy-side user change.

    The signature is checked against the raw request body before anything
    is parsed or written.
    """
    if not container.selector.flag(USER_WEBHOOK_FLAG, default=False):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="User webhook sync is disabled",
        )

    secret = container.settings.legacy_webhook_secret
    if not secret:
        logger.error("LEGACY_WEBHOOK_SECRET is not configured")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook not configured",
        )
    if not x_signature:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing signature")

    raw_body = await request.body()
    if not verify_hmac_signature(raw_body, x_signature, secret):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")

    try:
        payload = UserWebhookPayload.model_validate_json(raw_body)
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid payload: {exc.errors()[0]['msg']}",
        ) from exc

    if container.relational is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Relational store is not configured",
        )

    result = container.relational.inbound.apply(payload)
    return WebhookResponse(
        event_id=result.event_id,
        status="deduplicated" if result.deduplicated else "processed",
    )


@router.post(
    "/dead-letter/{dead_letter_id}/replay",
    response_model=ReplayResponse,
    response_model_by_alias=True,
)
async def replay_dead_letter(
    dead_letter_id: int,
    container: ContainerDep,
    relational: RelationalDep,
    x_sync_secret: Annotated[str | None, Header()] = None,
) -> ReplayResponse:
    """Re-inject a dead-lettered event into the outbox."""
    if not secrets_match(x_sync_secret, container.settings.sync_admin_secret):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    if not relational.dead_letters.replay(dead_letter_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Dead-letter event not found",
        )
    return ReplayResponse(dead_letter_id=dead_letter_id, replayed=True)


@router.post("/inbound", response_model=InboundBatchResponse, response_model_by_alias=True)
async def receive_inbound_batch(
    request: Request,
    container: ContainerDep,
    relational: RelationalDep,
    x_sync_secret: Annotated[str | None, Header()] = None,
) -> InboundBatchResponse:
    """Upsert a batch of legacy users, or refetch one user by record id.

    Each batch is applied once per event id.
    """
    if not secrets_match(x_sync_secret, container.settings.inbound_sync_secret):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    try:
        body = InboundBatchRequest.model_validate_json(await request.body())
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid payload: {exc.errors()[0]['msg']}",
        ) from exc

    if body.table != "users":
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Only the users table is supported on this endpoint",
        )

    event_id = body.event_id or f"{int(time.time() * 1000)}-{body.record_id or 'batch'}"
    inbound = relational.inbound

    profiles: list[LegacyUserProfile] = []
    if body.records is not None:
        profiles = [
            profile
            for profile in (profile_from_batch_record(record) for record in body.records)
            if profile is not None
        ]
    elif body.record_id:
        try:
            loaded = await inbound.fetch_profile(body.record_id)
        except LegacyStoreError as exc:
            logger.warning("Inbound refetch of %s failed: %s", body.record_id, exc)
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Legacy store unavailable",
            ) from exc
        if loaded is not None:
            profiles.append(loaded)

    if not profiles:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No valid user records in payload",
        )

    result = inbound.apply_batch(event_id, profiles)
    return InboundBatchResponse(
        event_id=result.event_id, deduplicated=result.deduplicated, synced=result.synced
    )
