"""Sync-related Pydantic schemas."""

from datetime import datetime
from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class WebhookUser(BaseModel):
    """User fields carried by a legacy change webhook."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., min_length=1, description="Legacy record identifier")
    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    name: str = Field("", description="Display name")
    role: str | None = None
    language_code: str | None = Field(None, alias="languageCode")
    password_hash: str | None = Field(None, alias="passwordHash")


class UserWebhookPayload(BaseModel):
    """One legacy-side user change."""

    model_config = ConfigDict(populate_by_name=True)

    event_id: str = Field(..., min_length=1, alias="eventId")
    event_type: Literal["user.created", "user.updated", "user.deleted"] = Field(
        ..., alias="eventType"
    )
    occurred_at: datetime = Field(..., alias="occurredAt")
    user: WebhookUser


class WebhookResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    event_id: str = Field(..., serialization_alias="eventId")
    status: Literal["processed", "deduplicated"]


class ReplayResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    dead_letter_id: int = Field(..., serialization_alias="deadLetterId")
    replayed: bool


class InboundUserFields(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str | None = None
    email: str | None = None
    role: str | None = None
    language_code: str | None = Field(None, alias="languageCode")
    password_hash: str | None = Field(None, alias="passwordHash")


class InboundUserRecord(InboundUserFields):
    """A user in an inbound batch, either flat or with its values under ``fields``."""

    id: str | None = None
    fields: InboundUserFields | None = None

    def resolved(self) -> InboundUserFields:
        return self.fields if self.fields is not None else self


class InboundBatchRequest(BaseModel):
    """Batch of legacy user records, or a single record id to refetch."""

    model_config = ConfigDict(populate_by_name=True)

    table: str
    event_id: str | None = Field(None, validation_alias=AliasChoices("eventId", "event_id"))
    record_id: str | None = Field(None, validation_alias=AliasChoices("recordId", "record_id"))
    records: list[InboundUserRecord] | None = None


class InboundBatchResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    event_id: str = Field(..., serialization_alias="eventId")
    deduplicated: bool
    synced: int
