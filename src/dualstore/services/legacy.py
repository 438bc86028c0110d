"""Client for the legacy tabular store.

The rest of the engine depends only on the ``LegacyStore`` protocol:
per-table list/get/create/update/delete keyed by opaque record ids. The
``LegacyApiClient`` implementation talks to the store's REST API over
httpx and includes:

- Bearer-token authentication
- Circuit breaker pattern for fault tolerance
- Typed errors separating transient failures from rejected requests
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol
from urllib.parse import quote

import httpx

from dualstore.core.settings import Settings, settings
from dualstore.errors import (
    LegacyStoreDisabledError,
    LegacyStoreError,
    LegacyStoreUnavailableError,
)

logger = logging.getLogger(__name__)

# HTTP status codes
HTTP_NOT_FOUND = 404
HTTP_TOO_MANY_REQUESTS = 429
HTTP_INTERNAL_SERVER_ERROR = 500
HTTP_BAD_REQUEST = 400

# Upper bound on records per list page accepted by the REST API.
PAGE_SIZE = 100


class LegacyTable:
    """Table names in the legacy base."""

    USERS = "Gebruikers"
    PROGRAMS = "Mentale Fitnessprogramma's"
    PROGRAM_SCHEDULE = "Programmaplanning"
    METHOD_USAGE = "Methodegebruik"
    HABIT_USAGE = "Gewoontegebruik"
    PERSONAL_GOALS = "Persoonlijke doelen"
    PERSONAL_GOAL_USAGE = "Persoonlijke doelen gebruik"
    OVERTUIGING_USAGE = "Overtuigingen gebruik"
    PERSOONLIJKE_OVERTUIGINGEN = "Persoonlijke overtuigingen"


@dataclass(frozen=True)
class LegacyRecord:
    """A legacy row: opaque record id plus a field map."""

    id: str
    fields: Mapping[str, Any] = field(default_factory=dict)


class LegacyStore(Protocol):
    async def list_records(
        self,
        table: str,
        *,
        filter_formula: str | None = None,
        max_records: int | None = None,
    ) -> list[LegacyRecord]: ...

    async def get_record(self, table: str, record_id: str) -> LegacyRecord | None: ...

    async def create_record(self, table: str, fields: Mapping[str, Any]) -> LegacyRecord: ...

    async def update_record(
        self, table: str, record_id: str, fields: Mapping[str, Any]
    ) -> LegacyRecord: ...

    async def delete_record(self, table: str, record_id: str) -> None: ...


def escape_formula_value(value: str) -> str:
    """Escape a value for use inside a double-quoted formula string literal."""
    return value.replace("\\", "\\\\").replace('"', '\\"')


def field_equals_formula(field_name: str, value: str, *, ignore_case: bool = False) -> str:
    """Formula matching one field value. ``ignore_case`` compares the lower-cased field."""
    if ignore_case:
        return f'LOWER({{{field_name}}}) = "{escape_formula_value(value.lower())}"'
    return f'{{{field_name}}} = "{escape_formula_value(value)}"'


class CircuitState(Enum):
    """Circuit breaker states for fault tolerance."""

    CLOSED = "closed"  # Normal operation - requests allowed
    OPEN = "open"  # Circuit is open - requests blocked
    HALF_OPEN = "half_open"  # Testing if service is back - limited requests allowed


@dataclass
class CircuitBreaker:
    """Circuit breaker for legacy store requests."""

    failure_threshold: int = 5
    recovery_timeout: float = 60.0
    success_threshold: int = 3
    clock: Callable[[], float] = time.monotonic

    _state: CircuitState = CircuitState.CLOSED
    _failure_count: int = 0
    _success_count: int = 0
    _last_failure_time: float = 0.0

    def is_open(self) -> bool:
        if self._state == CircuitState.OPEN:
            if self.clock() - self._last_failure_time > self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
                self._success_count = 0
            return self._state == CircuitState.OPEN
        return False

    def record_success(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            self._success_count += 1
            if self._success_count >= self.success_threshold:
                self._state = CircuitState.CLOSED
                self._failure_count = 0
        elif self._state == CircuitState.CLOSED:
            self._failure_count = 0

    def record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = self.clock()

        if self._state == CircuitState.HALF_OPEN or self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN

    @property
    def state(self) -> CircuitState:
        return self._state


@dataclass(frozen=True)
class LegacyApiConfig:
    """Immutable configuration for legacy API access."""

    base_url: str
    base_id: str | None
    api_key: str | None
    timeout_seconds: float

    @property
    def enabled(self) -> bool:
        return bool(self.api_key and self.base_id)


def load_legacy_config(config: Settings = settings) -> LegacyApiConfig:
    return LegacyApiConfig(
        base_url=config.legacy_api_url.rstrip("/"),
        base_id=config.legacy_base_id,
        api_key=config.legacy_api_key,
        timeout_seconds=float(config.legacy_http_timeout_seconds),
    )


class LegacyApiClient:
    """httpx-backed ``LegacyStore`` implementation."""

    def __init__(
        self,
        config: LegacyApiConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        circuit_breaker: CircuitBreaker | None = None,
    ) -> None:
        self.config = config or load_legacy_config()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()
        self._circuit_breaker = circuit_breaker or CircuitBreaker()

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    @property
    def circuit_state(self) -> CircuitState:
        return self._circuit_breaker.state

    async def _ensure_client(self) -> httpx.AsyncClient:
        if not self.enabled:
            raise LegacyStoreDisabledError("Legacy store credentials are not configured")

        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    base_url=f"{self.config.base_url}/{self.config.base_id}",
                    timeout=httpx.Timeout(self.config.timeout_seconds),
                    headers={"Authorization": f"Bearer {self.config.api_key}"},
                    transport=self._transport,
                )
        return self._client

    @dataclass
    class RequestParams:
        """Parameters for HTTP requests."""

        method: str
        path: str
        json_data: Any | None = None
        params: Mapping[str, Any] | list[tuple[str, Any]] | None = None

    async def _request(self, params: RequestParams) -> httpx.Response:
        if self._circuit_breaker.is_open():
            raise LegacyStoreUnavailableError("Legacy store circuit breaker is open")

        client = await self._ensure_client()
        try:
            response = await client.request(
                params.method,
                params.path,
                json=params.json_data,
                params=params.params,
            )
        except httpx.HTTPError as exc:
            self._circuit_breaker.record_failure()
            raise LegacyStoreUnavailableError(f"Legacy store request failed: {exc}") from exc

        status = response.status_code
        if status >= HTTP_INTERNAL_SERVER_ERROR or status == HTTP_TOO_MANY_REQUESTS:
            self._circuit_breaker.record_failure()
            raise LegacyStoreUnavailableError(
                f"Legacy store responded with {status} for {params.method} {params.path}",
                status_code=status,
            )

        self._circuit_breaker.record_success()
        return response

    @staticmethod
    def _table_path(table: str, record_id: str | None = None) -> str:
        path = f"/{quote(table, safe='')}"
        if record_id:
            path += f"/{quote(record_id, safe='')}"
        return path

    @staticmethod
    def _raise_for_rejection(response: httpx.Response, action: str) -> None:
        if response.status_code >= HTTP_BAD_REQUEST:
            raise LegacyStoreError(
                f"Legacy store rejected {action} ({response.status_code}): {response.text[:200]}",
                status_code=response.status_code,
            )

    @staticmethod
    def _to_record(data: Mapping[str, Any]) -> LegacyRecord:
        return LegacyRecord(id=str(data["id"]), fields=dict(data.get("fields") or {}))

    async def list_records(
        self,
        table: str,
        *,
        filter_formula: str | None = None,
        max_records: int | None = None,
    ) -> list[LegacyRecord]:
        records: list[LegacyRecord] = []
        offset: str | None = None

        while True:
            query: dict[str, Any] = {"pageSize": PAGE_SIZE}
            if filter_formula:
                query["filterByFormula"] = filter_formula
            if max_records is not None:
                query["maxRecords"] = max_records
            if offset:
                query["offset"] = offset

            response = await self._request(
                self.RequestParams(method="GET", path=self._table_path(table), params=query)
            )
            self._raise_for_rejection(response, f"list {table}")
            body = response.json()
            records.extend(self._to_record(item) for item in body.get("records", []))

            offset = body.get("offset")
            if not offset or (max_records is not None and len(records) >= max_records):
                break

        if max_records is not None:
            return records[:max_records]
        return records

    async def get_record(self, table: str, record_id: str) -> LegacyRecord | None:
        response = await self._request(
            self.RequestParams(method="GET", path=self._table_path(table, record_id))
        )
        if response.status_code == HTTP_NOT_FOUND:
            return None
        self._raise_for_rejection(response, f"get {table}/{record_id}")
        return self._to_record(response.json())

    async def create_record(self, table: str, fields: Mapping[str, Any]) -> LegacyRecord:
        response = await self._request(
            self.RequestParams(
                method="POST",
                path=self._table_path(table),
                json_data={"fields": dict(fields), "typecast": True},
            )
        )
        self._raise_for_rejection(response, f"create in {table}")
        return self._to_record(response.json())

    async def update_record(
        self, table: str, record_id: str, fields: Mapping[str, Any]
    ) -> LegacyRecord:
        response = await self._request(
            self.RequestParams(
                method="PATCH",
                path=self._table_path(table, record_id),
                json_data={"fields": dict(fields), "typecast": True},
            )
        )
        self._raise_for_rejection(response, f"update {table}/{record_id}")
        return self._to_record(response.json())

    async def delete_record(self, table: str, record_id: str) -> None:
        response = await self._request(
            self.RequestParams(method="DELETE", path=self._table_path(table, record_id))
        )
        if response.status_code == HTTP_NOT_FOUND:
            logger.info("Legacy record %s/%s already gone", table, record_id)
            return
        self._raise_for_rejection(response, f"delete {table}/{record_id}")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
