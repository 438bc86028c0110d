"""Exception hierarchy shared across the sync engine.

Errors fall into four families: configuration problems (fatal, never
retried), transient store failures (retried by the pool or the outbox
pipeline), conflict/validation errors (surfaced to the caller as-is), and
permanent delivery failures, which are recorded as status transitions
rather than raised.
"""

from __future__ import annotations


class DualStoreError(RuntimeError):
    """Base class for all sync engine failures."""


class ConfigurationError(DualStoreError):
    """A required connection string, secret or credential is missing."""


class StoreUnavailableError(DualStoreError):
    """The relational store could not be reached."""


class StoreConnectionTimeoutError(StoreUnavailableError):
    """No pooled connection became available within the configured timeout."""


class LegacyStoreError(DualStoreError):
    """The legacy tabular store rejected or failed a request."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class LegacyStoreUnavailableError(LegacyStoreError):
    """Network failure, throttling, server error or an open circuit."""


class LegacyStoreDisabledError(LegacyStoreError):
    """Raised when legacy operations are attempted without credentials."""


class RetryableSyncError(DualStoreError):
    """A delivery precondition is not met yet, e.g. a parent mapping is missing."""


class UnsupportedEntityError(DualStoreError):
    """An outbox event names an entity type with no legacy writer."""


class DuplicateCompletionError(DualStoreError):
    """A once-only usage was already recorded for this natural key."""

    def __init__(self, user_id: str, subject_id: str) -> None:
        super().__init__(f"Usage for {subject_id} was already completed by {user_id}")
        self.user_id = user_id
        self.subject_id = subject_id
