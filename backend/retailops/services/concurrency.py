# Overview: Retry and transport-failure handling around entity store calls.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import DBAPIError, OperationalError

from ..extensions import db
from .errors import StoreUnavailableError


UNKNOWN_OUTCOME_MESSAGE = (
    "Store unavailable; the operation may or may not have been applied. Refresh and retry."
)


def _settings(attempts: int | None, backoff_base: float | None) -> tuple[int, float]:
    config = current_app.config
    if attempts is None:
        attempts = config.get("STORE_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = config.get("STORE_RETRY_BACKOFF", 0.1)
    return max(1, attempts), backoff_base


def _is_transport_failure(exc: DBAPIError) -> bool:
    return isinstance(exc, OperationalError) or exc.connection_invalidated


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a store operation with retry on timeouts and lock contention.

    Only use this for operations that re-read their own preconditions: a
    timeout leaves the previous attempt "maybe applied", so every retry must
    start from a fresh read (conditional writes, idempotent procedures, or
    inserts whose duplicate guard runs inside ``func``).

    Raises StoreUnavailableError once the attempts are exhausted.
    """
    attempts, backoff_base = _settings(attempts, backoff_base)
    for attempt in range(attempts):
        try:
            return func()
        except DBAPIError as exc:
            if not _is_transport_failure(exc):
                raise
            db.session.rollback()
            current_app.logger.warning(
                "Store call failed (attempt %s/%s): %s", attempt + 1, attempts, exc.__class__.__name__
            )
            if attempt >= attempts - 1:
                current_app.logger.error("Store unavailable after %s attempts", attempts)
                raise StoreUnavailableError(UNKNOWN_OUTCOME_MESSAGE) from exc
            time.sleep(backoff_base * (2 ** attempt))


def run_once(func):
    """
    Execute a store operation that must not be blindly repeated.

    Transport failures are rolled back and converted to StoreUnavailableError.
    """
    try:
        return func()
    except DBAPIError as exc:
        if not _is_transport_failure(exc):
            raise
        db.session.rollback()
        current_app.logger.error("Store call failed without retry: %s", exc.__class__.__name__)
        raise StoreUnavailableError(UNKNOWN_OUTCOME_MESSAGE) from exc
