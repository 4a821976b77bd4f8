# Overview: Shared helpers for the fulfillment API blueprints.

from datetime import date

from flask import jsonify

from ..services.errors import (
    DuplicateReturnError,
    FulfillmentError,
    GuardError,
    NotFoundError,
    StoreUnavailableError,
)


def error_response(e: FulfillmentError):
    """Map a service error to its JSON body and HTTP status."""
    body = {"error": str(e)}
    if e.details:
        body["details"] = e.details

    if isinstance(e, DuplicateReturnError):
        body["retryable"] = e.retryable
        return jsonify(body), 409
    if isinstance(e, GuardError):
        return jsonify(body), 409
    if isinstance(e, NotFoundError):
        return jsonify(body), 404
    if isinstance(e, StoreUnavailableError):
        return jsonify(body), 503
    return jsonify(body), 400


def parse_day(value: str | None) -> date | None:
    """YYYY-MM-DD query parameter; raises ValueError when malformed."""
    if not value:
        return None
    return date.fromisoformat(value)


def parse_ids(value) -> list[int] | None:
    """Optional list of integer ids from a JSON body; raises ValueError otherwise."""
    if value is None:
        return None
    if not isinstance(value, list) or not all(isinstance(v, int) and not isinstance(v, bool) for v in value):
        raise ValueError("return_ids must be a list of integers")
    return value
