# Overview: Exception types shared by the fulfillment services.

"""
Fulfillment error taxonomy.

- GuardError: a precondition is not met (coupon not received, sale already
  returned). Rejected, never retried automatically.
- DuplicateReturnError: an item already has an active return. When raised
  because a concurrent initiator won the race, ``retryable`` is True.
- NotFoundError: the referenced row does not exist.
- StoreUnavailableError: timeout or connectivity failure talking to the
  store. The effect of the failed call is unknown; re-read before retrying.

Lost races and partial successes are NOT exceptions. They are reported on
the result objects returned by the services.
"""


class FulfillmentError(Exception):
    """Base class for fulfillment operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class GuardError(FulfillmentError):
    """Raised when a transition or action precondition is not met."""
    pass


class NotFoundError(FulfillmentError):
    pass


class DuplicateReturnError(GuardError):
    """Raised when a sale item already has a pending or approved return."""
    def __init__(self, message: str, details: dict | None = None, retryable: bool = False):
        super().__init__(message, details)
        self.retryable = retryable


class StoreUnavailableError(FulfillmentError):
    """Raised when the entity store timed out or could not be reached."""
    pass
