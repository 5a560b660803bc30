"""
Billing error taxonomy.

Every error raised by the billing engine derives from BillingError and
carries a stable code, a user-facing message and an internal detail.
``state_changed`` tells the caller whether the request may have been
applied: validation and business-rule errors guarantee nothing changed,
a store failure during a write does not.
"""

from typing import Any, Dict, Optional

NOTHING_CHANGED = "Nothing was changed."
MAY_HAVE_APPLIED = "Your request may not have been applied, please verify before retrying."


class BillingError(Exception):
    """Base class for all billing engine errors."""

    code = "billing_error"
    http_status = 400
    message = "The billing request could not be completed."

    def __init__(self, detail: Optional[str] = None, **context: Any):
        self.detail = detail
        self.context = context
        super().__init__(detail or self.message)

    @property
    def state_changed(self) -> Optional[bool]:
        """False when the store is guaranteed untouched, None when unknown."""
        return False

    @property
    def user_message(self) -> str:
        if self.state_changed is False:
            return f"{self.message} {NOTHING_CHANGED}"
        return f"{self.message} {MAY_HAVE_APPLIED}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": False,
            "error": self.code,
            "message": self.user_message,
            "detail": self.detail,
        }


class ConfigurationError(BillingError):
    code = "configuration_error"
    message = "Billing is not configured for this service."


class DuplicatePeriodError(BillingError):
    code = "duplicate_period"
    http_status = 409
    message = "A bill already exists for this client, resource and period."


class InvalidTransitionError(BillingError):
    code = "invalid_transition"
    http_status = 409
    message = "The bill is no longer in a state that allows this action. Refresh and try again."


class InvalidAmountError(BillingError):
    code = "invalid_amount"
    message = "Fee amounts must be non-negative numbers."


class InvalidPeriodError(BillingError):
    code = "invalid_period"
    message = "The billing period is not valid for this client."


class ClientNotFoundError(BillingError):
    code = "client_not_found"
    http_status = 404
    message = "Client not found."


class InactiveClientError(BillingError):
    code = "client_inactive"
    http_status = 409
    message = "The client is not active."


class BillNotFoundError(BillingError):
    code = "bill_not_found"
    http_status = 404
    message = "Bill not found."


class ConcurrentUpdateError(BillingError):
    code = "concurrent_update"
    http_status = 409
    message = "The bill is being updated by someone else. Refresh and try again."


class StoreUnavailableError(BillingError):
    """The document store failed or timed out."""

    code = "store_unavailable"
    http_status = 503
    message = "The billing store is unavailable."

    def __init__(self, detail: Optional[str] = None, write: bool = False, **context: Any):
        self.write = write
        super().__init__(detail, **context)

    @property
    def state_changed(self) -> Optional[bool]:
        return None if self.write else False

    @property
    def user_message(self) -> str:
        if self.write:
            return f"{self.message} {MAY_HAVE_APPLIED}"
        return f"{self.message} Please try again. {NOTHING_CHANGED}"
