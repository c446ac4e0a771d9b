"""Typed billing errors.

Each error carries the HTTP status the caller should answer with, so the
router layer can translate them without knowing the engine internals.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Optional


class BillingError(Exception):
    status_code: int = 400
    code: str = "billing_error"

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.__class__.__doc__ or self.code
        super().__init__(self.message)


class NotFoundError(BillingError):
    """Resource not found"""

    status_code = 404
    code = "not_found"


class PermissionDeniedError(BillingError):
    """Not authorised to perform this action"""

    status_code = 403
    code = "forbidden"


class NoUnbilledItemsError(BillingError):
    """No unbilled items to invoice"""

    code = "no_unbilled_items"


class InvalidDiscountConfigurationError(BillingError):
    """Discount configuration is invalid"""

    code = "invalid_discount"


class InvalidTransitionError(BillingError):
    """Invoice status transition not allowed"""

    status_code = 409
    code = "invalid_transition"


class BilledItemLockedError(BillingError):
    """Item has already been billed and cannot be changed"""

    status_code = 409
    code = "billed_item_locked"


class InvalidWorkItemError(BillingError):
    """Invalid timesheet entry, charge or expense"""

    code = "invalid_work_item"


class UpfrontInvoiceExistsError(BillingError):
    """Upfront payment invoice already exists for this proposal"""

    status_code = 409
    code = "upfront_invoice_exists"


class NoUpfrontTermError(BillingError):
    """No upfront payment configured for this proposal"""

    code = "no_upfront_term"


class InvalidUpfrontAmountError(BillingError):
    """Invalid upfront payment amount"""

    code = "invalid_upfront_amount"


class InvoiceNotPaidError(BillingError):
    """Invoice is not paid"""

    status_code = 409
    code = "invoice_not_paid"


class InvalidPaymentAmountError(BillingError):
    """Payment amount must be greater than zero"""

    code = "invalid_payment_amount"


class ExceedsRemainingAmountError(BillingError):
    """Payment amount exceeds remaining amount"""

    code = "exceeds_remaining_amount"

    def __init__(self, max_payable: Decimal) -> None:
        self.max_payable = max_payable
        super().__init__(f"Payment amount exceeds remaining amount. Maximum payment: {max_payable}")


class CreditOverAllocationError(BillingError):
    """Credit allocation exceeds the credit available on an upfront invoice"""

    status_code = 500
    code = "credit_over_allocation"


class DuplicateInvoiceNumberError(BillingError):
    """Could not allocate a unique invoice number"""

    status_code = 503
    code = "duplicate_invoice_number"


class FinderFeeConflictError(BillingError):
    """Finder fee was changed by another payment; reload and try again"""

    status_code = 409
    code = "finder_fee_conflict"


class InvoiceNotEditableError(BillingError):
    """Only draft invoices can be edited"""

    status_code = 409
    code = "invoice_not_editable"


class CreditLineLockedError(BillingError):
    """Credit lines are fixed when the invoice is generated"""

    status_code = 409
    code = "credit_line_locked"


class InvalidTaxRateError(BillingError):
    """Tax rate cannot be negative"""

    code = "invalid_tax_rate"


class NoRecurringChargesDueError(BillingError):
    """No recurring charges are due for this project"""

    code = "no_recurring_charges_due"
