from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import Field

from lexbill.models.enums import ChargeType, FinderFeeStatus, InvoiceStatus, LineItemType, RecurringFrequency
from lexbill.schemas.base import ORMModel
from lexbill.services.invoice_status import InvoiceAction


class InvoiceLineItemRead(ORMModel):
    id: int
    item_type: LineItemType
    timesheet_entry_id: Optional[int] = None
    charge_id: Optional[int] = None
    expense_id: Optional[int] = None
    credit_source_invoice_id: Optional[int] = None
    person_id: Optional[int] = None
    description: str
    quantity: Decimal
    rate: Decimal
    amount: Decimal
    is_credit: bool
    order_index: int
    service_date: Optional[date] = None


class InvoiceRead(ORMModel):
    id: int
    invoice_number: Optional[str] = None
    proposal_id: Optional[int] = None
    project_id: Optional[int] = None
    client_id: Optional[int] = None
    lead_id: Optional[int] = None
    description: Optional[str] = None
    currency: str
    status: InvoiceStatus
    subtotal: Decimal
    credit_used: Decimal
    discount_percent: Optional[Decimal] = None
    discount_amount: Optional[Decimal] = None
    tax_rate: Optional[Decimal] = None
    tax_inclusive: bool
    tax_amount: Decimal
    amount: Decimal
    is_upfront_payment: bool
    credit_applied: Decimal
    due_date: Optional[date] = None
    submitted_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    written_off_at: Optional[datetime] = None
    created_at: datetime
    items: List[InvoiceLineItemRead] = Field(default_factory=list)


class UnbilledSummaryRead(ORMModel):
    project_id: int
    timesheet_hours: Decimal
    timesheet_total: Decimal
    charges_total: Decimal
    expenses_total: Decimal
    raw_subtotal: Decimal
    item_count: int


class InvoiceTransitionPayload(ORMModel):
    action: InvoiceAction


class FinderFeePaymentCreate(ORMModel):
    amount: Decimal
    payment_date: Optional[datetime] = None
    notes: Optional[str] = None


class FinderFeePaymentRead(ORMModel):
    id: int
    amount: Decimal
    payment_date: datetime
    notes: Optional[str] = None
    paid_by_user_id: Optional[int] = None


class FinderFeeRead(ORMModel):
    id: int
    invoice_id: int
    client_id: int
    finder_id: int
    invoice_amount: Decimal
    fee_percent: Decimal
    fee_amount: Decimal
    paid_amount: Decimal
    remaining_amount: Decimal
    status: FinderFeeStatus
    earned_at: datetime
    paid_at: Optional[datetime] = None
    payments: List[FinderFeePaymentRead] = Field(default_factory=list)


class FinderFeeListResponse(ORMModel):
    items: List[FinderFeeRead]
    outstanding_total: Decimal


class PaymentOutcomeRead(ORMModel):
    invoice: InvoiceRead
    finder_fees: List[FinderFeeRead] = Field(default_factory=list)
    finder_fee_error: Optional[str] = None


class TimesheetEntryCreate(ORMModel):
    user_id: int
    entry_date: date
    hours: Decimal = Field(..., ge=Decimal("0"))
    rate: Optional[Decimal] = Field(default=None, ge=Decimal("0"))
    description: Optional[str] = None
    billable: bool = True


class TimesheetEntryRead(ORMModel):
    id: int
    project_id: int
    user_id: int
    entry_date: date
    hours: Decimal
    rate: Optional[Decimal] = None
    description: Optional[str] = None
    billable: bool
    billed: bool


class ChargeCreate(ORMModel):
    description: str = Field(..., min_length=1, max_length=255)
    quantity: Decimal = Field(default=Decimal("1.00"), ge=Decimal("0"))
    unit_price: Decimal = Field(..., ge=Decimal("0"))
    charge_type: ChargeType = ChargeType.ONE_TIME
    recurring_frequency: Optional[RecurringFrequency] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class ChargeRead(ORMModel):
    id: int
    project_id: int
    description: str
    quantity: Decimal
    unit_price: Decimal
    amount: Decimal
    charge_type: ChargeType
    recurring_frequency: Optional[RecurringFrequency] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    last_billed_on: Optional[date] = None
    billed: bool


class ExpenseCreate(ORMModel):
    description: str = Field(..., min_length=1, max_length=255)
    amount: Decimal = Field(..., ge=Decimal("0"))
    expense_date: Optional[date] = None
    is_billable: bool = True
    is_reimbursement: bool = False


class ExpenseRead(ORMModel):
    id: int
    project_id: int
    description: str
    amount: Decimal
    expense_date: Optional[date] = None
    is_billable: bool
    is_reimbursement: bool
    billed_at: Optional[datetime] = None
    invoice_id: Optional[int] = None


class InvoicePricingUpdate(ORMModel):
    # Validated by the engine so a bad discount reports invalid_discount.
    discount_percent: Optional[Decimal] = None
    discount_amount: Optional[Decimal] = None
    tax_rate: Optional[Decimal] = None
    tax_inclusive: Optional[bool] = None


class InvoiceItemCreate(ORMModel):
    description: str = Field(..., min_length=1, max_length=255)
    quantity: Decimal = Field(default=Decimal("1.00"), ge=Decimal("0"))
    rate: Decimal = Field(..., ge=Decimal("0"))
    service_date: Optional[date] = None


class InvoiceItemUpdate(ORMModel):
    description: Optional[str] = Field(default=None, min_length=1, max_length=255)
    quantity: Optional[Decimal] = Field(default=None, ge=Decimal("0"))
    rate: Optional[Decimal] = Field(default=None, ge=Decimal("0"))
    service_date: Optional[date] = None


class RecurringRunRead(ORMModel):
    invoices: List[InvoiceRead] = Field(default_factory=list)
    failed_project_ids: List[int] = Field(default_factory=list)
