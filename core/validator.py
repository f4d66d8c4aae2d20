# core/validator.py
from datetime import date
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence

from core.models import (
    ErrorCode,
    Invoice,
    InvoiceStatus,
    LedgerError,
    can_receive_payment,
    is_editable,
)
from core.money import Money
from core.totals import is_overdue
from core.utils import q2

OVERDUE_CANDIDATE_STATUSES = frozenset({
    InvoiceStatus.FINALIZED,
    InvoiceStatus.SENT,
    InvoiceStatus.PARTIALLY_PAID,
})


# --- Creation rules ---
def validate_customer(customer_name: str) -> List[LedgerError]:
    if not (customer_name or "").strip():
        return [LedgerError(ErrorCode.INVALID_INPUT, "Customer name cannot be empty")]
    return []


def validate_due_date(invoice_date: date, due_date: date) -> List[LedgerError]:
    if due_date < invoice_date:
        return [LedgerError(
            ErrorCode.INVALID_DATE,
            f"Due date {due_date.isoformat()} is before invoice date {invoice_date.isoformat()}",
        )]
    return []


# --- Lifecycle rules ---
def validate_is_draft(invoice: Invoice, operation: str) -> List[LedgerError]:
    if not is_editable(invoice.status):
        return [LedgerError(
            ErrorCode.INVALID_STATUS,
            f"Cannot {operation} invoice: invoice must be in DRAFT status (is {invoice.status.value})",
        )]
    return []


def validate_can_finalize(invoice: Invoice) -> List[LedgerError]:
    errors: List[LedgerError] = []
    if not invoice.lines:
        errors.append(LedgerError(ErrorCode.EMPTY_LINES, "Cannot finalize invoice: invoice must have at least one line"))
    if invoice.status is InvoiceStatus.FINALIZED:
        errors.append(LedgerError(ErrorCode.INVALID_STATUS, "Cannot finalize invoice: invoice is already finalized"))
    elif invoice.status is not InvoiceStatus.DRAFT:
        errors.append(LedgerError(ErrorCode.INVALID_STATUS, "Cannot finalize invoice: only DRAFT invoices can be finalized"))
    return errors


def validate_can_cancel(invoice: Invoice) -> List[LedgerError]:
    if invoice.status is InvoiceStatus.CANCELLED:
        return [LedgerError(ErrorCode.INVALID_STATUS, "Cannot cancel invoice: invoice is already cancelled")]
    if invoice.status is not InvoiceStatus.DRAFT:
        return [LedgerError(ErrorCode.INVALID_STATUS, "Cannot cancel invoice: only DRAFT invoices can be cancelled")]
    return []


def validate_can_send(invoice: Invoice) -> List[LedgerError]:
    if invoice.status is not InvoiceStatus.FINALIZED:
        return [LedgerError(
            ErrorCode.INVALID_STATUS,
            f"Cannot send invoice: only FINALIZED invoices can be sent (is {invoice.status.value})",
        )]
    return []


def validate_can_flag_overdue(invoice: Invoice, reference_date: date) -> List[LedgerError]:
    if invoice.status not in OVERDUE_CANDIDATE_STATUSES:
        return [LedgerError(ErrorCode.INVALID_STATUS, f"Invoice with status {invoice.status.value} cannot become overdue")]
    if not is_overdue(invoice, reference_date):
        return [LedgerError(ErrorCode.INVALID_STATUS, f"Invoice is not overdue at {reference_date.isoformat()}")]
    return []


def validate_payment(invoice: Invoice, amount: Money) -> List[LedgerError]:
    errors: List[LedgerError] = []
    if not can_receive_payment(invoice.status):
        errors.append(LedgerError(
            ErrorCode.INVALID_STATUS,
            f"Cannot record payment on invoice with status {invoice.status.value.upper()}",
        ))
    if not amount.is_positive():
        errors.append(LedgerError(ErrorCode.NEGATIVE_AMOUNT, f"Payment amount must be positive, got {amount}"))
    return errors


# --- Ledger rules ---
def validate_balanced(rows: Iterable[Sequence[str]], debit_index: int = 11, credit_index: int = 12) -> List[LedgerError]:
    """
    Sum of debits must equal sum of credits across every FEC row.
    """
    total_debit = Decimal("0.00")
    total_credit = Decimal("0.00")
    for row in rows:
        total_debit += q2(Decimal(row[debit_index]))
        total_credit += q2(Decimal(row[credit_index]))

    if total_debit != total_credit:
        return [LedgerError(
            ErrorCode.UNBALANCED,
            f"Unbalanced ledger: Debit={total_debit}, Credit={total_credit}",
            {"debit": str(total_debit), "credit": str(total_credit)},
        )]
    return []


# --- Composite validator ---
def validate_new_invoice(customer_name: str, invoice_date: date, due_date: Optional[date]) -> List[LedgerError]:
    errors: List[LedgerError] = []
    errors += validate_customer(customer_name)
    if due_date is not None:
        errors += validate_due_date(invoice_date, due_date)
    return errors
