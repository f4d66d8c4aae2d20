# core/events.py
# Domain events returned by service operations. Callers dispatch them only after the
# operation's transaction has committed.
from dataclasses import dataclass
from datetime import date
from typing import Optional

from core.models import InvoiceStatus
from core.money import Money


@dataclass(frozen=True)
class InvoiceCreated:
    invoice_id: int


@dataclass(frozen=True)
class CreditNoteCreated:
    invoice_id: int
    credited_invoice_id: Optional[int] = None


@dataclass(frozen=True)
class InvoiceStatusChanged:
    invoice_id: int
    old_status: InvoiceStatus
    new_status: InvoiceStatus


@dataclass(frozen=True)
class InvoiceFinalized:
    invoice_id: int
    number: str
    fiscal_year: int


@dataclass(frozen=True)
class InvoiceCancelled:
    invoice_id: int
    reason: Optional[str] = None


@dataclass(frozen=True)
class InvoicePaid:
    invoice_id: int
    paid_at: date


@dataclass(frozen=True)
class InvoicePartiallyPaid:
    invoice_id: int
    amount_paid: Money
    remaining_amount: Money


@dataclass(frozen=True)
class InvoiceOverdue:
    invoice_id: int
    days_overdue: int
