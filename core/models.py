from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Tuple

from core.money import Money


class ErrorCode(str, Enum):
    INVALID_INPUT = "INVALID_INPUT"
    NOT_FOUND = "NOT_FOUND"
    INVALID_STATUS = "INVALID_STATUS"
    EMPTY_LINES = "EMPTY_LINES"
    INVALID_DATE = "INVALID_DATE"
    NEGATIVE_AMOUNT = "NEGATIVE_AMOUNT"
    UNBALANCED = "UNBALANCED"
    SEQUENCE_CONFLICT = "SEQUENCE_CONFLICT"   # transient, retry the whole finalize
    DB_ERROR = "DB_ERROR"


class InvoiceType(str, Enum):
    INVOICE = "invoice"
    CREDIT_NOTE = "credit_note"


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    FINALIZED = "finalized"
    SENT = "sent"
    PAID = "paid"
    PARTIALLY_PAID = "partially_paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class PaymentMethod(str, Enum):
    BANK_TRANSFER = "bank_transfer"
    CREDIT_CARD = "credit_card"
    CHECK = "check"
    CASH = "cash"
    DIRECT_DEBIT = "direct_debit"
    OTHER = "other"


EXPORTABLE_STATUSES = frozenset({
    InvoiceStatus.FINALIZED,
    InvoiceStatus.SENT,
    InvoiceStatus.PAID,
    InvoiceStatus.PARTIALLY_PAID,
    InvoiceStatus.OVERDUE,
})


def is_exportable(status: InvoiceStatus) -> bool:
    return status in EXPORTABLE_STATUSES


def is_editable(status: InvoiceStatus) -> bool:
    return status is InvoiceStatus.DRAFT


def can_receive_payment(status: InvoiceStatus) -> bool:
    return status not in (InvoiceStatus.DRAFT, InvoiceStatus.CANCELLED)


# --- Exceptions ---

class SequenceLockTimeout(Exception):
    """
    The numbering counter could not be locked in time.
    Transient: the whole finalize transaction can be retried.
    """

    retryable = True


class FecFormatError(RuntimeError):
    """A FEC row was built with the wrong shape. Programming error; the export must stop."""


@dataclass(frozen=True)
class LedgerError:
    code: ErrorCode
    message: str
    details: Optional[dict] = None


# --- Invoice data ---

def as_decimal(value) -> Optional[Decimal]:
    if value is None or isinstance(value, Decimal):
        return value
    return Decimal(str(value))


@dataclass(frozen=True)
class InvoiceLine:
    description: str
    quantity: Decimal
    unit_price: Money
    vat_rate: Decimal
    discount_amount: Optional[Money] = None     # fixed, wins over discount_rate
    discount_rate: Optional[Decimal] = None     # percentage
    quantity_unit: str = "HUR"

    def __post_init__(self):
        for name in ("quantity", "vat_rate", "discount_rate"):
            object.__setattr__(self, name, as_decimal(getattr(self, name)))


@dataclass(frozen=True)
class Payment:
    amount: Money
    paid_at: date
    method: PaymentMethod = PaymentMethod.BANK_TRANSFER
    reference: Optional[str] = None
    id: Optional[int] = None


@dataclass(frozen=True)
class InvoiceTotals:
    subtotal_before_discount: Money
    discount_amount: Money
    subtotal_after_discount: Money
    total_vat: Money
    total_including_vat: Money


@dataclass(frozen=True)
class Invoice:
    type: InvoiceType
    invoice_date: date
    due_date: date
    customer_name: str
    lines: Tuple[InvoiceLine, ...] = ()
    payments: Tuple[Payment, ...] = ()
    global_discount_amount: Optional[Money] = None   # fixed, wins over global_discount_rate
    global_discount_rate: Optional[Decimal] = None
    status: InvoiceStatus = InvoiceStatus.DRAFT
    number: Optional[str] = None
    fiscal_year: Optional[int] = None
    issuer_id: Optional[int] = None
    customer_siret: Optional[str] = None
    payment_terms: Optional[str] = None
    credited_invoice_id: Optional[int] = None
    id: Optional[int] = None

    def __post_init__(self):
        object.__setattr__(self, "global_discount_rate", as_decimal(self.global_discount_rate))
        object.__setattr__(self, "lines", tuple(self.lines))
        object.__setattr__(self, "payments", tuple(self.payments))

    @property
    def is_credit_note(self) -> bool:
        return self.type is InvoiceType.CREDIT_NOTE


# --- Results ---

def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class InvoiceResult:
    success: bool
    invoice: Optional[Invoice] = None
    events: Tuple = ()
    error_details: List[LedgerError] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    timestamp: str = field(default_factory=_utc_now)


@dataclass(frozen=True)
class FinalizeResult:
    success: bool
    invoice: Optional[Invoice] = None
    number: Optional[str] = None
    totals: Optional[InvoiceTotals] = None
    events: Tuple = ()
    retryable: bool = False
    error_details: List[LedgerError] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    timestamp: str = field(default_factory=_utc_now)


@dataclass(frozen=True)
class PaymentResult:
    success: bool
    invoice: Optional[Invoice] = None
    payment: Optional[Payment] = None
    events: Tuple = ()
    error_details: List[LedgerError] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    timestamp: str = field(default_factory=_utc_now)


def failure(result_cls, errors: List[LedgerError], **extra):
    """Build a failed result of any result type from a list of LedgerError."""
    return result_cls(
        success=False,
        errors=[e.message for e in errors],
        error_details=list(errors),
        **extra,
    )
