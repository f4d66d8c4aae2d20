# services/invoice_service.py
import logging
import sqlite3
from dataclasses import replace
from datetime import date
from decimal import Decimal
from typing import List, Optional, Tuple

from core.dates import due_date_for
from core.events import (
    CreditNoteCreated,
    InvoiceCancelled,
    InvoiceCreated,
    InvoiceFinalized,
    InvoiceOverdue,
    InvoiceStatusChanged,
)
from core.models import (
    ErrorCode,
    FinalizeResult,
    Invoice,
    InvoiceLine,
    InvoiceResult,
    InvoiceStatus,
    InvoiceType,
    LedgerError,
    SequenceLockTimeout,
    as_decimal,
    failure,
)
from core.money import Money
from core.totals import compute_totals, days_overdue
from core.validator import (
    validate_can_cancel,
    validate_can_finalize,
    validate_can_flag_overdue,
    validate_can_send,
    validate_is_draft,
    validate_new_invoice,
)
from db.db_manager import DBManager
from kernel.counter_store import SqliteCounterStore
from kernel.invoice_repo import InvoiceRepoDB
from kernel.sequence_allocator import SequenceAllocator

logger = logging.getLogger("invoice_service")


def _not_found(invoice_id: int) -> List[LedgerError]:
    return [LedgerError(ErrorCode.NOT_FOUND, f"Invoice not found: id={invoice_id}")]


class InvoiceService:
    """
    Invoice and credit-note lifecycle: draft editing, finalization with numbering,
    cancellation, sending, overdue flagging.
    Every operation returns a result carrying the domain events to dispatch once it has committed.
    """

    def __init__(self, repo: Optional[InvoiceRepoDB] = None, allocator: Optional[SequenceAllocator] = None):
        self.repo = repo or InvoiceRepoDB()
        self.allocator = allocator or SequenceAllocator()

    # ---------------------------
    # Creation
    # ---------------------------
    def create_invoice(
        self,
        customer_name: str,
        invoice_date: date,
        *,
        due_date: Optional[date] = None,
        payment_terms: Optional[str] = None,
        issuer_id: Optional[int] = None,
        customer_siret: Optional[str] = None,
        lines: Optional[List[InvoiceLine]] = None,
    ) -> InvoiceResult:
        return self._create(
            InvoiceType.INVOICE,
            customer_name,
            invoice_date,
            due_date=due_date,
            payment_terms=payment_terms,
            issuer_id=issuer_id,
            customer_siret=customer_siret,
            lines=lines,
        )

    def create_credit_note(
        self,
        customer_name: str,
        invoice_date: date,
        *,
        credited_invoice_id: Optional[int] = None,
        due_date: Optional[date] = None,
        payment_terms: Optional[str] = None,
        issuer_id: Optional[int] = None,
        customer_siret: Optional[str] = None,
        lines: Optional[List[InvoiceLine]] = None,
    ) -> InvoiceResult:
        if credited_invoice_id is not None and self.repo.get(credited_invoice_id) is None:
            return failure(InvoiceResult, _not_found(credited_invoice_id))
        return self._create(
            InvoiceType.CREDIT_NOTE,
            customer_name,
            invoice_date,
            due_date=due_date,
            payment_terms=payment_terms,
            issuer_id=issuer_id,
            customer_siret=customer_siret,
            lines=lines,
            credited_invoice_id=credited_invoice_id,
        )

    def _create(self, doc_type: InvoiceType, customer_name: str, invoice_date: date, **fields) -> InvoiceResult:
        due = fields.pop("due_date") or due_date_for(invoice_date, fields.get("payment_terms"))
        errors = validate_new_invoice(customer_name, invoice_date, due)
        if errors:
            return failure(InvoiceResult, errors)

        invoice = Invoice(
            type=doc_type,
            invoice_date=invoice_date,
            due_date=due,
            customer_name=customer_name.strip(),
            lines=fields.pop("lines") or (),
            **fields,
        )
        try:
            with DBManager.transaction() as cur:
                invoice_id = self.repo.insert(cur, invoice)
        except sqlite3.Error as ex:
            logger.exception("Invoice creation failed")
            return failure(InvoiceResult, [LedgerError(ErrorCode.DB_ERROR, str(ex))])

        invoice = replace(invoice, id=invoice_id)
        if doc_type is InvoiceType.CREDIT_NOTE:
            event = CreditNoteCreated(invoice_id, invoice.credited_invoice_id)
        else:
            event = InvoiceCreated(invoice_id)
        logger.info("Created %s id=%s customer=%s", doc_type.value, invoice_id, invoice.customer_name)
        return InvoiceResult(success=True, invoice=invoice, events=(event,))

    # ---------------------------
    # Draft editing
    # ---------------------------
    def add_line(self, invoice_id: int, line: InvoiceLine) -> InvoiceResult:
        return self._edit_draft(invoice_id, "modify", lambda inv: replace(inv, lines=inv.lines + (line,)))

    def set_global_discount(
        self,
        invoice_id: int,
        *,
        amount: Optional[Money] = None,
        rate: Optional[Decimal] = None,
    ) -> InvoiceResult:
        """
        Fixed amount wins over rate when both are set; both None clears the discount.
        """
        return self._edit_draft(
            invoice_id,
            "modify",
            lambda inv: replace(inv, global_discount_amount=amount, global_discount_rate=as_decimal(rate)),
        )

    def _edit_draft(self, invoice_id: int, operation: str, change) -> InvoiceResult:
        # read, check and write under one write lock: a concurrent finalize can't slip in between
        with DBManager.transaction() as cur:
            invoice = self.repo.get(invoice_id, cur)
            if invoice is None:
                return failure(InvoiceResult, _not_found(invoice_id))
            errors = validate_is_draft(invoice, operation)
            if errors:
                return failure(InvoiceResult, errors, invoice=invoice)
            updated = change(invoice)
            self.repo.update(cur, updated)
        return InvoiceResult(success=True, invoice=updated)

    # ---------------------------
    # Finalization
    # ---------------------------
    def finalize(self, invoice_id: int) -> FinalizeResult:
        """
        The DRAFT check, numbering, status change and totals snapshot run in one
        transaction and commit together or not at all. Two finalize calls on the same
        invoice serialize on the write lock; the second sees FINALIZED and takes no number.
        A lock conflict on the counter yields a retryable SEQUENCE_CONFLICT failure.
        """
        invoice: Optional[Invoice] = None
        try:
            with DBManager.transaction() as cur:
                invoice = self.repo.get(invoice_id, cur)
                if invoice is None:
                    return failure(FinalizeResult, _not_found(invoice_id))
                errors = validate_can_finalize(invoice)
                if errors:
                    return failure(FinalizeResult, errors, invoice=invoice)

                totals = compute_totals(invoice)
                allocated = self.allocator.allocate(
                    SqliteCounterStore(cur),
                    invoice.issuer_id,
                    invoice.invoice_date,
                    invoice.type,
                )
                number = self.allocator.format_number(allocated)
                finalized = replace(
                    invoice,
                    number=number,
                    fiscal_year=allocated.fiscal_year,
                    status=InvoiceStatus.FINALIZED,
                )
                self.repo.update(cur, finalized, totals=totals)
        except SequenceLockTimeout as ex:
            logger.warning("Finalize id=%s: sequence locked, retry: %s", invoice_id, ex)
            return failure(
                FinalizeResult,
                [LedgerError(ErrorCode.SEQUENCE_CONFLICT, f"Invoice numbering is busy, please retry ({ex})")],
                invoice=invoice,
                retryable=True,
            )
        except sqlite3.IntegrityError as ex:
            logger.warning("Finalize id=%s: number conflict, retry: %s", invoice_id, ex)
            return failure(
                FinalizeResult,
                [LedgerError(ErrorCode.SEQUENCE_CONFLICT, f"Invoice number conflict, please retry ({ex})")],
                invoice=invoice,
                retryable=True,
            )
        except sqlite3.Error as ex:
            logger.exception("Finalize id=%s failed", invoice_id)
            return failure(FinalizeResult, [LedgerError(ErrorCode.DB_ERROR, str(ex))], invoice=invoice)

        logger.info("Finalized id=%s as %s (fiscal year %s)", invoice_id, number, allocated.fiscal_year)
        return FinalizeResult(
            success=True,
            invoice=finalized,
            number=number,
            totals=totals,
            events=(
                InvoiceFinalized(invoice_id, number, allocated.fiscal_year),
                InvoiceStatusChanged(invoice_id, invoice.status, InvoiceStatus.FINALIZED),
            ),
        )

    # ---------------------------
    # Other transitions
    # ---------------------------
    def cancel(self, invoice_id: int, reason: Optional[str] = None) -> InvoiceResult:
        invoice, errors = self._transition(invoice_id, InvoiceStatus.CANCELLED, validate_can_cancel)
        if errors:
            return failure(InvoiceResult, errors, invoice=invoice)
        logger.info("Cancelled id=%s reason=%s", invoice_id, reason)
        return InvoiceResult(
            success=True,
            invoice=replace(invoice, status=InvoiceStatus.CANCELLED),
            events=(
                InvoiceCancelled(invoice_id, reason),
                InvoiceStatusChanged(invoice_id, invoice.status, InvoiceStatus.CANCELLED),
            ),
        )

    def mark_sent(self, invoice_id: int) -> InvoiceResult:
        invoice, errors = self._transition(invoice_id, InvoiceStatus.SENT, validate_can_send)
        if errors:
            return failure(InvoiceResult, errors, invoice=invoice)
        return InvoiceResult(
            success=True,
            invoice=replace(invoice, status=InvoiceStatus.SENT),
            events=(InvoiceStatusChanged(invoice_id, invoice.status, InvoiceStatus.SENT),),
        )

    def flag_overdue(self, reference_date: date, issuer_id: Optional[int] = None) -> InvoiceResult:
        """
        Moves open invoices past their due date to OVERDUE. The result lists one
        InvoiceOverdue (and status change) event per flagged invoice.
        """
        events = []
        for candidate in self.repo.find_overdue(reference_date, issuer_id):
            invoice, errors = self._transition(
                candidate.id,
                InvoiceStatus.OVERDUE,
                lambda inv: validate_can_flag_overdue(inv, reference_date),
            )
            if errors:
                continue
            events.append(InvoiceOverdue(invoice.id, days_overdue(invoice, reference_date)))
            events.append(InvoiceStatusChanged(invoice.id, invoice.status, InvoiceStatus.OVERDUE))
        logger.info("Overdue check at %s: %s invoices flagged", reference_date, len(events) // 2)
        return InvoiceResult(success=True, events=tuple(events))

    def _transition(self, invoice_id: int, status: InvoiceStatus, check) -> Tuple[Optional[Invoice], List[LedgerError]]:
        """
        Re-reads the invoice inside the transaction, applies check() and moves it to status.
        Returns the invoice as it was before the change, and the errors (empty on success).
        """
        with DBManager.transaction() as cur:
            invoice = self.repo.get(invoice_id, cur)
            if invoice is None:
                return None, _not_found(invoice_id)
            errors = check(invoice)
            if errors:
                return invoice, errors
            self.repo.set_status(cur, invoice_id, status)
        return invoice, []
