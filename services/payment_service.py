# services/payment_service.py
import logging
import sqlite3
from dataclasses import replace
from datetime import date
from typing import Optional

from core.events import InvoicePaid, InvoicePartiallyPaid, InvoiceStatusChanged
from core.models import (
    ErrorCode,
    Invoice,
    InvoiceStatus,
    LedgerError,
    Payment,
    PaymentMethod,
    PaymentResult,
    SequenceLockTimeout,
    failure,
)
from core.money import Money
from core.totals import is_fully_paid, remaining_amount, total_paid
from core.validator import validate_payment
from db.db_manager import DBManager
from kernel.invoice_repo import InvoiceRepoDB

logger = logging.getLogger("payment_service")


class PaymentService:
    """
    Records payments against finalized invoices and moves them to PAID / PARTIALLY_PAID.
    """

    def __init__(self, repo: Optional[InvoiceRepoDB] = None):
        self.repo = repo or InvoiceRepoDB()

    def record_payment(
        self,
        invoice_id: int,
        amount: Money,
        paid_at: date,
        method: PaymentMethod = PaymentMethod.BANK_TRANSFER,
        reference: Optional[str] = None,
    ) -> PaymentResult:
        invoice: Optional[Invoice] = None
        try:
            # status check and write share the write lock so concurrent payments add up
            with DBManager.transaction() as cur:
                invoice = self.repo.get(invoice_id, cur)
                if invoice is None:
                    return failure(PaymentResult, [LedgerError(ErrorCode.NOT_FOUND, f"Invoice not found: id={invoice_id}")])
                errors = validate_payment(invoice, amount)
                if errors:
                    return failure(PaymentResult, errors, invoice=invoice)

                payment = Payment(amount=amount, paid_at=paid_at, method=method, reference=reference)
                paid = replace(invoice, payments=invoice.payments + (payment,))
                new_status = InvoiceStatus.PAID if is_fully_paid(paid) else InvoiceStatus.PARTIALLY_PAID

                payment_id = self.repo.add_payment(cur, invoice_id, payment)
                if new_status is not invoice.status:
                    self.repo.set_status(cur, invoice_id, new_status)
        except sqlite3.Error as ex:
            logger.exception("Payment on invoice id=%s failed", invoice_id)
            return failure(PaymentResult, [LedgerError(ErrorCode.DB_ERROR, str(ex))], invoice=invoice)
        except SequenceLockTimeout as ex:
            logger.warning("Payment on invoice id=%s: database busy: %s", invoice_id, ex)
            return failure(PaymentResult, [LedgerError(ErrorCode.DB_ERROR, f"Database busy, please retry ({ex})")], invoice=invoice)

        payment = replace(payment, id=payment_id)
        paid = replace(paid, payments=invoice.payments + (payment,), status=new_status)

        events = []
        if new_status is InvoiceStatus.PAID:
            if invoice.status is not InvoiceStatus.PAID:
                events.append(InvoicePaid(invoice_id, paid_at))
        else:
            events.append(InvoicePartiallyPaid(invoice_id, total_paid(paid), remaining_amount(paid)))
        if new_status is not invoice.status:
            events.append(InvoiceStatusChanged(invoice_id, invoice.status, new_status))

        logger.info(
            "Payment %s on invoice id=%s (%s): status %s -> %s",
            amount, invoice_id, method.value, invoice.status.value, new_status.value,
        )
        return PaymentResult(success=True, invoice=paid, payment=payment, events=tuple(events))
