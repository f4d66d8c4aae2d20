# kernel/sequence_allocator.py
import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional

from core.dates import FiscalYearStart, fiscal_year_bounds, fiscal_year_for
from core.models import InvoiceType
from db.db_manager import DBManager
from kernel.counter_store import CounterStore, SequenceCounter, SqliteCounterStore

logger = logging.getLogger("sequence_allocator")


@dataclass(frozen=True)
class NumberingConfig:
    invoice_prefix: str = "FA"
    credit_note_prefix: str = "AV"
    padding: int = 4


@dataclass(frozen=True)
class AllocatedNumber:
    issuer_id: Optional[int]
    fiscal_year: int
    document_type: InvoiceType
    sequence: int


class SequenceAllocator:
    """
    Sequential numbering per scope (issuer, fiscal year, document type).
    - Fiscal year derived from the invoice date and the configured start (month, day)
    - Counter created lazily, spanning exactly one fiscal year
    - Increment done through the store's exclusive lock; no two callers get the same number

    allocate() must run inside the caller's transaction so a rollback also undoes the
    increment; allocate_number() opens its own transaction.
    """

    def __init__(
        self,
        fiscal_year_start: Optional[FiscalYearStart] = None,
        numbering: Optional[NumberingConfig] = None,
    ):
        self.fiscal_year_start = fiscal_year_start or FiscalYearStart()
        self.numbering = numbering or NumberingConfig()

    def fiscal_year(self, invoice_date: date) -> int:
        return fiscal_year_for(invoice_date, self.fiscal_year_start)

    def find_or_create_counter(
        self,
        store: CounterStore,
        issuer_id: Optional[int],
        invoice_date: date,
        document_type: InvoiceType,
    ) -> SequenceCounter:
        existing = store.find_containing(issuer_id, invoice_date, document_type)
        if existing is not None:
            return existing

        fiscal_year = self.fiscal_year(invoice_date)
        start, end = fiscal_year_bounds(fiscal_year, self.fiscal_year_start)
        logger.info(
            "Creating sequence: issuer=%s fiscal_year=%s type=%s range=%s..%s",
            issuer_id, fiscal_year, document_type.value, start, end,
        )
        return store.create(SequenceCounter(
            issuer_id=issuer_id,
            fiscal_year=fiscal_year,
            document_type=document_type,
            start_date=start,
            end_date=end,
        ))

    def allocate(
        self,
        store: CounterStore,
        issuer_id: Optional[int],
        invoice_date: date,
        document_type: InvoiceType,
    ) -> AllocatedNumber:
        counter = self.find_or_create_counter(store, issuer_id, invoice_date, document_type)
        number = store.increment(counter)
        logger.debug("Allocated %s for scope %s", number, counter.scope)
        return AllocatedNumber(
            issuer_id=issuer_id,
            fiscal_year=counter.fiscal_year,
            document_type=document_type,
            sequence=number,
        )

    def allocate_number(
        self,
        issuer_id: Optional[int],
        invoice_date: date,
        document_type: InvoiceType,
    ) -> int:
        with DBManager.transaction() as cur:
            allocated = self.allocate(SqliteCounterStore(cur), issuer_id, invoice_date, document_type)
        return allocated.sequence

    def format_number(self, allocated: AllocatedNumber) -> str:
        """
        FA-2025-0001 for invoices, AV-2025-0042 for credit notes.
        """
        prefix = (
            self.numbering.invoice_prefix
            if allocated.document_type is InvoiceType.INVOICE
            else self.numbering.credit_note_prefix
        )
        return f"{prefix}-{allocated.fiscal_year}-{allocated.sequence:0{self.numbering.padding}d}"
