# kernel/counter_store.py
import threading
from dataclasses import dataclass, replace
from datetime import date
from typing import Dict, Optional, Protocol, Tuple

from core.models import InvoiceType, SequenceLockTimeout

ScopeKey = Tuple[Optional[int], int, InvoiceType]


@dataclass(frozen=True)
class SequenceCounter:
    issuer_id: Optional[int]
    fiscal_year: int
    document_type: InvoiceType
    start_date: date
    end_date: date
    last_number: int = 0
    id: Optional[int] = None

    @property
    def scope(self) -> ScopeKey:
        return (self.issuer_id, self.fiscal_year, self.document_type)

    def contains(self, d: date) -> bool:
        return self.start_date <= d <= self.end_date


class CounterStore(Protocol):
    def find_containing(
        self, issuer_id: Optional[int], invoice_date: date, document_type: InvoiceType
    ) -> Optional[SequenceCounter]: ...

    def create(self, counter: SequenceCounter) -> SequenceCounter: ...

    def increment(self, counter: SequenceCounter) -> int:
        """Exclusive read-modify-write of last_number; returns the new value."""
        ...


class SqliteCounterStore:
    """
    Counters in invoice_sequences, bound to the cursor of an open DBManager.transaction().
    BEGIN IMMEDIATE already holds the write lock, so the increment can't interleave with
    another writer, and it rolls back with the rest of the transaction.
    """

    def __init__(self, cur):
        self._cur = cur

    def _row_to_counter(self, row) -> SequenceCounter:
        return SequenceCounter(
            id=row["id"],
            issuer_id=row["issuer_id"],
            fiscal_year=int(row["fiscal_year"]),
            document_type=InvoiceType(row["document_type"]),
            start_date=date.fromisoformat(row["start_date"]),
            end_date=date.fromisoformat(row["end_date"]),
            last_number=int(row["last_number"]),
        )

    def find_containing(self, issuer_id, invoice_date, document_type):
        self._cur.execute(
            """
            SELECT * FROM invoice_sequences
            WHERE issuer_id IS ?
              AND document_type = ?
              AND start_date <= ? AND end_date >= ?
            LIMIT 1
            """,
            (issuer_id, document_type.value, invoice_date.isoformat(), invoice_date.isoformat()),
        )
        row = self._cur.fetchone()
        return self._row_to_counter(row) if row else None

    def create(self, counter):
        self._cur.execute(
            """
            INSERT OR IGNORE INTO invoice_sequences
                (issuer_id, fiscal_year, document_type, start_date, end_date, last_number)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                counter.issuer_id,
                counter.fiscal_year,
                counter.document_type.value,
                counter.start_date.isoformat(),
                counter.end_date.isoformat(),
                counter.last_number,
            ),
        )
        self._cur.execute(
            "SELECT * FROM invoice_sequences WHERE issuer_id IS ? AND fiscal_year = ? AND document_type = ?",
            (counter.issuer_id, counter.fiscal_year, counter.document_type.value),
        )
        return self._row_to_counter(self._cur.fetchone())

    def increment(self, counter):
        self._cur.execute(
            "UPDATE invoice_sequences SET last_number = last_number + 1 WHERE id = ?",
            (counter.id,),
        )
        self._cur.execute("SELECT last_number FROM invoice_sequences WHERE id = ?", (counter.id,))
        return int(self._cur.fetchone()["last_number"])


class InMemoryCounterStore:
    """
    Process-local counters guarded by one mutex per scope key (not a global lock),
    for callers without a transactional database.
    """

    def __init__(self, lock_timeout_s: float = 5.0):
        self._lock_timeout_s = lock_timeout_s
        self._registry = threading.Lock()
        self._counters: Dict[ScopeKey, SequenceCounter] = {}
        self._locks: Dict[ScopeKey, threading.Lock] = {}

    def find_containing(self, issuer_id, invoice_date, document_type):
        with self._registry:
            for counter in self._counters.values():
                if (
                    counter.issuer_id == issuer_id
                    and counter.document_type is document_type
                    and counter.contains(invoice_date)
                ):
                    return counter
        return None

    def create(self, counter):
        with self._registry:
            existing = self._counters.setdefault(counter.scope, counter)
            self._locks.setdefault(counter.scope, threading.Lock())
            return existing

    def increment(self, counter):
        with self._registry:
            lock = self._locks.setdefault(counter.scope, threading.Lock())
        if not lock.acquire(timeout=self._lock_timeout_s):
            raise SequenceLockTimeout(f"Counter {counter.scope} locked for more than {self._lock_timeout_s}s")
        try:
            with self._registry:
                current = self._counters[counter.scope]
                updated = replace(current, last_number=current.last_number + 1)
                self._counters[counter.scope] = updated
            return updated.last_number
        finally:
            lock.release()

    def last_number(self, issuer_id: Optional[int], fiscal_year: int, document_type: InvoiceType) -> int:
        with self._registry:
            counter = self._counters.get((issuer_id, fiscal_year, document_type))
        return counter.last_number if counter else 0
