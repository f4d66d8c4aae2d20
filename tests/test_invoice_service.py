import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import date
from decimal import Decimal
import pytest
from core.events import (
    CreditNoteCreated, InvoiceCancelled, InvoiceCreated, InvoiceFinalized, InvoiceOverdue, InvoiceStatusChanged,
)
from core.models import ErrorCode, InvoiceStatus, InvoiceType, SequenceLockTimeout
from core.money import Money
from db.db_manager import DBManager
from kernel.invoice_repo import InvoiceRepoDB
from core.totals import compute_totals
from services.invoice_service import InvoiceService
from helpers import create_finalized, make_line, extract_errors

def test_create_invoice_persists_draft(invoices, repo):
    r = invoices.create_invoice("  ACME SARL ", date(2025, 1, 20), payment_terms="45 jours net", issuer_id=1)
    assert r.success, extract_errors(r)
    assert r.events == (InvoiceCreated(r.invoice.id),)
    stored = repo.get(r.invoice.id)
    assert stored.status is InvoiceStatus.DRAFT
    assert stored.customer_name == "ACME SARL"
    assert stored.due_date == date(2025, 3, 6)
    assert stored.number is None
    assert stored.issuer_id == 1

def test_create_invoice_validation(invoices):
    r = invoices.create_invoice("", date(2025, 1, 20), due_date=date(2025, 1, 1))
    assert not r.success
    codes = {e.code for e in r.error_details}
    assert codes == {ErrorCode.INVALID_INPUT, ErrorCode.INVALID_DATE}
    assert DBManager.fetch_one("SELECT COUNT(*) AS c FROM invoices")["c"] == 0

def test_create_credit_note(invoices, repo):
    original = create_finalized(invoices)
    r = invoices.create_credit_note("ACME SARL", date(2025, 4, 1), credited_invoice_id=original.invoice.id)
    assert r.success
    assert r.events == (CreditNoteCreated(r.invoice.id, original.invoice.id),)
    assert repo.get(r.invoice.id).type is InvoiceType.CREDIT_NOTE
    missing = invoices.create_credit_note("ACME SARL", date(2025, 4, 1), credited_invoice_id=9999)
    assert not missing.success
    assert missing.error_details[0].code == ErrorCode.NOT_FOUND

def test_lines_and_discount_round_trip(invoices, repo):
    r = invoices.create_invoice("ACME", date(2025, 2, 1))
    invoices.add_line(r.invoice.id, make_line("1000.00", rate="20", discount_rate=Decimal("2.5")))
    invoices.add_line(r.invoice.id, make_line("12.34", qty="1.5", rate="5.5",
                                              discount_amount=Money.from_cents(34), quantity_unit="C62"))
    res = invoices.set_global_discount(r.invoice.id, rate=Decimal("10"))
    assert res.success
    stored = repo.get(r.invoice.id)
    assert [l.description for l in stored.lines] == ["Prestation", "Prestation"]
    assert stored.lines[0].discount_rate == Decimal("2.5")
    assert stored.lines[1].quantity == Decimal("1.5")
    assert stored.lines[1].discount_amount.cents == 34
    assert stored.lines[1].quantity_unit == "C62"
    assert stored.global_discount_rate == Decimal("10")
    assert stored.global_discount_amount is None

def test_finalize_assigns_number_and_snapshot(invoices, repo):
    f = create_finalized(invoices, make_line("150.00", qty="10"))
    assert f.number == "FA-2025-0001"
    assert f.totals.total_including_vat.cents == 180000
    assert f.events == (
        InvoiceFinalized(f.invoice.id, "FA-2025-0001", 2025),
        InvoiceStatusChanged(f.invoice.id, InvoiceStatus.DRAFT, InvoiceStatus.FINALIZED),
    )
    row = DBManager.fetch_one("SELECT * FROM invoices WHERE id = ?", (f.invoice.id,))
    assert row["status"] == "finalized"
    assert row["fiscal_year"] == 2025
    assert (row["subtotal_cents"], row["total_vat_cents"], row["total_cents"]) == (150000, 30000, 180000)

    second = create_finalized(invoices)
    assert second.number == "FA-2025-0002"

def test_credit_notes_have_their_own_sequence(invoices):
    create_finalized(invoices)
    r = invoices.create_credit_note("ACME SARL", date(2025, 5, 1), lines=[make_line()])
    f = invoices.finalize(r.invoice.id)
    assert f.number == "AV-2025-0001"

def test_finalize_preconditions(invoices):
    empty = invoices.create_invoice("ACME", date(2025, 2, 1))
    r = invoices.finalize(empty.invoice.id)
    assert not r.success
    assert r.error_details[0].code == ErrorCode.EMPTY_LINES

    done = create_finalized(invoices)
    again = invoices.finalize(done.invoice.id)
    assert not again.success
    assert again.error_details[0].code == ErrorCode.INVALID_STATUS
    assert "already finalized" in again.errors[0]

    assert invoices.finalize(4242).error_details[0].code == ErrorCode.NOT_FOUND

class ExplodingRepo(InvoiceRepoDB):
    def update(self, cur, invoice, totals=None):
        super().update(cur, invoice, totals)
        raise RuntimeError("disk full")

def test_finalize_failure_rolls_back_number():
    svc = InvoiceService(repo=ExplodingRepo())
    r = svc.create_invoice("ACME", date(2025, 2, 1), lines=[make_line()])
    with pytest.raises(RuntimeError):
        svc.finalize(r.invoice.id)
    row = DBManager.fetch_one("SELECT last_number FROM invoice_sequences")
    assert row is None or row["last_number"] == 0
    assert svc.repo.get(r.invoice.id).status is InvoiceStatus.DRAFT

    ok = InvoiceService().finalize(r.invoice.id)
    assert ok.number == "FA-2025-0001"

class BusyAllocator:
    def allocate(self, store, issuer_id, invoice_date, document_type):
        raise SequenceLockTimeout("locked")

def test_finalize_lock_timeout_is_retryable(invoices):
    r = invoices.create_invoice("ACME", date(2025, 2, 1), lines=[make_line()])
    svc = InvoiceService(allocator=BusyAllocator())
    res = svc.finalize(r.invoice.id)
    assert not res.success
    assert res.retryable
    assert res.error_details[0].code == ErrorCode.SEQUENCE_CONFLICT
    assert "retry" in res.errors[0]
    assert invoices.repo.get(r.invoice.id).status is InvoiceStatus.DRAFT

def test_finalized_invoice_is_not_editable(invoices):
    f = create_finalized(invoices)
    r = invoices.add_line(f.invoice.id, make_line())
    assert not r.success
    assert r.error_details[0].code == ErrorCode.INVALID_STATUS
    assert not invoices.set_global_discount(f.invoice.id, amount=Money.from_cents(100)).success

def test_cancel_only_drafts(invoices):
    draft = invoices.create_invoice("ACME", date(2025, 2, 1))
    r = invoices.cancel(draft.invoice.id, "duplicate")
    assert r.success
    assert r.invoice.status is InvoiceStatus.CANCELLED
    assert InvoiceCancelled(draft.invoice.id, "duplicate") in r.events
    assert not invoices.cancel(draft.invoice.id).success

    f = create_finalized(invoices)
    r = invoices.cancel(f.invoice.id)
    assert not r.success
    assert "only DRAFT" in r.errors[0]

def test_mark_sent(invoices, repo):
    f = create_finalized(invoices)
    r = invoices.mark_sent(f.invoice.id)
    assert r.success
    assert repo.get(f.invoice.id).status is InvoiceStatus.SENT
    assert not invoices.mark_sent(f.invoice.id).success

def test_flag_overdue(invoices, payments, repo):
    late = create_finalized(invoices, date_=date(2025, 1, 10), due_date=date(2025, 2, 10))
    paid = create_finalized(invoices, date_=date(2025, 1, 10), due_date=date(2025, 2, 10))
    payments.record_payment(paid.invoice.id, Money.from_decimal_string("120.00"), date(2025, 2, 1))
    not_due = create_finalized(invoices, date_=date(2025, 3, 1), due_date=date(2025, 3, 31))
    draft = invoices.create_invoice("ACME", date(2025, 1, 1), due_date=date(2025, 1, 2))

    r = invoices.flag_overdue(date(2025, 3, 1))
    assert r.success
    assert InvoiceOverdue(late.invoice.id, 19) in r.events
    assert repo.get(late.invoice.id).status is InvoiceStatus.OVERDUE
    assert repo.get(paid.invoice.id).status is InvoiceStatus.PAID
    assert repo.get(not_due.invoice.id).status is InvoiceStatus.FINALIZED
    assert repo.get(draft.invoice.id).status is InvoiceStatus.DRAFT

def test_concurrent_finalize_numbers_are_distinct_and_contiguous(file_db, invoices):
    n = 12
    ids = [invoices.create_invoice("ACME", date(2025, 5, 2), lines=[make_line()]).invoice.id for _ in range(n)]

    with ThreadPoolExecutor(max_workers=6) as pool:
        results = list(pool.map(invoices.finalize, ids))

    assert all(r.success for r in results), [r.errors for r in results if not r.success]
    assert sorted(r.number for r in results) == [f"FA-2025-{i:04d}" for i in range(1, n + 1)]
    row = DBManager.fetch_one("SELECT last_number FROM invoice_sequences")
    assert row["last_number"] == n

def test_same_draft_finalized_twice_concurrently_takes_one_number(file_db, invoices, repo):
    draft = invoices.create_invoice("ACME", date(2025, 5, 2), lines=[make_line()])
    barrier = threading.Barrier(2)

    def finalize(_):
        barrier.wait()
        return invoices.finalize(draft.invoice.id)

    with ThreadPoolExecutor(max_workers=2) as pool:
        results = list(pool.map(finalize, range(2)))

    won = [r for r in results if r.success]
    lost = [r for r in results if not r.success]
    assert len(won) == 1 and len(lost) == 1
    assert won[0].number == "FA-2025-0001"
    assert lost[0].error_details[0].code == ErrorCode.INVALID_STATUS
    assert "already finalized" in lost[0].errors[0]
    assert DBManager.fetch_one("SELECT last_number FROM invoice_sequences")["last_number"] == 1
    assert repo.get(draft.invoice.id).number == "FA-2025-0001"

def test_add_line_racing_finalize_never_reopens_a_finalized_invoice(file_db, invoices, repo):
    draft = invoices.create_invoice("ACME", date(2025, 5, 2), lines=[make_line("100.00")])
    barrier = threading.Barrier(2)

    def finalize():
        barrier.wait()
        return invoices.finalize(draft.invoice.id)

    def add_line():
        barrier.wait()
        return invoices.add_line(draft.invoice.id, make_line("50.00"))

    with ThreadPoolExecutor(max_workers=2) as pool:
        fin = pool.submit(finalize)
        edit = pool.submit(add_line)
        fin, edit = fin.result(), edit.result()

    assert fin.success
    stored = repo.get(draft.invoice.id)
    assert stored.status is InvoiceStatus.FINALIZED
    assert stored.number == "FA-2025-0001"
    if edit.success:
        assert len(stored.lines) == 2
    else:
        assert edit.error_details[0].code == ErrorCode.INVALID_STATUS
        assert len(stored.lines) == 1
    # the totals snapshot matches the lines that were finalized
    row = DBManager.fetch_one("SELECT total_cents FROM invoices WHERE id = ?", (draft.invoice.id,))
    assert row["total_cents"] == compute_totals(stored).total_including_vat.cents
    assert fin.totals.total_including_vat.cents == row["total_cents"]

def test_mark_sent_rejects_non_finalized(invoices):
    draft = invoices.create_invoice("ACME", date(2025, 2, 1))
    r = invoices.mark_sent(draft.invoice.id)
    assert not r.success
    assert r.error_details[0].code == ErrorCode.INVALID_STATUS
    assert not invoices.mark_sent(999).success
