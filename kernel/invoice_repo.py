# kernel/invoice_repo.py
from datetime import date
from decimal import Decimal
from typing import List, Optional

from core.models import (
    EXPORTABLE_STATUSES,
    Invoice,
    InvoiceLine,
    InvoiceStatus,
    InvoiceTotals,
    InvoiceType,
    Payment,
    PaymentMethod,
)
from core.money import Money
from db.db_manager import DBManager


def _money(cents) -> Optional[Money]:
    return Money.from_cents(int(cents)) if cents is not None else None


def _cents(amount: Optional[Money]) -> Optional[int]:
    return amount.cents if amount is not None else None


def _text(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


def _decimal(text) -> Optional[Decimal]:
    return Decimal(text) if text is not None else None


class InvoiceRepoDB:
    """
    Invoices with their lines and payments.
    Writes take the cursor of an open DBManager.transaction(); reads use the thread
    connection unless given that cursor.
    """

    # --- Writes ---

    def insert(self, cur, invoice: Invoice) -> int:
        cur.execute(
            """
            INSERT INTO invoices(
                type, status, number, fiscal_year, issuer_id, invoice_date, due_date,
                payment_terms, customer_name, customer_siret,
                global_discount_cents, global_discount_rate, credited_invoice_id
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                invoice.type.value,
                invoice.status.value,
                invoice.number,
                invoice.fiscal_year,
                invoice.issuer_id,
                invoice.invoice_date.isoformat(),
                invoice.due_date.isoformat(),
                invoice.payment_terms,
                invoice.customer_name,
                invoice.customer_siret,
                _cents(invoice.global_discount_amount),
                _text(invoice.global_discount_rate),
                invoice.credited_invoice_id,
            ),
        )
        invoice_id = cur.lastrowid
        self._write_lines(cur, invoice_id, invoice.lines)
        for p in invoice.payments:
            self.add_payment(cur, invoice_id, p)
        return invoice_id

    def update(self, cur, invoice: Invoice, totals: Optional[InvoiceTotals] = None):
        """
        Rewrites header and lines. Payments are append-only and go through add_payment.
        The totals snapshot is only written when given (finalization).
        """
        cur.execute(
            """
            UPDATE invoices SET
                status = ?, number = ?, fiscal_year = ?, invoice_date = ?, due_date = ?,
                payment_terms = ?, customer_name = ?, customer_siret = ?,
                global_discount_cents = ?, global_discount_rate = ?,
                updated_at = datetime('now')
            WHERE id = ?
            """,
            (
                invoice.status.value,
                invoice.number,
                invoice.fiscal_year,
                invoice.invoice_date.isoformat(),
                invoice.due_date.isoformat(),
                invoice.payment_terms,
                invoice.customer_name,
                invoice.customer_siret,
                _cents(invoice.global_discount_amount),
                _text(invoice.global_discount_rate),
                invoice.id,
            ),
        )
        if totals is not None:
            cur.execute(
                "UPDATE invoices SET subtotal_cents = ?, total_vat_cents = ?, total_cents = ? WHERE id = ?",
                (
                    totals.subtotal_after_discount.cents,
                    totals.total_vat.cents,
                    totals.total_including_vat.cents,
                    invoice.id,
                ),
            )
        cur.execute("DELETE FROM invoice_lines WHERE invoice_id = ?", (invoice.id,))
        self._write_lines(cur, invoice.id, invoice.lines)

    def set_status(self, cur, invoice_id: int, status: InvoiceStatus):
        cur.execute(
            "UPDATE invoices SET status = ?, updated_at = datetime('now') WHERE id = ?",
            (status.value, invoice_id),
        )

    def add_payment(self, cur, invoice_id: int, payment: Payment) -> int:
        cur.execute(
            "INSERT INTO payments(invoice_id, amount_cents, paid_at, method, reference) VALUES (?, ?, ?, ?, ?)",
            (invoice_id, payment.amount.cents, payment.paid_at.isoformat(), payment.method.value, payment.reference),
        )
        return cur.lastrowid

    def _write_lines(self, cur, invoice_id: int, lines):
        cur.executemany(
            """
            INSERT INTO invoice_lines(
                invoice_id, position, description, quantity, quantity_unit,
                unit_price_cents, vat_rate, discount_cents, discount_rate
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    invoice_id,
                    pos,
                    l.description,
                    str(l.quantity),
                    l.quantity_unit,
                    l.unit_price.cents,
                    str(l.vat_rate),
                    _cents(l.discount_amount),
                    _text(l.discount_rate),
                )
                for pos, l in enumerate(lines, start=1)
            ],
        )

    # --- Reads ---

    def _fetch_all(self, sql: str, params: tuple, cur=None) -> list:
        if cur is None:
            return DBManager.fetch_all(sql, params)
        cur.execute(sql, params)
        return cur.fetchall()

    def get(self, invoice_id: int, cur=None) -> Optional[Invoice]:
        """
        Pass the cursor of an open transaction to read under its write lock, so the
        state checked is the state that gets written.
        """
        rows = self._fetch_all("SELECT * FROM invoices WHERE id = ?", (invoice_id,), cur)
        if not rows:
            return None
        return self._row_to_invoice(rows[0], cur)

    def find_for_fec_export(self, start: date, end: date, issuer_id: Optional[int] = None) -> List[Invoice]:
        """
        Exportable invoices dated within [start, end], oldest first.
        issuer_id=None selects every issuer.
        """
        statuses = sorted(s.value for s in EXPORTABLE_STATUSES)
        placeholders = ",".join("?" for _ in statuses)
        sql = f"""
            SELECT * FROM invoices
            WHERE invoice_date BETWEEN ? AND ?
              AND status IN ({placeholders})
        """
        params: list = [start.isoformat(), end.isoformat(), *statuses]
        if issuer_id is not None:
            sql += " AND issuer_id = ?"
            params.append(issuer_id)
        sql += " ORDER BY invoice_date ASC, id ASC"
        return [self._row_to_invoice(r) for r in DBManager.fetch_all(sql, tuple(params))]

    def find_overdue(self, reference_date: date, issuer_id: Optional[int] = None) -> List[Invoice]:
        """
        Candidates only (past due date, still open); full payment is checked by the caller.
        """
        sql = """
            SELECT * FROM invoices
            WHERE due_date < ?
              AND status IN (?, ?, ?)
        """
        params: list = [
            reference_date.isoformat(),
            InvoiceStatus.FINALIZED.value,
            InvoiceStatus.SENT.value,
            InvoiceStatus.PARTIALLY_PAID.value,
        ]
        if issuer_id is not None:
            sql += " AND issuer_id = ?"
            params.append(issuer_id)
        sql += " ORDER BY due_date ASC, id ASC"
        return [self._row_to_invoice(r) for r in DBManager.fetch_all(sql, tuple(params))]

    def _lines(self, invoice_id: int, cur=None) -> List[InvoiceLine]:
        rows = self._fetch_all(
            "SELECT * FROM invoice_lines WHERE invoice_id = ? ORDER BY position",
            (invoice_id,),
            cur,
        )
        return [
            InvoiceLine(
                description=r["description"],
                quantity=Decimal(r["quantity"]),
                unit_price=Money.from_cents(int(r["unit_price_cents"])),
                vat_rate=Decimal(r["vat_rate"]),
                discount_amount=_money(r["discount_cents"]),
                discount_rate=_decimal(r["discount_rate"]),
                quantity_unit=r["quantity_unit"],
            )
            for r in rows
        ]

    def _payments(self, invoice_id: int, cur=None) -> List[Payment]:
        rows = self._fetch_all(
            "SELECT * FROM payments WHERE invoice_id = ? ORDER BY paid_at, id",
            (invoice_id,),
            cur,
        )
        return [
            Payment(
                id=r["id"],
                amount=Money.from_cents(int(r["amount_cents"])),
                paid_at=date.fromisoformat(r["paid_at"]),
                method=PaymentMethod(r["method"]),
                reference=r["reference"],
            )
            for r in rows
        ]

    def _row_to_invoice(self, row, cur=None) -> Invoice:
        return Invoice(
            id=row["id"],
            type=InvoiceType(row["type"]),
            status=InvoiceStatus(row["status"]),
            number=row["number"],
            fiscal_year=row["fiscal_year"],
            issuer_id=row["issuer_id"],
            invoice_date=date.fromisoformat(row["invoice_date"]),
            due_date=date.fromisoformat(row["due_date"]),
            payment_terms=row["payment_terms"],
            customer_name=row["customer_name"],
            customer_siret=row["customer_siret"],
            global_discount_amount=_money(row["global_discount_cents"]),
            global_discount_rate=_decimal(row["global_discount_rate"]),
            credited_invoice_id=row["credited_invoice_id"],
            lines=self._lines(row["id"], cur),
            payments=self._payments(row["id"], cur),
        )
