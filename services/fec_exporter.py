# services/fec_exporter.py
import logging
import re
import unicodedata
from datetime import date
from decimal import Decimal
from typing import List, Optional, Protocol, Sequence

from core.dates import yyyymmdd
from core.models import FecFormatError, Invoice, LedgerError, Payment, is_exportable
from core.money import Money
from core.totals import compute_totals, vat_breakdown
from core.validator import validate_balanced as _validate_rows
from services.constants import ACCOUNT_LABELS, FecConfig

logger = logging.getLogger("fec_exporter")

FEC_COLUMNS = (
    "JournalCode",
    "JournalLib",
    "EcritureNum",
    "EcritureDate",
    "CompteNum",
    "CompteLib",
    "CompAuxNum",
    "CompAuxLib",
    "PieceRef",
    "PieceDate",
    "EcritureLib",
    "Debit",
    "Credit",
    "EcritureLet",
    "DateLet",
    "ValidDate",
    "Montantdevise",
    "Idevise",
)
FEC_SEPARATOR = "|"
DEBIT_INDEX = FEC_COLUMNS.index("Debit")
CREDIT_INDEX = FEC_COLUMNS.index("Credit")
ZERO_AMOUNT = "0.00"
AUX_CODE_MAX_LEN = 17

_NON_ALNUM = re.compile(r"[^A-Za-z0-9]")
_FIELD_BREAKERS = re.compile(r"[|\r\n]")


class InvoiceSource(Protocol):
    def find_for_fec_export(
        self, start: date, end: date, issuer_id: Optional[int] = None
    ) -> Sequence[Invoice]: ...


# --- Field formatting ---

def format_amount(amount: Money) -> str:
    """FEC amounts are "1234.56" whatever the locale."""
    return amount.to_decimal_string()


def clean_field(value: str) -> str:
    """Separator and line breaks in free text become spaces."""
    return _FIELD_BREAKERS.sub(" ", value or "")


def format_row(fields: Sequence[str]) -> str:
    if len(fields) != len(FEC_COLUMNS):
        raise FecFormatError(f"FEC row must have exactly {len(FEC_COLUMNS)} fields, got {len(fields)}")
    line = FEC_SEPARATOR.join(fields)
    if line.count(FEC_SEPARATOR) != len(FEC_COLUMNS) - 1 or "\n" in line or "\r" in line:
        raise FecFormatError(f"FEC field contains a separator or line break: {line!r}")
    return line


def lettrage_code(n: int) -> str:
    """1 -> A, 26 -> Z, 27 -> AA, 28 -> AB."""
    code = ""
    while n > 0:
        n -= 1
        code = chr(ord("A") + n % 26) + code
        n //= 26
    return code


def customer_aux_code(invoice: Invoice) -> str:
    """
    Customer SIRET when known, else the name without accents or punctuation, uppercased, 17 chars max.
    """
    if invoice.customer_siret:
        return invoice.customer_siret
    decomposed = unicodedata.normalize("NFD", invoice.customer_name or "")
    ascii_name = "".join(c for c in decomposed if not unicodedata.combining(c))
    return _NON_ALNUM.sub("", ascii_name).upper()[:AUX_CODE_MAX_LEN]


def _document_label(invoice: Invoice) -> str:
    return "Avoir" if invoice.is_credit_note else "Facture"


def _vat_rate_label(rate_text: str) -> str:
    return f"{Decimal(rate_text):.1f}"


# --- Exporter ---

class FecExporter:
    """
    Builds the FEC text for the exportable invoices of a date range.
    Per invoice (same polarity flipped for credit notes):
    - customer row: debit total incl. VAT
    - sales row: credit subtotal after discount
    - one VAT row per rate: credit that rate's VAT
    Optionally, two bank-journal rows per payment, lettered against the customer row.
    """

    def __init__(self, source: InvoiceSource, config: Optional[FecConfig] = None):
        self.source = source
        self.config = config or FecConfig()

    def export(self, start_date: date, end_date: date, issuer_id: Optional[int] = None) -> str:
        invoices = [
            inv for inv in self.source.find_for_fec_export(start_date, end_date, issuer_id)
            if is_exportable(inv.status)
        ]
        invoices.sort(key=lambda inv: inv.invoice_date)

        run = _ExportRun(self.config)
        for invoice in invoices:
            run.add_invoice(invoice)

        logger.info(
            "FEC export %s..%s issuer=%s: %s invoices, %s rows",
            start_date, end_date, issuer_id, len(invoices), len(run.rows),
        )
        return "\n".join([format_row(FEC_COLUMNS)] + run.rows)


class _ExportRun:
    """Counters for one export() call: entry numbers and lettrage codes restart at 1."""

    def __init__(self, config: FecConfig):
        self.config = config
        self.rows: List[str] = []
        self._entry_num = 0
        self._lettrage_num = 0

    def _next_entry_num(self) -> str:
        self._entry_num += 1
        return f"{self._entry_num:03d}"

    def _emit(
        self,
        *,
        journal_code: str,
        journal_label: str,
        entry_date: date,
        account: str,
        account_label: str,
        aux_num: str,
        aux_label: str,
        piece_ref: str,
        label: str,
        debit: str,
        credit: str,
        lettrage: str = "",
        lettrage_date: str = "",
    ):
        day = yyyymmdd(entry_date)
        fields = [
            journal_code,
            journal_label,
            self._next_entry_num(),
            day,
            account,
            account_label,
            aux_num,
            aux_label,
            piece_ref,
            day,
            label,
            debit,
            credit,
            lettrage,
            lettrage_date,
            day,
            "",
            "",
        ]
        self.rows.append(format_row([clean_field(f) for f in fields]))

    def add_invoice(self, invoice: Invoice):
        cfg = self.config
        credit_note = invoice.is_credit_note
        totals = compute_totals(invoice)
        number = invoice.number or ""
        label = f"{_document_label(invoice)} {number}"
        aux_num = customer_aux_code(invoice)

        lettrage = ""
        lettrage_date = ""
        payments = invoice.payments if cfg.include_payments else ()
        if payments:
            self._lettrage_num += 1
            lettrage = lettrage_code(self._lettrage_num)
            lettrage_date = yyyymmdd(max(p.paid_at for p in payments))

        def sides(amount: Money, customer_side: bool):
            # customer side is debited on invoices, credited on credit notes
            value = format_amount(amount)
            if customer_side != credit_note:
                return value, ZERO_AMOUNT
            return ZERO_AMOUNT, value

        common = dict(
            journal_code=cfg.journal_code,
            journal_label=cfg.journal_label,
            entry_date=invoice.invoice_date,
            piece_ref=number,
        )

        debit, credit = sides(totals.total_including_vat, customer_side=True)
        self._emit(
            **common,
            account=cfg.customer_account,
            account_label=cfg.customer_label,
            aux_num=aux_num,
            aux_label=invoice.customer_name,
            label=label,
            debit=debit,
            credit=credit,
            lettrage=lettrage,
            lettrage_date=lettrage_date,
        )

        debit, credit = sides(totals.subtotal_after_discount, customer_side=False)
        self._emit(
            **common,
            account=cfg.sales_account,
            account_label=cfg.sales_label,
            aux_num="",
            aux_label="",
            label=label,
            debit=debit,
            credit=credit,
        )

        for rate_text, vat in vat_breakdown(invoice).items():
            account = cfg.vat_accounts.get(rate_text, cfg.vat_fallback_account)
            rate_label = _vat_rate_label(rate_text)
            debit, credit = sides(vat, customer_side=False)
            self._emit(
                **common,
                account=account,
                account_label=ACCOUNT_LABELS.get(account, f"TVA collectée {rate_label}%"),
                aux_num="",
                aux_label="",
                label=f"{label} - TVA {rate_label}%",
                debit=debit,
                credit=credit,
            )

        for payment in payments:
            self._add_payment(invoice, payment, aux_num, lettrage)

    def _add_payment(self, invoice: Invoice, payment: Payment, aux_num: str, lettrage: str):
        cfg = self.config
        amount = format_amount(payment.amount)
        label = f"Règlement {_document_label(invoice)} {invoice.number or ''}"
        # cash in on invoices, cash out on credit notes
        bank_debit, bank_credit = (ZERO_AMOUNT, amount) if invoice.is_credit_note else (amount, ZERO_AMOUNT)
        common = dict(
            journal_code=cfg.bank_journal_code,
            journal_label=cfg.bank_journal_label,
            entry_date=payment.paid_at,
            piece_ref=invoice.number or "",
            label=label,
        )
        self._emit(
            **common,
            account=cfg.bank_account,
            account_label=cfg.bank_label,
            aux_num="",
            aux_label="",
            debit=bank_debit,
            credit=bank_credit,
        )
        self._emit(
            **common,
            account=cfg.customer_account,
            account_label=cfg.customer_label,
            aux_num=aux_num,
            aux_label=invoice.customer_name,
            debit=bank_credit,
            credit=bank_debit,
            lettrage=lettrage,
            lettrage_date=yyyymmdd(payment.paid_at),
        )


# --- Reading back ---

def parse_fec(text: str) -> List[List[str]]:
    """Data rows of a FEC text, header skipped."""
    lines = [l for l in text.split("\n") if l]
    return [l.split(FEC_SEPARATOR) for l in lines[1:]]


def validate_balanced(text: str) -> List[LedgerError]:
    """Empty list when Σ Debit == Σ Credit over every data row."""
    return _validate_rows(parse_fec(text), DEBIT_INDEX, CREDIT_INDEX)
