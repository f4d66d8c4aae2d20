from datetime import date
from decimal import Decimal
from core.models import Invoice, InvoiceLine, InvoiceStatus, InvoiceType, Payment
from core.money import Money

def make_line(price="100.00", qty="1", rate="20", descr="Prestation", **kw):
    return InvoiceLine(
        description=descr,
        quantity=Decimal(qty),
        unit_price=Money.from_decimal_string(price),
        vat_rate=Decimal(rate),
        **kw,
    )

def make_invoice(*lines, type_=InvoiceType.INVOICE, status=InvoiceStatus.FINALIZED,
                 number="FA-2025-0001", date_=None, customer="ACME SARL", **kw):
    d = date_ or date(2025, 3, 15)
    return Invoice(
        type=type_,
        invoice_date=d,
        due_date=kw.pop("due_date", d),
        customer_name=customer,
        lines=lines or (make_line(),),
        status=status,
        number=number,
        **kw,
    )

def pay(amount, paid_at=None):
    return Payment(amount=Money.from_decimal_string(amount), paid_at=paid_at or date(2025, 4, 1))

def create_finalized(invoices, *lines, customer="ACME SARL", date_=None, **kw):
    """Create a draft with the given lines through the service and finalize it."""
    r = invoices.create_invoice(customer, date_ or date(2025, 3, 15), lines=list(lines or (make_line(),)), **kw)
    assert r.success, r.errors
    f = invoices.finalize(r.invoice.id)
    assert f.success, f.errors
    return f

def extract_errors(result) -> list[str]:
    # Normalize to list of strings for diagnostics
    errs = getattr(result, "errors", None)
    if not errs:
        return []
    if isinstance(errs, list):
        return [str(e) for e in errs]
    return [str(errs)]
