# core/totals.py
from collections import OrderedDict
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from core.models import Invoice, InvoiceLine, InvoiceTotals
from core.money import Money, money_sum

HUNDRED = Decimal("100")


def rate_key(rate: Decimal) -> str:
    """
    Canonical text of a VAT rate, used to group lines: 20, 20.0 and 20.00 all give "20".
    """
    text = format(Decimal(rate).normalize(), "f")
    return "0" if text in ("-0", "") else text


# --- Line level ---

def unit_price_after_discount(line: InvoiceLine) -> Money:
    if line.discount_amount is not None:
        return line.unit_price.subtract(line.discount_amount)
    if line.discount_rate is not None:
        return line.unit_price.subtract(line.unit_price.multiply(line.discount_rate / HUNDRED))
    return line.unit_price


def line_total_before_vat(line: InvoiceLine) -> Money:
    return unit_price_after_discount(line).multiply(line.quantity)


def line_vat(line: InvoiceLine) -> Money:
    return line_total_before_vat(line).multiply(line.vat_rate / HUNDRED)


def line_total_including_vat(line: InvoiceLine) -> Money:
    return line_total_before_vat(line).add(line_vat(line))


# --- Invoice level ---

def subtotal_before_discount(invoice: Invoice) -> Money:
    return money_sum(line_total_before_vat(l) for l in invoice.lines)


def global_discount_amount(invoice: Invoice) -> Money:
    if invoice.global_discount_amount is not None:
        return invoice.global_discount_amount
    if invoice.global_discount_rate is not None:
        return subtotal_before_discount(invoice).multiply(invoice.global_discount_rate / HUNDRED)
    return Money.zero()


def subtotal_after_discount(invoice: Invoice) -> Money:
    return subtotal_before_discount(invoice).subtract(global_discount_amount(invoice))


def _line_vats(invoice: Invoice) -> List[Tuple[InvoiceLine, Money]]:
    """
    VAT per line. Without a global discount each line keeps its own VAT; with one,
    the discount is apportioned by line weight and VAT is re-derived on what remains.
    """
    discount = global_discount_amount(invoice)
    if discount.is_zero():
        return [(l, line_vat(l)) for l in invoice.lines]

    subtotal = subtotal_before_discount(invoice)
    if subtotal.is_zero():
        return []

    out: List[Tuple[InvoiceLine, Money]] = []
    for l in invoice.lines:
        line_total = line_total_before_vat(l)
        proportion = Decimal(line_total.cents) / Decimal(subtotal.cents)
        share = discount.multiply(proportion)
        after = line_total.subtract(share)
        out.append((l, after.multiply(l.vat_rate / HUNDRED)))
    return out


def total_vat(invoice: Invoice) -> Money:
    return money_sum(vat for _, vat in _line_vats(invoice))


def vat_breakdown(invoice: Invoice) -> Dict[str, Money]:
    """
    VAT per distinct rate, in first-seen line order. Sums exactly to total_vat().
    """
    grouped: "OrderedDict[str, Money]" = OrderedDict()
    for l in invoice.lines:
        grouped.setdefault(rate_key(l.vat_rate), Money.zero())
    for l, vat in _line_vats(invoice):
        key = rate_key(l.vat_rate)
        grouped[key] = grouped[key].add(vat)
    return grouped


def total_including_vat(invoice: Invoice) -> Money:
    return subtotal_after_discount(invoice).add(total_vat(invoice))


def compute_totals(invoice: Invoice) -> InvoiceTotals:
    before = subtotal_before_discount(invoice)
    discount = global_discount_amount(invoice)
    after = before.subtract(discount)
    vat = total_vat(invoice)
    return InvoiceTotals(
        subtotal_before_discount=before,
        discount_amount=discount,
        subtotal_after_discount=after,
        total_vat=vat,
        total_including_vat=after.add(vat),
    )


# --- Payments / status ---

def total_paid(invoice: Invoice) -> Money:
    return money_sum(p.amount for p in invoice.payments)


def remaining_amount(invoice: Invoice) -> Money:
    return total_including_vat(invoice).subtract(total_paid(invoice))


def is_fully_paid(invoice: Invoice) -> bool:
    return remaining_amount(invoice).cents <= 0


def is_partially_paid(invoice: Invoice) -> bool:
    return not total_paid(invoice).is_zero() and remaining_amount(invoice).is_positive()


def is_overdue(invoice: Invoice, reference_date: Optional[date] = None) -> bool:
    ref = reference_date or date.today()
    return ref > invoice.due_date and not is_fully_paid(invoice)


def days_overdue(invoice: Invoice, reference_date: Optional[date] = None) -> int:
    ref = reference_date or date.today()
    if is_fully_paid(invoice) or ref <= invoice.due_date:
        return 0
    return (ref - invoice.due_date).days
