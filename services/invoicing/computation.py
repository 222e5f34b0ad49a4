"""Invoice financial aggregates.

Pure functions over ``decimal.Decimal``. The results must match what the
ledger computes for the same lines, so nothing is rounded and tax rates are
grouped by exact value, precision included: ``0.1`` and ``0.10`` form two
separate groups.
"""

from dataclasses import dataclass, field
from decimal import MAX_EMAX, MAX_PREC, MIN_EMIN, Context, Decimal, localcontext

from services.invoicing.requests import LineItemRequest
from services.invoicing.schema import LineItem, TaxEntry

ZERO = Decimal(0)
HUNDRED = Decimal(100)

# Wide enough that +, - and * never round
EXACT = Context(prec=MAX_PREC, Emax=MAX_EMAX, Emin=MIN_EMIN)


@dataclass(frozen=True)
class InvoiceTotals:
    """Derived totals for one invoice."""

    line_items: list[LineItem] = field(default_factory=list)
    subtotal: Decimal = ZERO
    total_discount: Decimal = ZERO
    tax_breakdown: list[TaxEntry] = field(default_factory=list)
    total_tax: Decimal = ZERO
    grand_total: Decimal = ZERO
    amount_paid: Decimal = ZERO
    balance_due: Decimal = ZERO


def line_subtotal(quantity: Decimal, unit_price: Decimal, discount: Decimal) -> Decimal:
    """``quantity * unit_price - discount``; negative results are kept."""
    return quantity * unit_price - discount


def build_line_item(spec: LineItemRequest) -> LineItem:
    """Turn a raw line into a ledger LineItem with its derived subtotal."""
    quantity = spec.quantity if spec.quantity is not None else ZERO
    unit_price = spec.unit_price if spec.unit_price is not None else ZERO
    discount = spec.discount if spec.discount is not None else ZERO
    tax_rate = spec.tax_rate if spec.tax_rate is not None else ZERO
    return LineItem(
        item_name=spec.item_name or "",
        sku=spec.sku or "",
        quantity=quantity,
        unit_of_measure=spec.unit_of_measure or "",
        unit_price=unit_price,
        discount=discount,
        tax_rate=tax_rate,
        line_subtotal=line_subtotal(quantity, unit_price, discount),
        batch_info=spec.batch_info or "",
        delivery_date=spec.delivery_date or "",
    )


def tax_label(rate: Decimal) -> str:
    """Label such as ``Tax 10.0%`` for rate ``0.1``."""
    return f"Tax {rate * HUNDRED}%"


def _rate_key(rate: Decimal) -> tuple[int, tuple[int, ...], int | str]:
    # Decimal("0.1") == Decimal("0.10"); the tuple keeps them apart
    sign, digits, exponent = rate.as_tuple()
    return sign, digits, exponent


def tax_breakdown(line_items: list[LineItem]) -> list[TaxEntry]:
    """Group taxable lines by exact rate, in first-seen order.

    Lines with a zero (or negative) rate are left out entirely.
    """
    groups: dict[tuple[int, tuple[int, ...], int | str], list[LineItem]] = {}
    for item in line_items:
        if item.tax_rate > ZERO:
            groups.setdefault(_rate_key(item.tax_rate), []).append(item)

    entries: list[TaxEntry] = []
    for members in groups.values():
        rate = members[0].tax_rate
        taxable = sum((m.line_subtotal for m in members), ZERO)
        entries.append(TaxEntry(tax_name=tax_label(rate), tax_rate=rate, tax_amount=taxable * rate))
    return entries


def compute_totals(specs: list[LineItemRequest]) -> InvoiceTotals:
    """Compute line subtotals and invoice totals from raw line items.

    Args:
        specs: Raw line items in invoice order

    Returns:
        InvoiceTotals with amount_paid 0 and balance_due equal to grand_total
    """
    with localcontext(EXACT):
        line_items = [build_line_item(spec) for spec in specs]
        subtotal = sum((li.line_subtotal for li in line_items), ZERO)
        total_discount = sum((li.discount for li in line_items), ZERO)
        breakdown = tax_breakdown(line_items)
        total_tax = sum((te.tax_amount for te in breakdown), ZERO)
        grand_total = subtotal + total_tax
    return InvoiceTotals(
        line_items=line_items,
        subtotal=subtotal,
        total_discount=total_discount,
        tax_breakdown=breakdown,
        total_tax=total_tax,
        grand_total=grand_total,
        amount_paid=ZERO,
        balance_due=grand_total,
    )
