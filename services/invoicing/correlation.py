"""Correlation of invoices, payment requests and allocations.

The three contract sets share no contract-id references, only business
keys. ``join_rows`` performs the equivalent of::

    invoice LEFT JOIN payment_request ON (invoiceNum, buyer)
            LEFT JOIN allocation      ON (requestId, buyer) =
                                         (settlementRef.id, transferLeg.sender)
    WHERE the party is seller, buyer or provider of the invoice
    ORDER BY invoice contract id

and ``fold_rows`` groups the rows into one aggregate per invoice, keeping
first-seen order. Both are pure; fetching the sets is the repository's job.
"""

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from services.invoicing.schema import AllocationView, Invoice, InvoicePaymentRequest
from services.ledger.contracts import Contract

# Join-key extractors. Each pair must produce comparable tuples.


def invoice_request_key(invoice: Invoice) -> tuple[Any, ...]:
    return (invoice.invoice_num, invoice.buyer)


def request_invoice_key(request: InvoicePaymentRequest) -> tuple[Any, ...]:
    return (request.invoice_num, request.buyer)


def request_allocation_key(request: InvoicePaymentRequest) -> tuple[Any, ...]:
    return (request.request_id, request.buyer)


def allocation_request_key(allocation: AllocationView) -> tuple[Any, ...]:
    spec = allocation.allocation
    return (spec.settlement.settlement_ref.id, spec.transfer_leg.sender)


@dataclass(frozen=True)
class JoinKeys:
    """Business-key extractors for both joins."""

    invoice_to_request: Callable[[Invoice], tuple[Any, ...]] = invoice_request_key
    request_to_invoice: Callable[[InvoicePaymentRequest], tuple[Any, ...]] = request_invoice_key
    request_to_allocation: Callable[[InvoicePaymentRequest], tuple[Any, ...]] = (
        request_allocation_key
    )
    allocation_to_request: Callable[[AllocationView], tuple[Any, ...]] = allocation_request_key


BUSINESS_KEYS = JoinKeys()


def invoice_matches_request(
    invoice: Invoice, request: InvoicePaymentRequest, keys: JoinKeys = BUSINESS_KEYS
) -> bool:
    return keys.invoice_to_request(invoice) == keys.request_to_invoice(request)


def request_matches_allocation(
    request: InvoicePaymentRequest, allocation: AllocationView, keys: JoinKeys = BUSINESS_KEYS
) -> bool:
    return keys.request_to_allocation(request) == keys.allocation_to_request(allocation)


def is_invoice_party(invoice: Invoice, party: str) -> bool:
    return party in (invoice.seller, invoice.buyer, invoice.provider)


@dataclass(frozen=True)
class JoinRow:
    """One row of the three-way left join; right-hand sides may be absent."""

    invoice: Contract[Invoice]
    payment_request: Contract[InvoicePaymentRequest] | None = None
    allocation_cid: str | None = None


@dataclass(frozen=True)
class PaymentRequestWithAllocation:
    request: Contract[InvoicePaymentRequest]
    allocation_cid: str | None = None


@dataclass(frozen=True)
class InvoiceWithPaymentRequests:
    invoice: Contract[Invoice]
    payment_requests: list[PaymentRequestWithAllocation] = field(default_factory=list)


def join_rows(
    invoices: Iterable[Contract[Invoice]],
    payment_requests: Iterable[Contract[InvoicePaymentRequest]],
    allocations: Iterable[Contract[AllocationView]],
    party: str,
    keys: JoinKeys = BUSINESS_KEYS,
) -> list[JoinRow]:
    """Left-join the three active sets for one party.

    A payment request matching several allocations yields one row per
    allocation, as a SQL join would.

    Args:
        invoices: Active invoices
        payment_requests: Active invoice payment requests
        allocations: Active allocations
        party: Caller; only invoices where it is seller, buyer or provider are kept
        keys: Business-key extractors for the two joins

    Returns:
        Join rows ordered by invoice contract id
    """
    requests_by_key: dict[tuple[Any, ...], list[Contract[InvoicePaymentRequest]]] = {}
    for request in payment_requests:
        requests_by_key.setdefault(keys.request_to_invoice(request.payload), []).append(request)

    allocations_by_key: dict[tuple[Any, ...], list[Contract[AllocationView]]] = {}
    for allocation in allocations:
        allocations_by_key.setdefault(keys.allocation_to_request(allocation.payload), []).append(
            allocation
        )

    rows: list[JoinRow] = []
    visible = (i for i in invoices if is_invoice_party(i.payload, party))
    for invoice in sorted(visible, key=lambda c: c.contract_id):
        matched = requests_by_key.get(keys.invoice_to_request(invoice.payload), [])
        if not matched:
            rows.append(JoinRow(invoice))
            continue
        for request in matched:
            allocated = allocations_by_key.get(keys.request_to_allocation(request.payload), [])
            if not allocated:
                rows.append(JoinRow(invoice, request))
                continue
            for allocation in allocated:
                rows.append(JoinRow(invoice, request, allocation.contract_id))
    return rows


def fold_rows(rows: Iterable[JoinRow]) -> list[InvoiceWithPaymentRequests]:
    """Group join rows by invoice contract id, keeping first-seen order.

    Rows without a payment request only register their invoice.
    """
    order: list[str] = []
    grouped: dict[str, InvoiceWithPaymentRequests] = {}
    for row in rows:
        invoice_cid = row.invoice.contract_id
        if invoice_cid not in grouped:
            order.append(invoice_cid)
            grouped[invoice_cid] = InvoiceWithPaymentRequests(row.invoice)
        if row.payment_request is not None:
            grouped[invoice_cid].payment_requests.append(
                PaymentRequestWithAllocation(row.payment_request, row.allocation_cid)
            )
    return [grouped[cid] for cid in order]


def correlate(
    invoices: Iterable[Contract[Invoice]],
    payment_requests: Iterable[Contract[InvoicePaymentRequest]],
    allocations: Iterable[Contract[AllocationView]],
    party: str,
) -> list[InvoiceWithPaymentRequests]:
    """Build the invoice aggregates visible to ``party``.

    The order of the result is not part of the contract; sort explicitly.
    """
    return fold_rows(join_rows(invoices, payment_requests, allocations, party))
