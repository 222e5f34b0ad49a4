"""Outward-facing response shapes and their mappers.

Responses extend the ledger payload models with the contract id, so the
payload fields carry over as-is.
"""

from datetime import UTC, datetime

from services.invoicing.correlation import InvoiceWithPaymentRequests, PaymentRequestWithAllocation
from services.invoicing.schema import (
    BookkeeperView,
    CamelModel,
    Invoice,
    InvoicePaymentRequest,
    LogisticsView,
)
from services.ledger.contracts import Contract


class InvoicePaymentRequestResponse(InvoicePaymentRequest):
    contract_id: str
    invoice_num: int
    prepare_deadline_passed: bool
    settle_deadline_passed: bool
    allocation_cid: str | None = None


class InvoiceResponse(Invoice):
    contract_id: str
    invoice_num: int
    payment_requests: list[InvoicePaymentRequestResponse]


class LogisticsViewResponse(LogisticsView):
    contract_id: str


class BookkeeperViewResponse(BookkeeperView):
    contract_id: str
    invoice_num: int


class InvoicePaymentResult(CamelModel):
    invoice_id: str
    receipt_id: str


def to_payment_request_response(
    entry: PaymentRequestWithAllocation, now: datetime
) -> InvoicePaymentRequestResponse:
    request = entry.request.payload
    return InvoicePaymentRequestResponse(
        **request.model_dump(exclude={"invoice_num"}),
        invoice_num=request.invoice_num,
        contract_id=entry.request.contract_id,
        prepare_deadline_passed=request.prepare_until <= now,
        settle_deadline_passed=request.settle_before <= now,
        allocation_cid=entry.allocation_cid,
    )


def to_invoice_response(
    aggregate: InvoiceWithPaymentRequests, now: datetime | None = None
) -> InvoiceResponse:
    """Map an invoice aggregate; payment requests are ordered by request time."""
    now = now or datetime.now(UTC)
    invoice = aggregate.invoice.payload
    payment_requests = sorted(
        (to_payment_request_response(pr, now) for pr in aggregate.payment_requests),
        key=lambda pr: pr.requested_at,
    )
    return InvoiceResponse(
        **invoice.model_dump(exclude={"invoice_num"}),
        invoice_num=invoice.invoice_num,
        contract_id=aggregate.invoice.contract_id,
        payment_requests=payment_requests,
    )


def to_logistics_view_response(contract: Contract[LogisticsView]) -> LogisticsViewResponse:
    return LogisticsViewResponse(**contract.payload.model_dump(), contract_id=contract.contract_id)


def to_bookkeeper_view_response(contract: Contract[BookkeeperView]) -> BookkeeperViewResponse:
    view = contract.payload
    return BookkeeperViewResponse(
        **view.model_dump(exclude={"invoice_num"}),
        invoice_num=view.invoice_num,
        contract_id=contract.contract_id,
    )
