"""Invoice and payment-request actions.

Each action looks up its target contract, builds the choice argument and
exercises it once with the caller's command id. Lookups that find nothing
raise NotFoundError; ledger failures propagate unchanged.
"""

import asyncio
import logging
import uuid
from datetime import UTC, datetime

from services.invoicing.computation import compute_totals
from services.invoicing.repository import InvoiceRepository
from services.invoicing.requests import (
    AddressRequest,
    CancelRequest,
    CompletePaymentRequest,
    ContactRequest,
    CreateInvoiceRequest,
    PartyInfoRequest,
    RequestPaymentRequest,
    ShareWithBookkeeperRequest,
    ShareWithCarrierRequest,
)
from services.invoicing.schema import (
    Address,
    Contact,
    InstrumentId,
    Invoice,
    InvoiceCancel,
    InvoiceMarkPaid,
    InvoicePaymentRequestComplete,
    InvoiceRequestPayment,
    InvoiceShareWithBookkeeper,
    InvoiceShareWithCarrier,
    InvoiceStatus,
    Metadata,
    PartyInfo,
)
from services.invoicing.views import InvoicePaymentResult, InvoiceResponse, to_invoice_response
from services.ledger import contracts as templates
from services.ledger.commands import LedgerCommandClient
from services.ledger.registry import TokenRegistryClient
from services.settlement.context import TransferContext, build_transfer_context
from services.shared.config import Settings
from services.shared.errors import LedgerRejectionError, ensure_present

logger = logging.getLogger(__name__)

EMPTY_EXTRA_ARGS = TransferContext().extra_args()


def to_address(request: AddressRequest | None) -> Address:
    if request is None:
        return Address()
    return Address(
        street=request.street or "",
        city=request.city or "",
        state=request.state or "",
        postal_code=request.postal_code or "",
        country=request.country or "",
    )


def to_contact(request: ContactRequest | None) -> Contact:
    if request is None:
        return Contact()
    return Contact(name=request.name or "", email=request.email or "", phone=request.phone or "")


def to_party_info(request: PartyInfoRequest) -> PartyInfo:
    return PartyInfo(
        party_name=request.party_name or "",
        reg_number=request.reg_number or "",
        tax_number=request.tax_number or "",
        address=to_address(request.address),
        contact=to_contact(request.contact),
    )


class InvoiceService:
    """Invoice lifecycle on the ledger, acting as the app provider."""

    def __init__(
        self,
        settings: Settings,
        repository: InvoiceRepository,
        commands: LedgerCommandClient,
        registry: TokenRegistryClient,
    ) -> None:
        self.settings = settings
        self._repository = repository
        self._commands = commands
        self._registry = registry

    @property
    def admin_party(self) -> str:
        return self.settings.admin_party

    async def list_invoices(self, party: str) -> list[InvoiceResponse]:
        """Invoices visible to ``party``, ordered by invoice number."""
        aggregates = await self._repository.find_active_invoices(party)
        now = datetime.now(UTC)
        responses = [to_invoice_response(a, now) for a in aggregates]
        return sorted(responses, key=lambda r: r.invoice_num)

    def build_invoice(
        self, request: CreateInvoiceRequest, instrument_admin: str, now: datetime
    ) -> Invoice:
        """Build the Invoice payload with freshly computed totals."""
        totals = compute_totals(request.line_items)
        return Invoice(
            seller=request.seller,
            buyer=request.buyer,
            provider=self.admin_party,
            invoice_num=0,  # assigned by the ledger
            invoice_date=now,
            due_date=request.due_date,
            currency=request.currency or "",
            seller_info=to_party_info(request.seller_info),
            buyer_info=to_party_info(request.buyer_info),
            shipping_address=to_address(request.shipping_address),
            line_items=totals.line_items,
            subtotal=totals.subtotal,
            total_discount=totals.total_discount,
            tax_breakdown=totals.tax_breakdown,
            total_tax=totals.total_tax,
            grand_total=totals.grand_total,
            amount_paid=totals.amount_paid,
            balance_due=totals.balance_due,
            payment_instrument=InstrumentId(admin=instrument_admin, id=self.settings.instrument_id),
            payment_terms=request.payment_terms or "",
            po_number=request.po_number or "",
            sales_order_number=request.sales_order_number or "",
            notes=request.notes or "",
            delivery_terms=request.delivery_terms or "",
            description=request.description or "",
            status=InvoiceStatus.ISSUED,
            meta=Metadata(),
        )

    async def create_invoice(self, request: CreateInvoiceRequest, command_id: str) -> str:
        """Create an invoice; returns the new contract id."""
        logger.info(f"createInvoice commandId={command_id}")
        admin_id = await self._registry.get_registry_admin_id()
        invoice = self.build_invoice(request, admin_id, datetime.now(UTC))
        return await self._commands.create(templates.INVOICE, invoice.to_ledger(), command_id)

    async def request_payment(
        self, contract_id: str, request: RequestPaymentRequest, command_id: str
    ) -> None:
        logger.info(f"requestInvoicePayment contractId={contract_id} commandId={command_id}")
        invoice = ensure_present(
            await self._repository.find_invoice_by_id(contract_id),
            "Invoice not found for contract %s",
            contract_id,
        )
        now = datetime.now(UTC)
        choice = InvoiceRequestPayment(
            request_id=str(uuid.uuid4()),
            requested_at=now,
            prepare_until=now + request.prepare_until_duration,
            settle_before=now + request.settle_before_duration,
        )
        await self._commands.exercise(
            templates.INVOICE,
            invoice.contract_id,
            "Invoice_RequestPayment",
            choice.to_ledger(),
            command_id,
        )

    async def complete_payment(
        self, contract_id: str, request: CompletePaymentRequest, command_id: str
    ) -> InvoicePaymentResult:
        """Settle a payment request against its allocation.

        The registry's transfer context and the payment request are fetched
        concurrently; the resulting disclosures go to the ledger unchanged.
        """
        logger.info(f"completeInvoicePayment contractId={contract_id} commandId={command_id}")
        choice_context, payment_request = await asyncio.gather(
            self._registry.get_allocation_transfer_context(request.allocation_contract_id),
            self._repository.find_active_payment_request_by_id(
                request.payment_request_contract_id
            ),
        )
        choice_context = ensure_present(
            choice_context,
            "Transfer context not found for allocation %s",
            request.allocation_contract_id,
        )
        payment_request = ensure_present(
            payment_request,
            "Active payment request not found for contract %s",
            request.payment_request_contract_id,
        )
        transfer_context = build_transfer_context(choice_context.disclosed_contracts)
        choice = InvoicePaymentRequestComplete(
            allocation_cid=request.allocation_contract_id,
            invoice_cid=contract_id,
            extra_args=transfer_context.extra_args(),
        )
        result = await self._commands.exercise(
            templates.INVOICE_PAYMENT_REQUEST,
            payment_request.contract_id,
            "InvoicePaymentRequest_Complete",
            choice.to_ledger(),
            command_id,
            disclosures=transfer_context.disclosures,
        )
        try:
            return InvoicePaymentResult(
                invoice_id=result["paidInvoiceId"], receipt_id=result["receiptId"]
            )
        except (KeyError, TypeError) as e:
            raise LedgerRejectionError(
                f"Unexpected InvoicePaymentRequest_Complete result: {result}"
            ) from e

    async def cancel_invoice(
        self, contract_id: str, request: CancelRequest | None, command_id: str
    ) -> None:
        logger.info(f"cancelInvoice contractId={contract_id} commandId={command_id}")
        invoice = ensure_present(
            await self._repository.find_invoice_by_id(contract_id),
            "Invoice not found for contract %s",
            contract_id,
        )
        meta = request.meta if request is not None and request.meta is not None else {}
        choice = InvoiceCancel(actor=self.admin_party, meta=Metadata(values=meta))
        await self._commands.exercise(
            templates.INVOICE, invoice.contract_id, "Invoice_Cancel", choice.to_ledger(), command_id
        )

    async def mark_paid(self, contract_id: str, command_id: str) -> None:
        logger.info(f"markInvoicePaid contractId={contract_id} commandId={command_id}")
        invoice = ensure_present(
            await self._repository.find_invoice_by_id(contract_id),
            "Invoice not found for contract %s",
            contract_id,
        )
        choice = InvoiceMarkPaid(paid_at=datetime.now(UTC))
        await self._commands.exercise(
            templates.INVOICE,
            invoice.contract_id,
            "Invoice_MarkPaid",
            choice.to_ledger(),
            command_id,
        )

    async def share_with_carrier(
        self, contract_id: str, request: ShareWithCarrierRequest, command_id: str
    ) -> None:
        logger.info(f"shareWithCarrier contractId={contract_id} commandId={command_id}")
        invoice = ensure_present(
            await self._repository.find_invoice_by_id(contract_id),
            "Invoice not found for contract %s",
            contract_id,
        )
        choice = InvoiceShareWithCarrier(carrier=request.carrier, actor=self.admin_party)
        await self._commands.exercise(
            templates.INVOICE,
            invoice.contract_id,
            "Invoice_ShareWithCarrier",
            choice.to_ledger(),
            command_id,
        )

    async def share_with_bookkeeper(
        self, contract_id: str, request: ShareWithBookkeeperRequest, command_id: str
    ) -> None:
        logger.info(f"shareWithBookkeeper contractId={contract_id} commandId={command_id}")
        invoice = ensure_present(
            await self._repository.find_invoice_by_id(contract_id),
            "Invoice not found for contract %s",
            contract_id,
        )
        choice = InvoiceShareWithBookkeeper(bookkeeper=request.bookkeeper, actor=self.admin_party)
        await self._commands.exercise(
            templates.INVOICE,
            invoice.contract_id,
            "Invoice_ShareWithBookkeeper",
            choice.to_ledger(),
            command_id,
        )

    async def withdraw_payment_request(self, contract_id: str, command_id: str) -> None:
        """Withdraw the allocation request behind a payment request."""
        logger.info(
            f"withdrawInvoicePaymentRequest contractId={contract_id} commandId={command_id}"
        )
        allocation_request = ensure_present(
            await self._repository.find_active_allocation_request_by_id(contract_id),
            "AllocationRequest %s not found",
            contract_id,
        )
        await self._commands.exercise(
            templates.ALLOCATION_REQUEST,
            allocation_request.contract_id,
            "AllocationRequest_Withdraw",
            {"extraArgs": EMPTY_EXTRA_ARGS},
            command_id,
        )
