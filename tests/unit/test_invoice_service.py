"""Unit tests for InvoiceService.

Repository, command client and registry are replaced with AsyncMocks.
"""

from datetime import UTC, datetime, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from services.invoicing.correlation import InvoiceWithPaymentRequests, PaymentRequestWithAllocation
from services.invoicing.requests import (
    CancelRequest,
    CompletePaymentRequest,
    CreateInvoiceRequest,
    LineItemRequest,
    RequestPaymentRequest,
    ShareWithBookkeeperRequest,
    ShareWithCarrierRequest,
)
from services.invoicing.schema import InstrumentId, Invoice, InvoicePaymentRequest
from services.invoicing.service import InvoiceService
from services.ledger import contracts as templates
from services.ledger.contracts import Contract, DisclosedContractDescriptor
from services.ledger.registry import ChoiceContextResponse
from services.shared.config import Settings
from services.shared.errors import LedgerRejectionError, MalformedInputError, NotFoundError

NOW = datetime(2025, 1, 1, tzinfo=UTC)


@pytest.fixture
def settings() -> Settings:
    return Settings(admin_party="provider", instrument_id="Amulet")


@pytest.fixture
def repository() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def commands() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def registry() -> AsyncMock:
    mock = AsyncMock()
    mock.get_registry_admin_id.return_value = "dso::1220"
    return mock


@pytest.fixture
def service(
    settings: Settings, repository: AsyncMock, commands: AsyncMock, registry: AsyncMock
) -> InvoiceService:
    return InvoiceService(settings, repository, commands, registry)


def invoice(cid: str = "inv-1", num: int = 1) -> Contract[Invoice]:
    return Contract(
        cid,
        "pkg:Invoicing.Invoice:Invoice",
        Invoice(
            seller="seller",
            buyer="buyer",
            provider="provider",
            invoice_num=num,
            invoice_date=NOW,
            due_date=NOW + timedelta(days=30),
            payment_instrument=InstrumentId(admin="dso::1220", id="Amulet"),
        ),
    )


def payment_request(
    cid: str = "req-cid", requested_at: datetime = NOW
) -> Contract[InvoicePaymentRequest]:
    return Contract(
        cid,
        "pkg:Invoicing.Invoice:InvoicePaymentRequest",
        InvoicePaymentRequest(
            seller="seller",
            buyer="buyer",
            provider="provider",
            invoice_num=1,
            amount=Decimal("26.4"),
            request_id="req-1",
            prepare_until=requested_at + timedelta(hours=1),
            settle_before=requested_at + timedelta(hours=2),
            requested_at=requested_at,
        ),
    )


class TestListInvoices:
    """Test listing invoice aggregates."""

    @pytest.mark.asyncio
    async def test_sorted_by_invoice_number(
        self, service: InvoiceService, repository: AsyncMock
    ) -> None:
        repository.find_active_invoices.return_value = [
            InvoiceWithPaymentRequests(invoice("b", 3)),
            InvoiceWithPaymentRequests(invoice("a", 1)),
            InvoiceWithPaymentRequests(invoice("c", 2)),
        ]

        result = await service.list_invoices("seller")

        assert [r.invoice_num for r in result] == [1, 2, 3]
        assert [r.contract_id for r in result] == ["a", "c", "b"]
        repository.find_active_invoices.assert_awaited_once_with("seller")

    @pytest.mark.asyncio
    async def test_payment_requests_sorted_and_flagged(
        self, service: InvoiceService, repository: AsyncMock
    ) -> None:
        later = payment_request("later", datetime.now(UTC) + timedelta(minutes=5))
        earlier = payment_request("earlier", NOW)
        repository.find_active_invoices.return_value = [
            InvoiceWithPaymentRequests(
                invoice(),
                [
                    PaymentRequestWithAllocation(later),
                    PaymentRequestWithAllocation(earlier, "alloc-1"),
                ],
            )
        ]

        (response,) = await service.list_invoices("buyer")

        requests = response.payment_requests
        assert [r.contract_id for r in requests] == ["earlier", "later"]
        assert requests[0].allocation_cid == "alloc-1"
        assert requests[0].prepare_deadline_passed is True
        assert requests[0].settle_deadline_passed is True
        assert requests[1].prepare_deadline_passed is False
        assert requests[1].allocation_cid is None


class TestCreateInvoice:
    """Test invoice creation."""

    def test_build_invoice_computes_totals(self, service: InvoiceService) -> None:
        request = CreateInvoiceRequest(
            seller="seller",
            buyer="buyer",
            due_date=NOW + timedelta(days=30),
            line_items=[
                LineItemRequest(
                    quantity=Decimal(2), unit_price=Decimal(10), tax_rate=Decimal("0.1")
                ),
                LineItemRequest(
                    quantity=Decimal(1),
                    unit_price=Decimal(5),
                    discount=Decimal(1),
                    tax_rate=Decimal("0.1"),
                ),
            ],
        )

        built = service.build_invoice(request, "dso::1220", NOW)

        assert built.provider == "provider"
        assert built.invoice_num == 0
        assert built.invoice_date == NOW
        assert built.subtotal == Decimal(24)
        assert built.grand_total == Decimal("26.4")
        assert built.balance_due == Decimal("26.4")
        assert built.payment_instrument == InstrumentId(admin="dso::1220", id="Amulet")
        assert built.seller_info.address.city == ""
        assert built.status.value == "Issued"

    @pytest.mark.asyncio
    async def test_create_submits_ledger_payload(
        self, service: InvoiceService, commands: AsyncMock
    ) -> None:
        commands.create.return_value = "new-invoice"
        request = CreateInvoiceRequest(seller="seller", buyer="buyer", due_date=NOW)

        contract_id = await service.create_invoice(request, "cmd-1")

        assert contract_id == "new-invoice"
        template_id, payload, command_id = commands.create.await_args.args
        assert template_id == templates.INVOICE
        assert command_id == "cmd-1"
        assert payload["invoiceNum"] == "0"
        assert payload["paymentInstrument"] == {"admin": "dso::1220", "id": "Amulet"}
        assert payload["grandTotal"] == "0"


class TestInvoiceActions:
    """Test choices exercised on an invoice."""

    @pytest.mark.asyncio
    async def test_request_payment(
        self, service: InvoiceService, repository: AsyncMock, commands: AsyncMock
    ) -> None:
        repository.find_invoice_by_id.return_value = invoice()

        await service.request_payment(
            "inv-1",
            RequestPaymentRequest(
                prepare_until_duration=timedelta(hours=1),
                settle_before_duration=timedelta(hours=2),
            ),
            "cmd-2",
        )

        template_id, contract_id, choice, argument, command_id = commands.exercise.await_args.args
        assert (template_id, contract_id, choice, command_id) == (
            templates.INVOICE,
            "inv-1",
            "Invoice_RequestPayment",
            "cmd-2",
        )
        requested_at = datetime.fromisoformat(argument["requestedAt"])
        assert datetime.fromisoformat(argument["prepareUntil"]) - requested_at == timedelta(hours=1)
        assert datetime.fromisoformat(argument["settleBefore"]) - requested_at == timedelta(hours=2)
        assert argument["requestId"]

    @pytest.mark.asyncio
    async def test_missing_invoice(
        self, service: InvoiceService, repository: AsyncMock, commands: AsyncMock
    ) -> None:
        repository.find_invoice_by_id.return_value = None

        with pytest.raises(NotFoundError, match="Invoice not found for contract inv-9"):
            await service.mark_paid("inv-9", "cmd-3")
        commands.exercise.assert_not_called()

    @pytest.mark.asyncio
    async def test_cancel_with_meta(
        self, service: InvoiceService, repository: AsyncMock, commands: AsyncMock
    ) -> None:
        repository.find_invoice_by_id.return_value = invoice()

        await service.cancel_invoice("inv-1", CancelRequest(meta={"reason": "dup"}), "cmd-4")

        args = commands.exercise.await_args.args
        assert args[2] == "Invoice_Cancel"
        assert args[3] == {"actor": "provider", "meta": {"values": {"reason": "dup"}}}

    @pytest.mark.asyncio
    async def test_cancel_without_body(
        self, service: InvoiceService, repository: AsyncMock, commands: AsyncMock
    ) -> None:
        repository.find_invoice_by_id.return_value = invoice()

        await service.cancel_invoice("inv-1", None, "cmd-5")

        assert commands.exercise.await_args.args[3] == {"actor": "provider", "meta": {"values": {}}}

    @pytest.mark.asyncio
    async def test_share_with_carrier(
        self, service: InvoiceService, repository: AsyncMock, commands: AsyncMock
    ) -> None:
        repository.find_invoice_by_id.return_value = invoice()

        await service.share_with_carrier("inv-1", ShareWithCarrierRequest(carrier="ups"), "cmd-6")

        args = commands.exercise.await_args.args
        assert args[2] == "Invoice_ShareWithCarrier"
        assert args[3] == {"carrier": "ups", "actor": "provider"}

    @pytest.mark.asyncio
    async def test_share_with_bookkeeper(
        self, service: InvoiceService, repository: AsyncMock, commands: AsyncMock
    ) -> None:
        repository.find_invoice_by_id.return_value = invoice()

        await service.share_with_bookkeeper(
            "inv-1", ShareWithBookkeeperRequest(bookkeeper="finance"), "cmd-7"
        )

        args = commands.exercise.await_args.args
        assert args[2] == "Invoice_ShareWithBookkeeper"
        assert args[3] == {"bookkeeper": "finance", "actor": "provider"}


class TestCompletePayment:
    """Test settling a payment request against an allocation."""

    @pytest.mark.asyncio
    async def test_complete_passes_context_and_disclosures(
        self,
        service: InvoiceService,
        repository: AsyncMock,
        commands: AsyncMock,
        registry: AsyncMock,
    ) -> None:
        registry.get_allocation_transfer_context.return_value = ChoiceContextResponse(
            disclosed_contracts=[
                DisclosedContractDescriptor(
                    template_id="pkg:Splice.AmuletRules:AmuletRules",
                    contract_id="rules-1",
                    created_event_blob="YmxvYg==",
                ),
                DisclosedContractDescriptor(
                    template_id="pkg:Splice.Round:OpenMiningRound",
                    contract_id="round-1",
                    created_event_blob="YmxvYg==",
                ),
            ]
        )
        repository.find_active_payment_request_by_id.return_value = payment_request()
        commands.exercise.return_value = {"paidInvoiceId": "inv-2", "receiptId": "rcpt-1"}

        result = await service.complete_payment(
            "inv-1",
            CompletePaymentRequest(
                allocation_contract_id="alloc-1", payment_request_contract_id="req-cid"
            ),
            "cmd-8",
        )

        assert result.invoice_id == "inv-2"
        assert result.receipt_id == "rcpt-1"
        call = commands.exercise.await_args
        template_id, contract_id, choice, argument, command_id = call.args
        assert template_id == templates.INVOICE_PAYMENT_REQUEST
        assert contract_id == "req-cid"
        assert choice == "InvoicePaymentRequest_Complete"
        assert argument["allocationCid"] == "alloc-1"
        assert argument["invoiceCid"] == "inv-1"
        assert argument["extraArgs"]["context"]["values"] == {
            "amulet-rules": {"tag": "AV_ContractId", "value": "rules-1"},
            "open-round": {"tag": "AV_ContractId", "value": "round-1"},
        }
        disclosures = call.kwargs["disclosures"]
        assert [d.contract_id for d in disclosures] == ["rules-1", "round-1"]
        assert disclosures[0].created_event_blob == b"blob"

    @pytest.mark.asyncio
    async def test_unknown_allocation(
        self, service: InvoiceService, repository: AsyncMock, registry: AsyncMock
    ) -> None:
        registry.get_allocation_transfer_context.return_value = None
        repository.find_active_payment_request_by_id.return_value = payment_request()

        with pytest.raises(NotFoundError, match="alloc-1"):
            await service.complete_payment(
                "inv-1",
                CompletePaymentRequest(
                    allocation_contract_id="alloc-1", payment_request_contract_id="req-cid"
                ),
                "cmd-9",
            )

    @pytest.mark.asyncio
    async def test_missing_payment_request(
        self, service: InvoiceService, repository: AsyncMock, registry: AsyncMock
    ) -> None:
        registry.get_allocation_transfer_context.return_value = ChoiceContextResponse()
        repository.find_active_payment_request_by_id.return_value = None

        with pytest.raises(NotFoundError, match="req-cid"):
            await service.complete_payment(
                "inv-1",
                CompletePaymentRequest(
                    allocation_contract_id="alloc-1", payment_request_contract_id="req-cid"
                ),
                "cmd-10",
            )

    @pytest.mark.asyncio
    async def test_malformed_disclosure_is_not_submitted(
        self,
        service: InvoiceService,
        repository: AsyncMock,
        commands: AsyncMock,
        registry: AsyncMock,
    ) -> None:
        registry.get_allocation_transfer_context.return_value = ChoiceContextResponse(
            disclosed_contracts=[
                DisclosedContractDescriptor(
                    template_id="onlyonecolon", contract_id="x", created_event_blob="YmxvYg=="
                )
            ]
        )
        repository.find_active_payment_request_by_id.return_value = payment_request()

        with pytest.raises(MalformedInputError):
            await service.complete_payment(
                "inv-1",
                CompletePaymentRequest(
                    allocation_contract_id="alloc-1", payment_request_contract_id="req-cid"
                ),
                "cmd-11",
            )
        commands.exercise.assert_not_called()

    @pytest.mark.asyncio
    async def test_unexpected_result_shape(
        self,
        service: InvoiceService,
        repository: AsyncMock,
        commands: AsyncMock,
        registry: AsyncMock,
    ) -> None:
        registry.get_allocation_transfer_context.return_value = ChoiceContextResponse()
        repository.find_active_payment_request_by_id.return_value = payment_request()
        commands.exercise.return_value = None

        with pytest.raises(LedgerRejectionError):
            await service.complete_payment(
                "inv-1",
                CompletePaymentRequest(
                    allocation_contract_id="alloc-1", payment_request_contract_id="req-cid"
                ),
                "cmd-12",
            )


class TestWithdraw:
    """Test withdrawing an allocation request."""

    @pytest.mark.asyncio
    async def test_withdraw(
        self, service: InvoiceService, repository: AsyncMock, commands: AsyncMock
    ) -> None:
        repository.find_active_allocation_request_by_id.return_value = Contract(
            "ar-1", "pkg:Mod:AllocationRequest", object()
        )

        await service.withdraw_payment_request("ar-1", "cmd-13")

        template_id, contract_id, choice, argument, _ = commands.exercise.await_args.args
        assert template_id == templates.ALLOCATION_REQUEST
        assert contract_id == "ar-1"
        assert choice == "AllocationRequest_Withdraw"
        assert argument == {
            "extraArgs": {"context": {"values": {}}, "meta": {"values": {}}}
        }

    @pytest.mark.asyncio
    async def test_withdraw_missing(self, service: InvoiceService, repository: AsyncMock) -> None:
        repository.find_active_allocation_request_by_id.return_value = None

        with pytest.raises(NotFoundError, match="AllocationRequest ar-9 not found"):
            await service.withdraw_payment_request("ar-9", "cmd-14")
