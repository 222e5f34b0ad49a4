"""Ledger payload models for the invoicing templates.

Field names are snake_case in Python and camelCase on the wire, so
``model_dump(by_alias=True, mode="json")`` produces the ledger's JSON
encoding: Decimals as strings, timestamps as ISO-8601, Int64 as strings.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer
from pydantic.alias_generators import to_camel

# The JSON API encodes Int64 as a string
Int64 = Annotated[int, PlainSerializer(lambda v: str(v), return_type=str, when_used="json")]


class CamelModel(BaseModel):
    """Base model with camelCase aliases; unknown ledger fields are ignored."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_ledger(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class InvoiceStatus(str, Enum):
    """Invoice lifecycle status."""

    ISSUED = "Issued"
    PARTIALLY_PAID = "PartiallyPaid"
    PAID = "Paid"
    VOID = "Void"


class Metadata(CamelModel):
    values: dict[str, str] = Field(default_factory=dict)


class Address(CamelModel):
    street: str = ""
    city: str = ""
    state: str = ""
    postal_code: str = ""
    country: str = ""


class Contact(CamelModel):
    name: str = ""
    email: str = ""
    phone: str = ""


class PartyInfo(CamelModel):
    party_name: str = ""
    reg_number: str = ""
    tax_number: str = ""
    address: Address = Field(default_factory=Address)
    contact: Contact = Field(default_factory=Contact)


class LineItem(CamelModel):
    """Invoice line; ``line_subtotal`` is always derived, see computation.py."""

    item_name: str = ""
    sku: str = ""
    quantity: Decimal = Decimal(0)
    unit_of_measure: str = ""
    unit_price: Decimal = Decimal(0)
    discount: Decimal = Decimal(0)
    tax_rate: Decimal = Decimal(0)  # fraction, 0.1 == 10%
    line_subtotal: Decimal = Decimal(0)
    batch_info: str = ""
    delivery_date: str = ""


class TaxEntry(CamelModel):
    tax_name: str
    tax_rate: Decimal
    tax_amount: Decimal


class InstrumentId(CamelModel):
    admin: str
    id: str


class Invoice(CamelModel):
    """Payload of the Invoice template."""

    seller: str
    buyer: str
    provider: str
    invoice_num: Int64 = 0
    invoice_date: datetime
    due_date: datetime
    currency: str = ""
    seller_info: PartyInfo = Field(default_factory=PartyInfo)
    buyer_info: PartyInfo = Field(default_factory=PartyInfo)
    shipping_address: Address = Field(default_factory=Address)
    line_items: list[LineItem] = Field(default_factory=list)
    subtotal: Decimal = Decimal(0)
    total_discount: Decimal = Decimal(0)
    tax_breakdown: list[TaxEntry] = Field(default_factory=list)
    total_tax: Decimal = Decimal(0)
    grand_total: Decimal = Decimal(0)
    amount_paid: Decimal = Decimal(0)
    balance_due: Decimal = Decimal(0)
    payment_instrument: InstrumentId
    payment_terms: str = ""
    po_number: str = ""
    sales_order_number: str = ""
    notes: str = ""
    delivery_terms: str = ""
    description: str = ""
    status: InvoiceStatus = InvoiceStatus.ISSUED
    meta: Metadata = Field(default_factory=Metadata)


class InvoicePaymentRequest(CamelModel):
    """Payload of the InvoicePaymentRequest template."""

    seller: str
    buyer: str
    provider: str
    invoice_num: Int64
    amount: Decimal
    description: str = ""
    request_id: str
    prepare_until: datetime
    settle_before: datetime
    requested_at: datetime


# Token standard allocation view, only the fields used for correlation


class Reference(CamelModel):
    id: str
    cid: str | None = None


class SettlementInfo(CamelModel):
    executor: str = ""
    settlement_ref: Reference


class TransferLeg(CamelModel):
    sender: str
    receiver: str = ""
    amount: Decimal = Decimal(0)


class AllocationSpecification(CamelModel):
    settlement: SettlementInfo
    transfer_leg_id: str = ""
    transfer_leg: TransferLeg


class AllocationView(CamelModel):
    """Interface view of a token standard Allocation."""

    allocation: AllocationSpecification


class AllocationRequestView(CamelModel):
    """Interface view of a token standard AllocationRequest."""

    settlement: SettlementInfo
    transfer_legs: dict[str, TransferLeg] = Field(default_factory=dict)
    meta: Metadata = Field(default_factory=Metadata)


# Disclosure views


class LogisticsItem(CamelModel):
    """Line item without prices, as shared with a carrier."""

    item_name: str = ""
    sku: str = ""
    quantity: Decimal = Decimal(0)
    unit_of_measure: str = ""
    batch_info: str = ""
    delivery_date: str = ""


class LogisticsView(CamelModel):
    grantor: str
    carrier: str
    provider: str
    invoice_ref: str = ""
    order_ref: str = ""
    ship_from_address: Address = Field(default_factory=Address)
    ship_to_address: Address = Field(default_factory=Address)
    seller_contact: Contact = Field(default_factory=Contact)
    buyer_contact: Contact = Field(default_factory=Contact)
    items: list[LogisticsItem] = Field(default_factory=list)
    delivery_terms: str = ""
    notes: str = ""


class BookkeeperView(CamelModel):
    grantor: str
    bookkeeper: str
    provider: str
    invoice_num: Int64
    invoice_date: datetime
    seller_name: str = ""
    buyer_name: str = ""
    currency: str = ""
    status: InvoiceStatus
    subtotal: Decimal = Decimal(0)
    total_discount: Decimal = Decimal(0)
    tax_breakdown: list[TaxEntry] = Field(default_factory=list)
    grand_total: Decimal = Decimal(0)
    amount_paid: Decimal = Decimal(0)
    balance_due: Decimal = Decimal(0)
    item_categories: list[str] = Field(default_factory=list)


# Choice arguments


class InvoiceRequestPayment(CamelModel):
    request_id: str
    requested_at: datetime
    prepare_until: datetime
    settle_before: datetime


class InvoiceCancel(CamelModel):
    actor: str
    meta: Metadata = Field(default_factory=Metadata)


class InvoiceMarkPaid(CamelModel):
    paid_at: datetime


class InvoiceShareWithCarrier(CamelModel):
    carrier: str
    actor: str


class InvoiceShareWithBookkeeper(CamelModel):
    bookkeeper: str
    actor: str


class InvoicePaymentRequestComplete(CamelModel):
    allocation_cid: str
    invoice_cid: str
    extra_args: dict[str, Any]


class DisclosureViewChoice(CamelModel):
    """Argument of the Acknowledge and Revoke choices on both disclosure views."""

    meta: Metadata = Field(default_factory=Metadata)
