"""Inbound request bodies for invoice and payment actions.

Every field the caller may omit is optional here; defaults are applied when
the ledger payload is built (strings become "", amounts become 0).
"""

from datetime import datetime, timedelta
from decimal import Decimal

from pydantic import Field

from services.invoicing.schema import CamelModel


class AddressRequest(CamelModel):
    street: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None
    country: str | None = None


class ContactRequest(CamelModel):
    name: str | None = None
    email: str | None = None
    phone: str | None = None


class PartyInfoRequest(CamelModel):
    party_name: str | None = None
    reg_number: str | None = None
    tax_number: str | None = None
    address: AddressRequest | None = None
    contact: ContactRequest | None = None


class LineItemRequest(CamelModel):
    """Raw line item; every numeric field defaults to zero when absent."""

    item_name: str | None = None
    sku: str | None = None
    quantity: Decimal | None = None
    unit_of_measure: str | None = None
    unit_price: Decimal | None = None
    discount: Decimal | None = None
    tax_rate: Decimal | None = Field(None, description="Fraction, e.g. 0.1 for 10%")
    batch_info: str | None = None
    delivery_date: str | None = None


class CreateInvoiceRequest(CamelModel):
    seller: str
    buyer: str
    due_date: datetime
    currency: str | None = None
    seller_info: PartyInfoRequest = Field(default_factory=PartyInfoRequest)
    buyer_info: PartyInfoRequest = Field(default_factory=PartyInfoRequest)
    shipping_address: AddressRequest | None = None
    line_items: list[LineItemRequest] = Field(default_factory=list)
    payment_terms: str | None = None
    po_number: str | None = None
    sales_order_number: str | None = None
    notes: str | None = None
    delivery_terms: str | None = None
    description: str | None = None


class RequestPaymentRequest(CamelModel):
    """Deadlines are ISO-8601 durations relative to now, e.g. ``PT1H``."""

    prepare_until_duration: timedelta
    settle_before_duration: timedelta


class CompletePaymentRequest(CamelModel):
    allocation_contract_id: str
    payment_request_contract_id: str


class CancelRequest(CamelModel):
    meta: dict[str, str] | None = None


class ShareWithCarrierRequest(CamelModel):
    carrier: str


class ShareWithBookkeeperRequest(CamelModel):
    bookkeeper: str

