"""Ledger-side identifiers and contract wrappers.

Template ids use the ledger's package-name reference format
(``#package-name:Module.Name:Entity``); the same colon-delimited parser
handles the package-id form found in disclosed contracts.
"""

from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from services.shared.errors import MalformedInputError

PayloadT = TypeVar("PayloadT")


@dataclass(frozen=True)
class TemplateId:
    """Fully qualified template (or interface) identifier."""

    package_id: str
    module_name: str
    entity_name: str
    interface: bool = field(default=False, compare=False)

    @classmethod
    def parse(cls, value: str) -> "TemplateId":
        """Parse ``packageId:moduleName:entityName[:nested...]``.

        Everything after the second colon belongs to the entity name. Trailing
        empty segments are dropped first, so ``pkg:Mod:`` has no entity name.

        Args:
            value: Colon-delimited identifier

        Returns:
            Parsed TemplateId

        Raises:
            MalformedInputError: If fewer than three non-trailing-empty segments are present
        """
        parts = value.split(":")
        while parts and parts[-1] == "":
            parts.pop()
        if len(parts) < 3:
            raise MalformedInputError(f"Invalid templateId format: {value}")
        return cls(parts[0], parts[1], ":".join(parts[2:]))

    @property
    def qualified_name(self) -> str:
        return f"{self.module_name}:{self.entity_name}"

    def __str__(self) -> str:
        return f"{self.package_id}:{self.module_name}:{self.entity_name}"


@dataclass(frozen=True)
class Contract(Generic[PayloadT]):
    """An active contract: its id, template and decoded payload."""

    contract_id: str
    template_id: str
    payload: PayloadT


RawContract = Contract[dict[str, Any]]


class DisclosedContractDescriptor(BaseModel):
    """Disclosed contract as handed out by the token registry.

    The event blob is still base64-encoded; see services.settlement.context.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    template_id: str = Field(..., alias="templateId")
    contract_id: str = Field(..., alias="contractId")
    created_event_blob: str = Field(..., alias="createdEventBlob")
    synchronizer_id: str | None = Field(None, alias="synchronizerId")


@dataclass(frozen=True)
class LedgerDisclosedContract:
    """Decoded disclosed contract ready for command submission."""

    template_id: TemplateId
    contract_id: str
    created_event_blob: bytes
    synchronizer_id: str | None = None


# Templates and interfaces this service reads or acts on
INVOICE = TemplateId("#quickstart-invoicing", "Invoicing.Invoice", "Invoice")
INVOICE_PAYMENT_REQUEST = TemplateId(
    "#quickstart-invoicing", "Invoicing.Invoice", "InvoicePaymentRequest"
)
LOGISTICS_VIEW = TemplateId("#quickstart-invoicing", "Invoicing.Disclosure", "LogisticsView")
BOOKKEEPER_VIEW = TemplateId("#quickstart-invoicing", "Invoicing.Disclosure", "BookkeeperView")
ALLOCATION = TemplateId(
    "#splice-api-token-allocation-v1",
    "Splice.Api.Token.AllocationV1",
    "Allocation",
    interface=True,
)
ALLOCATION_REQUEST = TemplateId(
    "#splice-api-token-allocation-request-v1",
    "Splice.Api.Token.AllocationRequestV1",
    "AllocationRequest",
    interface=True,
)
