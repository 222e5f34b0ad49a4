"""Repository for the active invoicing contracts.

Wraps an ActiveContractQuery, validates raw payloads into the schema models
and assembles the invoice aggregates.
"""

import asyncio
import logging
from typing import TypeVar

from pydantic import BaseModel, ValidationError

from services.invoicing.correlation import InvoiceWithPaymentRequests, correlate
from services.invoicing.schema import (
    AllocationRequestView,
    AllocationView,
    BookkeeperView,
    Invoice,
    InvoicePaymentRequest,
    LogisticsView,
)
from services.ledger import contracts as templates
from services.ledger.contracts import Contract, RawContract, TemplateId
from services.ledger.query import ActiveContractQuery
from services.shared.errors import QueryTransportError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def typed(contract: RawContract, model: type[ModelT]) -> Contract[ModelT]:
    """Validate a raw contract's payload into ``model``.

    Raises:
        QueryTransportError: If the ledger returned a payload that does not fit
    """
    try:
        payload = model.model_validate(contract.payload)
    except ValidationError as e:
        raise QueryTransportError(
            f"Unexpected {model.__name__} payload for contract {contract.contract_id}: {e}"
        ) from e
    return Contract(contract.contract_id, contract.template_id, payload)


class InvoiceRepository:
    """Queries over the invoicing and token standard contract sets."""

    def __init__(self, query: ActiveContractQuery) -> None:
        self._query = query

    async def _active(self, template_id: TemplateId, model: type[ModelT]) -> list[Contract[ModelT]]:
        return [typed(c, model) for c in await self._query.active(template_id)]

    async def _by_id(
        self, template_id: TemplateId, model: type[ModelT], contract_id: str
    ) -> Contract[ModelT] | None:
        contract = await self._query.contract_by_id(template_id, contract_id)
        return typed(contract, model) if contract is not None else None

    # Invoices

    async def find_active_invoices(self, party: str) -> list[InvoiceWithPaymentRequests]:
        """Invoices visible to ``party`` with their payment requests and allocations.

        The three active sets are read concurrently and combined only once
        all of them are available; any failure fails the whole call.
        """
        invoices, requests, allocations = await asyncio.gather(
            self._active(templates.INVOICE, Invoice),
            self._active(templates.INVOICE_PAYMENT_REQUEST, InvoicePaymentRequest),
            self._active(templates.ALLOCATION, AllocationView),
        )
        result = correlate(invoices, requests, allocations, party)
        logger.info(f"Correlated {len(result)} invoices for {party}")
        return result

    async def find_invoice_by_id(self, contract_id: str) -> Contract[Invoice] | None:
        return await self._by_id(templates.INVOICE, Invoice, contract_id)

    async def find_active_payment_request_by_id(
        self, contract_id: str
    ) -> Contract[InvoicePaymentRequest] | None:
        return await self._by_id(
            templates.INVOICE_PAYMENT_REQUEST, InvoicePaymentRequest, contract_id
        )

    async def find_active_allocation_request_by_id(
        self, contract_id: str
    ) -> Contract[AllocationRequestView] | None:
        return await self._by_id(templates.ALLOCATION_REQUEST, AllocationRequestView, contract_id)

    # Disclosure views

    async def find_active_logistics_views(self, party: str) -> list[Contract[LogisticsView]]:
        contracts = await self._query.active_where(
            templates.LOGISTICS_VIEW,
            lambda p: party in (p.get("grantor"), p.get("carrier"), p.get("provider")),
        )
        return [typed(c, LogisticsView) for c in contracts]

    async def find_logistics_view_by_id(self, contract_id: str) -> Contract[LogisticsView] | None:
        return await self._by_id(templates.LOGISTICS_VIEW, LogisticsView, contract_id)

    async def find_active_bookkeeper_views(self, party: str) -> list[Contract[BookkeeperView]]:
        contracts = await self._query.active_where(
            templates.BOOKKEEPER_VIEW,
            lambda p: party in (p.get("grantor"), p.get("bookkeeper"), p.get("provider")),
        )
        return [typed(c, BookkeeperView) for c in contracts]

    async def find_bookkeeper_view_by_id(self, contract_id: str) -> Contract[BookkeeperView] | None:
        return await self._by_id(templates.BOOKKEEPER_VIEW, BookkeeperView, contract_id)
