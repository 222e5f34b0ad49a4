"""Logistics and bookkeeper disclosure views.

Views are created on the ledger by sharing an invoice; this service lists the
views a party is involved in and lets that party acknowledge or revoke them.
Unlike invoice actions, these choices are exercised as the calling party.
"""

import logging

from services.invoicing.repository import InvoiceRepository
from services.invoicing.schema import DisclosureViewChoice
from services.invoicing.views import (
    BookkeeperViewResponse,
    LogisticsViewResponse,
    to_bookkeeper_view_response,
    to_logistics_view_response,
)
from services.ledger import contracts as templates
from services.ledger.commands import LedgerCommandClient
from services.ledger.contracts import TemplateId
from services.shared.errors import ensure_present

logger = logging.getLogger(__name__)


class DisclosureService:
    """List, acknowledge and revoke disclosure views."""

    def __init__(self, repository: InvoiceRepository, commands: LedgerCommandClient) -> None:
        self._repository = repository
        self._commands = commands

    async def list_logistics_views(self, party: str) -> list[LogisticsViewResponse]:
        views = await self._repository.find_active_logistics_views(party)
        return [to_logistics_view_response(v) for v in views]

    async def list_bookkeeper_views(self, party: str) -> list[BookkeeperViewResponse]:
        views = await self._repository.find_active_bookkeeper_views(party)
        return [to_bookkeeper_view_response(v) for v in views]

    async def acknowledge_logistics_view(
        self, contract_id: str, command_id: str, party: str
    ) -> None:
        view = ensure_present(
            await self._repository.find_logistics_view_by_id(contract_id),
            "LogisticsView not found for contract %s",
            contract_id,
        )
        await self._exercise(
            templates.LOGISTICS_VIEW,
            view.contract_id,
            "LogisticsView_Acknowledge",
            command_id,
            party,
        )

    async def revoke_logistics_view(self, contract_id: str, command_id: str, party: str) -> None:
        view = ensure_present(
            await self._repository.find_logistics_view_by_id(contract_id),
            "LogisticsView not found for contract %s",
            contract_id,
        )
        await self._exercise(
            templates.LOGISTICS_VIEW, view.contract_id, "LogisticsView_Revoke", command_id, party
        )

    async def acknowledge_bookkeeper_view(
        self, contract_id: str, command_id: str, party: str
    ) -> None:
        view = ensure_present(
            await self._repository.find_bookkeeper_view_by_id(contract_id),
            "BookkeeperView not found for contract %s",
            contract_id,
        )
        await self._exercise(
            templates.BOOKKEEPER_VIEW,
            view.contract_id,
            "BookkeeperView_Acknowledge",
            command_id,
            party,
        )

    async def revoke_bookkeeper_view(self, contract_id: str, command_id: str, party: str) -> None:
        view = ensure_present(
            await self._repository.find_bookkeeper_view_by_id(contract_id),
            "BookkeeperView not found for contract %s",
            contract_id,
        )
        await self._exercise(
            templates.BOOKKEEPER_VIEW, view.contract_id, "BookkeeperView_Revoke", command_id, party
        )

    async def _exercise(
        self, template_id: TemplateId, contract_id: str, choice: str, command_id: str, party: str
    ) -> None:
        logger.info(f"{choice} contractId={contract_id} commandId={command_id} party={party}")
        await self._commands.exercise(
            template_id,
            contract_id,
            choice,
            DisclosureViewChoice().to_ledger(),
            command_id,
            act_as=party,
        )
