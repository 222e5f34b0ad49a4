"""Client for the token standard registry's off-ledger API.

Provides the registry admin id (the instrument admin) and the choice
context, including disclosed contracts, needed to execute an allocation's
transfer.
"""

import logging
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field

from services.ledger.contracts import DisclosedContractDescriptor
from services.ledger.http import LedgerHttpClient, translating_malformed
from services.shared.config import Settings

logger = logging.getLogger(__name__)


class ChoiceContextResponse(BaseModel):
    """Choice context returned by the registry for one allocation."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    choice_context_data: dict[str, Any] = Field(default_factory=dict, alias="choiceContextData")
    disclosed_contracts: list[DisclosedContractDescriptor] = Field(
        default_factory=list, alias="disclosedContracts"
    )


class TokenRegistryClient(LedgerHttpClient):
    """Read-only access to the token standard registry."""

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None) -> None:
        super().__init__(settings, settings.registry_url, client)

    async def get_registry_admin_id(self) -> str:
        """Get the registry's admin party id.

        Returns:
            Admin party id

        Raises:
            QueryTransportError: If the registry cannot be reached
        """
        body = await self._read_json("GET", "/registry/metadata/v1/info")
        with translating_malformed("registry info"):
            admin_id: str = body["adminId"]
        return admin_id

    async def get_allocation_transfer_context(
        self, allocation_id: str
    ) -> ChoiceContextResponse | None:
        """Get the context needed to execute an allocation's transfer.

        Args:
            allocation_id: Allocation contract id

        Returns:
            Choice context with disclosed contracts, or None if the registry
            does not know the allocation

        Raises:
            QueryTransportError: If the registry cannot be reached
        """
        body = await self._read_json(
            "POST",
            f"/registry/allocations/v1/{allocation_id}/choice-contexts/execute-transfer",
            {"meta": {}},
            not_found_ok=True,
        )
        if body is None:
            logger.info(f"Registry has no transfer context for allocation {allocation_id}")
            return None
        with translating_malformed("choice-context"):
            return ChoiceContextResponse.model_validate(body)
