"""Active-contract queries against the ledger.

``ActiveContractQuery`` is the read interface the repositories depend on.
``JsonApiContractQuery`` implements it over the ledger JSON API (v2):
each call reads the current ledger end and then the active set at that
offset, so a single call is consistent but separate calls are not.

Based on the Canton JSON Ledger API v2:
https://docs.digitalasset.com/build/3.3/reference/json-api/json-api.html
"""

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

import httpx
from prometheus_client import Histogram

from services.ledger.contracts import RawContract, TemplateId
from services.ledger.http import LedgerHttpClient, translating_malformed
from services.shared.config import Settings

logger = logging.getLogger(__name__)

ledger_query_duration_seconds = Histogram(
    "ledger_query_duration_seconds",
    "Active-contract query duration in seconds",
    ["template"],
    buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0),
)

PayloadPredicate = Callable[[dict[str, Any]], bool]


class ActiveContractQuery(ABC):
    """Read access to the caller-visible active-contract sets."""

    @abstractmethod
    async def active(self, template_id: TemplateId) -> list[RawContract]:
        """Return every active contract of a template.

        Args:
            template_id: Template or interface to read

        Returns:
            Active contracts, possibly empty

        Raises:
            QueryTransportError: If the query transport is unavailable
        """

    async def active_where(
        self, template_id: TemplateId, predicate: PayloadPredicate
    ) -> list[RawContract]:
        """Return active contracts of a template whose payload satisfies ``predicate``."""
        return [c for c in await self.active(template_id) if predicate(c.payload)]

    async def contract_by_id(self, template_id: TemplateId, contract_id: str) -> RawContract | None:
        """Return the active contract with this id, or None."""
        for contract in await self.active(template_id):
            if contract.contract_id == contract_id:
                return contract
        return None


def _payload_of(created_event: dict[str, Any], template_id: TemplateId) -> dict[str, Any] | None:
    """Interfaces expose their view value; templates their create argument.

    Returns None when the contract does not implement the requested interface.
    """
    if template_id.interface:
        for view in created_event.get("interfaceViews") or []:
            if view.get("viewValue") is not None:
                payload: dict[str, Any] = view["viewValue"]
                return payload
        return None
    argument: dict[str, Any] = created_event.get("createArgument") or {}
    return argument


def _identifier_filter(template_id: TemplateId) -> dict[str, Any]:
    if template_id.interface:
        return {
            "InterfaceFilter": {
                "value": {
                    "interfaceId": str(template_id),
                    "includeInterfaceView": True,
                    "includeCreatedEventBlob": False,
                }
            }
        }
    return {
        "TemplateFilter": {
            "value": {"templateId": str(template_id), "includeCreatedEventBlob": False}
        }
    }


def _active_contracts(body: Any, template_id: TemplateId) -> list[RawContract]:
    contracts: list[RawContract] = []
    for entry in body:
        active = (entry.get("contractEntry") or {}).get("JsActiveContract")
        if active is None:
            continue
        created = active["createdEvent"]
        payload = _payload_of(created, template_id)
        if payload is None:
            continue
        contracts.append(
            RawContract(
                contract_id=created["contractId"],
                template_id=created["templateId"],
                payload=payload,
            )
        )
    return contracts


def _contract_from_events(body: Any, template_id: TemplateId) -> RawContract | None:
    if not body or body.get("archived") is not None:
        return None
    created = (body.get("created") or {}).get("createdEvent")
    if created is None:
        return None
    # Lookup by id is template-agnostic; reject a contract of another type
    if not template_id.interface and not created["templateId"].endswith(
        f":{template_id.qualified_name}"
    ):
        return None
    payload = _payload_of(created, template_id)
    if payload is None:
        return None
    return RawContract(
        contract_id=created["contractId"],
        template_id=created["templateId"],
        payload=payload,
    )


class JsonApiContractQuery(LedgerHttpClient, ActiveContractQuery):
    """ActiveContractQuery over the ledger JSON API, reading as one party."""

    def __init__(
        self,
        settings: Settings,
        reading_party: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize query client.

        Args:
            settings: Application settings
            reading_party: Party whose view is read (defaults to the admin party)
            client: Optional pre-built HTTP client
        """
        super().__init__(settings, settings.ledger_api_url, client)
        self._party = reading_party or settings.admin_party

    def _event_format(self, template_id: TemplateId) -> dict[str, Any]:
        return {
            "filtersByParty": {
                self._party: {
                    "cumulative": [{"identifierFilter": _identifier_filter(template_id)}]
                }
            },
            "verbose": False,
        }

    async def ledger_end(self) -> int:
        """Current ledger end offset."""
        body = await self._read_json("GET", "/v2/state/ledger-end")
        with translating_malformed("ledger-end"):
            return int(body["offset"])

    async def active(self, template_id: TemplateId) -> list[RawContract]:
        start = time.time()
        offset = await self.ledger_end()
        body = await self._read_json(
            "POST",
            "/v2/state/active-contracts",
            {"eventFormat": self._event_format(template_id), "activeAtOffset": offset},
        )
        with translating_malformed("active-contracts"):
            contracts = _active_contracts(body, template_id)
        ledger_query_duration_seconds.labels(template=template_id.entity_name).observe(
            time.time() - start
        )
        logger.debug(f"Read {len(contracts)} active {template_id.entity_name} contracts")
        return contracts

    async def contract_by_id(self, template_id: TemplateId, contract_id: str) -> RawContract | None:
        body = await self._read_json(
            "POST",
            "/v2/events/events-by-contract-id",
            {"contractId": contract_id, "eventFormat": self._event_format(template_id)},
            not_found_ok=True,
        )
        with translating_malformed("events-by-contract-id"):
            return _contract_from_events(body, template_id)
