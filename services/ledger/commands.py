"""Command submission to the ledger JSON API (v2).

Creates contracts and exercises choices, waiting for the resulting
transaction. Submissions are never retried here: the caller-supplied
command id makes a resubmission idempotent on the ledger side, so the
retry decision stays with the caller.
"""

import base64
import logging
from typing import Any

import httpx
from prometheus_client import Counter

from services.ledger.contracts import LedgerDisclosedContract, TemplateId
from services.ledger.http import LedgerHttpClient, translating_malformed
from services.shared.config import Settings
from services.shared.errors import LedgerRejectionError, QueryTransportError

logger = logging.getLogger(__name__)

ledger_commands_total = Counter(
    "ledger_commands_total",
    "Total commands submitted to the ledger",
    ["command", "status"],  # status: success, rejected, unavailable
)


class LedgerCommandClient(LedgerHttpClient):
    """Submits create and exercise commands and returns their results."""

    SUBMIT_PATH = "/v2/commands/submit-and-wait-for-transaction"

    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None) -> None:
        """Initialize command client.

        Args:
            settings: Application settings
            client: Optional pre-built HTTP client
        """
        super().__init__(settings, settings.ledger_api_url, client)
        self._user_id = settings.ledger_user_id

    async def create(
        self,
        template_id: TemplateId,
        payload: dict[str, Any],
        command_id: str,
        act_as: str | None = None,
    ) -> str:
        """Create a contract.

        Args:
            template_id: Template to instantiate
            payload: Create argument in ledger JSON encoding
            command_id: Idempotency key for this submission
            act_as: Submitting party (defaults to the admin party)

        Returns:
            Contract id of the created contract
        """
        command = {"CreateCommand": {"templateId": str(template_id), "createArguments": payload}}
        events = await self._submit(
            f"create {template_id.entity_name}", command, command_id, act_as, []
        )
        with translating_malformed(f"create {template_id.entity_name}"):
            for event in events:
                if "CreatedEvent" in event:
                    contract_id: str = event["CreatedEvent"]["contractId"]
                    return contract_id
        raise LedgerRejectionError(f"Ledger returned no created event for command {command_id}")

    async def exercise(
        self,
        template_id: TemplateId,
        contract_id: str,
        choice: str,
        argument: dict[str, Any],
        command_id: str,
        disclosures: list[LedgerDisclosedContract] | None = None,
        act_as: str | None = None,
    ) -> Any:
        """Exercise a choice and return its result.

        Args:
            template_id: Template or interface declaring the choice
            contract_id: Target contract
            choice: Choice name
            argument: Choice argument in ledger JSON encoding
            command_id: Idempotency key for this submission
            disclosures: Disclosed contracts, passed through unchanged
            act_as: Submitting party (defaults to the admin party)

        Returns:
            The choice's exercise result as decoded JSON
        """
        command = {
            "ExerciseCommand": {
                "templateId": str(template_id),
                "contractId": contract_id,
                "choice": choice,
                "choiceArgument": argument,
            }
        }
        events = await self._submit(choice, command, command_id, act_as, disclosures or [])
        with translating_malformed(choice):
            exercised = [e["ExercisedEvent"] for e in events if "ExercisedEvent" in e]
        if not exercised:
            raise LedgerRejectionError(
                f"Ledger returned no exercised event for command {command_id}"
            )
        with translating_malformed(choice):
            root = min(exercised, key=lambda e: e.get("nodeId", 0))
            return root.get("exerciseResult")

    async def _submit(
        self,
        name: str,
        command: dict[str, Any],
        command_id: str,
        act_as: str | None,
        disclosures: list[LedgerDisclosedContract],
    ) -> list[dict[str, Any]]:
        party = act_as or self.settings.admin_party
        body = {
            "commands": {
                "commands": [command],
                "commandId": command_id,
                "userId": self._user_id,
                "actAs": [party],
                "readAs": [],
                "disclosedContracts": [_disclosure_json(d) for d in disclosures],
            },
            "transactionFormat": {
                "eventFormat": {
                    "filtersByParty": {
                        party: {
                            "cumulative": [
                                {
                                    "identifierFilter": {
                                        "WildcardFilter": {
                                            "value": {"includeCreatedEventBlob": False}
                                        }
                                    }
                                }
                            ]
                        }
                    },
                    "verbose": False,
                },
                "transactionShape": "TRANSACTION_SHAPE_LEDGER_EFFECTS",
            },
        }

        logger.info(f"Submitting {name} as {party} (commandId={command_id})")
        try:
            response = await self._request("POST", self.SUBMIT_PATH, body)
        except httpx.HTTPStatusError as e:
            if e.response.status_code >= 500:
                ledger_commands_total.labels(command=name, status="unavailable").inc()
                raise QueryTransportError(
                    f"Ledger unavailable for {name}: status {e.response.status_code}"
                ) from e
            ledger_commands_total.labels(command=name, status="rejected").inc()
            message, code = _rejection_details(e.response)
            logger.warning(f"Ledger rejected {name} (commandId={command_id}): {message}")
            raise LedgerRejectionError(message, code) from e
        except httpx.HTTPError as e:
            ledger_commands_total.labels(command=name, status="unavailable").inc()
            logger.error(f"Ledger submission of {name} failed: {e}")
            raise QueryTransportError(f"Ledger submission of {name} failed: {e}") from e

        ledger_commands_total.labels(command=name, status="success").inc()
        with translating_malformed(name):
            events: list[dict[str, Any]] = response.json().get("transaction", {}).get("events", [])
        return events


def _disclosure_json(disclosure: LedgerDisclosedContract) -> dict[str, Any]:
    result = {
        "templateId": str(disclosure.template_id),
        "contractId": disclosure.contract_id,
        "createdEventBlob": base64.b64encode(disclosure.created_event_blob).decode("ascii"),
    }
    if disclosure.synchronizer_id:
        result["synchronizerId"] = disclosure.synchronizer_id
    return result


def _rejection_details(response: httpx.Response) -> tuple[str, str | None]:
    """Pull the ledger's own message out of an error response."""
    try:
        body = response.json()
    except ValueError:
        return response.text, None
    if not isinstance(body, dict):
        return response.text, None
    return str(body.get("cause") or body.get("message") or response.text), body.get("code")
