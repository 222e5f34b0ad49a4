"""Settlement context assembly for executing an allocation's transfer.

Turns the registry's disclosed-contract descriptors into the two things a
settlement choice needs: the decoded disclosures attached to the command,
and a choice-context map naming the infrastructure contracts the choice
looks up by key.
"""

import base64
import binascii
import logging
from dataclasses import dataclass, field
from typing import Any

from services.ledger.contracts import (
    DisclosedContractDescriptor,
    LedgerDisclosedContract,
    TemplateId,
)
from services.shared.errors import MalformedInputError

logger = logging.getLogger(__name__)

# Entity name -> choice-context key. Anything else is disclosed but not named.
CONTEXT_KEYS: dict[str, str] = {
    "AmuletRules": "amulet-rules",
    "OpenMiningRound": "open-round",
}


@dataclass(frozen=True)
class TransferContext:
    """Named context entries plus the disclosures they come from."""

    context_map: dict[str, str] = field(default_factory=dict)
    disclosures: list[LedgerDisclosedContract] = field(default_factory=list)

    def extra_args(self) -> dict[str, Any]:
        """Render as the token standard's ``ExtraArgs`` choice argument."""
        return {
            "context": {
                "values": {
                    key: {"tag": "AV_ContractId", "value": contract_id}
                    for key, contract_id in self.context_map.items()
                }
            },
            "meta": {"values": {}},
        }


def decode_blob(blob: str) -> bytes:
    """Decode a base64 created-event blob; trailing "=" padding is optional.

    Raises:
        MalformedInputError: If the blob is not valid base64
    """
    try:
        return base64.b64decode(blob + "=" * (-len(blob) % 4), validate=True)
    except (binascii.Error, ValueError) as e:
        raise MalformedInputError(f"Invalid createdEventBlob encoding: {e}") from e


def to_ledger_disclosure(descriptor: DisclosedContractDescriptor) -> LedgerDisclosedContract:
    """Parse the template id and decode the blob of one descriptor."""
    return LedgerDisclosedContract(
        template_id=TemplateId.parse(descriptor.template_id),
        contract_id=descriptor.contract_id,
        created_event_blob=decode_blob(descriptor.created_event_blob),
        synchronizer_id=descriptor.synchronizer_id,
    )


def context_key(template_id: TemplateId) -> str | None:
    """Choice-context key for a disclosed contract, or None if unrecognized."""
    return CONTEXT_KEYS.get(template_id.entity_name)


def build_transfer_context(descriptors: list[DisclosedContractDescriptor]) -> TransferContext:
    """Build the settlement context from disclosed-contract descriptors.

    Args:
        descriptors: Disclosed contracts as supplied by the registry

    Returns:
        TransferContext with every descriptor decoded and the recognized
        ones named in the context map

    Raises:
        MalformedInputError: If any descriptor has a bad template id or blob,
            or two descriptors claim the same context key; no partial
            context is returned
    """
    disclosures = [to_ledger_disclosure(d) for d in descriptors]

    context_map: dict[str, str] = {}
    for disclosure in disclosures:
        key = context_key(disclosure.template_id)
        if key is None:
            logger.debug(
                f"Disclosed contract {disclosure.contract_id} "
                f"({disclosure.template_id.entity_name}) has no context key"
            )
            continue
        if key in context_map:
            raise MalformedInputError(
                f"Duplicate disclosed contract for context key '{key}': "
                f"{context_map[key]} and {disclosure.contract_id}"
            )
        context_map[key] = disclosure.contract_id

    return TransferContext(context_map=context_map, disclosures=disclosures)
