"""Unit tests for the JSON API active-contract query.

HTTP traffic is served by httpx.MockTransport.
"""

import json
from collections.abc import Callable
from typing import Any

import httpx
import pytest
from tenacity import wait_none

from services.ledger import contracts as templates
from services.ledger.http import LedgerHttpClient, is_transient
from services.ledger.query import JsonApiContractQuery
from services.shared.config import Settings
from services.shared.errors import QueryTransportError

Handler = Callable[[httpx.Request], httpx.Response]

INVOICE_TEMPLATE = "abc123:Invoicing.Invoice:Invoice"


@pytest.fixture(autouse=True)
def no_retry_wait(monkeypatch: pytest.MonkeyPatch) -> None:
    """Retry immediately in tests."""
    monkeypatch.setattr(LedgerHttpClient, "_retry_wait", wait_none())


@pytest.fixture
def settings() -> Settings:
    return Settings(
        ledger_api_url="http://ledger",
        admin_party="provider::1220",
        ledger_access_token="secret",
        ledger_query_attempts=3,
    )


def make_query(settings: Settings, handler: Handler) -> JsonApiContractQuery:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return JsonApiContractQuery(settings, client=client)


def active_entry(contract_id: str, template_id: str, **created: Any) -> dict[str, Any]:
    event = {"contractId": contract_id, "templateId": template_id, **created}
    return {"contractEntry": {"JsActiveContract": {"createdEvent": event}}}


class TestIsTransient:
    """Test which failures are retried."""

    def test_connect_error(self) -> None:
        assert is_transient(httpx.ConnectError("refused"))

    def test_server_error(self) -> None:
        request = httpx.Request("GET", "http://ledger")
        error = httpx.HTTPStatusError(
            "boom", request=request, response=httpx.Response(503, request=request)
        )
        assert is_transient(error)

    def test_client_error(self) -> None:
        request = httpx.Request("GET", "http://ledger")
        error = httpx.HTTPStatusError(
            "bad", request=request, response=httpx.Response(400, request=request)
        )
        assert not is_transient(error)

    def test_other_exception(self) -> None:
        assert not is_transient(ValueError("nope"))


class TestActive:
    """Test reading an active set."""

    @pytest.mark.asyncio
    async def test_reads_at_ledger_end(self, settings: Settings) -> None:
        seen: list[dict[str, Any]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["Authorization"] == "Bearer secret"
            if request.url.path == "/v2/state/ledger-end":
                return httpx.Response(200, json={"offset": 42})
            seen.append(json.loads(request.content))
            return httpx.Response(
                200,
                json=[
                    active_entry("c1", INVOICE_TEMPLATE, createArgument={"seller": "s"}),
                    {"contractEntry": {"JsIncompleteAssigned": {}}},
                ],
            )

        query = make_query(settings, handler)
        contracts = await query.active(templates.INVOICE)

        assert [c.contract_id for c in contracts] == ["c1"]
        assert contracts[0].payload == {"seller": "s"}
        assert seen[0]["activeAtOffset"] == 42
        filters = seen[0]["eventFormat"]["filtersByParty"]["provider::1220"]["cumulative"]
        template_filter = filters[0]["identifierFilter"]["TemplateFilter"]["value"]
        assert template_filter["templateId"] == "#quickstart-invoicing:Invoicing.Invoice:Invoice"

    @pytest.mark.asyncio
    async def test_interface_reads_view_value(self, settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/v2/state/ledger-end":
                return httpx.Response(200, json={"offset": 7})
            body = json.loads(request.content)
            filters = body["eventFormat"]["filtersByParty"]["provider::1220"]["cumulative"]
            interface_filter = filters[0]["identifierFilter"]["InterfaceFilter"]["value"]
            assert interface_filter["includeInterfaceView"] is True
            return httpx.Response(
                200,
                json=[
                    active_entry(
                        "a1",
                        "amulet:Splice.Amulet:AmuletAllocation",
                        interfaceViews=[{"viewValue": {"allocation": {"x": 1}}}],
                    ),
                    active_entry("a2", "other:Mod:Other", interfaceViews=[]),
                ],
            )

        query = make_query(settings, handler)
        contracts = await query.active(templates.ALLOCATION)

        assert [c.contract_id for c in contracts] == ["a1"]
        assert contracts[0].payload == {"allocation": {"x": 1}}

    @pytest.mark.asyncio
    async def test_active_where_filters_payloads(self, settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/v2/state/ledger-end":
                return httpx.Response(200, json={"offset": 1})
            return httpx.Response(
                200,
                json=[
                    active_entry("c1", INVOICE_TEMPLATE, createArgument={"seller": "a"}),
                    active_entry("c2", INVOICE_TEMPLATE, createArgument={"seller": "b"}),
                ],
            )

        query = make_query(settings, handler)
        contracts = await query.active_where(templates.INVOICE, lambda p: p["seller"] == "b")

        assert [c.contract_id for c in contracts] == ["c2"]

    @pytest.mark.asyncio
    async def test_retries_transient_failures(self, settings: Settings) -> None:
        calls = {"count": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/v2/state/ledger-end":
                calls["count"] += 1
                if calls["count"] < 3:
                    return httpx.Response(503, text="warming up")
                return httpx.Response(200, json={"offset": 1})
            return httpx.Response(200, json=[])

        query = make_query(settings, handler)

        assert await query.active(templates.INVOICE) == []
        assert calls["count"] == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_attempts(self, settings: Settings) -> None:
        calls = {"count": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["count"] += 1
            raise httpx.ConnectError("refused", request=request)

        query = make_query(settings, handler)

        with pytest.raises(QueryTransportError):
            await query.active(templates.INVOICE)
        assert calls["count"] == 3

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self, settings: Settings) -> None:
        calls = {"count": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["count"] += 1
            return httpx.Response(401, text="unauthorized")

        query = make_query(settings, handler)

        with pytest.raises(QueryTransportError, match="401"):
            await query.active(templates.INVOICE)
        assert calls["count"] == 1


class TestContractById:
    """Test lookup of a single contract."""

    @pytest.mark.asyncio
    async def test_found(self, settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/v2/events/events-by-contract-id"
            assert json.loads(request.content)["contractId"] == "c1"
            return httpx.Response(
                200,
                json={
                    "created": {
                        "createdEvent": {
                            "contractId": "c1",
                            "templateId": INVOICE_TEMPLATE,
                            "createArgument": {"seller": "s"},
                        }
                    }
                },
            )

        contract = await make_query(settings, handler).contract_by_id(templates.INVOICE, "c1")

        assert contract is not None
        assert contract.contract_id == "c1"
        assert contract.payload == {"seller": "s"}

    @pytest.mark.asyncio
    async def test_archived(self, settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            created = {"contractId": "c1", "templateId": INVOICE_TEMPLATE, "createArgument": {}}
            return httpx.Response(
                200,
                json={"created": {"createdEvent": created}, "archived": {"archivedEvent": {}}},
            )

        assert await make_query(settings, handler).contract_by_id(templates.INVOICE, "c1") is None

    @pytest.mark.asyncio
    async def test_unknown_contract(self, settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, json={"code": "CONTRACT_EVENTS_NOT_FOUND"})

        assert await make_query(settings, handler).contract_by_id(templates.INVOICE, "c1") is None

    @pytest.mark.asyncio
    async def test_other_template(self, settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            created = {
                "contractId": "c1",
                "templateId": "abc123:Invoicing.Invoice:InvoicePaymentRequest",
                "createArgument": {},
            }
            return httpx.Response(200, json={"created": {"createdEvent": created}})

        assert await make_query(settings, handler).contract_by_id(templates.INVOICE, "c1") is None


class TestMalformedResponses:
    """Bodies that are not the expected JSON shape become QueryTransportError."""

    @pytest.mark.asyncio
    async def test_html_ledger_end(self, settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html><body>login</body></html>")

        with pytest.raises(QueryTransportError, match="Unexpected GET /v2/state/ledger-end"):
            await make_query(settings, handler).ledger_end()

    @pytest.mark.asyncio
    async def test_ledger_end_without_offset(self, settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"ledgerEnd": 5})

        with pytest.raises(QueryTransportError, match="ledger-end"):
            await make_query(settings, handler).ledger_end()

    @pytest.mark.asyncio
    async def test_active_entry_without_contract_id(self, settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/v2/state/ledger-end":
                return httpx.Response(200, json={"offset": 1})
            created = {"templateId": INVOICE_TEMPLATE, "createArgument": {}}
            return httpx.Response(
                200, json=[{"contractEntry": {"JsActiveContract": {"createdEvent": created}}}]
            )

        with pytest.raises(QueryTransportError, match="active-contracts"):
            await make_query(settings, handler).active(templates.INVOICE)

    @pytest.mark.asyncio
    async def test_contract_by_id_not_an_object(self, settings: Settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=["unexpected"])

        with pytest.raises(QueryTransportError, match="events-by-contract-id"):
            await make_query(settings, handler).contract_by_id(templates.INVOICE, "c1")
