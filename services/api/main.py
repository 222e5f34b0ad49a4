"""FastAPI application for ledger-backed invoicing.

Production-ready API with:
- Health and readiness checks for Kubernetes
- Invoice, payment request and disclosure view endpoints
- Typed ledger errors mapped to HTTP responses in one handler
- Prometheus metrics for monitoring

Authentication is handled upstream: the caller's party arrives in the
header named by ``settings.party_header``. Provider-side actions are
submitted as the configured admin party.

Based on FastAPI best practices:
https://fastapi.tiangolo.com/
"""

import json
import logging
import time
from collections.abc import AsyncIterator, Awaitable
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import TypeVar

from fastapi import Body, Depends, FastAPI, HTTPException, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from services.api import metrics
from services.disclosure.service import DisclosureService
from services.invoicing.repository import InvoiceRepository
from services.invoicing.requests import (
    CancelRequest,
    CompletePaymentRequest,
    CreateInvoiceRequest,
    RequestPaymentRequest,
    ShareWithBookkeeperRequest,
    ShareWithCarrierRequest,
)
from services.invoicing.schema import CamelModel
from services.invoicing.service import InvoiceService
from services.invoicing.views import (
    BookkeeperViewResponse,
    InvoicePaymentResult,
    InvoiceResponse,
    LogisticsViewResponse,
)
from services.ledger.commands import LedgerCommandClient
from services.ledger.query import JsonApiContractQuery
from services.ledger.registry import TokenRegistryClient
from services.shared.config import get_settings
from services.shared.errors import LedgerServiceError

T = TypeVar("T")

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    yield
    for client in (ledger_query, ledger_commands, token_registry):
        await client.aclose()


app = FastAPI(
    title="Ledger Invoicing Service",
    description="Invoices, payment requests and disclosure views on a smart-contract ledger",
    version=settings.service_version,
    lifespan=lifespan,
)

ledger_query = JsonApiContractQuery(settings)
ledger_commands = LedgerCommandClient(settings)
token_registry = TokenRegistryClient(settings)
repository = InvoiceRepository(ledger_query)
invoice_service = InvoiceService(settings, repository, ledger_commands, token_registry)
disclosure_service = DisclosureService(repository, ledger_commands)


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Middleware to collect request metrics.

    Tracks:
    - Request count by method, endpoint, and status
    - Request duration by method and endpoint

    Endpoints are labelled by route template so contract ids do not
    explode label cardinality.
    """
    # Skip metrics for /metrics endpoint itself
    if request.url.path == "/metrics":
        return await call_next(request)

    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time

    route = request.scope.get("route")
    endpoint = getattr(route, "path", request.url.path)

    metrics.http_requests_total.labels(
        method=request.method,
        endpoint=endpoint,
        status=response.status_code,
    ).inc()

    metrics.http_request_duration_seconds.labels(
        method=request.method,
        endpoint=endpoint,
    ).observe(duration)

    return response


@app.exception_handler(LedgerServiceError)
async def ledger_error_handler(request: Request, exc: LedgerServiceError) -> JSONResponse:
    """Map the service error taxonomy to HTTP responses."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


async def tracked(action: str, call: Awaitable[T]) -> T:
    """Await a service call and count its outcome."""
    try:
        result = await call
    except LedgerServiceError:
        metrics.invoice_actions_total.labels(action=action, status="failed").inc()
        raise
    metrics.invoice_actions_total.labels(action=action, status="success").inc()
    return result


async def create_invoice_body(request: Request) -> CreateInvoiceRequest:
    """Parse the create-invoice body with JSON numbers read as Decimal.

    The default body parsing turns JSON numbers into floats before pydantic
    sees them, so amounts and tax rates would lose digits and trailing zeros.
    """
    try:
        data = json.loads(await request.body(), parse_float=Decimal)
    except ValueError as e:
        raise RequestValidationError(
            [{"type": "json_invalid", "loc": ("body",), "msg": f"Invalid JSON: {e}", "input": None}]
        ) from e
    try:
        return CreateInvoiceRequest.model_validate(data)
    except ValidationError as e:
        raise RequestValidationError(e.errors(include_url=False)) from e


def caller_party(party: str | None) -> str:
    if not party:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Missing {settings.party_header} header",
        )
    return party


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    service: str


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    ready: bool


class CreatedResponse(CamelModel):
    """Contract created by a command."""

    contract_id: str


@app.get("/health", response_model=HealthResponse, tags=["Health"])
def health_check() -> HealthResponse:
    """Health check endpoint for liveness probe.

    Returns:
        Health status information
    """
    return HealthResponse(
        status="healthy", version=settings.service_version, service=settings.service_name
    )


@app.get("/ready", response_model=ReadinessResponse, tags=["Health"])
def readiness_check() -> ReadinessResponse:
    """Readiness check endpoint for Kubernetes readiness probe.

    Returns:
        Readiness status
    """
    return ReadinessResponse(ready=bool(settings.admin_party))


@app.get("/metrics", tags=["Monitoring"])
def get_metrics() -> Response:
    """Prometheus metrics endpoint.

    Returns:
        Prometheus metrics in text format
    """
    metrics_data, content_type = metrics.get_metrics()
    return Response(content=metrics_data, media_type=content_type)


@app.get("/api/parties", tags=["Parties"])
def get_parties() -> dict[str, str]:
    """Party ids configured for the demo roles."""
    return {
        "seller": settings.seller_party,
        "buyer": settings.buyer_party,
        "logistics": settings.logistics_party,
        "finance": settings.finance_party,
    }


# Invoices


@app.get("/api/v1/invoices", response_model=list[InvoiceResponse], tags=["Invoices"])
async def list_invoices(request: Request) -> list[InvoiceResponse]:
    """List invoices where the caller is seller, buyer or provider.

    Each invoice carries its open payment requests and, where the buyer has
    already allocated funds, the matching allocation contract id.
    Ordered by invoice number.
    """
    party = caller_party(request.headers.get(settings.party_header))
    return await tracked("list_invoices", invoice_service.list_invoices(party))


@app.post(
    "/api/v1/invoices",
    response_model=CreatedResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Invoices"],
)
async def create_invoice(
    body: CreateInvoiceRequest = Depends(create_invoice_body),  # noqa: B008
    command_id: str = Query(..., alias="commandId"),
) -> CreatedResponse:
    """Create an invoice.

    Line subtotals, tax breakdown and totals are computed here from the
    submitted line items; any totals in the body are not accepted.
    """
    contract_id = await tracked(
        "create_invoice", invoice_service.create_invoice(body, command_id)
    )
    return CreatedResponse(contract_id=contract_id)


@app.post(
    "/api/v1/invoices/{contract_id}/request-payment",
    status_code=status.HTTP_201_CREATED,
    tags=["Invoices"],
)
async def request_invoice_payment(
    contract_id: str,
    body: RequestPaymentRequest,
    command_id: str = Query(..., alias="commandId"),
) -> Response:
    await tracked(
        "request_payment", invoice_service.request_payment(contract_id, body, command_id)
    )
    return Response(status_code=status.HTTP_201_CREATED)


@app.post(
    "/api/v1/invoices/{contract_id}/complete-payment",
    response_model=InvoicePaymentResult,
    tags=["Invoices"],
)
async def complete_invoice_payment(
    contract_id: str,
    body: CompletePaymentRequest,
    command_id: str = Query(..., alias="commandId"),
) -> InvoicePaymentResult:
    """Settle a payment request using the buyer's allocation.

    Returns the paid invoice and the receipt contract ids.
    """
    return await tracked(
        "complete_payment", invoice_service.complete_payment(contract_id, body, command_id)
    )


@app.post(
    "/api/v1/invoices/{contract_id}/cancel",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["Invoices"],
)
async def cancel_invoice(
    contract_id: str,
    body: CancelRequest | None = Body(None),  # noqa: B008
    command_id: str = Query(..., alias="commandId"),
) -> Response:
    await tracked("cancel_invoice", invoice_service.cancel_invoice(contract_id, body, command_id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.post(
    "/api/v1/invoices/{contract_id}/mark-paid",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["Invoices"],
)
async def mark_invoice_paid(
    contract_id: str,
    command_id: str = Query(..., alias="commandId"),
) -> Response:
    await tracked("mark_paid", invoice_service.mark_paid(contract_id, command_id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.post(
    "/api/v1/invoices/{contract_id}/share-with-carrier",
    status_code=status.HTTP_201_CREATED,
    tags=["Invoices"],
)
async def share_with_carrier(
    contract_id: str,
    body: ShareWithCarrierRequest,
    command_id: str = Query(..., alias="commandId"),
) -> Response:
    await tracked(
        "share_with_carrier", invoice_service.share_with_carrier(contract_id, body, command_id)
    )
    return Response(status_code=status.HTTP_201_CREATED)


@app.post(
    "/api/v1/invoices/{contract_id}/share-with-bookkeeper",
    status_code=status.HTTP_201_CREATED,
    tags=["Invoices"],
)
async def share_with_bookkeeper(
    contract_id: str,
    body: ShareWithBookkeeperRequest,
    command_id: str = Query(..., alias="commandId"),
) -> Response:
    await tracked(
        "share_with_bookkeeper",
        invoice_service.share_with_bookkeeper(contract_id, body, command_id),
    )
    return Response(status_code=status.HTTP_201_CREATED)


@app.post(
    "/api/v1/invoice-payment-requests/{contract_id}/withdraw",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["Invoice Payment Requests"],
)
async def withdraw_invoice_payment_request(
    contract_id: str,
    command_id: str = Query(..., alias="commandId"),
) -> Response:
    await tracked(
        "withdraw_payment_request",
        invoice_service.withdraw_payment_request(contract_id, command_id),
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Disclosure views


@app.get(
    "/api/v1/logistics-views", response_model=list[LogisticsViewResponse], tags=["Disclosure"]
)
async def list_logistics_views(request: Request) -> list[LogisticsViewResponse]:
    party = caller_party(request.headers.get(settings.party_header))
    return await tracked("list_logistics_views", disclosure_service.list_logistics_views(party))


@app.post(
    "/api/v1/logistics-views/{contract_id}/acknowledge",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["Disclosure"],
)
async def acknowledge_logistics_view(
    contract_id: str,
    request: Request,
    command_id: str = Query(..., alias="commandId"),
) -> Response:
    party = caller_party(request.headers.get(settings.party_header))
    await tracked(
        "acknowledge_logistics_view",
        disclosure_service.acknowledge_logistics_view(contract_id, command_id, party),
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.post(
    "/api/v1/logistics-views/{contract_id}/revoke",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["Disclosure"],
)
async def revoke_logistics_view(
    contract_id: str,
    request: Request,
    command_id: str = Query(..., alias="commandId"),
) -> Response:
    party = caller_party(request.headers.get(settings.party_header))
    await tracked(
        "revoke_logistics_view",
        disclosure_service.revoke_logistics_view(contract_id, command_id, party),
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get(
    "/api/v1/bookkeeper-views", response_model=list[BookkeeperViewResponse], tags=["Disclosure"]
)
async def list_bookkeeper_views(request: Request) -> list[BookkeeperViewResponse]:
    party = caller_party(request.headers.get(settings.party_header))
    return await tracked("list_bookkeeper_views", disclosure_service.list_bookkeeper_views(party))


@app.post(
    "/api/v1/bookkeeper-views/{contract_id}/acknowledge",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["Disclosure"],
)
async def acknowledge_bookkeeper_view(
    contract_id: str,
    request: Request,
    command_id: str = Query(..., alias="commandId"),
) -> Response:
    party = caller_party(request.headers.get(settings.party_header))
    await tracked(
        "acknowledge_bookkeeper_view",
        disclosure_service.acknowledge_bookkeeper_view(contract_id, command_id, party),
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.post(
    "/api/v1/bookkeeper-views/{contract_id}/revoke",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["Disclosure"],
)
async def revoke_bookkeeper_view(
    contract_id: str,
    request: Request,
    command_id: str = Query(..., alias="commandId"),
) -> Response:
    party = caller_party(request.headers.get(settings.party_header))
    await tracked(
        "revoke_bookkeeper_view",
        disclosure_service.revoke_bookkeeper_view(contract_id, command_id, party),
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
