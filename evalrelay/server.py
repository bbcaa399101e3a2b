"""
HTTP surface of the relay.

Each evaluation route validates the body, then hands the raw ASGI
send/receive pair to a relay session through ``RelayStreamResponse``.
"""

from __future__ import annotations

from typing import Any

import httpx
from fastapi import APIRouter, Body, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response

from evalrelay import __version__
from evalrelay.llm.exceptions import BadRequest, RelayError
from evalrelay.llm.models import RelaySettings
from evalrelay.logging_utils import RelayErrorHandler
from evalrelay.relay.service import RelayService

router = APIRouter()


def get_relay_service(request: Request) -> RelayService:
    return request.app.state.relay_service


@router.get("/health")
async def health() -> dict[str, bool]:
    return {"ok": True}


@router.get("/api/check-api")
async def check_api(
    service: RelayService = Depends(get_relay_service),
) -> dict[str, Any]:
    """Report which provider credentials are configured."""
    return {"status": "operational", "api_keys": service.credential_status()}


@router.post("/api/stream")
async def stream(
    payload: dict[str, Any] = Body(...),
    service: RelayService = Depends(get_relay_service),
) -> Response:
    """Generic relay; the body's ``template`` picks the prompt."""
    return service.stream_response(payload)


@router.post("/api/stream-analysis")
async def stream_analysis(
    payload: dict[str, Any] = Body(...),
    service: RelayService = Depends(get_relay_service),
) -> Response:
    return service.stream_response(payload, template_id="intelligence")


@router.post("/api/case-assessment")
async def case_assessment(
    payload: dict[str, Any] = Body(...),
    service: RelayService = Depends(get_relay_service),
) -> Response:
    return service.stream_response(payload, template_id="case_assessment")


@router.post("/api/fiction-assessment")
async def fiction_assessment(
    payload: dict[str, Any] = Body(...),
    service: RelayService = Depends(get_relay_service),
) -> Response:
    return service.stream_response(payload, template_id="fiction")


async def relay_error_handler(request: Request, exc: Exception) -> JSONResponse:
    status, body = RelayErrorHandler.error_payload(
        exc, operation=request.url.path
    )
    return JSONResponse(body, status_code=status)


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return await relay_error_handler(
        request, BadRequest("Request body must be a JSON object")
    )


def create_app(
    settings: RelaySettings,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Build the relay application.

    Args:
        settings: Immutable relay settings shared by every session.
        transport: Optional upstream transport, used to stub providers.
    """
    app = FastAPI(title="Document Evaluation Relay", version=__version__)
    app.state.relay_service = RelayService(settings, transport=transport)
    app.include_router(router)
    app.add_exception_handler(RelayError, relay_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    return app
