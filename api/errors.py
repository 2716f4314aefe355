"""Global exception handlers for FastAPI."""

import logging
from decimal import Decimal
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError
from starlette.responses import JSONResponse

from api.base import error_response, ErrorCodes
from core.errors import ErrorKind, LedgerError

logger = logging.getLogger(__name__)

HTTP_STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INVALID_STATE: 409,
    ErrorKind.ALREADY_REFUNDED: 409,
    ErrorKind.DUPLICATE_INVOICE_NUMBER: 409,
    ErrorKind.CLIENT_MISMATCH: 422,
    ErrorKind.AMOUNT_EXCEEDS_BALANCE: 422,
    ErrorKind.REFUND_EXCEEDS_PAYMENT_AMOUNT: 422,
    ErrorKind.VALIDATION_ERROR: 422,
    ErrorKind.STORAGE_UNAVAILABLE: 503,
}

# Error attributes worth echoing back to the caller
_DETAIL_ATTRIBUTES = ("amount", "balance", "refundable", "status", "operation", "invoice_number")


def _details(exc: LedgerError) -> dict[str, Any] | None:
    details = {}
    for name in _DETAIL_ATTRIBUTES:
        value = getattr(exc, name, None)
        if value is not None:
            details[name] = str(value) if isinstance(value, Decimal) else value
    if exc.retryable:
        details["retryable"] = True
    return details or None


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


def register_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the app."""

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError):
        status = HTTP_STATUS_BY_KIND.get(exc.kind, 400)
        if status >= 500:
            logger.error(f"{exc.kind.value} on {request.url.path}: {exc}")
        return JSONResponse(
            status_code=status,
            content=error_response(
                ErrorCodes.for_kind(exc.kind),
                str(exc),
                details=_details(exc),
                request_id=_request_id(request),
            ).model_dump(mode="json"),
        )

    @app.exception_handler(ValidationError)
    async def model_validation_handler(request: Request, exc: ValidationError):
        # Raised when handlers build request models from the action payload
        return JSONResponse(
            status_code=422,
            content=error_response(
                ErrorCodes.VALIDATION_ERROR,
                str(exc.errors(include_url=False)),
                request_id=_request_id(request),
            ).model_dump(mode="json"),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=422,
            content=error_response(
                ErrorCodes.VALIDATION_ERROR,
                str(exc.errors()),
                request_id=_request_id(request),
            ).model_dump(mode="json"),
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return JSONResponse(
            status_code=400,
            content=error_response(
                ErrorCodes.INVALID_REQUEST,
                str(exc),
                request_id=_request_id(request),
            ).model_dump(mode="json"),
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception")
        return JSONResponse(
            status_code=500,
            content=error_response(
                ErrorCodes.INTERNAL_ERROR,
                "An internal error occurred",
                request_id=_request_id(request),
            ).model_dump(mode="json"),
        )
