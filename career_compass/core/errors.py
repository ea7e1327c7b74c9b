"""Error normalization and handlers."""

import logging
import builtins
from typing import Any, Dict, Optional
from uuid import uuid4

from fastapi import HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.requests import Request

from career_compass.core.logging import get_request_id
from career_compass.core.messages import message_for


class AppError(Exception):
    code = "app_error"
    status_code = 500

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        request_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.message = message or message_for(self.code)
        super().__init__(self.message)
        self.request_id = request_id
        self.details = details or {}


class ValidationError(AppError, ValueError):
    code = "validation_error"
    status_code = 400


class UnauthorizedError(AppError):
    code = "unauthorized"
    status_code = 401


class PaymentRequiredError(AppError):
    code = "ticket_required"
    status_code = 402


class PermissionError(AppError, builtins.PermissionError):
    code = "forbidden"
    status_code = 403


class NotFoundError(AppError, ValueError):
    code = "not_found"
    status_code = 404


class ConflictError(AppError):
    code = "conflict"
    status_code = 409


class BusinessRuleError(AppError):
    """A request that is well formed but denied by a business rule.

    `code` carries the machine-checkable reason (e.g. `already_used`).
    """
    code = "business_rule"
    status_code = 400


class UpstreamError(AppError):
    """Data store or payment processor failure on a required step."""
    code = "upstream_error"
    status_code = 500


def _extract_request_id(request: Request, fallback: Optional[str] = None) -> str:
    return (
        getattr(request.state, "request_id", None)
        or get_request_id()
        or fallback
        or str(uuid4())
    )


def _error_payload(code: str, message: str, request_id: str, details: Optional[Dict[str, Any]] = None) -> dict:
    payload = {"error": message, "code": code, "request_id": request_id}
    if details:
        payload.update(details)
    return payload


def _respond(status_code: int, payload: dict, rid: str) -> JSONResponse:
    response = JSONResponse(status_code=status_code, content=payload)
    response.headers["x-request-id"] = rid
    return response


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or _extract_request_id(request)
    payload = _error_payload(exc.code, exc.message, rid, exc.details)
    logger = logging.getLogger("career_compass")
    log_level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(
        log_level,
        "app.error",
        extra={"request_id": rid, "error_code": exc.code, "error_message": exc.message, "status": exc.status_code},
    )
    return _respond(exc.status_code, payload, rid)


async def http_error_handler(request: Request, exc: HTTPException):
    rid = _extract_request_id(request)
    if exc.status_code == 401:
        code = "unauthorized"
    elif exc.status_code == 404:
        code = "not_found"
    else:
        code = "http_error"
    message = exc.detail if isinstance(exc.detail, str) and exc.detail else message_for(code)
    payload = _error_payload(code, message, rid)
    logger = logging.getLogger("career_compass")
    logger.warning("http.error", extra={"request_id": rid, "error_code": code, "status": exc.status_code})
    return _respond(exc.status_code, payload, rid)


async def request_validation_handler(request: Request, exc: RequestValidationError):
    rid = _extract_request_id(request)
    fields = [".".join(str(part) for part in err.get("loc", ()) if part != "body") for err in exc.errors()]
    payload = _error_payload("validation_error", message_for("validation_error"), rid, {"fields": fields})
    logger = logging.getLogger("career_compass")
    logger.warning("validation.error", extra={"request_id": rid, "error_code": "validation_error", "fields": fields})
    return _respond(400, payload, rid)


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _extract_request_id(request)
    logger = logging.getLogger("career_compass")
    logger.error("unhandled.exception", exc_info=True, extra={"request_id": rid, "error_code": "internal_error"})
    payload = _error_payload("internal_error", message_for("internal_error"), rid)
    return _respond(500, payload, rid)
