import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError

from bikawo.api.problem_details import (
    PROBLEM_TYPE_DOMAIN,
    PROBLEM_TYPE_SERVER,
    PROBLEM_TYPE_VALIDATION,
    problem_details,
)
from bikawo.domain.errors import DomainError
from bikawo.infra.logging import update_log_context

logger = logging.getLogger(__name__)

_LOCATION_PREFIXES = {"body", "query", "path"}


def _validation_errors(exc: RequestValidationError) -> list[dict[str, str]]:
    errors = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error.get("loc", ()) if part not in _LOCATION_PREFIXES)
        errors.append({"field": field or "body", "message": error.get("msg", "Invalid value")})
    return errors


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return problem_details(
        request,
        status=422,
        title="Validation Error",
        detail="Request validation failed",
        errors=_validation_errors(exc),
        type_=PROBLEM_TYPE_VALIDATION,
    )


async def domain_exception_handler(request: Request, exc: DomainError):
    return problem_details(
        request,
        status=exc.status_code,
        title=exc.title,
        detail=exc.detail,
        errors=exc.errors,
        type_=exc.type or PROBLEM_TYPE_DOMAIN,
    )


async def http_exception_handler(request: Request, exc: HTTPException):
    message = exc.detail if isinstance(exc.detail, str) else None
    return problem_details(
        request,
        status=exc.status_code,
        title=message or "HTTP Error",
        detail=message or "Request failed",
        type_=PROBLEM_TYPE_SERVER if exc.status_code >= 500 else PROBLEM_TYPE_DOMAIN,
        headers=exc.headers,
    )


async def unhandled_exception_handler(request: Request, exc: Exception):
    request_id = getattr(request.state, "request_id", None)
    update_log_context(request_id=request_id, path=request.url.path, status_code=500)
    logger.exception(
        "unhandled_exception",
        extra={"request_id": request_id, "error_type": type(exc).__name__},
    )
    return problem_details(
        request,
        status=500,
        title="Internal Server Error",
        detail="Unexpected error",
        type_=PROBLEM_TYPE_SERVER,
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(DomainError, domain_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
