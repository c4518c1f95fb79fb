"""RFC 7807 problem responses shared by every route and exception handler."""

import uuid
from http import HTTPStatus
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

PROBLEM_TYPE_VALIDATION = "https://bikawo.com/problems/validation-error"
PROBLEM_TYPE_DOMAIN = "https://bikawo.com/problems/domain-error"
PROBLEM_TYPE_SERVER = "https://bikawo.com/problems/server-error"
PROBLEM_MEDIA_TYPE = "application/problem+json"


def request_id_for(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None) or request.headers.get("X-Request-ID")
    if not request_id:
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id
    return request_id


def _default_type(status: int) -> str:
    if status == 422:
        return PROBLEM_TYPE_VALIDATION
    return PROBLEM_TYPE_SERVER if status >= 500 else PROBLEM_TYPE_DOMAIN


def _default_title(status: int) -> str:
    try:
        return HTTPStatus(status).phrase
    except ValueError:
        return "Error"


def problem_details(
    request: Request,
    *,
    status: int,
    title: str | None,
    detail: str,
    errors: list[dict[str, Any]] | None = None,
    type_: str | None = None,
    headers: dict[str, str] | None = None,
    extra: dict[str, Any] | None = None,
) -> JSONResponse:
    """Render a problem body; ``extra`` adds route-specific members such as ``success``."""
    request_id = request_id_for(request)
    body: dict[str, Any] = {
        **(extra or {}),
        "type": type_ or _default_type(status),
        "title": title or _default_title(status),
        "status": status,
        "detail": detail,
        "request_id": request_id,
        "errors": errors or [],
    }
    response = JSONResponse(status_code=status, content=body, headers=headers, media_type=PROBLEM_MEDIA_TYPE)
    response.headers.setdefault("X-Request-ID", request_id)
    return response
