"""RFC 7807 Problem Details helpers."""
from __future__ import annotations

from http import HTTPStatus

from fastapi.responses import JSONResponse

from .domain_errors import DomainError


def build_problem_details_response(exc: DomainError) -> JSONResponse:
    """Render DomainError as RFC 7807 payload with stable domain code."""
    try:
        title = HTTPStatus(exc.http_status).phrase
    except ValueError:
        title = "Domain Error"

    # Integrity/configuration failures are for operators, not end users.
    detail = exc.message if exc.http_status < 500 else "Internal error"
    payload: dict[str, object] = {
        "type": f"https://tgauth.local/problems/{exc.code.lower()}",
        "title": title,
        "status": exc.http_status,
        "detail": detail,
        "code": exc.code,
    }
    if exc.details is not None and exc.http_status < 500:
        payload["details"] = exc.details

    headers = {"WWW-Authenticate": "Bearer"} if exc.http_status == 401 else None
    return JSONResponse(
        status_code=exc.http_status,
        content=payload,
        media_type="application/problem+json",
        headers=headers,
    )
