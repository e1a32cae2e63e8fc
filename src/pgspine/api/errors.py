"""
Error responses: exporter errors mapped to RFC 7807 problem documents.
"""

from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from pgspine.core.errors import ErrorKind, ExporterError
from pgspine.core.logging import get_logger

logger = get_logger(__name__)

# ── Error kind → HTTP status mapping ─────────────────────────────────────

ERROR_KIND_TO_STATUS: dict[ErrorKind, int] = {
    ErrorKind.REQUEST: 400,
    ErrorKind.PROBE_TIMEOUT: 503,
    ErrorKind.SETUP: 500,
    ErrorKind.CONFIG: 500,
}


def status_for_error(error: ExporterError) -> int:
    """Resolve an exporter error to an HTTP status, defaulting to 500."""
    return ERROR_KIND_TO_STATUS.get(error.kind, 500)


class ProblemDetail(BaseModel):
    """RFC 7807 «Problem Details for HTTP APIs»."""

    type: str = Field(default="about:blank")
    title: str
    status: int
    detail: str = ""
    instance: str = ""
    kind: str | None = Field(default=None, description="ErrorKind of the underlying exporter error")


def problem_response(
    *,
    status: int,
    title: str,
    detail: str = "",
    instance: str = "",
    kind: str | None = None,
) -> JSONResponse:
    body = ProblemDetail(title=title, status=status, detail=detail, instance=instance, kind=kind)
    return JSONResponse(status_code=status, content=body.model_dump())


async def exporter_error_handler(request: Request, exc: ExporterError) -> JSONResponse:
    """Translate an :class:`ExporterError` raised by a route."""
    status = status_for_error(exc)
    if status >= 500:
        logger.error("api.request_failed", path=request.url.path, kind=exc.kind.value, error=exc.message)
    else:
        logger.debug("api.request_rejected", path=request.url.path, kind=exc.kind.value, error=exc.message)
    return problem_response(
        status=status,
        title=exc.kind.value.replace("_", " ").title(),
        detail=exc.message,
        instance=str(request.url),
        kind=exc.kind.value,
    )
