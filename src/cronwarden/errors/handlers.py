"""FastAPI exception handlers producing the standard ErrorResponse."""

import logging
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from cronwarden.errors.exceptions import CollaboratorUnavailableError, CronWardenError
from cronwarden.models.common import ErrorDetail, ErrorResponse

logger = logging.getLogger(__name__)


def _error_body(exc: CronWardenError, trace_id: str) -> dict:
    error_response = ErrorResponse(
        error=ErrorDetail(
            code=exc.code,
            message=exc.message,
            details=exc.details,
            trace_id=trace_id,
            timestamp=datetime.now(timezone.utc),
        ),
    )
    return error_response.model_dump(mode="json", exclude_none=True)


def register_exception_handlers(app: FastAPI) -> None:
    """Register all custom exception handlers on the FastAPI app."""

    @app.exception_handler(CronWardenError)
    async def cronwarden_error_handler(request: Request, exc: CronWardenError):
        trace_id = getattr(request.state, "trace_id", "trc_unknown")
        if isinstance(exc, CollaboratorUnavailableError):
            logger.warning(
                "collaborator_unavailable",
                extra={
                    "path": request.url.path,
                    "method": request.method,
                    "trace_id": trace_id,
                    "collaborator": exc.collaborator,
                    "reason": exc.message,
                },
            )
        return JSONResponse(status_code=exc.status_code, content=_error_body(exc, trace_id))
