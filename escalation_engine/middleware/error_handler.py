"""
Global Error Handler Middleware.

Outermost layer. Turns anything the routers did not handle into a
generic JSON body with an error_id for log correlation:

    {"error": "...", "error_id": "...", "status": 500}

ConfigurationError maps to 503 (the engine cannot run right now);
everything else maps to 500. Internals never reach the client.
"""

import traceback
import uuid

import structlog
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from escalation_engine.config import settings
from escalation_engine.exceptions import ConfigurationError

logger = structlog.get_logger(__name__)


def error_body(status_code: int, message: str, error_id: str, exc: Exception) -> dict:
    body: dict = {"error": message, "error_id": error_id, "status": status_code}
    if settings.debug:
        body["debug_hint"] = type(exc).__name__
    return body


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        try:
            return await call_next(request)
        except ConfigurationError as exc:
            error_id = str(uuid.uuid4())
            logger.error(
                "escalation_unavailable",
                error_id=error_id,
                path=request.url.path,
                error=str(exc),
            )
            return JSONResponse(
                status_code=503,
                content=error_body(503, "Escalation engine is not configured.", error_id, exc),
            )
        except Exception as exc:
            error_id = str(uuid.uuid4())
            logger.error(
                "unhandled_exception",
                error_id=error_id,
                path=request.url.path,
                method=request.method,
                error=str(exc),
                traceback=traceback.format_exc(),
            )
            return JSONResponse(
                status_code=500,
                content=error_body(
                    500, "An internal error occurred. Please try again later.", error_id, exc
                ),
            )
