"""
Global Error Handler Middleware.

Catches unhandled exceptions and returns structured JSON responses.
Every error gets a unique error_id for correlation with server logs.
Pipeline errors expose their error code; nothing else leaks to clients.
"""

import traceback
import uuid

import structlog
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from ecobin.config import settings
from ecobin.exceptions import EcoBinError, TransientStoreError

logger = structlog.get_logger(__name__)


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """
    Outermost middleware.

    Response body:
    {
      "error": "human-readable message",
      "error_id": "uuid for log correlation",
      "status": 500
    }
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        try:
            return await call_next(request)

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

            status_code = 503 if isinstance(exc, TransientStoreError) else 500
            body: dict = {
                "error": "An internal error occurred. Please try again later.",
                "error_id": error_id,
                "status": status_code,
            }
            if isinstance(exc, EcoBinError):
                body["error_code"] = exc.error_code.value

            if settings.debug:
                body["debug_hint"] = type(exc).__name__

            return JSONResponse(status_code=status_code, content=body)
