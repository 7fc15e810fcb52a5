import logging
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """An error surfaced to the client as JSON.

    ``code`` is the machine-readable identifier clients branch on
    (``INSUFFICIENT_STOCK``, ``ACCESS_DENIED``, ...). Extra keyword arguments
    are merged into the response body.
    """

    def __init__(self, status_code: int, error: str, code: Optional[str] = None, **extra: Any):
        super().__init__(error)
        self.status_code = status_code
        self.error = error
        self.code = code
        self.extra = extra

    def body(self) -> dict:
        payload = {"success": False, "error": self.error}
        if self.code:
            payload["code"] = self.code
        payload.update(self.extra)
        return payload


def _validation_details(exc: RequestValidationError) -> list:
    details = []
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        details.append({"field": ".".join(loc), "message": err.get("msg", "Invalid value")})
    return details


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.body()))


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = _validation_details(exc)
    logger.info("validation failed on %s %s: %s", request.method, request.url.path, details)
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": "Validation failed", "details": details},
    )


async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Internal server error", "message": str(exc)},
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)
