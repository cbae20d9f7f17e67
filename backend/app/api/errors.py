from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from backend.services.errors import PackagingError

logger = logging.getLogger(__name__)

# loc[0] de FastAPI -> libellé du message 400
LOCATION_LABELS = {
    "body": "Invalid request body",
    "query": "Invalid query parameter",
    "path": "Invalid path parameter",
    "header": "Invalid header",
}


async def packaging_error_handler(request: Request, exc: PackagingError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.as_response())


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {"loc": (), "msg": "invalid payload"}
    loc = tuple(first.get("loc", ()))
    where = ".".join(str(p) for p in loc)
    label = LOCATION_LABELS.get(loc[0] if loc else "", "Invalid request")
    logger.info("Rejected malformed request on %s: %s", request.url.path, first.get("msg"))
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": f"{label}: {where}: {first.get('msg')}"},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(PackagingError, packaging_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
