from __future__ import annotations

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from app.domain.enums import ErrorCode
from app.domain.errors import BookingError, DataStoreError

logger = structlog.get_logger(__name__)


async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
    logger.info("api.booking_error", path=request.url.path, code=exc.code.value, error=exc.message)
    return JSONResponse(status_code=exc.http_status, content={"error": exc.to_payload()})


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = str(errors[0].get("msg", "Invalid request")) if errors else "Invalid request"
    fields = [".".join(str(part) for part in error.get("loc", ())) for error in errors]
    return JSONResponse(
        status_code=400,
        content={
            "error": {"code": ErrorCode.VALIDATION_ERROR.value, "message": message, "details": {"fields": fields}}
        },
    )


async def data_store_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.exception("api.data_store_error", path=request.url.path, error=str(exc))
    error = DataStoreError()
    return JSONResponse(status_code=error.http_status, content={"error": error.to_payload()})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BookingError, booking_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(SQLAlchemyError, data_store_error_handler)  # type: ignore[arg-type]
