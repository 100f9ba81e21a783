"""Map ledger errors onto JSON responses."""

from __future__ import annotations

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from loguru import logger

from hustl_api.services.points.errors import LedgerError, LedgerInternalError


async def _ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    if isinstance(exc, LedgerInternalError):
        logger.bind(path=request.url.path, method=request.method, context=exc.context).error(
            "Ledger operation failed",
            code=exc.code,
            error=exc.message,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Points ledger temporarily unavailable", "code": exc.code, "context": {}},
        )

    logger.info("Ledger request rejected", path=request.url.path, code=exc.code)
    return JSONResponse(status_code=exc.status_code, content=exc.as_dict())


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(LedgerError, _ledger_error_handler)  # type: ignore[arg-type]


__all__ = ["register_exception_handlers"]
