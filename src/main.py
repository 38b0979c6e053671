import logging

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from api.api_v1.api import api_router
from core.config import settings
from core.exceptions import (
    OracleUnavailable,
    RequestNotFound,
    Unauthorized,
    VaultAccountingError,
    VaultNotFound,
)
from log import setup_logging_to_console, setup_logging_to_seq

logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.PROJECT_NAME, openapi_url=f"{settings.API_V1_STR}/openapi.json"
)

ERROR_STATUS_CODES = {
    Unauthorized: 403,
    VaultNotFound: 404,
    RequestNotFound: 404,
    OracleUnavailable: 503,
}


@app.exception_handler(VaultAccountingError)
async def accounting_exception_handler(request: Request, exc: VaultAccountingError):
    status_code = ERROR_STATUS_CODES.get(type(exc), 400)
    logger.info("%s %s rejected: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=status_code,
        content={
            "error": exc.error_code,
            "message": exc.message,
            "retryable": exc.retryable,
        },
    )


@app.exception_handler(Exception)
async def exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"error": str(exc)},
    )


app.include_router(api_router, prefix=settings.API_V1_STR)


if __name__ == "__main__":
    setup_logging_to_console(level=logging.INFO)
    setup_logging_to_seq(level=logging.INFO)
    uvicorn.run(app, host="0.0.0.0", port=8001)
