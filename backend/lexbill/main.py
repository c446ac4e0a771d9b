from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from lexbill.core.errors import BillingError
from lexbill.core.logging import RequestLoggingMiddleware, configure_logging
from lexbill.core.settings import settings
from lexbill.routers.billing import router as billing_router

configure_logging(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.project_name, version=settings.project_version)
app.add_middleware(RequestLoggingMiddleware)


@app.exception_handler(BillingError)
async def billing_error_handler(request: Request, exc: BillingError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(
            "billing.error",
            extra={
                "request_id": getattr(request.state, "request_id", None),
                "path": request.url.path,
                "status_code": exc.status_code,
                "error": exc.message,
            },
        )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})


app.include_router(billing_router)


@app.get("/healthz")
def healthz() -> dict:
    return {"status": "ok", "environment": settings.environment}
