from __future__ import annotations

import json
import logging
import sys
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware


EXTRA_KEYS = (
    "request_id",
    "actor_id",
    "path",
    "method",
    "status_code",
    "latency_ms",
    "project_id",
    "proposal_id",
    "invoice_id",
    "invoice_number",
    "finder_fee_id",
    "charge_id",
    "item_id",
    "service_date",
    "last_billed_on",
    "credit_source_invoice_ids",
    "count",
    "failed",
    "amount",
    "raw_subtotal",
    "credit_used",
    "from_status",
    "to_status",
    "error",
)


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key in EXTRA_KEYS:
            if hasattr(record, key):
                payload[key] = getattr(record, key)

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


def configure_logging(level: str = "INFO") -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    logging.basicConfig(
        level=level,
        handlers=[handler],
        force=True,
    )


def _resolve_actor_id(request: Request) -> Optional[int]:
    raw = request.headers.get("x-actor-id")
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, logger_name: str = "request") -> None:
        super().__init__(app)
        self.logger = logging.getLogger(logger_name)

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            latency_ms = (time.perf_counter() - start) * 1000
            self.logger.exception(
                "unhandled_exception",
                extra={
                    "request_id": request_id,
                    "path": request.url.path,
                    "method": request.method,
                    "latency_ms": round(latency_ms, 2),
                    "actor_id": _resolve_actor_id(request),
                },
            )
            raise

        latency_ms = (time.perf_counter() - start) * 1000
        self.logger.info(
            "request",
            extra={
                "request_id": request_id,
                "path": request.url.path,
                "method": request.method,
                "status_code": response.status_code,
                "latency_ms": round(latency_ms, 2),
                "actor_id": _resolve_actor_id(request),
            },
        )

        response.headers["X-Request-Id"] = request_id
        return response
