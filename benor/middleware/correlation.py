"""
Correlation ID Middleware
Every request to a node carries a traceable correlation ID, and outbound
consensus messages forward it so one broadcast can be followed across nodes.
"""

import uuid
import logging
from contextvars import ContextVar
from datetime import datetime

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

HEADER_NAME = "X-Correlation-ID"

# Context variable for correlation ID (safe across asyncio tasks)
correlation_id_var: ContextVar[str] = ContextVar('correlation_id', default='no-corr-id')


def get_correlation_id() -> str:
    """Get current correlation ID from context"""
    return correlation_id_var.get()


def generate_correlation_id() -> str:
    """Generate a new correlation ID"""
    return f"corr-{uuid.uuid4().hex[:12]}"


class CorrelationIdFilter(logging.Filter):
    """Logging filter to inject correlation ID into log records"""

    def filter(self, record):
        record.correlation_id = get_correlation_id()
        record.iso_timestamp = datetime.utcnow().strftime("%Y-%m-%dT%H:%M:%S.%f")
        return True


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """
    Middleware that ensures every request has a correlation ID.

    The ID is read from the incoming X-Correlation-ID header (set by the
    sending node's transport) or generated, exposed to handlers through
    correlation_id_var, and echoed on the response.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        corr_id = request.headers.get(HEADER_NAME)
        if not corr_id:
            corr_id = generate_correlation_id()

        token = correlation_id_var.set(corr_id)

        try:
            response = await call_next(request)
            response.headers[HEADER_NAME] = corr_id
            return response
        finally:
            correlation_id_var.reset(token)
