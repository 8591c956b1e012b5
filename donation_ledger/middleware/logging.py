"""
Request logging with trace correlation
"""
import time
from fastapi import Request
from opentelemetry import trace
import structlog

logger = structlog.get_logger(__name__)

# Never logged: these carry provider signatures and payment payloads
REDACTED_QUERY_PATHS = ("/payments/paysera/callback",)


async def logging_middleware(request: Request, call_next):
    """Log all HTTP requests with trace correlation"""
    start_time = time.time()

    span = trace.get_current_span()
    trace_id = ""
    if span and span.get_span_context().is_valid:
        trace_id = format(span.get_span_context().trace_id, '032x')

    query = str(request.query_params) if request.query_params else ""
    if request.url.path in REDACTED_QUERY_PATHS and query:
        query = "<redacted>"

    logger.info(
        "Request started",
        trace_id=trace_id,
        method=request.method,
        path=request.url.path,
        query=query,
        client_ip=request.client.host if request.client else "",
        user_agent=request.headers.get("user-agent", "")
    )

    response = await call_next(request)

    latency = time.time() - start_time
    logger.info(
        "Request completed",
        trace_id=trace_id,
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        latency_seconds=round(latency, 3)
    )

    return response
