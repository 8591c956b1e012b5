from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
import structlog
import time
import uvicorn

from donation_ledger.core.config import get_settings
from donation_ledger.core.circuit_breaker import get_all_breaker_states
from donation_ledger.core.exceptions import DonationLedgerError
from donation_ledger.database.database import init_db, close_db, engine
from donation_ledger.api.payments import router as payments_router
from donation_ledger.api.donations import router as donations_router
from donation_ledger.cache.redis import redis_cache
from donation_ledger.kafka.producer import kafka_producer
from donation_ledger.middleware.tracing import init_tracing
from donation_ledger.middleware.metrics import MetricsMiddleware, metrics_endpoint
from donation_ledger.middleware.logging import logging_middleware
from donation_ledger.providers.registry import get_provider_registry

# Setup structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(__name__)
settings = get_settings()

app = FastAPI(
    title=settings.app_name,
    description="Donation payments and ledger reconciliation API",
    version="1.0.0",
    debug=settings.debug
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Must run before startup events
init_tracing(app)

app.add_middleware(MetricsMiddleware)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Logging middleware with trace correlation"""
    return await logging_middleware(request, call_next)


@app.exception_handler(DonationLedgerError)
async def ledger_exception_handler(request: Request, exc: DonationLedgerError):
    """Validation, configuration, provider and ledger errors"""
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = "; ".join(
        f"{'.'.join(str(part) for part in error.get('loc', ())[1:]) or 'body'}: {error.get('msg')}"
        for error in errors
    )
    return JSONResponse(status_code=422, content={"error": message or "Invalid request"})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    logger.error(
        "Unhandled exception",
        error=str(exc),
        method=request.method,
        url=request.url.path
    )
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


@app.on_event("startup")
async def startup_event():
    """Initialize application on startup"""
    logger.info("Starting Donation Ledger", service_name=settings.service_name)

    try:
        init_db()
    except Exception as e:
        logger.error("Failed to initialize application", error=str(e))
        raise

    try:
        redis_cache.init_redis()
    except ConnectionError as redis_error:
        logger.warning("Failed to initialize Redis cache", error=str(redis_error))
        logger.info("Donation ledger will continue without cache")

    try:
        await kafka_producer.start()
    except Exception as kafka_error:
        logger.warning("Failed to start Kafka producer", error=str(kafka_error))
        logger.info("Donation ledger will continue without publishing events")

    # Surface missing credentials at boot instead of on the first donation
    providers = get_provider_registry().configured_providers()
    missing = [name for name, configured in providers.items() if not configured]
    if missing:
        logger.warning("Payment providers without credentials", providers=missing)

    logger.info("Application startup completed successfully", providers=providers)


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on application shutdown"""
    logger.info("Shutting down Donation Ledger")

    await kafka_producer.stop()
    redis_cache.close()
    close_db()
    logger.info("Application shutdown completed successfully")


@app.get("/health")
async def health_check():
    """Basic health check"""
    return {
        "status": "healthy",
        "service": settings.service_name,
        "timestamp": time.time()
    }


@app.get("/metrics")
async def metrics(request: Request):
    """Prometheus metrics endpoint"""
    return await metrics_endpoint(request)


@app.get("/health/ready")
async def readiness_check():
    """Readiness check with database, cache and provider circuit breaker status"""
    health_status = {
        "status": "ready",
        "service": settings.service_name,
        "timestamp": time.time(),
        "database": "disconnected",
        "cache": "not_initialized",
        "events": "connected" if kafka_producer.is_connected else "disabled",
        "circuit_breakers": get_all_breaker_states()
    }

    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        health_status["database"] = "connected"
    except Exception as db_e:
        logger.warning("Database health check failed", error=str(db_e))
        health_status["database"] = f"error: {str(db_e)}"

    if redis_cache.redis_client:
        try:
            redis_cache.redis_client.ping()
            health_status["cache"] = "connected"
        except Exception as cache_e:
            logger.warning("Cache health check failed", error=str(cache_e))
            health_status["cache"] = f"error: {str(cache_e)}"

    if health_status["database"] != "connected":
        health_status["status"] = "not ready"
        return JSONResponse(status_code=503, content=health_status)

    return health_status


app.include_router(payments_router)
app.include_router(donations_router)


if __name__ == "__main__":
    uvicorn.run(
        "donation_ledger.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        log_level="info" if not settings.debug else "debug"
    )
