import os

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .core.cache import close_redis, initialize_redis
from .core.errors import OrchestrationError
from .core.logging import configure_logging, get_logger, get_trace_id
from .core.middleware import TraceIDMiddleware
from .routes import health, metrics, mode, respond, session

# JSON output in containers, console output in development
log_level = os.getenv("LOG_LEVEL", "INFO")
json_output = os.getenv("LOG_JSON", "true").lower() == "true"
configure_logging(log_level=log_level, json_output=json_output)

logger = get_logger(__name__)

_LOCATIONS = ("body", "query", "path")

app = FastAPI(
    title="LearnAssist Orchestration API",
    description="Mode-aware, grounded tutoring responses with tiered model routing",
    version="0.1.0",
)

# CORS for local dev; restrict in production
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Must be added after CORS
app.add_middleware(TraceIDMiddleware)


@app.on_event("startup")
async def startup_event():
    """Connect the response cache backend."""
    logger.info("app_startup_started")

    redis_initialized = await initialize_redis()
    if redis_initialized:
        logger.info("app_startup_redis_ready")
    else:
        logger.warning(
            "app_startup_redis_unavailable",
            message="Redis cache not available. Responses will not be cached.",
        )

    logger.info("app_startup_completed")


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("app_shutdown_started")
    await close_redis()
    logger.info("app_shutdown_completed")


def _error_response(status_code: int, content: dict) -> JSONResponse:
    trace_id = get_trace_id()
    content = {**content, "status_code": status_code, "trace_id": trace_id}
    response = JSONResponse(status_code=status_code, content=content)
    if trace_id:
        response.headers["X-Trace-ID"] = trace_id
    return response


@app.exception_handler(OrchestrationError)
async def orchestration_exception_handler(request: Request, exc: OrchestrationError):
    """Map the core's error taxonomy onto HTTP status codes."""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "orchestration_error",
        status_code=exc.status_code,
        error_type=type(exc).__name__,
        error=exc.message,
        path=request.url.path,
        method=request.method,
    )
    return _error_response(exc.status_code, exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed bodies are client errors (400), same as core validation failures."""
    fields = sorted({".".join(str(part) for part in err["loc"] if part not in _LOCATIONS) for err in exc.errors()})
    logger.warning("request_validation_failed", fields=fields, path=request.url.path)
    return _error_response(400, {
        "error": "ValidationError",
        "message": "Invalid request",
        "fields": fields,
    })


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    logger.warning(
        "http_exception",
        status_code=exc.status_code,
        detail=exc.detail,
        path=request.url.path,
        method=request.method,
    )
    return _error_response(exc.status_code, {"detail": exc.detail})


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
        method=request.method,
        exc_info=True,
    )
    return _error_response(500, {"detail": "Internal server error"})


app.include_router(health.router, prefix="/health", tags=["Health"])
app.include_router(respond.router, prefix="/respond", tags=["Orchestration"])
app.include_router(mode.router, prefix="/mode", tags=["Mode"])
app.include_router(session.router, prefix="/session", tags=["Session"])
app.include_router(metrics.router, prefix="/metrics", tags=["Metrics"])
