"""
Rego Policy Agent — FastAPI application entry point.
Structured logging, provider lifecycle and error-to-HTTP mapping.
"""
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from rego_agent.config import settings
from rego_agent.core.logging import setup_logging, get_logger
from rego_agent.ai.providers import AIProviderError, get_ai_provider, reset_ai_provider
from rego_agent.policy.errors import PolicyRequestError

# Initialize structured logging FIRST
setup_logging(level="DEBUG" if settings.DEBUG else settings.LOG_LEVEL)
logger = get_logger(__name__)

CAPABILITIES = [
    "policy_generation",
    "policy_refinement",
    "policy_validation",
    "policy_explanation",
    "streaming_support",
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    logger.info("Starting Rego Policy Agent", extra={
        "event": "startup",
        "app_name": settings.APP_NAME,
        "environment": settings.APP_ENV,
        "provider": settings.AI_PROVIDER,
        "model": settings.active_ai_model,
    })

    # Production builds the provider eagerly so a bad credential fails the boot.
    if settings.APP_ENV == "production":
        try:
            get_ai_provider()
        except AIProviderError as exc:
            logger.critical(
                f"AI provider initialization FAILED: {exc}",
                extra={"event": "ai_validation_failed", "provider": settings.AI_PROVIDER},
            )
            raise SystemExit(f"FATAL: AI provider '{settings.AI_PROVIDER}' unavailable: {exc}")

    yield

    await reset_ai_provider()
    logger.info("Application shutdown complete", extra={"event": "shutdown"})


# ── Application ──
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    lifespan=lifespan,
)

# ── CORS ──
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=False,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Accept"],
    max_age=86400,
)


# ── Error mapping ──

def _error_response(status_code: int, message: str, code: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, "code": code})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    logger.info("Rejected invalid request", extra={
        "event": "invalid_input", "path": request.url.path, "error": message,
    })
    return _error_response(400, message, "INVALID_INPUT")


@app.exception_handler(PolicyRequestError)
async def policy_request_handler(request: Request, exc: PolicyRequestError):
    return _error_response(exc.status_code, str(exc), exc.code)


@app.exception_handler(AIProviderError)
async def provider_error_handler(request: Request, exc: AIProviderError):
    logger.error("Completion provider error", extra={
        "event": "provider_error",
        "path": request.url.path,
        "provider": exc.provider,
        "error_code": exc.code,
    })
    return _error_response(exc.status_code, str(exc), exc.code)


# ── Routers ──
from rego_agent.policy.router import router as policy_router

app.include_router(policy_router, tags=["Policies"])


@app.get("/health")
async def health():
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": settings.APP_VERSION,
        "provider": settings.AI_PROVIDER,
        "model": settings.active_ai_model,
        "capabilities": CAPABILITIES,
    }
