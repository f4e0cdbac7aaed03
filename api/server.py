"""FastAPI server — metered gateway in front of the document analysis backend.
Run with: uvicorn api.server:app --port 3000 (or python -m api.server)
"""

import logging
import time
import uuid

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.auth import client_ip
from api.error_handlers import quota_error_response, register_error_handlers
from api.rate_limiter import QuotaLimiter, Tier
from config.log_config import configure_logging
from config.settings import (
    ALLOWED_ORIGINS, API_SERVER_PORT, APP_TITLE, APP_VERSION, CLIENTS_FILE,
    ENVIRONMENT, GLOBAL_RATE_LIMIT_EXEMPT,
)
from db.ledger import Ledger, create_ledger
from services.analysis_service import AnalysisBackend
from services.client_registry import ClientRegistry
from services.errors import GlobalExceeded
from services.key_validator import KeyValidator

logger = logging.getLogger(__name__)


def create_app(registry: ClientRegistry = None, limiter: QuotaLimiter = None,
               ledger: Ledger = None, backend: AnalysisBackend = None) -> FastAPI:
    """Build the app around explicitly constructed collaborators.
    Anything not passed in is built from settings."""
    configure_logging()
    if registry is None:
        registry = ClientRegistry.from_file(CLIENTS_FILE) if CLIENTS_FILE else ClientRegistry.from_config()

    app = FastAPI(
        title=APP_TITLE,
        version=APP_VERSION,
        description="AI-powered financial document risk assessment API",
    )
    app.state.key_validator = KeyValidator(registry)
    app.state.limiter = limiter or QuotaLimiter()
    app.state.ledger = ledger or create_ledger()
    app.state.backend = backend or AnalysisBackend()
    app.state.started_at = time.monotonic()

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "x-api-key"],
    )

    @app.on_event("startup")
    def startup():
        logger.info("Risk Assessment API Gateway started", extra={"fields": {
            "environment": ENVIRONMENT,
            "clients": len(app.state.key_validator.registry),
        }})

    @app.on_event("shutdown")
    async def shutdown():
        await app.state.backend.aclose()

    @app.middleware("http")
    async def rate_limit_middleware(request: Request, call_next):
        """Global per-IP window, checked before any client tier."""
        if request.url.path in GLOBAL_RATE_LIMIT_EXEMPT:
            return await call_next(request)

        limiter: QuotaLimiter = request.app.state.limiter
        decision = limiter.check_and_increment(Tier.GLOBAL, client_ip(request))
        if not decision.allowed:
            logger.warning("Global rate limit exceeded", extra={"fields": {
                "ip": client_ip(request), "endpoint": request.url.path, "limit": decision.limit,
            }})
            return quota_error_response(request, GlobalExceeded(decision))

        response = await call_next(request)
        if getattr(request.state, "quota_denied", False):
            # A later tier denied the request; it should not use up the IP window either.
            limiter.release(decision)
        headers = getattr(request.state, "rate_limit_headers", None) or {
            "X-RateLimit-Limit": str(decision.limit),
            "X-RateLimit-Remaining": str(limiter.remaining(Tier.GLOBAL, client_ip(request))),
        }
        for name, value in headers.items():
            response.headers.setdefault(name, value)
        return response

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):
        """Assign a request id, time the request and log start/finish."""
        request.state.request_id = str(uuid.uuid4())
        request.state.start_time = time.monotonic()
        logger.info("Request started", extra={"fields": {
            "request_id": request.state.request_id,
            "method": request.method,
            "path": request.url.path,
            "ip": client_ip(request),
            "user_agent": request.headers.get("user-agent"),
        }})
        response = await call_next(request)
        duration = int((time.monotonic() - request.state.start_time) * 1000)
        response.headers["X-Request-ID"] = request.state.request_id
        log = logger.warning if response.status_code >= 400 else logger.info
        log("Request finished", extra={"fields": {
            "request_id": request.state.request_id,
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "duration_ms": duration,
        }})
        return response

    register_error_handlers(app)

    # Mount route modules
    from api.routes import account, admin, analysis, billing, plans

    app.include_router(plans.router, prefix="/v1", tags=["Plans"])
    app.include_router(account.router, prefix="/v1", tags=["Account"])
    app.include_router(billing.router, prefix="/v1", tags=["Billing"])
    app.include_router(analysis.router, prefix="/v1", tags=["Analysis"])
    app.include_router(admin.router, tags=["Admin"])

    @app.get("/health")
    async def health(request: Request):
        backend_health = await request.app.state.backend.health_check()
        healthy = backend_health["status"] == "healthy"
        return JSONResponse(status_code=200 if healthy else 503, content={
            "status": "OK" if healthy else "DEGRADED",
            "service": APP_TITLE,
            "version": APP_VERSION,
            "uptime_seconds": int(time.monotonic() - request.app.state.started_at),
            "dependencies": {"analysis_backend": backend_health},
            "environment": ENVIRONMENT,
        })

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=API_SERVER_PORT)
