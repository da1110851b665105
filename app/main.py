"""Essay checkout API - FastAPI application entrypoint."""
import logging
import os
from datetime import datetime, timezone
from typing import Optional, Tuple

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.config import AppConfig, load_config, log_config_snapshot
from app.correlation import CorrelationIdMiddleware, RequestIdLogFilter
from app.routers import checkout as checkout_router
from autopilot.backends import GenerationBackend
from billing.providers import PaymentProvider
from checkout.controller import CheckoutController
from checkout.errors import CheckoutError
from checkout.factory import ProviderFactory
from checkout.registry import CheckoutRegistry

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s",
)
for _handler in logging.getLogger().handlers:
    _handler.addFilter(RequestIdLogFilter())
logger = logging.getLogger(__name__)


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """Reject requests exceeding size limit to prevent payload bombs."""

    def __init__(self, app, max_bytes: int):
        super().__init__(app)
        self.max_bytes = max_bytes

    async def dispatch(self, request: Request, call_next):
        content_length = request.headers.get("content-length")
        if content_length and int(content_length) > self.max_bytes:
            return JSONResponse(
                status_code=413,
                content={"detail": "Request entity too large"},
            )
        return await call_next(request)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["X-XSS-Protection"] = "1; mode=block"
        response.headers["Cache-Control"] = "no-store"
        return response


def build_integrations(config: AppConfig) -> Tuple[PaymentProvider, GenerationBackend]:
    """Resolve the payment provider and generation backend named in config."""
    if config.generation_backend == "http":
        backend = ProviderFactory.get_generation_backend(
            "http",
            base_url=config.generation_backend_url,
            api_key=os.environ.get("GENERATION_API_KEY"),
        )
    else:
        backend = ProviderFactory.get_generation_backend(config.generation_backend)
    provider = ProviderFactory.get_payment_provider(config.payment_provider)
    return provider, backend


def build_registry(
    config: AppConfig, provider: PaymentProvider, backend: GenerationBackend
) -> CheckoutRegistry:
    """
    Controller registry over shared integrations.

    One payment provider and one generation backend serve every project;
    each project still gets its own controller state.
    """

    def factory(project_id: str) -> CheckoutController:
        return CheckoutController(
            project_id,
            payment_provider=provider,
            generation_backend=backend,
            lock_ttl=config.lock_ttl,
            lock_policy=config.price_lock_policy,
            max_retries=config.autopilot_max_retries,
            retry_delay=config.retry_delay_seconds,
            track=config.track_events,
        )

    return CheckoutRegistry(factory)


def create_app(config: Optional[AppConfig] = None, registry: Optional[CheckoutRegistry] = None) -> FastAPI:
    """
    Build the application.

    Tests pass their own config and registry (mock providers, short TTLs).
    """
    if config is None:
        config = load_config()
    log_config_snapshot(config)
    backend = None
    if registry is None:
        provider, backend = build_integrations(config)
        registry = build_registry(config, provider, backend)
    started_at = datetime.now(timezone.utc)

    app = FastAPI(
        title="Essay Checkout",
        description="Quote, price lock, payment and autopilot orchestration",
        version=config.service_version,
    )
    app.state.config = config
    app.state.checkout_registry = registry

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Middleware stack (order matters - added in reverse execution order)
    # 1. CorrelationId: First to run, wraps everything, adds X-Request-Id to responses
    # 2. SecurityHeaders: Adds security headers to responses
    # 3. RequestSizeLimit: Rejects oversized requests early
    app.add_middleware(CorrelationIdMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestSizeLimitMiddleware, max_bytes=config.max_request_size_bytes)

    app.add_exception_handler(CheckoutError, checkout_router.checkout_error_handler)
    app.include_router(checkout_router.router)

    @app.on_event("shutdown")
    async def shutdown_event():
        """Dispose open checkouts and close shared integrations."""
        await registry.dispose_all()
        if backend is not None:
            await backend.aclose()
        logger.info("Checkout registry disposed")

    @app.get("/health")
    async def health():
        """Health check for Railway with service observability."""
        return {
            "status": "healthy",
            "service": config.service_name,
            "version": config.service_version,
            "environment": config.environment,
            "payment_provider": config.payment_provider,
            "generation_backend": config.generation_backend,
            "open_checkouts": len(registry),
            "started_at": started_at.isoformat(),
        }

    return app


app = create_app()
