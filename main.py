"""
Subscription-gated content backend
Tier-gated posts, Stripe checkout/cancellation and webhook reconciliation
"""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional
import logging
import traceback

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from auth import auth_router
from auth_utils import IdentityVerifier
from backend.utils.responses import error_response, service_error_response
from config.settings import Settings, load_settings
from database import Database
from errors import ServiceError
from routers.billing_router import billing_router
from routers.posts_router import router as posts_router
from services.billing_provider import StripeBillingProvider
from utils.keyed_lock import KeyedLock

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(settings: Settings) -> None:
    """Write all events to <LOG_DIR>/app.log and to the console"""
    logs_dir = Path(settings.log_dir)
    logs_dir.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=logging.INFO,
        format=LOG_FORMAT,
        handlers=[
            logging.FileHandler(logs_dir / "app.log"),
            logging.StreamHandler()
        ]
    )


# Uncaught exception middleware - logs all unhandled exceptions and returns 500
class UncaughtExceptionMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        try:
            return await call_next(request)
        except Exception as e:
            logger.error(f"Uncaught exception: {e}\n{traceback.format_exc()}")
            return JSONResponse(
                status_code=500,
                content={"ok": False, "error": "internal_error", "message": "Internal Server Error"}
            )


# Security headers middleware
class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses: HSTS in production, X-Frame-Options, X-Content-Type-Options"""

    def __init__(self, app, hsts: bool = False):
        super().__init__(app)
        self.hsts = hsts

    async def dispatch(self, request, call_next):
        response = await call_next(request)
        if self.hsts:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        return response


async def handle_service_error(request: Request, exc: ServiceError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code}: {exc.message}")
    return service_error_response(exc)


async def handle_validation_error(request: Request, exc: RequestValidationError):
    return error_response(
        "validation_failed",
        status=422,
        message="Invalid request",
        data={"errors": [
            {"loc": list(error.get("loc", [])), "msg": error.get("msg")} for error in exc.errors()
        ]},
    )


def create_app(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    billing_provider=None,
    setup_logging: bool = True,
) -> FastAPI:
    """
    Build the application and everything it owns: storage handle, Stripe
    adapter, identity verifier and the per-user checkout lock registry.
    Tests pass their own database and provider.
    """
    settings = settings or load_settings()
    if setup_logging:
        configure_logging(settings)
    database = database or Database.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Initialize database on startup
        try:
            await database.create_all()
            logger.info("Database initialized successfully")
        except Exception as e:
            logger.error(f"Database initialization failed: {e}")
            raise
        if not settings.jwt_secret_key:
            logger.warning("Startup check: JWT_SECRET_KEY is not set; authenticated routes will fail")
        yield
        await database.dispose()

    app = FastAPI(title="Subscription Content API", lifespan=lifespan)

    app.state.settings = settings
    app.state.database = database
    app.state.billing_provider = billing_provider or StripeBillingProvider(settings)
    app.state.identity_verifier = IdentityVerifier(settings)
    app.state.checkout_locks = KeyedLock("checkout")

    app.add_exception_handler(ServiceError, handle_service_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)

    app.add_middleware(UncaughtExceptionMiddleware)
    app.add_middleware(SecurityHeadersMiddleware, hsts=settings.is_production)

    # CORS MUST be near the bottom
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.client_url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health():
        return {"ok": True}

    app.include_router(auth_router)
    app.include_router(posts_router)
    app.include_router(billing_router)
    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
