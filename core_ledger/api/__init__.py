"""
Core Ledger API Application Factory
"""

from collections import defaultdict
from contextlib import asynccontextmanager
from typing import Optional
import time
import traceback

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .auth import router as auth_router
from .customers import router as customers_router
from .transactions import router as transactions_router
from .dependencies import LedgerSystem
from .. import __version__
from ..config import LedgerConfig, get_config
from ..errors import LedgerError, TooManyRequestsError, translate_storage_error, wrap_unexpected
from ..logging_config import setup_logging, log_action
from ..storage import StorageError, StorageInterface


API_PREFIX = "/api/v1"


class RateLimiter:
    """
    Sliding-window request limiter keyed by client address

    Requests under ``{API_PREFIX}/auth`` count against the auth bucket, all
    other API requests against the general bucket.
    """

    def __init__(self, window_seconds: int = 900, auth_limit: int = 5, general_limit: int = 100):
        self.window = window_seconds
        self.auth_limit = auth_limit
        self.general_limit = general_limit
        self.requests = defaultdict(list)

    def _bucket(self, path: str):
        if path.startswith(f"{API_PREFIX}/auth"):
            return "auth", self.auth_limit, "Too many attempts from this IP, please try again later."
        if path.startswith(API_PREFIX):
            return "general", self.general_limit, "Too many requests, please slow down."
        return None

    async def __call__(self, request: Request, call_next):
        bucket = self._bucket(request.url.path)
        if bucket is None:
            return await call_next(request)

        name, limit, message = bucket
        client_ip = request.client.host if request.client else "unknown"
        key = (name, client_ip)
        now = time.time()
        # Clean old entries
        self.requests[key] = [t for t in self.requests[key] if now - t < self.window]
        if len(self.requests[key]) >= limit:
            return JSONResponse(status_code=429, content=TooManyRequestsError(message).to_dict())
        self.requests[key].append(now)
        return await call_next(request)


async def security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["X-XSS-Protection"] = "1; mode=block"
    response.headers["Referrer-Policy"] = "no-referrer"
    return response


def _validation_message(exc: RequestValidationError):
    """First validation problem as (message, field)"""
    errors = exc.errors()
    if not errors:
        return "Invalid request", None
    first = errors[0]
    message = str(first.get("msg", "Invalid request"))
    if message.startswith("Value error, "):
        message = message[len("Value error, "):]
    names = [str(part) for part in first.get("loc", ()) if isinstance(part, str) and part != "body"]
    return message, (names[-1] if names else None)


def create_app(config: Optional[LedgerConfig] = None,
               storage: Optional[StorageInterface] = None) -> FastAPI:
    """
    Create and configure the FastAPI application

    Args:
        config: Settings to use (environment-derived settings when omitted)
        storage: Backend to use instead of one built from ``config.database_url``
    """
    config = config or get_config()
    logger = setup_logging(config.log_level, config.log_format)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.system = LedgerSystem(config, storage)
        logger.info(f"Ledger system initialized ({config.environment})")
        yield
        app.state.system.close()
        logger.info("Ledger storage closed")

    app = FastAPI(
        title="Core Ledger API",
        description="Customer accounts with an atomic deposit, withdrawal and transfer ledger",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Requested-With", "Accept"],
    )

    app.middleware("http")(security_headers)

    # Add rate limiting middleware
    if config.enable_rate_limiting:
        app.middleware("http")(RateLimiter(
            window_seconds=config.rate_limit_window_seconds,
            auth_limit=config.auth_rate_limit,
            general_limit=config.general_rate_limit
        ))

    def error_response(error: LedgerError, original: Optional[BaseException] = None) -> JSONResponse:
        content = error.to_dict(include_details=config.is_development)
        if config.is_development and original is not None:
            content["stack"] = "".join(
                traceback.format_exception(type(original), original, original.__traceback__)
            )
        return JSONResponse(status_code=error.status_code, content=content)

    @app.exception_handler(LedgerError)
    async def handle_ledger_error(request: Request, exc: LedgerError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return error_response(exc)

    @app.exception_handler(StorageError)
    async def handle_storage_error(request: Request, exc: StorageError):
        log_action(
            logger, "error", f"Storage failure: {exc}",
            action=f"{request.method} {request.url.path}", resource="storage"
        )
        return error_response(translate_storage_error(exc, config.is_production), exc)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        message, field = _validation_message(exc)
        content = {"success": False, "message": message, "validation": True}
        if field:
            content["field"] = field
        return JSONResponse(status_code=400, content=content)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            message = f"Can't find {request.url.path} on this server!"
        else:
            message = str(exc.detail)
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "message": message},
            headers=getattr(exc, "headers", None)
        )

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.method} {request.url.path}", exc_info=exc)
        return error_response(wrap_unexpected(exc, config.is_production), exc)

    # Include routers
    app.include_router(auth_router, prefix=f"{API_PREFIX}/auth", tags=["Auth"])
    app.include_router(customers_router, prefix=f"{API_PREFIX}/customers", tags=["Customers"])
    app.include_router(transactions_router, prefix=f"{API_PREFIX}/transaction", tags=["Transactions"])

    # Root endpoint
    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "Core Ledger API",
            "version": __version__,
            "message": "Hello, Welcome to the Core Ledger API!",
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "auth": f"{API_PREFIX}/auth",
                "customers": f"{API_PREFIX}/customers",
                "transactions": f"{API_PREFIX}/transaction",
            }
        }

    @app.get("/ping", response_class=PlainTextResponse)
    async def ping():
        return "PONG"

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "core_ledger_api",
            "environment": config.environment,
            "version": __version__
        }

    return app


def run_server(host: Optional[str] = None, port: Optional[int] = None, debug: bool = False):
    """Run the FastAPI server"""
    import uvicorn

    config = get_config()
    uvicorn.run(
        "core_ledger.api:create_app",
        factory=True,
        host=host or config.api_host,
        port=port or config.api_port,
        reload=debug,
        log_level=config.log_level.lower()
    )
