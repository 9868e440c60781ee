"""
Credit Core API Application Factory
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..errors import CreditCoreError
from ..logging_config import get_logger
from ..system import CreditSystem
from .dependencies import get_credit_system
from .credits import router as credits_router
from .accounts import router as accounts_router
from .admin import router as admin_router


logger = get_logger("credit_core.api")


def create_app(system: Optional[CreditSystem] = None) -> FastAPI:
    """
    Create and configure the FastAPI application

    Args:
        system: Credit system to serve; the global instance when None
    """
    def resolve_system() -> CreditSystem:
        return system or get_credit_system()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        credit_system = resolve_system()
        credit_system.start()
        yield
        credit_system.shutdown()

    app = FastAPI(
        title="Credit Core API",
        description="Credit origination, amortization schedules and installment collection",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if system is not None:
        app.dependency_overrides[get_credit_system] = resolve_system

    @app.exception_handler(CreditCoreError)
    async def credit_core_error_handler(request: Request, exc: CreditCoreError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": type(exc).__name__,
                "detail": str(exc),
                "retryable": getattr(exc, "retryable", False)
            }
        )

    app.include_router(credits_router, prefix="/credits", tags=["Credits"])
    app.include_router(accounts_router, prefix="/accounts", tags=["Accounts"])
    app.include_router(admin_router, prefix="/admin", tags=["Admin"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "credit_core_api",
            "version": __version__
        }

    return app
