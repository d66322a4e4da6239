"""
Main FastAPI Application
"""
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from typing import Optional
import logging

from backoffice.core.config import settings
from backoffice.core.clock import Clock, system_clock
from backoffice.core.database import TenantStoreResolver
from backoffice.core.exceptions import BackOfficeError
from backoffice.api.v1 import budgets, expenses, inventory, purchases, returns, settings as settings_router
from backoffice.schemas import HealthResponse

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s %(message)s"
)
logger = logging.getLogger(__name__)


def create_app(tenant_stores: Optional[TenantStoreResolver] = None, clock: Optional[Clock] = None) -> FastAPI:
    """Build the application around a tenant store resolver and a clock"""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan events"""
        logger.info("Starting up... environment=%s", settings.ENVIRONMENT)
        yield
        logger.info("Shutting down...")
        app.state.tenant_stores.close_all()

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        lifespan=lifespan
    )
    app.state.tenant_stores = tenant_stores or TenantStoreResolver()
    app.state.clock = clock or system_clock

    # Exception handlers
    @app.exception_handler(BackOfficeError)
    async def back_office_exception_handler(request: Request, exc: BackOfficeError):
        logger.info(
            "request_failed method=%s path=%s code=%s detail=%s",
            request.method, request.url.path, exc.code, exc.message
        )
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"detail": "An unexpected error occurred", "code": "INTERNAL_ERROR"}
        )

    # Health check
    @app.get("/health", response_model=HealthResponse)
    async def health_check():
        return {"status": "healthy", "app": settings.APP_NAME, "version": settings.APP_VERSION}

    # Include routers
    app.include_router(settings_router.router, prefix="/api/v1")
    app.include_router(inventory.router, prefix="/api/v1")
    app.include_router(purchases.router, prefix="/api/v1")
    app.include_router(expenses.router, prefix="/api/v1")
    app.include_router(budgets.router, prefix="/api/v1")
    app.include_router(returns.router, prefix="/api/v1")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
