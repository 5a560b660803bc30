from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from contextlib import asynccontextmanager
from typing import Optional
import time
import logging
import sys

from app.core.config import Settings, settings as default_settings
from app.core.errors import BillingError
from app.api.v1.api import api_router
from app.services.billing import start_billing

logger = logging.getLogger(__name__)


def configure_logging(level: str = default_settings.LOG_LEVEL):
    """Configure root logging for the service."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the FastAPI application."""
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan context manager for startup and shutdown events."""
        # Startup
        try:
            app.state.billing = await start_billing(settings)
        except Exception as e:
            logger.error(f"Failed to start billing engine: {e}")
            raise

        yield

        # Shutdown
        try:
            await app.state.billing.shutdown()
        except Exception as e:
            logger.error(f"Error during shutdown: {e}")
        finally:
            app.state.billing = None

    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        description="Billing engine for co-working desks, private offices and virtual offices",
        openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
        docs_url=f"{settings.API_V1_PREFIX}/docs",
        redoc_url=f"{settings.API_V1_PREFIX}/redoc",
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS + ["*"] if settings.DEBUG else settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_process_time_header(request: Request, call_next):
        """Add processing time header to responses."""
        start_time = time.time()
        response = await call_next(request)
        response.headers["X-Process-Time"] = str(time.time() - start_time)
        return response

    @app.exception_handler(BillingError)
    async def billing_exception_handler(request: Request, exc: BillingError):
        """Turn billing errors into user-facing responses."""
        if exc.http_status >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        else:
            logger.info(f"{request.method} {request.url.path} rejected ({exc.code}): {exc}")
        return JSONResponse(status_code=exc.http_status, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle validation errors."""
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": exc.errors()}
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle general exceptions."""
        logger.error(f"Unhandled exception: {exc}", exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"}
        )

    # Include API router
    app.include_router(api_router, prefix=settings.API_V1_PREFIX)

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {"message": settings.PROJECT_NAME, "version": settings.VERSION}

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        engine = getattr(app.state, "billing", None)
        store_ok = False
        if engine is not None:
            try:
                store_ok = await engine.store.ping()
            except BillingError as e:
                logger.warning(f"Health check store ping failed: {e}")
        return {
            "status": "healthy" if store_ok else "degraded",
            "store": settings.STORE_BACKEND,
            "scheduler": bool(engine and engine.scheduler.running),
        }

    return app


configure_logging()
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host="127.0.0.1",
        port=8000,
        reload=default_settings.DEBUG,
        log_level="info",
        loop="asyncio",
    )
