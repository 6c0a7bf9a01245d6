"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from funding_payroll import __version__
from funding_payroll.api.routes import bulk_payroll_router, health_router, payrolls_router
from funding_payroll.config import configure_logging, get_settings
from funding_payroll.database import dispose_db, init_db
from funding_payroll.services.batch_processor import BulkPayrollProcessor
from funding_payroll.services.job_queue import InProcessJobQueue

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    # Startup
    settings = get_settings()
    configure_logging(settings)
    _, session_factory = init_db()

    processor = BulkPayrollProcessor(session_factory, settings=settings)
    queue = InProcessJobQueue(
        handler=processor.handle_job,
        workers=settings.queue_workers,
        max_attempts=settings.job_max_attempts,
        failure_handler=processor.handle_exhausted,
    )
    await queue.start()
    app.state.job_queue = queue
    yield
    # Shutdown
    await queue.stop()
    app.state.job_queue = None
    await dispose_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Funding Payroll Engine API",
        description="Grant-funded multi-organization payroll",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
            },
        )

    app.include_router(health_router)
    app.include_router(bulk_payroll_router, prefix="/api/v1")
    app.include_router(payrolls_router, prefix="/api/v1")

    return app


# Default app instance for uvicorn
app = create_app()
