# imprints/main.py
# FastAPI entry point. Tables are created on startup with retries; the
# accounting outbox worker lives for the lifetime of the application.

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from imprints.db.session import engine, SessionLocal
from imprints.db.base import Base
from imprints.core.config import settings
from imprints.services.outbox import AccountingOutbox
from imprints.services.stripe_gateway import StripeGateway

# Model imports register the tables on Base.metadata
import imprints.models.user
import imprints.models.order
import imprints.models.payment
import imprints.models.issue
import imprints.models.accounting

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


async def try_create_tables(retries: int = 5, delay: int = 2) -> bool:
    """
    Creates the tables, retrying while the database is unreachable.

    Args:
        retries: number of connection attempts
        delay: seconds between attempts

    Returns:
        True if the tables exist, False once every attempt failed
    """
    for attempt in range(1, retries + 1):
        try:
            logger.info(f"Creating tables ({attempt}/{retries})...")
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            logger.info("✅ Database tables created (or already exist).")
            return True
        except Exception as e:
            logger.warning(f"❌ Attempt {attempt}/{retries} failed to create tables: {e}")
            if attempt < retries:
                logger.info(f"⏳ Waiting {delay}s before retry...")
                await asyncio.sleep(delay)
            else:
                logger.error(
                    f"❌ Could not create tables after {retries} retries. "
                    "Database initialization failed."
                )
                return False


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("🚀 Imprints back office starting up...")
    if not await try_create_tables(retries=5, delay=2):
        logger.error("⚠️ Failed to create database tables. Application may not work correctly.")
        if settings.ENVIRONMENT in ("production", "prod"):
            raise RuntimeError("Cannot start application: database tables creation failed")

    app.state.gateway = StripeGateway()
    app.state.outbox = AccountingOutbox(SessionLocal)
    app.state.outbox.start()

    yield

    # Shutdown
    logger.info("🛑 Imprints back office shutting down...")
    await app.state.outbox.stop()
    if app.state.outbox.failed_jobs:
        logger.warning(f"Accounting jobs that did not run: {', '.join(app.state.outbox.failed_jobs)}")
    try:
        await engine.dispose()
        logger.info("✅ Database connection closed")
    except Exception as e:
        logger.error(f"Error closing database: {e}")


app = FastAPI(
    title="Imprints Back Office API",
    description="Orders, issue resolution, refunds and reprints",
    version="1.0.0",
    lifespan=lifespan
)

if settings.ENVIRONMENT == "development":
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
else:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["https://yourdomain.com"],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["*"],
    )

from imprints.api import admin_issues, auth, issues, orders

app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
app.include_router(issues.router, prefix="/api/issues", tags=["issues"])
app.include_router(admin_issues.router, prefix="/api/admin/issues", tags=["admin-issues"])
app.include_router(orders.router, prefix="/api/orders", tags=["orders"])
logger.info("✅ Routers included")


@app.get("/", tags=["health"])
async def root():
    return {
        "status": "ok",
        "service": "Imprints Back Office API",
        "environment": settings.ENVIRONMENT
    }


@app.get("/health", tags=["health"])
async def health():
    """Health check including the accounting worker backlog."""
    outbox = getattr(app.state, "outbox", None)
    return {
        "status": "healthy",
        "version": "1.0.0",
        "accounting_failed_jobs": len(outbox.failed_jobs) if outbox else 0,
    }


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "status": "error",
            "message": "Internal server error",
            "detail": str(exc) if settings.ENVIRONMENT == "development" else "An error occurred",
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "imprints.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.ENVIRONMENT == "development",
        log_level=settings.LOG_LEVEL.lower()
    )
