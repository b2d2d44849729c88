# salesync/main.py

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from salesync.core.config import get_settings
from salesync.core.exceptions import UnknownPlatformError
from salesync.core.logging_config import configure_logging
from salesync.routes import health, platforms, sales
from salesync.scheduler import start_scheduler, stop_scheduler

configure_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    if settings.SCHEDULED_SYNC_ENABLED:
        await start_scheduler()
    try:
        yield
    finally:
        await stop_scheduler()


app = FastAPI(
    title="Salesync",
    description="Unified sales ledger across eBay, Etsy and Depop",
    lifespan=lifespan,
)


@app.exception_handler(UnknownPlatformError)
async def unknown_platform_handler(request: Request, exc: UnknownPlatformError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


app.include_router(health.router)
app.include_router(sales.router)
app.include_router(platforms.router)
