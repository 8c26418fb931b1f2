import logging
import os
import time
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

# Load env from familyquest/.env before settings are read
package_dir = os.path.dirname(os.path.abspath(__file__))
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv(dotenv_path=os.path.join(package_dir, ".env"))

from familyquest.api import achievements, adventures, catalog, families, goals, health, planning, stats
from familyquest.core.config import settings, validate_config
from familyquest.core.documents import get_document_store
from familyquest.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
)
from familyquest.core.logging import configure_logging
from familyquest.core.middleware.request_id import RequestIdMiddleware
from familyquest.workers.period_reset import build_scheduler

configure_logging(settings.ENV)
validate_config(strict=settings.CONFIG_STRICT)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("familyquest")
    logger.info("Starting FamilyQuest ledger...")
    app.state.startup_time = time.time()

    scheduler = None
    if settings.SCHEDULER_ENABLED:
        scheduler = build_scheduler(get_document_store(), settings.SCHEDULER_TIMEZONE)
        scheduler.start()
        logger.info("Period reset scheduler started")
    app.state.scheduler = scheduler
    try:
        yield
    finally:
        if scheduler is not None and scheduler.running:
            scheduler.shutdown(wait=False)
        logger.info("Stopping FamilyQuest ledger...")


app = FastAPI(title="FamilyQuest - Reward Ledger", lifespan=lifespan)

app.add_middleware(RequestIdMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(StarletteHTTPException, http_error_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(goals.router)
app.include_router(adventures.router)
app.include_router(achievements.router)
app.include_router(families.router)
app.include_router(stats.router)
app.include_router(planning.router)
app.include_router(catalog.router)
app.include_router(health.root_router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("familyquest.main:app", host="0.0.0.0", port=8000, reload=settings.ENV == "development")
